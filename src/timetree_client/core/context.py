"""Per-account access context.

An :class:`AccessContext` bundles the rate budget, the retry executor, the
credential state and the transport of one account into a single owned value.
Every API call goes through :meth:`AccessContext.request`, which makes it
throttled, credentialed and classified. Two contexts never share state; two
contexts for the same account each believe they own the whole server-side
rate limit.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from timetree_client.config import ClientConfig
from timetree_client.core.credentials import CredentialManager
from timetree_client.core.csrf import CsrfTokenExtractor
from timetree_client.core.rate_limit import Clock, RetryExecutor, TokenBucketLimiter
from timetree_client.core.transport import HttpxTransport, Transport, TransportResponse
from timetree_client.errors import AuthenticationFailure, RequestFailure, ThrottledFailure

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _safe_error_message(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "title"):
            candidate = body.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return " ".join(candidate.split())[:200]
    if isinstance(body, str) and body.strip():
        return " ".join(body.split())[:200]
    return "Request failed without an error payload"


class AccessContext:
    """Throttled, credentialed gateway to the TimeTree API for one account."""

    def __init__(
        self,
        *,
        transport: Transport,
        executor: RetryExecutor,
        credentials: CredentialManager,
        base_url: str,
    ) -> None:
        self._transport = transport
        self._executor = executor
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        transport: Transport | None = None,
        http_client: httpx.AsyncClient | None = None,
        csrf_extractor: CsrfTokenExtractor | None = None,
        clock: Clock = time.monotonic,
    ) -> AccessContext:
        limits = config.rate_limit
        effective_transport = transport or HttpxTransport(
            http_client, timeout=limits.timeout_seconds
        )
        limiter = TokenBucketLimiter(limits.max_requests_per_second, clock=clock)
        executor = RetryExecutor(
            limiter,
            call_timeout=limits.timeout_seconds,
            backoff_base_seconds=limits.backoff_base_seconds,
            default_max_attempts=limits.max_attempts,
        )
        credentials = CredentialManager(
            email=config.email,
            password=config.password,
            transport=effective_transport,
            executor=executor,
            base_url=config.base_url,
            web_url=config.web_url,
            default_headers=config.headers,
            csrf_extractor=csrf_extractor,
        )
        return cls(
            transport=effective_transport,
            executor=executor,
            credentials=credentials,
            base_url=config.base_url,
        )

    @property
    def credentials(self) -> CredentialManager:
        return self._credentials

    @property
    def executor(self) -> RetryExecutor:
        return self._executor

    def url_for(self, path: str) -> str:
        normalized_path = path if path.startswith("/") else f"/{path}"
        return f"{self._base_url}{normalized_path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        max_attempts: int | None = None,
    ) -> Any:
        """Send one authenticated API call and return its decoded body.

        Mutating methods need a CSRF token; without one this raises
        :class:`~timetree_client.errors.CsrfMissingFailure` before anything
        is sent.
        """
        verb = method.upper()
        mutating = verb in MUTATING_METHODS

        await self._credentials.ensure_authenticated()
        if mutating:
            self._credentials.require_csrf_token()

        url = self.url_for(path)

        async def _unit_of_work() -> Any:
            session_token = self._credentials.get_session_token()
            headers = self._credentials.build_headers(include_csrf=mutating)
            response = await self._transport.send(verb, url, body=body, headers=headers)
            self._credentials.observe_response(response, session_token=session_token)
            return self._classify(response, session_token)

        return await self._executor.run_throttled(_unit_of_work, max_attempts)

    def _classify(self, response: TransportResponse, session_token: str) -> Any:
        if response.ok:
            return response.body

        status = response.status
        if status == 429:
            raise ThrottledFailure()
        if status in (401, 403):
            self._credentials.invalidate(status_code=status, session_token=session_token)
            raise AuthenticationFailure(
                f"Session rejected ({status}) - re-authentication required",
                status_code=status,
            )

        message = _safe_error_message(response.body)
        logger.error("TimeTree API returned HTTP %d: %s", status, message)
        raise RequestFailure(status_code=status, message=message)

    async def aclose(self) -> None:
        await self._transport.aclose()
