"""Session cookie and CSRF token lifecycle.

:class:`CredentialManager` owns the one :class:`SessionCredential` of a client
and drives the ``Unauthenticated -> Authenticating -> Authenticated`` state
machine. An authentication-failure response anywhere clears the credential and
sends the machine back to ``Unauthenticated``; the next call logs in again.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from enum import StrEnum

from pydantic import ValidationError

from timetree_client.core.csrf import (
    CsrfTokenExtractor,
    MetaTagCsrfExtractor,
    extract_csrf_from_headers,
)
from timetree_client.core.rate_limit import RetryExecutor
from timetree_client.core.transport import Transport, TransportResponse
from timetree_client.errors import (
    AuthenticationFailure,
    CsrfMissingFailure,
    ThrottledFailure,
    TimeTreeError,
)
from timetree_client.models import AuthRequest

logger = logging.getLogger(__name__)

AUTH_ENDPOINT = "/auth/email/signin"
SESSION_COOKIE_NAME = "_session_id"
CSRF_REQUEST_HEADER = "X-CSRF-Token"

_SESSION_COOKIE_PATTERN = re.compile(rf"{re.escape(SESSION_COOKIE_NAME)}=([^;,\s]+)")


class AuthState(StrEnum):
    """Credential lifecycle state."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass
class SessionCredential:
    """Session cookie plus best-effort CSRF token.

    ``authenticated`` implies ``cookie_value`` is set; ``csrf_token`` may be
    absent even while authenticated.
    """

    cookie_value: str | None = None
    csrf_token: str | None = None
    authenticated: bool = False

    def clear(self) -> None:
        self.cookie_value = None
        self.csrf_token = None
        self.authenticated = False


def generate_request_uuid() -> str:
    """Random client request identifier, formatted without hyphens."""
    return uuid.uuid4().hex


def parse_session_cookie(set_cookie: str | None) -> str | None:
    if not set_cookie:
        return None
    match = _SESSION_COOKIE_PATTERN.search(set_cookie)
    return match.group(1) if match else None


class CredentialManager:
    """Performs the login handshake and hands out request credentials."""

    def __init__(
        self,
        *,
        email: str,
        password: str,
        transport: Transport,
        executor: RetryExecutor,
        base_url: str,
        web_url: str,
        default_headers: dict[str, str] | None = None,
        csrf_extractor: CsrfTokenExtractor | None = None,
    ) -> None:
        self._email = email
        self._password = password
        self._transport = transport
        self._executor = executor
        self._base_url = base_url.rstrip("/")
        self._web_url = web_url
        self._default_headers = dict(default_headers or {})
        self._csrf_extractor = csrf_extractor or MetaTagCsrfExtractor()
        self._credential = SessionCredential()
        self._state = AuthState.UNAUTHENTICATED
        # bumped whenever the credential is dropped; in-flight work compares it
        self._generation = 0
        self._login_lock = asyncio.Lock()

    @property
    def state(self) -> AuthState:
        return self._state

    def is_authenticated(self) -> bool:
        return self._credential.authenticated and self._credential.cookie_value is not None

    async def ensure_authenticated(self) -> None:
        """Log in unless a valid session is already held."""
        if self.is_authenticated():
            return

        async with self._login_lock:
            if self.is_authenticated():
                return
            await self._login()
            if not self.is_authenticated():
                raise AuthenticationFailure("Session was dropped while logging in")

    async def _login(self) -> None:
        logger.info("Authenticating with TimeTree as %s", self._email)
        self._credential.clear()
        self._state = AuthState.AUTHENTICATING
        generation = self._generation
        url = f"{self._base_url}{AUTH_ENDPOINT}"

        async def _submit(auth_request: AuthRequest) -> TransportResponse:
            response = await self._transport.send(
                "PUT",
                url,
                body=auth_request.model_dump(),
                headers=dict(self._default_headers),
            )
            if self._generation == generation:
                self._absorb_rotations(response)
            if response.status == 429:
                raise ThrottledFailure()
            return response

        try:
            auth_request = self._build_auth_request()
            response = await self._executor.run_throttled(lambda: _submit(auth_request))
            if self._generation != generation:
                raise AuthenticationFailure("Session was dropped while logging in")
            self._check_login_response(response)
        except TimeTreeError as exc:
            self._reset()
            logger.error("Authentication with TimeTree failed: %s", exc)
            raise

        self._credential.authenticated = True
        self._state = AuthState.AUTHENTICATED
        logger.info("Authentication successful")

        await self._refresh_csrf_from_document()

    def _build_auth_request(self) -> AuthRequest:
        try:
            return AuthRequest(
                uid=self._email,
                password=self._password,
                uuid=generate_request_uuid(),
            )
        except ValidationError as exc:
            raise AuthenticationFailure(
                f"Invalid login identifier {self._email!r}: must be an email address"
            ) from exc

    def _check_login_response(self, response: TransportResponse) -> None:
        if response.status == 401:
            raise AuthenticationFailure("Invalid email or password", status_code=401)
        if response.status == 403:
            raise AuthenticationFailure("Account access forbidden", status_code=403)
        if not response.ok:
            raise AuthenticationFailure(
                f"Authentication failed: HTTP {response.status}", status_code=response.status
            )
        if self._credential.cookie_value is None:
            raise AuthenticationFailure("No session cookie received from server")

    async def _refresh_csrf_from_document(self) -> None:
        """Best effort: scrape the CSRF token from the web root document.

        The token is only stored if the session that fetched it is still held.
        """
        generation = self._generation

        async def _fetch() -> TransportResponse:
            response = await self._transport.send(
                "GET",
                self._web_url,
                headers=self._document_headers(),
            )
            if self._generation == generation:
                self._absorb_rotations(response)
            if response.status == 429:
                raise ThrottledFailure()
            return response

        try:
            response = await self._executor.run_throttled(_fetch)
        except TimeTreeError as exc:
            logger.warning("Could not fetch CSRF document; mutating calls unavailable: %s", exc)
            return

        if self._generation != generation:
            logger.warning("Session dropped while fetching CSRF document; token discarded")
            return

        if not response.ok:
            logger.warning(
                "CSRF document request returned HTTP %d; mutating calls unavailable",
                response.status,
            )
            return

        document = response.body if isinstance(response.body, str) else str(response.body or "")
        token = self._csrf_extractor.extract_token(document)
        if token is None:
            logger.warning("No CSRF token found in web document; mutating calls unavailable")
            return

        self._credential.csrf_token = token
        logger.debug("CSRF token extracted from web document")

    def _document_headers(self) -> dict[str, str]:
        headers = {"Accept": "text/html"}
        if self._credential.cookie_value is not None:
            headers["Cookie"] = f"{SESSION_COOKIE_NAME}={self._credential.cookie_value}"
        return headers

    def _absorb_rotations(self, response: TransportResponse) -> None:
        cookie = parse_session_cookie(response.headers.get("set-cookie"))
        if cookie is not None:
            self._credential.cookie_value = cookie
            logger.debug("Session cookie updated")

        csrf_token = extract_csrf_from_headers(response.headers)
        if csrf_token is not None and csrf_token != self._credential.csrf_token:
            self._credential.csrf_token = csrf_token
            logger.debug("CSRF token rotated by server")

    def observe_response(
        self, response: TransportResponse, *, session_token: str | None = None
    ) -> None:
        """Pick up a rotated session cookie or CSRF token from any response.

        Rotations are ignored while no session is held so that a late response
        cannot resurrect a cleared credential. When ``session_token`` names the
        cookie the request was sent with, responses to a superseded session are
        ignored as well.
        """
        if self._state is AuthState.UNAUTHENTICATED:
            return
        if session_token is not None and session_token != self._credential.cookie_value:
            return
        self._absorb_rotations(response)

    def invalidate(
        self, *, status_code: int | None = None, session_token: str | None = None
    ) -> None:
        """Drop the session after an authentication-failure response.

        A rejection of ``session_token`` is ignored once that session has been
        replaced; it says nothing about the current one.
        """
        if session_token is not None and session_token != self._credential.cookie_value:
            logger.debug(
                "Ignoring rejection (status=%s) of a superseded session", status_code
            )
            return
        logger.warning(
            "Session rejected by server (status=%s); clearing credentials", status_code
        )
        self._reset()

    def logout(self) -> None:
        self._reset()
        logger.info("Logged out")

    def _reset(self) -> None:
        self._credential.clear()
        self._state = AuthState.UNAUTHENTICATED
        self._generation += 1

    def get_session_token(self) -> str:
        cookie = self._credential.cookie_value
        if cookie is None or not self._credential.authenticated:
            raise AuthenticationFailure("Not authenticated - no session cookie")
        return cookie

    def get_csrf_token(self) -> str | None:
        return self._credential.csrf_token

    def require_csrf_token(self) -> str:
        token = self._credential.csrf_token
        if token is None:
            raise CsrfMissingFailure()
        return token

    def build_headers(self, *, include_csrf: bool = False) -> dict[str, str]:
        """Headers for an authenticated API call."""
        headers = dict(self._default_headers)
        headers["Cookie"] = f"{SESSION_COOKIE_NAME}={self.get_session_token()}"
        if include_csrf:
            headers[CSRF_REQUEST_HEADER] = self.require_csrf_token()
        return headers

