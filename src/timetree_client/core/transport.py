"""Raw HTTP transport primitive.

The transport sends one request and hands back status, headers and decoded
body. It never classifies statuses and never keeps cookies of its own; both
belong to the access core.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from timetree_client.errors import TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass
class TransportResponse:
    """One HTTP response as seen by the access core."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    """Anything able to perform a single HTTP exchange."""

    async def send(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...


def _flatten_headers(headers: httpx.Headers) -> dict[str, str]:
    flattened: dict[str, str] = {}
    for key in headers.keys():
        values = headers.get_list(key)
        flattened[key.lower()] = ", ".join(values)
    return flattened


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type and response.content:
        try:
            return response.json()
        except ValueError:
            logger.debug("Response declared JSON but did not decode; returning text")
    return response.text


class HttpxTransport:
    """:class:`Transport` backed by an ``httpx.AsyncClient``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout

    async def send(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        logger.debug("HTTP %s %s", method, url)
        try:
            response = await self._http_client.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error("Request timeout after %.1fs: %s %s", self._timeout, method, url)
            raise TransportFailure(
                f"Request timeout after {self._timeout:.1f}s", timed_out=True
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Network error on %s %s: %s", method, url, exc)
            raise TransportFailure(f"Network error: {exc}") from exc
        finally:
            # The session cookie is owned by the credential manager, not the client jar.
            self._http_client.cookies.clear()

        return TransportResponse(
            status=response.status_code,
            headers=_flatten_headers(response.headers),
            body=_decode_body(response),
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
