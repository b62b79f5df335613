"""Shared fixtures: a scriptable TimeTree server double behind ``httpx.MockTransport``."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest

from timetree_client.config import ClientConfig
from timetree_client.core.context import AccessContext

API_PREFIX = "/api/v1"
LOGIN_PATH = f"{API_PREFIX}/auth/email/signin"
SESSION_COOKIE = "sess-1"
CSRF_TOKEN = "csrf-abc"
CSRF_DOCUMENT = (
    "<html><head>"
    '<meta charset="utf-8">'
    f'<meta name="csrf-token" content="{CSRF_TOKEN}">'
    "</head><body></body></html>"
)

Responder = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


def make_config(**overrides: Any) -> ClientConfig:
    values: dict[str, Any] = {"email": "user@example.com", "password": "hunter2"}
    values.update(overrides)
    return ClientConfig(**values)


def make_event(uuid: str, **overrides: Any) -> dict[str, Any]:
    event: dict[str, Any] = {
        "id": f"id-{uuid}",
        "uuid": uuid,
        "calendar_id": 123,
        "title": f"Event {uuid}",
        "all_day": False,
        "start_at": 1_700_000_000_000,
        "start_timezone": "UTC",
        "end_at": 1_700_003_600_000,
        "end_timezone": "UTC",
        "label_id": 1,
        "updated_at": 1_700_000_000_000,
        "recurrences": [],
        "alerts": [],
    }
    event.update(overrides)
    return event


def login_ok(cookie: str = SESSION_COOKIE) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"user": {"id": 1}},
            headers={"set-cookie": f"_session_id={cookie}; path=/; HttpOnly"},
        )

    return _respond


def html(document: str, status: int = 200) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=document, headers={"content-type": "text/html"})

    return _respond


def json_response(status: int, payload: Any = None, **headers: str) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload if payload is not None else {}, headers=headers)

    return _respond


class FakeTimeTree:
    """Routes requests by ``(method, path)`` to queued responders.

    Each route holds a queue; the last responder repeats once the others are
    used up. Unrouted requests get a 404. A responder may be a coroutine
    function; ``httpx.MockTransport`` awaits what it returns.
    """

    def __init__(self, *, csrf_document: str = CSRF_DOCUMENT) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[Responder]] = {}
        self.route("PUT", LOGIN_PATH, login_ok())
        self.route("GET", "/", html(csrf_document))

    def route(self, method: str, path: str, *responders: Responder) -> None:
        self._routes[(method.upper(), path)] = list(responders)

    def api_route(self, method: str, path: str, *responders: Responder) -> None:
        self.route(method, f"{API_PREFIX}{path}", *responders)

    def handler(self, request: httpx.Request) -> httpx.Response | Awaitable[httpx.Response]:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "no such route"})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        return responder(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method.upper() and request.url.path == path
        ]

    def api_calls(self, method: str, path: str) -> list[httpx.Request]:
        return self.calls(method, f"{API_PREFIX}{path}")

    @property
    def login_calls(self) -> list[httpx.Request]:
        return self.calls("PUT", LOGIN_PATH)


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content)


@pytest.fixture
def server() -> FakeTimeTree:
    return FakeTimeTree()


@pytest.fixture
async def http_client(server: FakeTimeTree):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    yield client
    await client.aclose()


@pytest.fixture
def context(http_client: httpx.AsyncClient) -> AccessContext:
    return AccessContext.from_config(make_config(), http_client=http_client)
