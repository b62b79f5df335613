"""Tagged results for callers that prefer matching over ``except`` chains.

``await attempt(client.get_events("123"))`` returns either :class:`Success`
or :class:`Failure`; the failure's :class:`FailureKind` names exactly one
kind from the error taxonomy::

    match await attempt(client.delete_event(cal, uuid)):
        case Success(value=event):
            ...
        case Failure(kind=FailureKind.RECORD_NOT_FOUND):
            ...
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

from timetree_client.errors import (
    AuthenticationFailure,
    CsrfMissingFailure,
    InvalidCalendarFailure,
    RecordNotFoundFailure,
    RequestFailure,
    ResponseValidationFailure,
    ThrottledFailure,
    TimeTreeError,
    TransportFailure,
)

T = TypeVar("T")


class FailureKind(StrEnum):
    TRANSPORT = "transport"
    THROTTLED = "throttled"
    AUTHENTICATION = "authentication"
    CSRF_MISSING = "csrf_missing"
    INVALID_CALENDAR = "invalid_calendar"
    RECORD_NOT_FOUND = "record_not_found"
    REQUEST = "request"
    VALIDATION = "validation"


_KIND_BY_ERROR: tuple[tuple[type[TimeTreeError], FailureKind], ...] = (
    (TransportFailure, FailureKind.TRANSPORT),
    (ThrottledFailure, FailureKind.THROTTLED),
    (AuthenticationFailure, FailureKind.AUTHENTICATION),
    (CsrfMissingFailure, FailureKind.CSRF_MISSING),
    (InvalidCalendarFailure, FailureKind.INVALID_CALENDAR),
    (RecordNotFoundFailure, FailureKind.RECORD_NOT_FOUND),
    (RequestFailure, FailureKind.REQUEST),
    (ResponseValidationFailure, FailureKind.VALIDATION),
)


def classify_error(error: TimeTreeError) -> FailureKind:
    for error_type, kind in _KIND_BY_ERROR:
        if isinstance(error, error_type):
            return kind
    return FailureKind.REQUEST


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    error: TimeTreeError

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def status_code(self) -> int | None:
        return self.error.status_code

    def to_dict(self) -> dict[str, Any]:
        """Structured error payload, safe to hand to a caller."""
        payload: dict[str, Any] = {
            "status": "error",
            "error_type": str(self.kind),
            "error": " ".join(self.message.split())[:200],
        }
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        for attribute in ("calendar_id", "record_id"):
            value = getattr(self.error, attribute, None)
            if value is not None:
                payload[attribute] = value
        return payload


Outcome = Success[T] | Failure


async def attempt(awaitable: Awaitable[T]) -> Success[T] | Failure:
    """Await ``awaitable`` and tag its result; non-TimeTree errors propagate."""
    try:
        value = await awaitable
    except TimeTreeError as exc:
        return Failure(kind=classify_error(exc), error=exc)
    return Success(value)
