"""Error taxonomy for the TimeTree access layer.

Every failure raised by the core derives from :class:`TimeTreeError` and
carries enough context (status code, calendar id, record id) for a caller to
act on it.
"""

from __future__ import annotations


class TimeTreeError(RuntimeError):
    """Base error for every failure raised by the access layer."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransportFailure(TimeTreeError):
    """Raised when the network round-trip itself fails (connect error, timeout)."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        self.timed_out = timed_out
        super().__init__(message)


class ThrottledFailure(TimeTreeError):
    """Raised when the server signals rate limiting (HTTP 429)."""

    def __init__(self, message: str = "Rate limited by server") -> None:
        super().__init__(message, status_code=429)


class AuthenticationFailure(TimeTreeError):
    """Raised on bad credentials, a forbidden account, or a missing session cookie."""


class CsrfMissingFailure(TimeTreeError):
    """Raised when a mutating call is attempted without a CSRF token held."""

    def __init__(self, message: str = "CSRF token missing - mutating calls are unavailable") -> None:
        super().__init__(message)


class RequestFailure(TimeTreeError):
    """Raised when the API answers with a non-2xx status outside the special cases."""

    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(f"TimeTree API request failed ({status_code}): {message}", status_code=status_code)
        self.message = message


class InvalidCalendarFailure(TimeTreeError):
    """Raised when the server reports that the target calendar does not exist."""

    def __init__(self, calendar_id: str) -> None:
        self.calendar_id = calendar_id
        super().__init__(f"Invalid calendar ID: {calendar_id}", status_code=404)


class RecordNotFoundFailure(TimeTreeError):
    """Raised when the target event is absent from a calendar."""

    def __init__(self, record_id: str, *, calendar_id: str | None = None) -> None:
        self.record_id = record_id
        self.calendar_id = calendar_id
        super().__init__(f"Event not found: {record_id}", status_code=404)


class ResponseValidationFailure(TimeTreeError):
    """Raised when a response body does not match the expected schema."""
