"""Tests for the error taxonomy and tagged outcomes."""

from __future__ import annotations

import pytest

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
from timetree_client.outcome import Failure, FailureKind, Success, attempt, classify_error

pytestmark = pytest.mark.unit


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            TransportFailure("reset"),
            ThrottledFailure(),
            AuthenticationFailure("bad"),
            CsrfMissingFailure(),
            RequestFailure(status_code=500, message="boom"),
            InvalidCalendarFailure("1"),
            RecordNotFoundFailure("e1"),
            ResponseValidationFailure("shape"),
        ],
    )
    def test_every_failure_is_a_timetree_error(self, error):
        assert isinstance(error, TimeTreeError)
        assert isinstance(error, RuntimeError)

    def test_throttled_carries_429(self):
        assert ThrottledFailure().status_code == 429

    def test_request_failure_keeps_raw_message(self):
        err = RequestFailure(status_code=502, message="bad gateway")
        assert err.message == "bad gateway"
        assert str(err) == "TimeTree API request failed (502): bad gateway"

    def test_not_found_failures_carry_identifiers(self):
        assert InvalidCalendarFailure("42").calendar_id == "42"
        missing = RecordNotFoundFailure("e1", calendar_id="42")
        assert (missing.record_id, missing.calendar_id, missing.status_code) == ("e1", "42", 404)


class TestClassifyError:
    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (TransportFailure("reset", timed_out=True), FailureKind.TRANSPORT),
            (ThrottledFailure(), FailureKind.THROTTLED),
            (AuthenticationFailure("bad"), FailureKind.AUTHENTICATION),
            (CsrfMissingFailure(), FailureKind.CSRF_MISSING),
            (InvalidCalendarFailure("1"), FailureKind.INVALID_CALENDAR),
            (RecordNotFoundFailure("e1"), FailureKind.RECORD_NOT_FOUND),
            (RequestFailure(status_code=500, message="boom"), FailureKind.REQUEST),
            (ResponseValidationFailure("shape"), FailureKind.VALIDATION),
            (TimeTreeError("generic"), FailureKind.REQUEST),
        ],
    )
    def test_each_failure_maps_to_one_kind(self, error, kind):
        assert classify_error(error) is kind


class TestAttempt:
    async def test_success_is_wrapped(self):
        async def _ok() -> int:
            return 7

        outcome = await attempt(_ok())

        assert outcome == Success(7)
        assert outcome.ok is True

    async def test_failure_is_tagged(self):
        async def _missing() -> None:
            raise RecordNotFoundFailure("e1", calendar_id="123")

        outcome = await attempt(_missing())

        assert isinstance(outcome, Failure)
        assert outcome.ok is False
        assert outcome.kind is FailureKind.RECORD_NOT_FOUND
        assert outcome.status_code == 404
        assert outcome.message == "Event not found: e1"

    async def test_outcomes_support_pattern_matching(self):
        async def _throttled() -> None:
            raise ThrottledFailure()

        match await attempt(_throttled()):
            case Success():
                pytest.fail("expected a failure")
            case Failure(kind=FailureKind.THROTTLED) as failure:
                assert failure.status_code == 429
            case _:
                pytest.fail("unexpected outcome")

    async def test_non_timetree_errors_propagate(self):
        async def _bug() -> None:
            raise KeyError("oops")

        with pytest.raises(KeyError):
            await attempt(_bug())

    def test_failure_to_dict(self):
        failure = Failure(
            kind=FailureKind.INVALID_CALENDAR,
            error=InvalidCalendarFailure("123"),
        )

        assert failure.to_dict() == {
            "status": "error",
            "error_type": "invalid_calendar",
            "error": "Invalid calendar ID: 123",
            "status_code": 404,
            "calendar_id": "123",
        }

    def test_failure_to_dict_truncates_and_omits_absent_fields(self):
        failure = Failure(kind=FailureKind.TRANSPORT, error=TransportFailure("x " * 300))

        payload = failure.to_dict()

        assert len(payload["error"]) == 200
        assert "status_code" not in payload
        assert "calendar_id" not in payload
