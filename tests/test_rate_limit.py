"""Unit tests for the token-bucket limiter and the throttle-aware retry executor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from timetree_client.core.rate_limit import (
    RATE_LIMIT_BASE_BACKOFF_SECONDS,
    RATE_LIMIT_MAX_RETRIES,
    RateBudget,
    RetryExecutor,
    TokenBucketLimiter,
)
from timetree_client.errors import RequestFailure, ThrottledFailure, TransportFailure

pytestmark = pytest.mark.unit


class _FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    max_sleeps = 1000

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        if len(self.sleeps) >= self.max_sleeps:
            raise AssertionError(f"limiter kept sleeping: last wait={seconds!r} now={self.now!r}")
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    fake = _FakeClock()
    with patch("timetree_client.core.rate_limit.asyncio.sleep", new=fake.sleep):
        yield fake


# ============================================================================
# RateBudget
# ============================================================================


class TestRateBudget:
    def test_refill_is_proportional_to_elapsed_time(self):
        budget = RateBudget(tokens=0.0, capacity=10.0, refill_rate_per_second=10.0, last_refill=0.0)
        budget.refill(0.25)
        assert budget.tokens == pytest.approx(2.5)
        assert budget.last_refill == 0.25

    def test_refill_never_exceeds_capacity(self):
        budget = RateBudget(tokens=9.0, capacity=10.0, refill_rate_per_second=10.0, last_refill=0.0)
        budget.refill(100.0)
        assert budget.tokens == 10.0

    def test_clock_going_backwards_adds_nothing(self):
        budget = RateBudget(tokens=1.0, capacity=10.0, refill_rate_per_second=10.0, last_refill=5.0)
        budget.refill(4.0)
        assert budget.tokens == 1.0
        assert budget.last_refill == 5.0

    def test_seconds_until_available(self):
        budget = RateBudget(tokens=0.5, capacity=10.0, refill_rate_per_second=10.0, last_refill=0.0)
        assert budget.seconds_until_available() == pytest.approx(0.05)
        budget.tokens = 1.0
        assert budget.seconds_until_available() == 0.0


# ============================================================================
# TokenBucketLimiter
# ============================================================================


class TestTokenBucketLimiter:
    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError, match="positive"):
            TokenBucketLimiter(0)

    def test_rejects_capacity_below_one_token(self):
        with pytest.raises(ValueError, match="at least one token"):
            TokenBucketLimiter(10, capacity=0.5)

    def test_starts_full(self):
        limiter = TokenBucketLimiter(10, clock=lambda: 0.0)
        assert limiter.capacity == 10.0
        assert limiter.available_tokens == 10.0

    async def test_burst_up_to_capacity_does_not_wait(self, clock):
        limiter = TokenBucketLimiter(10, clock=clock)

        for _ in range(10):
            await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.available_tokens == pytest.approx(0.0)

    async def test_fifteen_calls_at_ten_per_second_take_half_a_second(self, clock):
        limiter = TokenBucketLimiter(10, clock=clock)

        for _ in range(15):
            await limiter.acquire()

        assert clock.now == pytest.approx(0.5)
        assert clock.now >= 0.5 - 1e-9

    async def test_tokens_stay_within_bounds(self, clock):
        limiter = TokenBucketLimiter(10, clock=clock)

        for _ in range(25):
            await limiter.acquire()
            tokens = limiter.available_tokens
            assert -1e-9 <= tokens <= limiter.capacity

        clock.now += 60
        assert limiter.available_tokens == limiter.capacity

    async def test_each_acquire_past_the_burst_sleeps_exactly_once(self, clock):
        limiter = TokenBucketLimiter(10, clock=clock)
        clock.max_sleeps = 25

        for _ in range(30):
            await limiter.acquire()

        assert len(clock.sleeps) == 20
        assert all(wait == pytest.approx(0.1) for wait in clock.sleeps)
        assert clock.now == pytest.approx(2.0)
        assert limiter.available_tokens >= 0.0

    async def test_refill_a_hair_short_of_one_token_still_admits(self):
        now = [0.0]
        sleeps: list[float] = []

        async def _short_sleep(seconds: float) -> None:
            if len(sleeps) >= 30:
                raise AssertionError("limiter kept sleeping on float residue")
            sleeps.append(seconds)
            # clock advances slightly less than requested
            now[0] += seconds - 1e-12

        limiter = TokenBucketLimiter(10, capacity=1, clock=lambda: now[0])
        with patch("timetree_client.core.rate_limit.asyncio.sleep", new=_short_sleep):
            for _ in range(26):
                await limiter.acquire()

        assert len(sleeps) == 25
        assert limiter.available_tokens >= 0.0

    async def test_concurrent_acquires_are_serialized(self, clock):
        limiter = TokenBucketLimiter(5, clock=clock)

        await asyncio.gather(*(limiter.acquire() for _ in range(8)))

        # 5 from the initial burst, 3 more at 5 tokens/s
        assert clock.now == pytest.approx(0.6)
        assert limiter.available_tokens >= -1e-9


# ============================================================================
# RetryExecutor
# ============================================================================


class TestRetryExecutor:
    def test_defaults_match_retry_policy(self):
        assert RATE_LIMIT_MAX_RETRIES == 3
        assert RATE_LIMIT_BASE_BACKOFF_SECONDS == 1.0

    async def test_success_is_returned_without_retry(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        work = AsyncMock(return_value={"ok": True})

        result = await executor.run_throttled(work)

        assert result == {"ok": True}
        assert work.await_count == 1
        assert clock.sleeps == []

    async def test_persistent_throttling_gives_up_after_four_calls(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        work = AsyncMock(side_effect=ThrottledFailure())

        with pytest.raises(ThrottledFailure) as exc_info:
            await executor.run_throttled(work)

        assert exc_info.value.status_code == 429
        assert work.await_count == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]

    async def test_throttling_then_success_recovers(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        work = AsyncMock(side_effect=[ThrottledFailure(), ThrottledFailure(), "done"])

        result = await executor.run_throttled(work)

        assert result == "done"
        assert work.await_count == 3
        assert clock.sleeps == [1.0, 2.0]

    async def test_explicit_max_attempts_overrides_default(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        work = AsyncMock(side_effect=ThrottledFailure())

        with pytest.raises(ThrottledFailure):
            await executor.run_throttled(work, max_attempts=1)

        assert work.await_count == 2
        assert clock.sleeps == [1.0]

    async def test_zero_max_attempts_calls_once(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        work = AsyncMock(side_effect=ThrottledFailure())

        with pytest.raises(ThrottledFailure):
            await executor.run_throttled(work, max_attempts=0)

        assert work.await_count == 1
        assert clock.sleeps == []

    async def test_negative_max_attempts_is_rejected(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        with pytest.raises(ValueError, match="non-negative"):
            await executor.run_throttled(AsyncMock(), max_attempts=-1)

    @pytest.mark.parametrize(
        "error",
        [
            RequestFailure(status_code=500, message="boom"),
            TransportFailure("connection reset"),
        ],
    )
    async def test_other_failures_are_not_retried(self, clock, error):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock))
        work = AsyncMock(side_effect=error)

        with pytest.raises(type(error)):
            await executor.run_throttled(work)

        assert work.await_count == 1
        assert clock.sleeps == []

    async def test_every_attempt_takes_a_fresh_token(self, clock):
        limiter = TokenBucketLimiter(10, capacity=1, clock=clock)
        executor = RetryExecutor(limiter, backoff_base_seconds=0.0)
        work = AsyncMock(side_effect=[ThrottledFailure(), "done"])

        await executor.run_throttled(work)

        # one token per call: the retry had to wait for a refill
        assert clock.now == pytest.approx(0.1)

    async def test_backoff_base_is_configurable(self, clock):
        executor = RetryExecutor(TokenBucketLimiter(10, clock=clock), backoff_base_seconds=0.5)
        work = AsyncMock(side_effect=ThrottledFailure())

        with pytest.raises(ThrottledFailure):
            await executor.run_throttled(work)

        assert clock.sleeps == [0.5, 1.0, 2.0]

    async def test_call_exceeding_deadline_is_transport_failure(self):
        executor = RetryExecutor(TokenBucketLimiter(10), call_timeout=0.01)

        async def _hang() -> None:
            await asyncio.Event().wait()

        with pytest.raises(TransportFailure) as exc_info:
            await executor.run_throttled(_hang)

        assert exc_info.value.timed_out is True
        assert "timeout" in str(exc_info.value).lower()
