"""Token-bucket admission gate and throttle-aware retry executor.

Every outbound call acquires one token from :class:`TokenBucketLimiter`
before it touches the transport. :class:`RetryExecutor` wraps a unit of work
with that gate and retries only on the server's "too many requests" signal,
with exponential backoff (1s, 2s, 4s, ...).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from timetree_client.errors import ThrottledFailure, TransportFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_REQUESTS_PER_SECOND = 10.0
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0
DEFAULT_CALL_TIMEOUT_SECONDS = 60.0

Clock = Callable[[], float]


@dataclass
class RateBudget:
    """Continuous token ledger; ``0 <= tokens <= capacity`` after every refill."""

    tokens: float
    capacity: float
    refill_rate_per_second: float
    last_refill: float

    def refill(self, now: float) -> None:
        """Add tokens proportionally to the time elapsed since the last refill."""
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate_per_second)
        self.last_refill = max(self.last_refill, now)

    def seconds_until_available(self, count: float = 1.0) -> float:
        if self.tokens >= count:
            return 0.0
        return (count - self.tokens) / self.refill_rate_per_second


class TokenBucketLimiter:
    """Lazily-refilled token bucket.

    Concurrent callers are serialized on an ``asyncio.Lock`` so the ledger is
    never debited below zero nor refilled twice for the same interval.
    """

    def __init__(
        self,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        *,
        capacity: float | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be positive")
        effective_capacity = float(capacity if capacity is not None else max_requests_per_second)
        if effective_capacity < 1:
            raise ValueError("capacity must allow at least one token")
        self._clock = clock
        self._budget = RateBudget(
            tokens=effective_capacity,
            capacity=effective_capacity,
            refill_rate_per_second=float(max_requests_per_second),
            last_refill=clock(),
        )
        self._lock = asyncio.Lock()

    @property
    def available_tokens(self) -> float:
        """Tokens available right now (refreshes the ledger)."""
        self._budget.refill(self._clock())
        return self._budget.tokens

    @property
    def capacity(self) -> float:
        return self._budget.capacity

    async def acquire(self) -> None:
        """Suspend until one token is available, then debit exactly one."""
        async with self._lock:
            self._budget.refill(self._clock())
            wait_time = self._budget.seconds_until_available()
            if wait_time > 0:
                logger.debug("Rate limit: waiting %.3fs for token", wait_time)
                await asyncio.sleep(wait_time)
                self._budget.refill(self._clock())
            # One sleep covers the deficit; float residue or a coarse clock may
            # leave a hair under one token, so the ledger is floored at zero.
            self._budget.tokens = max(0.0, self._budget.tokens - 1.0)


class RetryExecutor:
    """Runs units of work behind the limiter, retrying only on throttling."""

    def __init__(
        self,
        limiter: TokenBucketLimiter,
        *,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        backoff_base_seconds: float = RATE_LIMIT_BASE_BACKOFF_SECONDS,
        default_max_attempts: int = RATE_LIMIT_MAX_RETRIES,
    ) -> None:
        self._limiter = limiter
        self._call_timeout = call_timeout
        self._backoff_base_seconds = backoff_base_seconds
        self._default_max_attempts = default_max_attempts

    @property
    def limiter(self) -> TokenBucketLimiter:
        return self._limiter

    async def run_throttled(
        self,
        unit_of_work: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
    ) -> T:
        """Execute ``unit_of_work`` behind one limiter token.

        On :class:`ThrottledFailure` waits ``base * 2**attempt`` seconds and
        retries with a fresh token, ``max_attempts`` times at most (so up to
        ``max_attempts + 1`` calls). Every other failure propagates at once.
        """
        retries = self._default_max_attempts if max_attempts is None else max_attempts
        if retries < 0:
            raise ValueError("max_attempts must be non-negative")

        attempt = 0
        while True:
            await self._limiter.acquire()
            try:
                return await self._call_with_deadline(unit_of_work)
            except ThrottledFailure:
                if attempt >= retries:
                    logger.warning("Rate limited by server; giving up after %d retries", retries)
                    raise
                backoff = self._backoff_base_seconds * (2**attempt)
                logger.warning(
                    "Rate limited by server, backing off %.1fs (attempt %d/%d)",
                    backoff,
                    attempt + 1,
                    retries,
                )
                await asyncio.sleep(backoff)
                attempt += 1

    async def _call_with_deadline(self, unit_of_work: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(unit_of_work(), timeout=self._call_timeout)
        except TimeoutError as exc:
            raise TransportFailure(
                f"Request timeout after {self._call_timeout:.1f}s", timed_out=True
            ) from exc
