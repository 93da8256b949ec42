"""Circuit breaker and rate limiter primitives.

State lives in explicit objects so that callers (and tests) can share or
replace it by reference:

- CircuitBreaker: CLOSED -> OPEN after repeated failures, HALF_OPEN probe
  after the recovery timeout.
- TokenBucketLimiter: smooth per-provider request rate with a burst allowance.
- MinIntervalRateLimiter: strict minimum spacing between requests, used for
  arXiv which asks clients to wait 3 seconds between calls.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from research_synth.core.research.providers.resilience.models import (
    CircuitState,
    SleepFunc,
)


class CircuitBreaker:
    """Failure-counting circuit breaker.

    Attributes:
        name: Breaker name (usually the provider name)
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds before an OPEN circuit allows a probe
        half_open_max_calls: Probe calls allowed while HALF_OPEN
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.failure_count = 0
        self.half_open_calls = 0
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state, promoting OPEN to HALF_OPEN once recovery has elapsed."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self.half_open_calls = 0

    def is_available(self) -> bool:
        """Check availability without consuming a probe slot."""
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                return False
            if self._state == CircuitState.HALF_OPEN:
                return self.half_open_calls < self.half_open_max_calls
            return True

    def can_execute(self) -> bool:
        """Check availability, consuming a probe slot when HALF_OPEN."""
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and self.half_open_calls < self.half_open_max_calls:
                self.half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            self.half_open_calls = 0
            self._state = CircuitState.CLOSED
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            if self._state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                self.half_open_calls = 0

    def reset(self) -> None:
        self.record_success()


@dataclass
class RateLimitCheck:
    """Result of a token bucket check.

    Attributes:
        allowed: Whether a token is available now
        tokens: Tokens remaining after the check
        reset_in: Seconds until the next token is available
    """

    allowed: bool
    tokens: float
    reset_in: float


class TokenBucketLimiter:
    """Token bucket limiter refilled at ``requests_per_second``.

    Attributes:
        requests_per_second: Refill rate
        burst_limit: Bucket capacity
    """

    def __init__(
        self,
        requests_per_second: float,
        burst_limit: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.requests_per_second = max(requests_per_second, 0.001)
        self.burst_limit = max(burst_limit, 1)
        self.tokens = float(self.burst_limit)
        self._clock = clock
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._last_refill = now
        self.tokens = min(float(self.burst_limit), self.tokens + elapsed * self.requests_per_second)

    def check(self) -> RateLimitCheck:
        """Report token availability without consuming."""
        with self._lock:
            self._refill()
            return self._result()

    def acquire(self) -> RateLimitCheck:
        """Consume a token if one is available."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return RateLimitCheck(allowed=True, tokens=self.tokens, reset_in=0.0)
            return self._result()

    def reconfigure(self, requests_per_second: float, burst_limit: int) -> None:
        with self._lock:
            self.requests_per_second = max(requests_per_second, 0.001)
            self.burst_limit = max(burst_limit, 1)
            self.tokens = min(self.tokens, float(self.burst_limit))

    def _result(self) -> RateLimitCheck:
        if self.tokens >= 1.0:
            return RateLimitCheck(allowed=True, tokens=self.tokens, reset_in=0.0)
        needed = (1.0 - self.tokens) / self.requests_per_second
        return RateLimitCheck(allowed=False, tokens=self.tokens, reset_in=needed)


class MinIntervalRateLimiter:
    """Enforces a minimum spacing between consecutive requests.

    The last-request timestamp is instance state, so one limiter can be
    shared across providers (or replaced in tests) by passing it around.

    Example:
        limiter = MinIntervalRateLimiter(min_interval=3.0)
        await limiter.wait()   # returns immediately
        await limiter.wait()   # sleeps ~3 seconds
    """

    def __init__(
        self,
        min_interval: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        sleep_func: Optional[SleepFunc] = None,
    ):
        self.min_interval = min_interval
        self.last_request_at: Optional[float] = None
        self._clock = clock
        self._sleep = sleep_func or asyncio.sleep
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def time_until_next(self) -> float:
        """Seconds the next caller would have to wait."""
        if self.last_request_at is None:
            return 0.0
        elapsed = self._clock() - self.last_request_at
        return max(0.0, self.min_interval - elapsed)

    async def wait(self) -> float:
        """Wait until the interval has elapsed, then claim the slot.

        Returns:
            Seconds actually waited.
        """
        async with self._get_lock():
            delay = self.time_until_next()
            if delay > 0:
                await self._sleep(delay)
            self.last_request_at = self._clock()
            return delay

    def reset(self) -> None:
        self.last_request_at = None


# Process-wide arXiv limiter; providers accept an injected instance instead.
_arxiv_limiter: Optional[MinIntervalRateLimiter] = None


def get_arxiv_rate_limiter(min_interval: float = 3.0) -> MinIntervalRateLimiter:
    """Return the shared arXiv limiter, creating it on first use."""
    global _arxiv_limiter
    if _arxiv_limiter is None:
        _arxiv_limiter = MinIntervalRateLimiter(min_interval=min_interval)
    return _arxiv_limiter
