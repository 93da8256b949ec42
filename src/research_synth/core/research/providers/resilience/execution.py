"""Run one provider call under breaker, rate limit, time budget and retry.

Order per attempt: the breaker is consulted, a rate-limit token is
acquired, the call runs inside whatever budget is left, and the outcome is
recorded on the breaker. Failures are classified to decide on a retry.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

from research_synth.core.errors.resilience import (
    CircuitBreakerError,
    RateLimitWaitError,
    TimeBudgetExceededError,
)
from research_synth.core.research.providers.resilience.config import get_provider_config
from research_synth.core.research.providers.resilience.limiters import (
    CircuitBreaker,
    TokenBucketLimiter,
)
from research_synth.core.research.providers.resilience.manager import (
    ProviderResilienceManager,
    get_resilience_manager,
)
from research_synth.core.research.providers.resilience.models import (
    CircuitState,
    ErrorClassification,
    ErrorType,
    ProviderResilienceConfig,
    SleepFunc,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Checked in order against the lowercased message; first hit wins.
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], ErrorType, bool, bool], ...] = (
    (("429", "rate limit", "too many requests"), ErrorType.RATE_LIMIT, True, False),
    (("401", "403", "unauthorized"), ErrorType.AUTHENTICATION, False, True),
    (("500", "502", "503", "504"), ErrorType.SERVER_ERROR, True, True),
    (("timeout", "timed out"), ErrorType.TIMEOUT, True, True),
    (("connection", "network", "dns", "refused", "reset"), ErrorType.NETWORK, True, True),
)


def _default_classify_error(error: Exception) -> ErrorClassification:
    """Classify by message keywords when the caller supplies no classifier."""
    message = str(error).lower()
    if "timeout" in type(error).__name__.lower():
        message += " timeout"
    for needles, error_type, retryable, trips_breaker in _MESSAGE_RULES:
        if any(needle in message for needle in needles):
            return ErrorClassification(
                retryable=retryable, trips_breaker=trips_breaker, error_type=error_type
            )
    return ErrorClassification(retryable=False, trips_breaker=True, error_type=ErrorType.UNKNOWN)


class _ResilientCall:
    """Per-call state: the clock, the budget and the provider's primitives."""

    def __init__(
        self,
        provider_name: str,
        config: ProviderResilienceConfig,
        breaker: CircuitBreaker,
        limiter: TokenBucketLimiter,
        time_budget: Optional[float],
        max_wait_seconds: float,
        sleep: SleepFunc,
    ) -> None:
        self.provider_name = provider_name
        self.config = config
        self.breaker = breaker
        self.limiter = limiter
        self.time_budget = time_budget
        self.max_wait_seconds = max_wait_seconds
        self.sleep = sleep
        self.started = time.monotonic()

    def remaining(self) -> Optional[float]:
        if self.time_budget is None:
            return None
        return max(0.0, self.time_budget - (time.monotonic() - self.started))

    def budget_error(self, message: str) -> TimeBudgetExceededError:
        return TimeBudgetExceededError(
            message,
            budget_seconds=self.time_budget,
            elapsed_seconds=time.monotonic() - self.started,
            operation=self.provider_name,
        )

    def ensure_budget(self, needed: float, what: str) -> None:
        remaining = self.remaining()
        if remaining is not None and needed > remaining:
            raise self.budget_error(
                f"{what} {needed:.1f}s exceeds remaining budget {remaining:.1f}s"
            )

    def check_breaker(self) -> None:
        if not self.breaker.can_execute():
            raise CircuitBreakerError(
                f"Circuit breaker open for {self.provider_name}",
                breaker_name=self.provider_name,
                state=self.breaker.state,
                retry_after=self.config.circuit_recovery_timeout,
            )

    async def wait_for_token(self) -> None:
        while True:
            outcome = self.limiter.acquire()
            if outcome.allowed:
                return
            wait = outcome.reset_in
            if wait > self.max_wait_seconds:
                raise RateLimitWaitError(
                    f"Rate limit wait {wait:.1f}s exceeds max {self.max_wait_seconds:.1f}s",
                    wait_needed=wait,
                    max_wait=self.max_wait_seconds,
                    provider=self.provider_name,
                )
            self.ensure_budget(wait, "Rate limit wait")
            logger.debug("%s: rate limit wait %.2fs", self.provider_name, wait)
            await self.sleep(wait)

    async def invoke(self, func: Callable[[], Awaitable[T]]) -> T:
        remaining = self.remaining()
        if remaining is None:
            return await func()
        return await asyncio.wait_for(func(), timeout=remaining)

    def record_success(self) -> None:
        previous = self.breaker.state
        self.breaker.record_success()
        if previous != CircuitState.CLOSED:
            logger.info("%s: circuit recovered (%s -> closed)", self.provider_name, previous.value)

    def backoff(self, attempt: int, classification: ErrorClassification) -> float:
        """Exponential delay; an explicit ``backoff_seconds`` is a floor without jitter."""
        delay = min(self.config.base_delay * (2.0**attempt), self.config.max_delay)
        if classification.backoff_seconds is not None:
            return max(delay, classification.backoff_seconds)
        jitter = min(max(self.config.jitter, 0.0), 1.0)
        if jitter > 0:
            delay *= (1.0 - jitter) + 2.0 * jitter * random.random()
        return delay


async def execute_with_resilience(
    func: Callable[[], Awaitable[T]],
    provider_name: str,
    *,
    time_budget: Optional[float] = None,
    max_wait_seconds: float = 5.0,
    classify_error: Optional[Callable[[Exception], ErrorClassification]] = None,
    manager: Optional[ProviderResilienceManager] = None,
    resilience_config: Optional[ProviderResilienceConfig] = None,
    sleep_func: Optional[SleepFunc] = None,
) -> T:
    """Execute ``func`` with the provider's full resilience stack.

    Args:
        func: Zero-argument coroutine factory.
        provider_name: Key for breaker, limiter and default config lookup.
        time_budget: Seconds for all attempts together; ``None`` for no limit.
        max_wait_seconds: Longest acceptable wait for a rate-limit token.
        classify_error: Maps an exception to retry/breaker behaviour.
        manager: Resilience manager; the process singleton when omitted.
        resilience_config: Overrides the provider's registered config.
        sleep_func: Replaces ``asyncio.sleep`` (tests).

    Raises:
        CircuitBreakerError: The breaker rejected the call.
        RateLimitWaitError: A token would take longer than ``max_wait_seconds``.
        TimeBudgetExceededError: The budget ran out before or during a call.
        Exception: The last failure once retries are exhausted or not allowed.
    """
    manager = manager or get_resilience_manager()
    config = resilience_config or get_provider_config(provider_name)
    classify = classify_error or _default_classify_error
    call = _ResilientCall(
        provider_name,
        config,
        manager.get_circuit_breaker(provider_name, config=config),
        manager.get_rate_limiter(provider_name, config=config),
        time_budget,
        max_wait_seconds,
        sleep_func or asyncio.sleep,
    )

    last_error: Optional[Exception] = None
    for attempt in range(config.max_retries + 1):
        try:
            call.check_breaker()
            if call.remaining() == 0.0:
                raise call.budget_error(
                    f"Time budget exhausted before execution for {provider_name}"
                )
            await call.wait_for_token()
            result = await call.invoke(func)
        except asyncio.TimeoutError:
            # the budget is spent, so no retry
            call.breaker.record_failure()
            last_error = call.budget_error(f"Operation timed out for {provider_name}")
            break
        except (CircuitBreakerError, RateLimitWaitError, TimeBudgetExceededError):
            raise
        except Exception as e:
            last_error = e
            classification = classify(e)
            if classification.trips_breaker:
                call.breaker.record_failure()
                if call.breaker.state == CircuitState.OPEN:
                    logger.warning(
                        "%s: circuit opened after %d failures",
                        provider_name,
                        call.breaker.failure_count,
                    )
                    break
            if not classification.retryable or attempt == config.max_retries:
                break
            delay = call.backoff(attempt, classification)
            try:
                call.ensure_budget(delay, "Retry delay")
            except TimeBudgetExceededError as budget_exc:
                raise budget_exc from e
            logger.info(
                "%s: retry %d/%d after %s error in %.1fs",
                provider_name,
                attempt + 1,
                config.max_retries,
                classification.error_type.value,
                delay,
            )
            await call.sleep(delay)
        else:
            call.record_success()
            return result

    if last_error is None:
        raise RuntimeError(f"{provider_name}: no attempt was made")
    raise last_error
