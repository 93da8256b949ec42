"""Process-wide registry of circuit breakers and rate limiters.

Each provider name gets one breaker and one token bucket, created on
first use from ``PROVIDER_CONFIGS`` (or a per-call override).
"""

import threading
from typing import Optional

from research_synth.core.research.providers.resilience.config import get_provider_config
from research_synth.core.research.providers.resilience.limiters import (
    CircuitBreaker,
    TokenBucketLimiter,
)
from research_synth.core.research.providers.resilience.models import (
    CircuitState,
    ProviderResilienceConfig,
)


class ProviderResilienceManager:
    """Holds breaker and limiter state per provider.

    Use ``get_resilience_manager()`` for the shared instance; tests build
    their own or call ``reset_resilience_manager_for_testing()``.
    """

    def __init__(self) -> None:
        self._rate_limiters: dict[str, TokenBucketLimiter] = {}
        self._circuit_breakers: dict[str, CircuitBreaker] = {}
        self._sync_lock = threading.Lock()

    def get_rate_limiter(
        self,
        provider_name: str,
        config: Optional[ProviderResilienceConfig] = None,
    ) -> TokenBucketLimiter:
        """Limiter for ``provider_name``; an explicit config retunes an existing one."""
        with self._sync_lock:
            limiter = self._rate_limiters.get(provider_name)
            if limiter is None:
                config = config or get_provider_config(provider_name)
                limiter = TokenBucketLimiter(
                    requests_per_second=config.requests_per_second,
                    burst_limit=config.burst_limit,
                )
                self._rate_limiters[provider_name] = limiter
            elif config is not None:
                limiter.reconfigure(config.requests_per_second, config.burst_limit)
            return limiter

    def get_circuit_breaker(
        self,
        provider_name: str,
        config: Optional[ProviderResilienceConfig] = None,
    ) -> CircuitBreaker:
        """Breaker for ``provider_name``; an explicit config retunes an existing one."""
        with self._sync_lock:
            breaker = self._circuit_breakers.get(provider_name)
            if breaker is None:
                config = config or get_provider_config(provider_name)
                breaker = CircuitBreaker(
                    name=provider_name,
                    failure_threshold=config.circuit_failure_threshold,
                    recovery_timeout=config.circuit_recovery_timeout,
                )
                self._circuit_breakers[provider_name] = breaker
            elif config is not None:
                breaker.failure_threshold = config.circuit_failure_threshold
                breaker.recovery_timeout = config.circuit_recovery_timeout
            return breaker

    def get_breaker_state(self, provider_name: str) -> CircuitState:
        return self.get_circuit_breaker(provider_name).state

    def reset(self) -> None:
        with self._sync_lock:
            self._rate_limiters.clear()
            self._circuit_breakers.clear()


_resilience_manager: Optional[ProviderResilienceManager] = None
_resilience_manager_lock = threading.Lock()


def get_resilience_manager() -> ProviderResilienceManager:
    """Shared manager, created on first use."""
    global _resilience_manager
    if _resilience_manager is None:
        with _resilience_manager_lock:
            if _resilience_manager is None:
                _resilience_manager = ProviderResilienceManager()
    return _resilience_manager


def reset_resilience_manager_for_testing() -> None:
    global _resilience_manager
    with _resilience_manager_lock:
        _resilience_manager = ProviderResilienceManager()
