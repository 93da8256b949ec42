"""Provider resilience configuration and error classification.

Centralized resilience utilities for research and LLM providers including:
- Per-provider configuration for rate limiting, retries, and circuit breakers
- Error classification for unified retry/circuit-breaker decisions
- ProviderResilienceManager singleton for state management
- MinIntervalRateLimiter for strictly spaced APIs (arXiv)
"""

from research_synth.core.errors.resilience import (
    CircuitBreakerError,
    RateLimitWaitError,
    TimeBudgetExceededError,
)
from research_synth.core.research.providers.resilience.config import (
    PROVIDER_CONFIGS,
    get_provider_config,
)
from research_synth.core.research.providers.resilience.execution import (
    _default_classify_error,
    execute_with_resilience,
)
from research_synth.core.research.providers.resilience.limiters import (
    CircuitBreaker,
    MinIntervalRateLimiter,
    RateLimitCheck,
    TokenBucketLimiter,
    get_arxiv_rate_limiter,
)
from research_synth.core.research.providers.resilience.manager import (
    ProviderResilienceManager,
    get_resilience_manager,
    reset_resilience_manager_for_testing,
)
from research_synth.core.research.providers.resilience.models import (
    CircuitState,
    ErrorClassification,
    ErrorType,
    ProviderResilienceConfig,
    SleepFunc,
)

__all__ = [
    # Models & enums
    "ErrorType",
    "CircuitState",
    "ProviderResilienceConfig",
    "ErrorClassification",
    "SleepFunc",
    # Config
    "PROVIDER_CONFIGS",
    "get_provider_config",
    # Limiters
    "CircuitBreaker",
    "TokenBucketLimiter",
    "RateLimitCheck",
    "MinIntervalRateLimiter",
    "get_arxiv_rate_limiter",
    # Manager
    "ProviderResilienceManager",
    "get_resilience_manager",
    "reset_resilience_manager_for_testing",
    # Execution
    "execute_with_resilience",
    "_default_classify_error",
    # Error re-exports
    "CircuitBreakerError",
    "RateLimitWaitError",
    "TimeBudgetExceededError",
]
