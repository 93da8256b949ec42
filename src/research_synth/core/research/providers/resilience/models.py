"""Types shared by the resilience layer.

``ErrorClassification`` is what every provider's ``classify_error``
returns; ``execute_with_resilience`` reads it to decide whether to retry
and whether the failure counts against the circuit breaker.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol


class ErrorType(str, Enum):
    """Failure kinds a provider error is mapped onto."""

    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class ProviderResilienceConfig:
    """Rate, retry and breaker settings for one provider.

    Attributes:
        requests_per_second: Token bucket refill rate
        burst_limit: Token bucket capacity
        max_retries: Retries after the first attempt
        base_delay: First backoff delay; doubles per attempt
        max_delay: Backoff ceiling
        jitter: Fraction of the delay randomized either way (0.5 => 50-150%)
        circuit_failure_threshold: Failures that open the breaker
        circuit_recovery_timeout: Seconds before a half-open probe
    """

    requests_per_second: float = 1.0
    burst_limit: int = 3

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.5

    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: float = 30.0


@dataclass
class ErrorClassification:
    """How the resilience stack should treat one failure."""

    retryable: bool
    trips_breaker: bool
    backoff_seconds: Optional[float] = None
    error_type: ErrorType = ErrorType.UNKNOWN


class SleepFunc(Protocol):
    """Async sleep, injectable so tests never actually wait."""

    async def __call__(self, seconds: float) -> None: ...
