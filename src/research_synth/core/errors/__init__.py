"""Unified error hierarchy for research-synth.

All custom exception classes are defined in domain-specific modules within
this package. This __init__.py re-exports everything for convenient access.

Usage:
    # Import from domain modules for specificity
    from research_synth.core.errors.llm import LLMError, RateLimitError

    # Or import from the package with qualified aliases for disambiguation
    from research_synth.core.errors import LLMRateLimitError, SearchRateLimitError
"""

# --- Base / Registry ---
from research_synth.core.errors.base import (
    ERROR_MAPPINGS,
    ErrorCode,
    ErrorType,
    error_to_response,
)

# --- LLM errors ---
from research_synth.core.errors.llm import (
    AuthenticationError as LLMAuthenticationError,
)
from research_synth.core.errors.llm import (
    EmptyResponseError,
    InvalidRequestError,
    LLMError,
    ModelNotFoundError,
)
from research_synth.core.errors.llm import (
    RateLimitError as LLMRateLimitError,
)

# --- Pipeline errors ---
from research_synth.core.errors.pipeline import (
    ConfigurationError,
)

# --- Resilience errors ---
from research_synth.core.errors.resilience import (
    CircuitBreakerError,
    RateLimitWaitError,
    TimeBudgetExceededError,
)

# --- Search provider errors ---
from research_synth.core.errors.search import (
    AuthenticationError as SearchAuthenticationError,
)
from research_synth.core.errors.search import (
    DocsUnavailableError,
    SearchProviderError,
)
from research_synth.core.errors.search import (
    RateLimitError as SearchRateLimitError,
)

__all__ = [
    # Registry
    "ERROR_MAPPINGS",
    "ErrorCode",
    "ErrorType",
    "error_to_response",
    # LLM
    "LLMError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "InvalidRequestError",
    "ModelNotFoundError",
    "EmptyResponseError",
    # Pipeline
    "ConfigurationError",
    # Resilience
    "CircuitBreakerError",
    "RateLimitWaitError",
    "TimeBudgetExceededError",
    # Search
    "SearchProviderError",
    "SearchRateLimitError",
    "SearchAuthenticationError",
    "DocsUnavailableError",
]
