"""Error-to-code mapping registry.

Provides a centralized mapping from exception types to (ErrorCode, ErrorType)
tuples so the command line can render failures consistently.

Usage:
    from research_synth.core.errors.base import error_to_response

    try:
        run_pipeline()
    except Exception as e:
        result = error_to_response(e)
        if result is not None:
            return result
        raise  # Unknown error, re-raise
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

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
from research_synth.core.errors.pipeline import (
    ConfigurationError,
)
from research_synth.core.errors.resilience import (
    CircuitBreakerError,
    RateLimitWaitError,
    TimeBudgetExceededError,
)
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


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorType(str, Enum):
    """Broad error categories."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    PROVIDER = "provider"
    INTERNAL = "internal"


ERROR_MAPPINGS: Dict[Type[Exception], Tuple[ErrorCode, ErrorType]] = {
    # --- Pipeline errors ---
    ConfigurationError: (ErrorCode.CONFIGURATION_ERROR, ErrorType.CONFIGURATION),
    # --- LLM errors ---
    LLMError: (ErrorCode.PROVIDER_ERROR, ErrorType.PROVIDER),
    LLMRateLimitError: (ErrorCode.RATE_LIMIT_EXCEEDED, ErrorType.RATE_LIMIT),
    LLMAuthenticationError: (ErrorCode.UNAUTHORIZED, ErrorType.AUTHENTICATION),
    InvalidRequestError: (ErrorCode.VALIDATION_ERROR, ErrorType.VALIDATION),
    ModelNotFoundError: (ErrorCode.NOT_FOUND, ErrorType.NOT_FOUND),
    EmptyResponseError: (ErrorCode.PROVIDER_ERROR, ErrorType.PROVIDER),
    # --- Search provider errors ---
    SearchProviderError: (ErrorCode.PROVIDER_ERROR, ErrorType.PROVIDER),
    SearchRateLimitError: (ErrorCode.RATE_LIMIT_EXCEEDED, ErrorType.RATE_LIMIT),
    SearchAuthenticationError: (ErrorCode.UNAUTHORIZED, ErrorType.AUTHENTICATION),
    DocsUnavailableError: (ErrorCode.UNAVAILABLE, ErrorType.UNAVAILABLE),
    # --- Resilience errors ---
    CircuitBreakerError: (ErrorCode.UNAVAILABLE, ErrorType.UNAVAILABLE),
    TimeBudgetExceededError: (ErrorCode.PROVIDER_TIMEOUT, ErrorType.UNAVAILABLE),
    RateLimitWaitError: (ErrorCode.RATE_LIMIT_EXCEEDED, ErrorType.RATE_LIMIT),
}


def error_to_response(exc: Exception) -> Optional[dict[str, Any]]:
    """Convert a known exception to a standard error response dict, or None if unknown.

    Looks up the exception's *exact* type in ERROR_MAPPINGS.

    Args:
        exc: The exception to convert.

    Returns:
        A dict with ``success``, ``error``, ``error_code`` and ``error_type``
        keys, or None if the exception type is not registered.
    """
    mapping = ERROR_MAPPINGS.get(type(exc))
    if mapping is None:
        return None

    code, error_type = mapping
    return {
        "success": False,
        "error": str(exc),
        "error_code": code.value,
        "error_type": error_type.value,
    }
