"""Helpers shared by the HTTP-backed evidence providers and LLM vendors.

Everything here is transport-agnostic: functions take an ``httpx.Response``
or an exception and never open a client themselves. Messages that may
reach logs pass through :func:`redact_secrets` first.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Optional
from urllib.parse import urlparse

if TYPE_CHECKING:
    import httpx

    from research_synth.core.research.providers.resilience import (
        ErrorClassification,
        ErrorType,
    )

logger = logging.getLogger(__name__)

_SECRET_PATTERN = re.compile(
    r"(?i)"
    r"(?:api[_-]?key|key|token|bearer|authorization|secret|password|credential)"
    r"[\s:=]+"
    r"['\"]?([^\s'\"&]{8,})['\"]?",
)

_STATUS_PATTERN = re.compile(
    r"(?:HTTP|status|error)\s*(?:code\s*)?:?\s*(\d{3})\b|^(\d{3})\s",
    re.IGNORECASE,
)

# ErrorType value -> (retryable, trips_breaker)
_ERROR_TYPE_DEFAULTS: dict[str, tuple[bool, bool]] = {
    "rate_limit": (True, False),
    "server_error": (True, True),
    "timeout": (True, True),
    "network": (True, True),
    "authentication": (False, False),
    "invalid_request": (False, False),
    "unknown": (False, True),
}

# Status codes that do not follow the plain 4xx/5xx split.
_STATUS_ERROR_TYPES: dict[int, str] = {
    401: "authentication",
    403: "authentication",
    408: "timeout",
    429: "rate_limit",
}

_MESSAGE_LIMIT = 200


def redact_secrets(text: str) -> str:
    """Mask API keys and bearer tokens embedded in ``text`` with ``****``."""
    if not text:
        return text
    return _SECRET_PATTERN.sub(lambda m: m.group(0).replace(m.group(1), "****"), text)


def parse_retry_after(response: "httpx.Response") -> Optional[float]:
    """Seconds to wait from ``retry-after-ms`` or ``Retry-After``.

    OpenAI and Anthropic send the millisecond variant alongside the standard
    header; HTTP-date values are not supported and yield ``None``.
    """
    headers = response.headers
    millis = headers.get("retry-after-ms")
    if millis:
        try:
            return float(millis) / 1000.0
        except ValueError:
            pass
    seconds = headers.get("Retry-After")
    if seconds:
        try:
            return float(seconds)
        except ValueError:
            return None
    return None


def _message_from_body(data: Any) -> Optional[str]:
    # Gemini occasionally wraps the error object in a one-element list.
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if isinstance(error, str):
        return error
    for key in ("message", "detail"):
        if data.get(key):
            return str(data[key])
    return None


def extract_error_message(response: "httpx.Response") -> str:
    """Human-readable, redacted error text from a failed response.

    Understands the ``{"error": {"message": ...}}`` body used by every LLM
    vendor here, plain ``{"error": "..."}``, ``{"message": ...}`` and
    Perplexity's ``{"detail": ...}``. Falls back to the raw body.
    """
    try:
        message = _message_from_body(response.json())
    except ValueError:
        message = None
    if not message:
        message = response.text[:_MESSAGE_LIMIT] if response.text else "Unknown error"
    return redact_secrets(message)


def extract_domain(url: str) -> Optional[str]:
    """Return the ``netloc`` of ``url``, or ``None`` when there is none."""
    if not url:
        return None
    try:
        return urlparse(url).netloc or None
    except ValueError:
        return None


def extract_status_code(error_message: str) -> Optional[int]:
    """Find an HTTP status in messages like ``"API error 429: ..."``.

    Only codes introduced by ``HTTP``/``status``/``error`` or leading the
    message count, so ``"Found 200 results"`` yields ``None``.
    """
    if not error_message:
        return None
    match = _STATUS_PATTERN.search(error_message)
    if not match:
        return None
    code = int(match.group(1) or match.group(2))
    return code if 100 <= code <= 599 else None


def _status_error_type(code: int) -> Optional[str]:
    if code in _STATUS_ERROR_TYPES:
        return _STATUS_ERROR_TYPES[code]
    if code >= 500:
        return "server_error"
    if code >= 400:
        return "invalid_request"
    return None


def _classification(
    error_type: "ErrorType",
    retryable: Optional[bool] = None,
    backoff_seconds: Optional[float] = None,
) -> "ErrorClassification":
    from research_synth.core.research.providers.resilience import ErrorClassification

    default_retryable, trips_breaker = _ERROR_TYPE_DEFAULTS[error_type.value]
    return ErrorClassification(
        retryable=default_retryable if retryable is None else retryable,
        trips_breaker=trips_breaker,
        backoff_seconds=backoff_seconds,
        error_type=error_type,
    )


def classify_http_error(
    error: Exception,
    provider_name: str,
    custom_classifier: Optional[Callable[[Exception], Optional["ErrorClassification"]]] = None,
) -> "ErrorClassification":
    """Decide whether ``error`` is retried and whether it counts against the breaker.

    Rate limits carry their ``retry_after`` as the backoff. Provider errors
    are classified by HTTP status (from ``status_code`` or the message);
    provider errors without a status keep their own ``retryable`` flag.
    httpx transport errors are matched by class name so this module does
    not import httpx at runtime.
    """
    from research_synth.core.errors.llm import AuthenticationError as LLMAuthenticationError
    from research_synth.core.errors.llm import LLMError
    from research_synth.core.errors.llm import RateLimitError as LLMRateLimitError
    from research_synth.core.errors.search import (
        AuthenticationError,
        RateLimitError,
        SearchProviderError,
    )
    from research_synth.core.research.providers.resilience import ErrorType

    if custom_classifier is not None:
        result = custom_classifier(error)
        if result is not None:
            return result

    if isinstance(error, (AuthenticationError, LLMAuthenticationError)):
        return _classification(ErrorType.AUTHENTICATION)
    if isinstance(error, (RateLimitError, LLMRateLimitError)):
        return _classification(ErrorType.RATE_LIMIT, backoff_seconds=error.retry_after)

    if isinstance(error, (SearchProviderError, LLMError)):
        code = getattr(error, "status_code", None) or extract_status_code(str(error))
        type_name = _status_error_type(code) if code is not None else None
        if type_name is not None:
            error_type = ErrorType(type_name)
            # LLM errors may widen retryability (e.g. an empty 200 body)
            retryable = _ERROR_TYPE_DEFAULTS[type_name][0] or (
                isinstance(error, LLMError) and error.retryable
            )
            return _classification(error_type, retryable=retryable)
        logger.debug("%s error without status: %s", provider_name, redact_secrets(str(error)))
        return _classification(ErrorType.UNKNOWN, retryable=error.retryable)

    class_name = type(error).__name__.lower()
    if "timeout" in class_name:
        return _classification(ErrorType.TIMEOUT)
    if "request" in class_name or "connect" in class_name:
        return _classification(ErrorType.NETWORK)
    return _classification(ErrorType.UNKNOWN)


def _as_provider_error(
    provider_name: str,
    error: Exception,
    classify_error: Callable[[Exception], Any],
) -> Exception:
    """Translate a resilience-layer failure into the search error hierarchy."""
    from research_synth.core.errors.resilience import CircuitBreakerError
    from research_synth.core.errors.search import RateLimitError, SearchProviderError
    from research_synth.core.research.providers.resilience import (
        RateLimitWaitError,
        TimeBudgetExceededError,
    )

    if isinstance(error, SearchProviderError):
        return error
    if isinstance(error, CircuitBreakerError):
        return SearchProviderError(
            provider=provider_name, message=f"Circuit breaker open: {error}", retryable=False
        )
    if isinstance(error, RateLimitWaitError):
        return RateLimitError(provider=provider_name, retry_after=error.wait_needed)
    if isinstance(error, TimeBudgetExceededError):
        return SearchProviderError(
            provider=provider_name, message=f"Request timed out: {error}", retryable=True
        )
    return SearchProviderError(
        provider=provider_name,
        message=redact_secrets(f"Request failed after retries: {error}"),
        retryable=classify_error(error).retryable,
        original_error=error,
    )


def create_resilience_executor(
    provider_name: str,
    config: Any,
    classify_error: Callable[[Exception], Any],
) -> Callable[..., Any]:
    """Bind ``execute_with_resilience`` to one evidence provider.

    The returned ``executor(func, *, timeout=30.0)`` runs ``func`` under the
    provider's breaker, rate limit and retry policy with a time budget of
    ``timeout * (max_retries + 1)``, and raises only ``SearchProviderError``
    subclasses.
    """

    async def executor(func: Callable[..., Any], *, timeout: float = 30.0) -> Any:
        # resolved per call so tests can patch the manager
        from research_synth.core.research.providers.resilience import (
            execute_with_resilience,
            get_resilience_manager,
        )

        try:
            return await execute_with_resilience(
                func,
                provider_name=provider_name,
                time_budget=timeout * (config.max_retries + 1),
                classify_error=classify_error,
                manager=get_resilience_manager(),
                resilience_config=config,
            )
        except Exception as e:
            translated = _as_provider_error(provider_name, e, classify_error)
            if translated is e:
                raise
            raise translated from e

    return executor
