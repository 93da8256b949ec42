"""
LLM Provider abstraction for research-synth.

Provides a unified interface for the text-generation vendors the pipeline
talks to (Gemini, OpenAI, Anthropic) with consistent error handling,
resilience and logging.

Example:
    from research_synth.core.llm_provider import (
        HttpLLMProvider, CompletionRequest, CompletionResponse
    )

    class MyProvider(HttpLLMProvider):
        name = "mine"

        def _build_http_request(self, request):
            return url, headers, body

        def _parse_response(self, data, request):
            return data["text"], TokenUsage()
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx

from research_synth.core.errors.llm import (
    AuthenticationError,
    EmptyResponseError,
    InvalidRequestError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
)
from research_synth.core.errors.resilience import (
    CircuitBreakerError,
    RateLimitWaitError,
    TimeBudgetExceededError,
)
from research_synth.core.research.providers.resilience import (
    ErrorClassification,
    ProviderResilienceConfig,
    execute_with_resilience,
    get_provider_config,
    get_resilience_manager,
)
from research_synth.core.research.providers.shared import (
    classify_http_error,
    extract_error_message,
    parse_retry_after,
    redact_secrets,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class FinishReason(str, Enum):
    """Reason why the model stopped generating.

    STOP: Natural completion (hit stop sequence or end)
    LENGTH: Hit max_tokens limit
    CONTENT_FILTER: Filtered due to content policy
    ERROR: Generation error occurred (response carries ``error``)
    """

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class CompletionRequest:
    """Request for a single-turn text completion.

    Attributes:
        prompt: The prompt to complete
        model: Model identifier (optional, uses provider default)
        max_tokens: Maximum tokens to generate
        temperature: Sampling temperature
        timeout: Per-request timeout in seconds
    """

    prompt: str
    model: Optional[str] = None
    max_tokens: int = 10000
    temperature: float = 0.7
    timeout: float = 30.0


@dataclass
class TokenUsage:
    """Token usage statistics.

    Attributes:
        prompt_tokens: Tokens in the input
        completion_tokens: Tokens in the output
        total_tokens: Total tokens used
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    """Response from text completion.

    Failed calls are represented as responses with empty ``text`` and a
    populated ``error`` so that fan-out callers never have to catch.

    Attributes:
        text: The generated text
        model: Model that generated the response
        finish_reason: Why generation stopped
        usage: Token usage statistics
        error: Error description when the call failed
        duration_ms: Wall-clock duration of the call
        raw_response: Original API response (for debugging)
    """

    text: str
    model: Optional[str] = None
    finish_reason: FinishReason = FinishReason.STOP
    usage: TokenUsage = field(default_factory=TokenUsage)
    error: Optional[str] = None
    duration_ms: float = 0.0
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, model: Optional[str], error: str, duration_ms: float = 0.0) -> "CompletionResponse":
        return cls(
            text="",
            model=model,
            finish_reason=FinishReason.ERROR,
            error=error,
            duration_ms=duration_ms,
        )


# =============================================================================
# Abstract Base Class
# =============================================================================


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Attributes:
        name: Provider name (e.g., 'gemini', 'openai', 'anthropic')
        default_model: Default model to use if not specified in requests
    """

    name: str = "base"
    default_model: str = ""

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Generate a text completion.

        Args:
            request: Completion request with prompt and parameters

        Returns:
            CompletionResponse with generated text

        Raises:
            LLMError: On API or generation errors
            RateLimitError: If rate limited
            AuthenticationError: If authentication fails
        """

    def get_model(self, requested: Optional[str] = None) -> str:
        """Get the model to use, falling back to the provider default."""
        return requested or self.default_model

    def count_tokens(self, text: str, model: Optional[str] = None) -> int:
        """Rough token estimate (~4 characters per token for English)."""
        return len(text) // 4

    def validate_request(self, request: CompletionRequest) -> None:
        """Validate a request before sending.

        Raises:
            InvalidRequestError: If request is invalid
        """
        if not request.prompt:
            raise InvalidRequestError("Prompt cannot be empty", provider=self.name)
        if request.max_tokens < 1:
            raise InvalidRequestError(
                "max_tokens must be positive", provider=self.name, param="max_tokens"
            )
        if request.timeout <= 0:
            raise InvalidRequestError(
                "timeout must be positive", provider=self.name, param="timeout"
            )


class HttpLLMProvider(LLMProvider):
    """Base for vendors reached with a single JSON POST over httpx.

    Subclasses build the vendor request and extract text from the vendor
    response; this class owns transport, status-code mapping and the
    resilience stack (circuit breaker, token bucket, retry).
    """

    def __init__(
        self,
        api_key: str,
        *,
        resilience_config: Optional[ProviderResilienceConfig] = None,
    ):
        if not api_key:
            raise AuthenticationError(f"{self.name} API key is required", provider=self.name)
        self._api_key = api_key
        self._resilience_config = resilience_config

    @property
    def resilience_config(self) -> ProviderResilienceConfig:
        """Return the resilience configuration for this provider."""
        if self._resilience_config is not None:
            return self._resilience_config
        return get_provider_config(self.name)

    @abstractmethod
    def _build_http_request(
        self, request: CompletionRequest, model: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """Return ``(url, headers, json_body)`` for the vendor API."""

    @abstractmethod
    def _parse_response(self, data: Dict[str, Any]) -> Tuple[str, FinishReason, TokenUsage]:
        """Extract ``(text, finish_reason, usage)`` from the vendor JSON."""

    def classify_error(self, error: Exception) -> ErrorClassification:
        return classify_http_error(error, self.name)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.validate_request(request)
        model = self.get_model(request.model)
        url, headers, body = self._build_http_request(request, model)
        start = time.perf_counter()

        async def make_request() -> Dict[str, Any]:
            async with httpx.AsyncClient(timeout=request.timeout) as client:
                response = await client.post(url, json=body, headers=headers)
                self._raise_for_status(response, model)
                try:
                    return response.json()
                except ValueError as e:
                    raise LLMError(f"Malformed response body: {e}", provider=self.name) from e

        try:
            data = await execute_with_resilience(
                make_request,
                provider_name=self.name,
                time_budget=request.timeout * (self.resilience_config.max_retries + 1),
                classify_error=self.classify_error,
                manager=get_resilience_manager(),
                resilience_config=self.resilience_config,
            )
        except (CircuitBreakerError, RateLimitWaitError, TimeBudgetExceededError) as e:
            raise LLMError(str(e), provider=self.name, retryable=True) from e
        except httpx.TimeoutException as e:
            raise LLMError(
                f"Request timed out after {request.timeout}s", provider=self.name, retryable=True
            ) from e
        except httpx.RequestError as e:
            raise LLMError(
                redact_secrets(f"Network error: {e}"), provider=self.name, retryable=True
            ) from e

        try:
            text, finish_reason, usage = self._parse_response(data)
        except (KeyError, TypeError, AttributeError, IndexError, ValueError) as e:
            raise LLMError(
                f"Unexpected response shape: {type(e).__name__}: {e}", provider=self.name
            ) from e
        if not text:
            raise EmptyResponseError(provider=self.name)
        return CompletionResponse(
            text=text,
            model=model,
            finish_reason=finish_reason,
            usage=usage,
            duration_ms=(time.perf_counter() - start) * 1000,
            raw_response=data,
        )

    def _raise_for_status(self, response: httpx.Response, model: str) -> None:
        """Map HTTP error statuses to the LLM error hierarchy."""
        code = response.status_code
        if code < 400:
            return
        message = extract_error_message(response)
        if code in (401, 403):
            raise AuthenticationError(f"API error {code}: {message}", provider=self.name)
        if code == 404:
            raise ModelNotFoundError(
                f"API error {code}: {message}", provider=self.name, model=model
            )
        if code == 429:
            raise RateLimitError(
                f"API error {code}: {message}",
                provider=self.name,
                retry_after=parse_retry_after(response),
            )
        if code == 400:
            raise InvalidRequestError(f"API error {code}: {message}", provider=self.name)
        raise LLMError(
            f"API error {code}: {message}",
            provider=self.name,
            retryable=code >= 500,
            status_code=code,
        )


__all__ = [
    "FinishReason",
    "CompletionRequest",
    "TokenUsage",
    "CompletionResponse",
    "LLMProvider",
    "HttpLLMProvider",
]
