"""Perplexity Sonar provider for web search.

Wraps the Perplexity chat-completions API: the model answers the query
with web grounding and returns citation URLs alongside the text. Citation
markers in the text (``[1]``, ``[2]``...) index into ``sources``.

Perplexity API documentation: https://docs.perplexity.ai/api-reference/chat-completions-post

Resilience Configuration:
    - Rate Limit: 1 RPS with burst limit of 3
    - Circuit Breaker: Opens after 5 failures, 30s recovery timeout
    - Retry: Up to 2 retries with exponential backoff (1-30s)
    - Error Handling:
        - 429: Retryable, does NOT trip circuit breaker
        - 401/403: Not retryable, does NOT trip circuit breaker
        - 5xx: Retryable, trips circuit breaker
        - Timeouts: Retryable, trips circuit breaker

Example usage:
    provider = PerplexitySearchProvider(api_key="pplx-...")
    result = await provider.search("vector database benchmarks 2025")
"""

import logging
import os
from typing import Any, Optional

import httpx

from research_synth.core.errors.search import (
    AuthenticationError,
    RateLimitError,
    SearchProviderError,
)
from research_synth.core.research.models.execution import WebResult
from research_synth.core.research.providers.resilience import (
    ErrorClassification,
    ProviderResilienceConfig,
    get_provider_config,
)
from research_synth.core.research.providers.shared import (
    classify_http_error,
    create_resilience_executor,
    extract_error_message,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

# Perplexity API constants
PERPLEXITY_API_BASE_URL = "https://api.perplexity.ai"
PERPLEXITY_CHAT_ENDPOINT = "/chat/completions"
DEFAULT_MODEL = "sonar"
DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_TOKENS = 3000
DEFAULT_TEMPERATURE = 0.2

SYSTEM_PROMPT = (
    "You are a helpful research assistant. "
    "Provide comprehensive, accurate information with sources."
)


class PerplexitySearchProvider:
    """Web search through Perplexity's grounded chat completions.

    Attributes:
        api_key: Perplexity API key (required)
        model: Sonar model name (default: sonar)
        base_url: API base URL (default: https://api.perplexity.ai)
        timeout: Request timeout in seconds (default: 60.0)
        max_tokens: Response token cap (default: 3000)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = PERPLEXITY_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        resilience_config: Optional[ProviderResilienceConfig] = None,
    ):
        """Initialize the Perplexity provider.

        Args:
            api_key: Perplexity API key. If not provided, reads from
                PERPLEXITY_API_KEY env var.
            model: Sonar model name
            base_url: API base URL
            timeout: Request timeout in seconds
            max_tokens: Response token cap
            resilience_config: Custom resilience configuration. If None, uses
                defaults from PROVIDER_CONFIGS["perplexity"].

        Raises:
            ValueError: If no API key is provided or found in environment
        """
        self._api_key = api_key or os.environ.get("PERPLEXITY_API_KEY")
        if not self._api_key:
            raise ValueError(
                "Perplexity API key required. Provide via api_key parameter "
                "or PERPLEXITY_API_KEY environment variable."
            )
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._resilience_config = resilience_config

    def get_provider_name(self) -> str:
        return "perplexity"

    @property
    def resilience_config(self) -> ProviderResilienceConfig:
        """Return the resilience configuration for this provider."""
        if self._resilience_config is not None:
            return self._resilience_config
        return get_provider_config("perplexity")

    def classify_error(self, error: Exception) -> ErrorClassification:
        return classify_http_error(error, self.get_provider_name())

    async def search(self, query: str) -> WebResult:
        """Run a grounded web search.

        Args:
            query: Natural-language query (context may be appended)

        Returns:
            WebResult with the answer text and citation URLs

        Raises:
            AuthenticationError: If the API key is invalid
            RateLimitError: If rate limits are exhausted
            SearchProviderError: For other API errors
        """
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "temperature": DEFAULT_TEMPERATURE,
            "max_tokens": self._max_tokens,
        }
        data = await self._execute_request(payload)
        result = self._parse_response(data)
        logger.info(
            "Perplexity: %d chars, %d sources for query %r",
            len(result.content),
            len(result.sources),
            query[:80],
        )
        return result

    async def _execute_request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Execute API request with resilience executor."""
        url = f"{self._base_url}{PERPLEXITY_CHAT_ENDPOINT}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async def make_request() -> dict[str, Any]:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)

                if response.status_code in (401, 403):
                    raise AuthenticationError(
                        provider="perplexity",
                        message="Invalid API key",
                    )
                if response.status_code == 429:
                    raise RateLimitError(
                        provider="perplexity",
                        retry_after=parse_retry_after(response),
                    )
                if response.status_code >= 400:
                    error_msg = extract_error_message(response)
                    raise SearchProviderError(
                        provider="perplexity",
                        message=f"API error {response.status_code}: {error_msg}",
                        retryable=response.status_code >= 500,
                    )
                return response.json()

        executor = create_resilience_executor(
            "perplexity",
            self.resilience_config,
            self.classify_error,
        )
        return await executor(make_request, timeout=self._timeout)

    def _parse_response(self, data: dict[str, Any]) -> WebResult:
        """Convert the chat-completions response into a WebResult."""
        choices = data.get("choices") or []
        content = ""
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        return WebResult(
            content=content or "No response from Perplexity",
            sources=list(data.get("citations") or []),
            model=data.get("model") or self._model,
        )
