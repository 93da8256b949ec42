"""Gemini text-generation provider.

Calls the Generative Language ``generateContent`` REST endpoint.

Resilience Configuration:
    - Rate Limit: 5 RPS with burst limit of 10
    - Circuit Breaker: Opens after 5 failures, 30s recovery timeout
    - Retry: 1 retry on 429/5xx/network errors

Example usage:
    provider = GeminiProvider(api_key="...")
    response = await provider.complete(CompletionRequest(prompt="Hello"))
"""

from typing import Any, Dict, Tuple

from research_synth.core.llm_provider import (
    CompletionRequest,
    FinishReason,
    HttpLLMProvider,
    TokenUsage,
)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_FINISH_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
}


class GeminiProvider(HttpLLMProvider):
    """Google Gemini provider."""

    name = "gemini"
    default_model = "gemini-2.5-flash"

    def _build_http_request(
        self, request: CompletionRequest, model: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        url = f"{GEMINI_BASE_URL}/{model}:generateContent?key={self._api_key}"
        body = {
            "contents": [{"parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }
        return url, {"Content-Type": "application/json"}, body

    def _parse_response(self, data: Dict[str, Any]) -> Tuple[str, FinishReason, TokenUsage]:
        candidates = data.get("candidates") or []
        if not candidates:
            return "", FinishReason.ERROR, TokenUsage()
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = parts[0].get("text", "") if parts else ""
        finish = _FINISH_REASONS.get(candidate.get("finishReason", "STOP"), FinishReason.STOP)
        meta = data.get("usageMetadata") or {}
        usage = TokenUsage(
            prompt_tokens=meta.get("promptTokenCount", 0),
            completion_tokens=meta.get("candidatesTokenCount", 0),
            total_tokens=meta.get("totalTokenCount", 0),
        )
        return text, finish, usage
