"""Anthropic messages-API provider."""

from typing import Any, Dict, Tuple

from research_synth.core.llm_provider import (
    CompletionRequest,
    FinishReason,
    HttpLLMProvider,
    TokenUsage,
)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

_FINISH_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
}


class AnthropicProvider(HttpLLMProvider):
    """Anthropic Claude provider."""

    name = "anthropic"
    default_model = "claude-haiku-4-5"

    def _build_http_request(
        self, request: CompletionRequest, model: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        body = {
            "model": model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        return ANTHROPIC_MESSAGES_URL, headers, body

    def _parse_response(self, data: Dict[str, Any]) -> Tuple[str, FinishReason, TokenUsage]:
        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")
        finish = _FINISH_REASONS.get(data.get("stop_reason", "end_turn"), FinishReason.STOP)
        usage_data = data.get("usage") or {}
        prompt_tokens = usage_data.get("input_tokens", 0)
        completion_tokens = usage_data.get("output_tokens", 0)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
        return text, finish, usage
