"""OpenAI chat-completions provider.

Uses ``max_completion_tokens`` (required by reasoning-era models) and
leaves temperature at the model default, since small reasoning models
reject non-default values.
"""

from typing import Any, Dict, Tuple

from research_synth.core.llm_provider import (
    CompletionRequest,
    FinishReason,
    HttpLLMProvider,
    TokenUsage,
)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
}


class OpenAIProvider(HttpLLMProvider):
    """OpenAI provider."""

    name = "openai"
    default_model = "gpt-5-nano"

    def _build_http_request(
        self, request: CompletionRequest, model: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_completion_tokens": request.max_tokens,
        }
        return OPENAI_CHAT_URL, headers, body

    def _parse_response(self, data: Dict[str, Any]) -> Tuple[str, FinishReason, TokenUsage]:
        choices = data.get("choices") or []
        if not choices:
            return "", FinishReason.ERROR, TokenUsage()
        choice = choices[0]
        text = (choice.get("message") or {}).get("content") or ""
        finish = _FINISH_REASONS.get(choice.get("finish_reason", "stop"), FinishReason.STOP)
        usage_data = data.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=usage_data.get("prompt_tokens", 0),
            completion_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0),
        )
        return text, finish, usage
