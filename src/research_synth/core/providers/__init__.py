"""Text-generation providers and model routing.

Vendors:
    gemini     – GeminiProvider (generateContent REST API)
    openai     – OpenAIProvider (chat completions)
    anthropic  – AnthropicProvider (messages API)

Routing:
    registry   – LLMClient, ModelConfig, get_voting_configs, compress_text
"""

from research_synth.core.providers.anthropic import AnthropicProvider
from research_synth.core.providers.gemini import GeminiProvider
from research_synth.core.providers.openai import OpenAIProvider
from research_synth.core.providers.registry import (
    LLMClient,
    ModelConfig,
    count_words,
    extract_leading_sentences,
    provider_for_model,
)

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "LLMClient",
    "ModelConfig",
    "count_words",
    "extract_leading_sentences",
    "provider_for_model",
]
