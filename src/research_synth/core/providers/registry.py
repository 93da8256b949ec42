"""Model routing and fan-out over the configured LLM vendors.

``LLMClient`` is the single entry point the pipeline uses for text
generation. It resolves a model name to a vendor provider, applies the
per-call defaults from ``ResearchConfig``, and converts provider failures
into failed ``CompletionResponse`` objects so that concurrent callers can
degrade without try/except at every call site. Calls marked ``critical``
raise instead.

Model diversity for plan proposals and votes comes from
``get_voting_configs``: one small model per configured vendor, padded with
Gemini variants up to three voters.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from research_synth.config.research import ResearchConfig
from research_synth.core.errors.llm import LLMError
from research_synth.core.llm_provider import (
    CompletionRequest,
    CompletionResponse,
    LLMProvider,
)
from research_synth.core.providers.anthropic import AnthropicProvider
from research_synth.core.providers.gemini import GeminiProvider
from research_synth.core.providers.openai import OpenAIProvider

logger = logging.getLogger(__name__)

_PROVIDER_CLASSES: Dict[str, type] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}

# Vendor preference when a requested model's vendor has no key
_PROVIDER_ORDER = ("gemini", "openai", "anthropic")

_VOTING_MODELS = {
    "gemini": "gemini-2.5-flash-lite",
    "openai": "gpt-5-nano",
    "anthropic": "claude-haiku-4-5",
}
_SECOND_GEMINI_MODEL = "gemini-3-flash-preview"
_MIN_VOTERS = 3


@dataclass(frozen=True)
class ModelConfig:
    """A model to call, with optional per-call overrides.

    Attributes:
        provider: Vendor name (gemini, openai, anthropic)
        model: Vendor model identifier
        timeout: Seconds before the call is abandoned
        max_output_tokens: Output token cap
        temperature: Sampling temperature
    """

    provider: str
    model: str
    timeout: Optional[float] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None


def provider_for_model(model: str) -> str:
    """Infer the vendor from a model identifier.

    Args:
        model: Model name such as ``gemini-2.5-flash`` or ``gpt-5-nano``

    Returns:
        Vendor name; unknown names route to ``gemini``
    """
    lowered = model.lower()
    if lowered.startswith("claude"):
        return "anthropic"
    if lowered.startswith(("gpt", "o1", "o3", "o4", "chatgpt")):
        return "openai"
    return "gemini"


class LLMClient:
    """Vendor-agnostic text generation used by every pipeline stage.

    Args:
        config: Research configuration (keys, defaults, model roles)
        providers: Pre-built providers keyed by vendor name; when omitted
            providers are created lazily from the configured API keys
    """

    def __init__(
        self,
        config: ResearchConfig,
        providers: Optional[Dict[str, LLMProvider]] = None,
    ):
        self.config = config
        self._providers: Dict[str, LLMProvider] = dict(providers or {})

    # ------------------------------------------------------------------
    # Provider lookup
    # ------------------------------------------------------------------

    def available_providers(self) -> List[str]:
        """Vendors that can be called, in preference order."""
        return [
            name
            for name in _PROVIDER_ORDER
            if name in self._providers or self.config.get_api_key(name)
        ]

    def has_provider(self, name: str) -> bool:
        return name in self.available_providers()

    @property
    def is_configured(self) -> bool:
        """True when at least one vendor can be called."""
        return bool(self.available_providers())

    def _get_provider(self, name: str) -> LLMProvider:
        provider = self._providers.get(name)
        if provider is None:
            api_key = self.config.get_api_key(name)
            if not api_key:
                raise LLMError(f"No API key configured for {name}", provider=name)
            provider = _PROVIDER_CLASSES[name](api_key)
            self._providers[name] = provider
        return provider

    def _resolve_target(self, model: str, provider: Optional[str]) -> tuple[str, str]:
        """Pick ``(vendor, model)``, substituting a configured vendor if needed."""
        vendor = provider or provider_for_model(model)
        if self.has_provider(vendor):
            return vendor, model
        available = self.available_providers()
        if not available:
            return vendor, model
        substitute = available[0]
        substitute_model = _PROVIDER_CLASSES[substitute].default_model
        logger.debug(
            "No %s key for %s; routing to %s/%s", vendor, model, substitute, substitute_model
        )
        return substitute, substitute_model

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        *,
        provider: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        critical: bool = False,
        min_content_length: int = 10,
    ) -> CompletionResponse:
        """Generate text with one model.

        Args:
            prompt: Prompt text
            model: Model name (defaults to the configured fast model)
            provider: Force a vendor instead of inferring it from the model
            temperature: Sampling temperature override
            timeout: Per-call timeout override in seconds
            max_output_tokens: Output token cap override
            critical: Raise ``LLMError`` instead of returning a failed response
            min_content_length: Minimum characters for a critical call to count

        Returns:
            CompletionResponse; ``error`` is set when the call failed

        Raises:
            LLMError: Only when ``critical`` is True and the call failed
        """
        requested_model = model or self.config.fast_model
        vendor, resolved_model = self._resolve_target(requested_model, provider)
        request = CompletionRequest(
            prompt=prompt,
            model=resolved_model,
            max_tokens=max_output_tokens or self.config.default_max_output_tokens,
            temperature=self.config.default_temperature if temperature is None else temperature,
            timeout=timeout or self.config.default_llm_timeout,
        )
        start = time.perf_counter()
        try:
            response = await self._get_provider(vendor).complete(request)
        except LLMError as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.warning("LLM %s/%s failed: %s", vendor, resolved_model, e)
            if critical:
                raise
            return CompletionResponse.failed(resolved_model, str(e), elapsed)

        if critical and len(response.text) < min_content_length:
            raise LLMError(
                f"Critical LLM call returned insufficient content "
                f"({len(response.text)} chars, need {min_content_length})",
                provider=vendor,
            )
        return response

    async def generate_with(self, prompt: str, model_config: ModelConfig) -> CompletionResponse:
        """Generate with a ``ModelConfig`` (used for fan-out)."""
        return await self.generate(
            prompt,
            model_config.model,
            provider=model_config.provider,
            temperature=model_config.temperature,
            timeout=model_config.timeout,
            max_output_tokens=model_config.max_output_tokens,
        )

    async def generate_many(
        self,
        prompt: str,
        configs: Sequence[ModelConfig],
        *,
        critical: bool = False,
        min_successful: int = 1,
    ) -> List[CompletionResponse]:
        """Send the same prompt to several models concurrently.

        Args:
            prompt: Prompt text
            configs: Models to call
            critical: Raise when fewer than ``min_successful`` calls succeed
            min_successful: Success floor for critical fan-outs

        Returns:
            One response per config, in config order
        """
        logger.info("LLM: calling %d models in parallel", len(configs))
        start = time.perf_counter()
        gathered = await asyncio.gather(
            *(self.generate_with(prompt, c) for c in configs), return_exceptions=True
        )
        results: List[CompletionResponse] = []
        for config, outcome in zip(configs, gathered):
            if isinstance(outcome, Exception):
                logger.warning("LLM %s failed in fan-out: %s", config.model, outcome)
                outcome = CompletionResponse.failed(config.model, f"{type(outcome).__name__}: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        successful = sum(1 for r in results if r.success)
        logger.info(
            "LLM: %d/%d succeeded in %.1fs",
            successful,
            len(configs),
            time.perf_counter() - start,
        )
        if critical and successful < min_successful:
            raise LLMError(
                f"Critical parallel LLM calls failed: only {successful}/{min_successful} "
                "required responses succeeded"
            )
        return list(results)

    def get_voting_configs(self) -> List[ModelConfig]:
        """Diverse small models for plan proposals and sufficiency votes.

        One model per configured vendor; when fewer than three result and a
        Gemini key exists, a second Gemini variant is added and remaining
        slots are filled with the Gemini lite model.
        """
        available = self.available_providers()
        configs = [ModelConfig(provider=p, model=_VOTING_MODELS[p]) for p in available]

        if len(configs) < _MIN_VOTERS and "gemini" in available:
            configs.append(ModelConfig(provider="gemini", model=_SECOND_GEMINI_MODEL))
        while len(configs) < _MIN_VOTERS and "gemini" in available:
            configs.append(ModelConfig(provider="gemini", model=_VOTING_MODELS["gemini"]))

        if not configs:
            logger.error("LLM: no API keys configured for voting")
        return configs

    async def compress_text(self, text: str, max_words: int) -> str:
        """Summarize ``text`` to roughly ``max_words`` words.

        Short text is returned without a model call (cut back to complete
        sentences if it ends mid-sentence). Without a provider, or when the
        call fails, complete leading sentences up to the word budget are used.
        """
        if count_words(text) <= max_words:
            if _ENDS_COMPLETE.search(text.strip()):
                return text
            extracted = "".join(_SENTENCE.findall(text)).strip()
            return extracted or text

        if not self.is_configured:
            return extract_leading_sentences(text, max_words)

        max_chars = max_words * 5
        response = await self.generate(
            f"Write a {max_chars} character summary of this text. "
            "Each sentence must be grammatically complete.\n\n"
            f"Text:\n{text}",
            self.config.fast_model,
            max_output_tokens=8000,
            timeout=60.0,
        )
        if not response.success or not response.text.strip():
            return extract_leading_sentences(text, max_words)
        return response.text.strip()


# =============================================================================
# Text helpers
# =============================================================================

_LINK_URL = re.compile(r"\]\]\([^)]+\)")
_ENDS_COMPLETE = re.compile(r"[.!?]\s*$")
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def count_words(text: str) -> int:
    """Count words, ignoring the URL half of ``[[domain]](url)`` links."""
    return len(_LINK_URL.sub("]]", text).split())


def extract_leading_sentences(text: str, max_words: int) -> str:
    """Take whole sentences from the start of ``text`` up to ``max_words``.

    Falls back to the first ``max_words`` words plus ``"..."`` when even
    the first sentence is too long to split.
    """
    result: List[str] = []
    count = 0
    for sentence in _SENTENCE_SPLIT.split(text.strip()):
        words = len(sentence.split())
        if count + words > max_words and count > 0:
            break
        result.append(sentence)
        count += words
    if result and count <= max_words:
        return " ".join(result)
    return " ".join(text.split()[:max_words]) + "..."
