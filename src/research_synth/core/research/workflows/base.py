"""Base class for pipeline stages.

Provides common infrastructure for LLM access, per-run counters and
prompt-size guarding across all stages of the research pipeline.
"""

import logging
from typing import Optional

from research_synth.config.research import ResearchConfig
from research_synth.core.llm_provider import CompletionResponse
from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.validation import RunCounters

logger = logging.getLogger(__name__)

# ~600k chars is roughly 150k tokens at ~4 chars/token
MAX_PROMPT_LENGTH = 600_000


def _estimate_prompt_tokens(prompt: str) -> int:
    """Estimate token count using ~4 characters per token."""
    return len(prompt) // 4


class ResearchStageBase:
    """Base class for all pipeline stages.

    Stages never raise on provider failure: ``_generate`` returns a failed
    ``CompletionResponse`` that the stage turns into a default value.

    Attributes:
        config: Research configuration
        llm: Vendor-agnostic LLM client
        counters: Per-run counters shared with the other stages of the run
    """

    stage_name = "stage"

    def __init__(
        self,
        config: ResearchConfig,
        llm: LLMClient,
        counters: Optional[RunCounters] = None,
    ):
        self.config = config
        self.llm = llm
        self.counters = counters if counters is not None else RunCounters()

    @property
    def has_llm(self) -> bool:
        return self.llm.is_configured

    async def _generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        *,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ) -> CompletionResponse:
        """Call the LLM for this stage.

        Prompts over ``MAX_PROMPT_LENGTH`` are truncated from the end with a
        warning. Failures come back as failed responses.
        """
        if len(prompt) > MAX_PROMPT_LENGTH:
            logger.warning(
                "%s: prompt of %d chars (~%d tokens) truncated to %d",
                self.stage_name,
                len(prompt),
                _estimate_prompt_tokens(prompt),
                MAX_PROMPT_LENGTH,
            )
            prompt = prompt[:MAX_PROMPT_LENGTH]

        self.counters.llm_calls += 1
        response = await self.llm.generate(
            prompt,
            model,
            temperature=temperature,
            timeout=timeout,
            max_output_tokens=max_output_tokens,
        )
        if response.success:
            logger.debug(
                "%s: %s returned %d chars in %.0fms",
                self.stage_name,
                response.model,
                len(response.text),
                response.duration_ms,
            )
        else:
            logger.warning("%s: LLM call failed: %s", self.stage_name, response.error)
        return response
