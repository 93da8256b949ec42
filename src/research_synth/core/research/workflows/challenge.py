"""Challenger: one critique pass against the original query.

The challenger audits the synthesis with a checklist and returns JSON
``{"pass": bool, "critiques": [{"section": ..., "issue": ...}]}``. When it
finds no significant gaps, voting is skipped entirely.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from research_synth.core.research.models.execution import ArxivPaper, ExecutionResult
from research_synth.core.research.models.plan import PlanningOptions
from research_synth.core.research.models.synthesis import (
    GLOBAL_SECTION,
    OVERVIEW_SECTION,
    SynthesisOutput,
)
from research_synth.core.research.models.validation import ChallengeCritique, ChallengeResult
from research_synth.core.research.workflows._json_parsing import parse_structured
from research_synth.core.research.workflows.base import ResearchStageBase

logger = logging.getLogger(__name__)

VALID_SECTION_RE = re.compile(r"^(overview|global|q\d+)$")
SHORT_REPLY_CHARS = 30
RAW_CRITIQUE_CHARS = 500
CHALLENGE_TIMEOUT = 60.0
CHALLENGE_MAX_TOKENS = 4000


@dataclass
class ChallengeContext:
    """What the challenger checks the synthesis against."""

    enriched_context: Optional[str] = None
    constraints: list[str] = field(default_factory=list)
    sub_questions: list[str] = field(default_factory=list)
    include_code_examples: bool = False
    arxiv_papers: list[ArxivPaper] = field(default_factory=list)
    web_sources: list[str] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        enriched_context: Optional[str],
        options: PlanningOptions,
        execution: ExecutionResult,
        include_code_examples: bool = False,
    ) -> "ChallengeContext":
        return cls(
            enriched_context=enriched_context,
            constraints=list(options.constraints),
            sub_questions=list(options.sub_questions),
            include_code_examples=include_code_examples,
            arxiv_papers=list(execution.papers),
            web_sources=list(execution.web_sources),
        )


# =============================================================================
# Parsing
# =============================================================================


def normalize_section_id(section: Any) -> str:
    """Map a reported section to ``overview``, ``global`` or ``qN``.

    Models sometimes report checklist names as sections; those map to
    ``overview``.
    """
    if not isinstance(section, str):
        return OVERVIEW_SECTION
    lowered = section.strip().lower()
    if VALID_SECTION_RE.match(lowered):
        return lowered
    logger.debug("Challenge: invalid section id %r mapped to overview", section)
    return OVERVIEW_SECTION


def _normalize_critique(item: Any) -> Optional[ChallengeCritique]:
    if isinstance(item, str) and item.strip():
        return ChallengeCritique(section=OVERVIEW_SECTION, issue=item.strip())
    if isinstance(item, dict) and isinstance(item.get("issue"), str) and item["issue"].strip():
        return ChallengeCritique(section=normalize_section_id(item.get("section")), issue=item["issue"].strip())
    return None


def parse_challenge_response(response: str) -> ChallengeResult:
    """Parse a challenger reply; never raises.

    - Valid JSON with a boolean ``pass`` is used as-is.
    - Unparseable replies under 30 characters count as a pass.
    - Longer unparseable replies become one overview critique.
    """
    parsed = parse_structured(response, {})
    if parsed.ok and isinstance(parsed.value.get("pass"), bool):
        raw = parsed.value.get("critiques")
        critiques = [
            c for c in (_normalize_critique(item) for item in (raw if isinstance(raw, list) else [])) if c
        ]
        return ChallengeResult(
            critiques=critiques,
            has_significant_gaps=not parsed.value["pass"],
            raw_response=response,
        )

    if len(response.strip()) < SHORT_REPLY_CHARS:
        return ChallengeResult(raw_response=response)

    return ChallengeResult(
        critiques=[ChallengeCritique(section=OVERVIEW_SECTION, issue=response[:RAW_CRITIQUE_CHARS])],
        has_significant_gaps=True,
        raw_response=response,
    )


# =============================================================================
# Prompt
# =============================================================================


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))


def build_challenge_prompt(
    query: str,
    synthesis_text: str,
    context: ChallengeContext,
    section_ids: Iterable[str] = (OVERVIEW_SECTION,),
    focus_sections: Optional[list[str]] = None,
) -> str:
    """Checklist prompt; code checks appear only when code was requested."""
    parts = ["You are a CRITICAL REVIEWER using a checklist-based audit."]

    if context.arxiv_papers or context.web_sources:
        lines = ["VALID SOURCES (citations to these are LEGITIMATE):"]
        if context.arxiv_papers:
            papers = ", ".join(f'[arxiv:{p.id}] "{p.title}"' for p in context.arxiv_papers)
            lines.append(f"- arXiv Papers: {papers}")
        if context.web_sources:
            lines.append(
                f"- Web Sources: {len(context.web_sources)} sources from web search, "
                f"cited as [perplexity:1] to [perplexity:{len(context.web_sources)}]"
            )
        parts.append("\n".join(lines))

    parts.append(f"ORIGINAL QUERY:\n{query}")
    if context.enriched_context:
        parts.append(f"CONTEXT:\n{context.enriched_context}")
    if context.constraints:
        parts.append(f"CONSTRAINTS:\n{_numbered(context.constraints)}")
    if context.sub_questions:
        parts.append(f"SUB-QUESTIONS:\n{_numbered(context.sub_questions)}")

    parts.append(f"---\n\nSYNTHESIS TO CHALLENGE:\n{synthesis_text}\n\n---")

    research_type = "technical/programming" if context.include_code_examples else "conceptual/analytical"
    parts.append(f"**RESEARCH TYPE:** {research_type}")
    if not context.include_code_examples:
        parts.append(
            "NOTE: This is NON-PROGRAMMING research. Do NOT critique for missing code, "
            "executability, or implementation details unless the query specifically requested code."
        )
    if focus_sections:
        parts.append(
            f"NOTE: Only sections {', '.join(focus_sections)} were revised. "
            "Critique ONLY those sections."
        )

    checklist = [
        "- **Specificity**: Are claims supported with evidence? (vague claims without sources)",
        "- **Consistency**: Do conclusions align across sections? Any contradictions?",
    ]
    if context.include_code_examples:
        checklist.append("- **Code Completeness**: Are code examples fully implemented? (no TODO/FIXME)")
        checklist.append("- **Executability**: Can the code be executed WITHOUT extensive modifications?")
    checklist.extend(
        [
            "- **Decision Clarity**: Is there ONE clear recommendation per choice?",
            "- **Query Coverage**: Does the synthesis fully address the original query?",
            "- **Success Criteria**: Is there a clear answer or conclusion?",
        ]
    )
    parts.append("**ACTIONABILITY CHECKLIST** (flag ANY failures):\n\n" + "\n".join(checklist))

    parts.append(
        "**EVALUATE:**\n"
        "1. Which checklist items FAILED? (be specific, cite examples)\n"
        "2. What constraints were IGNORED?\n"
        "3. What sub-questions were poorly answered?\n"
        "4. Are there CONTRADICTIONS between sections?"
    )

    valid_ids = ", ".join([*section_ids, GLOBAL_SECTION])
    parts.append(
        "**RESPONSE FORMAT (JSON ONLY):**\n\n"
        f'Each critique names the section it applies to: one of {valid_ids} '
        '("global" means the problem spans the whole document).\n\n'
        'If ALL items pass:\n{"pass":true,"critiques":[]}\n\n'
        "If ANY items fail:\n"
        '{"pass":false,"critiques":[{"section":"q1","issue":"[FAILED: Specificity] Claim X lacks evidence"},'
        '{"section":"overview","issue":"[FAILED: Consistency] Overview contradicts q3"}]}\n\n'
        "Return ONLY valid JSON. No other text."
    )
    return "\n\n".join(parts)


def render_sections(synthesis: SynthesisOutput, section_ids: Iterable[str]) -> str:
    """Markdown for a subset of sections (used for differential re-challenge)."""
    parts = []
    for section_id in section_ids:
        text = synthesis.get_section(section_id)
        if text is None:
            continue
        if section_id == OVERVIEW_SECTION:
            parts.append(f"## Overview\n\n{text}")
        else:
            question = synthesis.sub_questions[section_id].question
            parts.append(f"## {section_id.upper()}: {question}\n\n{text}")
    return "\n\n".join(parts)


# =============================================================================
# Challenger
# =============================================================================


class Challenger(ResearchStageBase):
    """Issues the critique call."""

    stage_name = "Challenge"

    async def challenge(
        self,
        query: str,
        synthesis_text: str,
        context: Optional[ChallengeContext] = None,
        *,
        section_ids: Iterable[str] = (OVERVIEW_SECTION,),
    ) -> ChallengeResult:
        """Critique a full synthesis.

        A failed call counts as no gaps found.
        """
        return await self._run(
            build_challenge_prompt(query, synthesis_text, context or ChallengeContext(), section_ids)
        )

    async def challenge_sections(
        self,
        query: str,
        synthesis: SynthesisOutput,
        sections: list[str],
        context: Optional[ChallengeContext] = None,
    ) -> ChallengeResult:
        """Critique only ``sections``; critiques aimed elsewhere are dropped."""
        result = await self._run(
            build_challenge_prompt(
                query,
                render_sections(synthesis, sections),
                context or ChallengeContext(),
                sections,
                focus_sections=sections,
            )
        )
        allowed = set(sections) | {GLOBAL_SECTION}
        kept = [c for c in result.critiques if c.section in allowed]
        return result.model_copy(
            update={"critiques": kept, "has_significant_gaps": result.has_significant_gaps and bool(kept)}
        )

    async def _run(self, prompt: str) -> ChallengeResult:
        logger.info("Challenge: attacking synthesis against original input")
        self.counters.challenge_calls += 1
        response = await self._generate(
            prompt,
            self.config.challenge_model,
            temperature=0.2,
            timeout=CHALLENGE_TIMEOUT,
            max_output_tokens=CHALLENGE_MAX_TOKENS,
        )
        if not response.success:
            logger.warning("Challenge: call failed, treating as no gaps")
            return ChallengeResult(raw_response=response.error or "")
        result = parse_challenge_response(response.text)
        logger.info(
            "Challenge: %d critiques, significant gaps=%s",
            len(result.critiques),
            result.has_significant_gaps,
        )
        return result
