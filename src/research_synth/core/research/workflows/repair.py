"""Targeted repair of a failing synthesis.

At most one repair iteration runs:

1. Gaps that mention papers or code trigger extra gathering.
2. A ``global`` failing section requests a full re-synthesis with the gaps
   as mandatory constraints. Otherwise only the failing sections are
   regenerated under a minimal-edit instruction.
3. Validation is differential: only changed sections are re-challenged,
   cached critiques for untouched sections are carried over, and the
   merged critique set is voted on again.
4. The repair is kept only if it measurably improved severity; otherwise
   the previous document and its verdict are restored together.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from research_synth.config.research import ResearchConfig
from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.enums import CritiqueCategory
from research_synth.core.research.models.execution import (
    DocEntry,
    DocumentationCache,
    ExecutionResult,
)
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.models.plan import PlanningOptions
from research_synth.core.research.models.synthesis import (
    GLOBAL_SECTION,
    OVERVIEW_SECTION,
    SynthesisOutput,
)
from research_synth.core.research.models.validation import (
    ChallengeResult,
    DocumentState,
    RunCounters,
    SufficiencyVerdict,
)
from research_synth.core.research.workflows.base import ResearchStageBase
from research_synth.core.research.workflows.challenge import ChallengeContext, Challenger
from research_synth.core.research.workflows.execution import DepthGatedExecutor
from research_synth.core.research.workflows.synthesis import (
    PhasedSynthesizer,
    build_section_evidence,
)
from research_synth.core.research.workflows.voting import SufficiencyVoter

logger = logging.getLogger(__name__)

SECTION_REPAIR_TIMEOUT = 60.0
SECTION_REPAIR_MAX_TOKENS = 8000

_PAPER_GAP_WORDS = ("paper", "research", "academic")
_CODE_GAP_WORDS = ("code", "implementation", "example")


@dataclass
class RepairContext:
    """Run inputs the repair needs to regenerate and re-validate."""

    query: str
    execution: ExecutionResult
    options: PlanningOptions = field(default_factory=PlanningOptions)
    enriched_context: Optional[str] = None
    manifest: Optional[GlobalManifest] = None
    challenge_context: Optional[ChallengeContext] = None
    include_code_examples: bool = False


@dataclass
class RepairOutcome:
    """Result of one repair attempt.

    Attributes:
        state: Document and verdict to keep (pre-repair pair when reverted)
        improved: True when the repaired document was accepted
        repaired_sections: Sections that were regenerated
        reverted: True when a repair ran but was discarded
    """

    state: DocumentState
    improved: bool = False
    repaired_sections: list[str] = field(default_factory=list)
    reverted: bool = False


# =============================================================================
# Pure helpers
# =============================================================================


def is_improvement(before: SufficiencyVerdict, after: SufficiencyVerdict) -> bool:
    """Whether ``after`` is measurably better than ``before``.

    Only a strictly lower median MAJOR count counts. A document that failed
    on CRITICAL critiques alone (median 0) therefore keeps its original text.
    """
    return after.median_major < before.median_major


def critiques_for_section(
    section_id: str, verdict: SufficiencyVerdict, challenge: Optional[ChallengeResult]
) -> list[str]:
    """Blocking voter critiques plus challenger critiques aimed at a section."""
    issues: list[str] = []
    blocking = {CritiqueCategory.CRITICAL, CritiqueCategory.MAJOR}
    for detail in verdict.details:
        for c in detail.critiques:
            if c.section == section_id and c.category in blocking and c.issue not in issues:
                issues.append(c.issue)
    if challenge is not None:
        for c in challenge.critiques:
            if c.section == section_id and c.issue not in issues:
                issues.append(c.issue)
    return issues


def merge_challenges(
    previous: Optional[ChallengeResult], fresh: ChallengeResult, changed: set[str]
) -> ChallengeResult:
    """Cached critiques for untouched sections plus fresh ones for changed sections."""
    cached = []
    if previous is not None:
        cached = [c for c in previous.critiques if c.section not in changed]
    critiques = cached + fresh.critiques
    return ChallengeResult(
        critiques=critiques,
        has_significant_gaps=bool(critiques) or fresh.has_significant_gaps,
        raw_response=fresh.raw_response,
    )


def build_section_repair_prompt(
    section_id: str,
    title: str,
    current: str,
    critiques: list[str],
    evidence: str,
    *,
    overview: Optional[str] = None,
    manifest: Optional[GlobalManifest] = None,
) -> str:
    """Minimal-edit prompt for one section.

    The overview anchors every sub-answer, so it is repaired without
    changing any conclusion the sub-answers rely on; sub-answers get the
    overview as a read-only reference.
    """
    issues = "\n".join(f"{i}. {issue}" for i, issue in enumerate(critiques, 1)) or "1. General quality gaps"
    parts = [
        "You are revising ONE section of a research report.",
        f"**Section:** {section_id} - {title}",
    ]
    if section_id == OVERVIEW_SECTION:
        parts.append(
            "This is the OVERVIEW. Every other section was written to agree with it: keep its "
            "conclusions, numbers and recommendations unless a critique below says they are wrong."
        )
    elif overview:
        parts.append(f"**OVERVIEW (read-only reference, stay consistent with it):**\n{overview}")
    if manifest is not None and not manifest.is_empty:
        parts.append(manifest.to_prompt_block())
    parts.append(f"**CRITIQUES TO ADDRESS:**\n{issues}")
    if evidence:
        parts.append(f"**GATHERED DATA:**\n{evidence}")
    parts.append(f"**CURRENT SECTION TEXT:**\n{current}")
    parts.append(
        "---\n\n**MINIMAL-EDIT RULES:**\n"
        "- Rewrite ONLY what the critiques above require\n"
        "- Preserve all non-criticized content VERBATIM\n"
        "- Do NOT change the structure, headings, or overall length\n"
        "- Keep existing inline citations ([perplexity:N], [context7:library], [arxiv:id])\n\n"
        "Return ONLY the revised section text, with no headers or commentary."
    )
    return "\n\n".join(parts)


# =============================================================================
# Repair loop
# =============================================================================


class RepairLoop(ResearchStageBase):
    """Runs the single repair iteration with its regression guard."""

    stage_name = "Repair"

    def __init__(
        self,
        config: ResearchConfig,
        llm: LLMClient,
        *,
        synthesizer: PhasedSynthesizer,
        challenger: Challenger,
        voter: SufficiencyVoter,
        executor: Optional[DepthGatedExecutor] = None,
        counters: Optional[RunCounters] = None,
    ):
        super().__init__(config, llm, counters)
        self.synthesizer = synthesizer
        self.challenger = challenger
        self.voter = voter
        self.executor = executor

    async def repair(self, state: DocumentState, ctx: RepairContext) -> RepairOutcome:
        """Attempt one repair of a failing document.

        Args:
            state: The document and the verdict that failed it
            ctx: Run inputs

        Returns:
            RepairOutcome; ``state`` is the pre-repair pair unless improved
        """
        verdict = state.verdict
        if verdict.sufficient or not (verdict.critical_gaps or verdict.failing_sections):
            return RepairOutcome(state=state)

        self.counters.repair_iterations += 1
        await self.gather_for_gaps(ctx.execution, verdict.critical_gaps, ctx)

        targets = [s for s in verdict.failing_sections if s in state.synthesis.section_ids()]
        if GLOBAL_SECTION in verdict.failing_sections or not targets:
            candidate = await self._full_resynthesis(state, ctx)
        else:
            candidate = await self._targeted_repair(state, targets, ctx)

        if candidate is None:
            logger.info("Repair: nothing changed, keeping pre-repair document")
            return RepairOutcome(state=state)

        new_state, repaired = candidate
        if is_improvement(verdict, new_state.verdict):
            logger.info(
                "Repair: accepted (median major %.1f -> %.1f)",
                verdict.median_major,
                new_state.verdict.median_major,
            )
            return RepairOutcome(state=new_state, improved=True, repaired_sections=repaired)

        logger.warning(
            "Repair: no improvement (median major %.1f -> %.1f), reverting",
            verdict.median_major,
            new_state.verdict.median_major,
        )
        return RepairOutcome(state=state, repaired_sections=repaired, reverted=True)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _full_resynthesis(
        self, state: DocumentState, ctx: RepairContext
    ) -> Optional[tuple[DocumentState, list[str]]]:
        gaps = state.verdict.critical_gaps or [
            c.issue for c in (state.challenge.critiques if state.challenge else [])
        ]
        synthesis = await self.synthesizer.resynthesize_with_gaps(
            ctx.query,
            ctx.enriched_context,
            ctx.execution,
            gaps,
            ctx.options,
            ctx.manifest,
            include_code_examples=ctx.include_code_examples,
        )
        section_ids = synthesis.section_ids()
        challenge = await self.challenger.challenge(
            ctx.query, synthesis.to_text(), ctx.challenge_context, section_ids=section_ids
        )
        verdict = await self.voter.vote(
            ctx.query,
            synthesis.to_text(),
            challenge,
            section_ids=section_ids,
            manifest=ctx.manifest,
            context=ctx.challenge_context,
        )
        return DocumentState(synthesis=synthesis, verdict=verdict, challenge=challenge), [GLOBAL_SECTION]

    async def _targeted_repair(
        self, state: DocumentState, targets: list[str], ctx: RepairContext
    ) -> Optional[tuple[DocumentState, list[str]]]:
        logger.info("Repair: minimal-edit regeneration of %s", ", ".join(targets))
        rewritten = await asyncio.gather(
            *(self.regenerate_section(state, section_id, ctx) for section_id in targets)
        )

        synthesis = state.synthesis
        changed: list[str] = []
        for section_id, text in zip(targets, rewritten):
            if text is not None and text != synthesis.get_section(section_id):
                synthesis = synthesis.with_section(section_id, text)
                changed.append(section_id)
        if not changed:
            return None

        fresh = await self.challenger.challenge_sections(
            ctx.query, synthesis, changed, ctx.challenge_context
        )
        merged = merge_challenges(state.challenge, fresh, set(changed))
        verdict = await self.voter.vote(
            ctx.query,
            synthesis.to_text(),
            merged,
            section_ids=synthesis.section_ids(),
            manifest=ctx.manifest,
            context=ctx.challenge_context,
        )
        return DocumentState(synthesis=synthesis, verdict=verdict, challenge=merged), changed

    async def regenerate_section(
        self, state: DocumentState, section_id: str, ctx: RepairContext
    ) -> Optional[str]:
        """Minimal-edit rewrite of one section; None when the call fails."""
        synthesis = state.synthesis
        current = synthesis.get_section(section_id) or ""
        if section_id == OVERVIEW_SECTION:
            title, overview = ctx.query, None
        else:
            title, overview = synthesis.sub_questions[section_id].question, synthesis.overview

        response = await self._generate(
            build_section_repair_prompt(
                section_id,
                title,
                current,
                critiques_for_section(section_id, state.verdict, state.challenge),
                build_section_evidence(ctx.execution, section_id),
                overview=overview,
                manifest=ctx.manifest,
            ),
            self.config.synthesis_model,
            temperature=0.3,
            timeout=SECTION_REPAIR_TIMEOUT,
            max_output_tokens=SECTION_REPAIR_MAX_TOKENS,
        )
        if response.success and response.text.strip():
            return response.text.strip()
        return None

    # ------------------------------------------------------------------
    # Gap-driven gathering
    # ------------------------------------------------------------------

    async def gather_for_gaps(
        self, execution: ExecutionResult, gaps: list[str], ctx: RepairContext
    ) -> None:
        """Fetch papers or docs the gaps ask for; updates ``execution`` in place."""
        if self.executor is None or not gaps:
            return
        gap_text = " ".join(gaps).lower()

        if any(w in gap_text for w in _PAPER_GAP_WORDS) and not execution.papers:
            logger.info("Repair: fetching papers for gap")
            papers = await self.executor.search_papers(ctx.query)
            if papers is not None and papers.papers:
                execution.academic_papers = papers

        if (
            any(w in gap_text for w in _CODE_GAP_WORDS)
            and not execution.library_docs
            and self.executor.docs_available
        ):
            libraries = ctx.options.tech_stack
            if not libraries:
                logger.debug("Repair: code gap but no tech stack to look up")
                return
            logger.info("Repair: fetching library docs for gap")
            fetched = await asyncio.gather(
                *(self.executor.fetch_docs(lib, ctx.query) for lib in libraries)
            )
            cache = execution.doc_cache or DocumentationCache()
            texts = []
            for lib, text in zip(libraries, fetched):
                if text:
                    cache.base[lib] = DocEntry(content=text, topic=ctx.query, library=lib)
                    texts.append(text)
            if texts:
                execution.doc_cache = cache
                execution.library_docs = "\n\n---\n\n".join(texts)
