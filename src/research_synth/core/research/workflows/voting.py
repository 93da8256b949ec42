"""Sufficiency voting with the HCSP severity taxonomy.

Every configured voter compares the synthesis against the challenger's
critique and returns categorized critiques (CRITICAL, MAJOR, MINOR,
PEDANTIC), each aimed at a section.

``aggregate_votes`` turns the votes into a verdict:

- critiques are deduplicated by exact issue text
- any CRITICAL critique fails the verdict, whatever the vote tally
- otherwise the median per-voter MAJOR count is compared with
  ``major_ceiling``; meeting it fails the verdict
- failing critiques spread thinly over many sections add the ``global``
  sentinel, which requests a full re-synthesis instead of section repair
"""

from __future__ import annotations

import logging
import statistics
from datetime import date
from typing import Any, Iterable, Optional

from research_synth.config.research import ResearchConfig
from research_synth.config.sub_configs import PipelineConfig
from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.enums import CritiqueCategory, VoteOutcome
from research_synth.core.research.models.execution import ExecutionResult
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.models.synthesis import GLOBAL_SECTION, OVERVIEW_SECTION
from research_synth.core.research.models.validation import (
    CategorizedCritique,
    ChallengeResult,
    ConsensusResult,
    RunCounters,
    SufficiencyVerdict,
    VoteDetail,
)
from research_synth.core.research.workflows._json_parsing import extract_content, parse_structured
from research_synth.core.research.workflows.base import ResearchStageBase
from research_synth.core.research.workflows.challenge import ChallengeContext, normalize_section_id

logger = logging.getLogger(__name__)

MAX_MAJOR_GAPS = 5
SYNTHESIS_PREVIEW_CHARS = 2000
PARSE_FAILED_REASONING = "Parse failed, defaulting to synthesis_wins"


# =============================================================================
# Parsing
# =============================================================================


def normalize_category(raw: Any) -> CritiqueCategory:
    """Map a free-form category label onto the four-level taxonomy."""
    label = str(raw or "").upper()
    if "CRITICAL" in label:
        return CritiqueCategory.CRITICAL
    if "MAJOR" in label:
        return CritiqueCategory.MAJOR
    if "PEDANTIC" in label or "STYLISTIC" in label:
        return CritiqueCategory.PEDANTIC
    return CritiqueCategory.MINOR


def dedupe_issues(issues: Iterable[str]) -> list[str]:
    """Unique issues in first-seen order."""
    return list(dict.fromkeys(issues))


def parse_vote_response(response: str, model: str, major_ceiling: int = 3) -> VoteDetail:
    """Parse one voter's reply into a ``VoteDetail``.

    A voter that reports a CRITICAL critique, or at least ``major_ceiling``
    MAJOR ones, votes ``critique_wins`` whatever it claimed. Unparseable
    replies count as ``synthesis_wins`` with no critiques.
    """
    parsed = parse_structured(response, {})
    if not parsed.ok:
        return VoteDetail(model=model, vote=VoteOutcome.SYNTHESIS_WINS, reasoning=PARSE_FAILED_REASONING)
    data = parsed.value

    critiques: list[CategorizedCritique] = []
    raw = data.get("critiques")
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, dict) and isinstance(item.get("issue"), str) and item["issue"].strip():
            critiques.append(
                CategorizedCritique(
                    category=normalize_category(item.get("category") or item.get("type")),
                    section=normalize_section_id(item.get("section")),
                    issue=item["issue"].strip(),
                )
            )

    legacy = data.get("critical_gaps")
    for gap in legacy if isinstance(legacy, list) else []:
        if isinstance(gap, str) and gap.strip():
            critiques.append(
                CategorizedCritique(category=CritiqueCategory.CRITICAL, issue=gap.strip())
            )

    # A voter repeating itself must not inflate its own counts
    critiques = list(dict.fromkeys(critiques))

    detail = VoteDetail(
        model=model,
        vote=VoteOutcome.SYNTHESIS_WINS,
        reasoning=str(data.get("reasoning") or "No reasoning provided"),
        critiques=critiques,
    )
    if detail.critical_count > 0 or detail.major_count >= major_ceiling:
        vote = VoteOutcome.CRITIQUE_WINS
    elif data.get("vote") == VoteOutcome.CRITIQUE_WINS.value:
        vote = VoteOutcome.CRITIQUE_WINS
    else:
        vote = VoteOutcome.SYNTHESIS_WINS
    return detail.model_copy(update={"vote": vote})


# =============================================================================
# Aggregation
# =============================================================================


def _failing_sections(
    failing: list[CategorizedCritique], pipeline: PipelineConfig
) -> list[str]:
    sections = dedupe_issues(c.section for c in failing)
    targeted = [s for s in sections if s != GLOBAL_SECTION]
    thin_spread = (
        len(targeted) >= pipeline.global_spread_threshold
        and len(failing) / len(targeted) <= pipeline.global_spread_max_per_section
    )
    if GLOBAL_SECTION in sections or thin_spread:
        return [*targeted, GLOBAL_SECTION]
    return targeted


def aggregate_votes(
    votes: list[VoteDetail], pipeline: Optional[PipelineConfig] = None
) -> SufficiencyVerdict:
    """Combine voter details into a verdict. Pure function.

    Args:
        votes: Parsed votes (failed voters already excluded)
        pipeline: Thresholds; defaults to ``PipelineConfig()``

    Returns:
        SufficiencyVerdict; passing with empty details when ``votes`` is empty
    """
    if not votes:
        return SufficiencyVerdict.passing()
    pipeline = pipeline or PipelineConfig()

    unique: list[CategorizedCritique] = []
    seen_issues: set[tuple[CritiqueCategory, str]] = set()
    for vote in votes:
        for critique in vote.critiques:
            key = (critique.category, critique.issue)
            if key not in seen_issues:
                seen_issues.add(key)
                unique.append(critique)

    def issues(category: CritiqueCategory) -> list[str]:
        return dedupe_issues(c.issue for c in unique if c.category == category)

    critical = issues(CritiqueCategory.CRITICAL)
    major = issues(CritiqueCategory.MAJOR)
    median_major = float(statistics.median(v.major_count for v in votes))

    has_critical = bool(critical)
    too_many_major = not has_critical and median_major >= pipeline.major_ceiling

    if has_critical:
        gaps = critical
        failing = [c for c in unique if c.category == CritiqueCategory.CRITICAL]
    elif too_many_major:
        gaps = major[:MAX_MAJOR_GAPS]
        failing = [c for c in unique if c.category == CritiqueCategory.MAJOR]
    else:
        gaps = []
        failing = []

    verdict = SufficiencyVerdict(
        sufficient=not (has_critical or too_many_major),
        critical_gaps=gaps,
        stylistic_preferences=dedupe_issues(
            issues(CritiqueCategory.MINOR) + issues(CritiqueCategory.PEDANTIC)
        ),
        failing_sections=_failing_sections(failing, pipeline) if failing else [],
        details=list(votes),
        votes_for=sum(1 for v in votes if v.vote == VoteOutcome.SYNTHESIS_WINS),
        votes_against=sum(1 for v in votes if v.vote == VoteOutcome.CRITIQUE_WINS),
        median_major=median_major,
    )
    logger.info(
        "Vote: %d synthesis_wins, %d critique_wins, %d critical, median major %.1f -> %s",
        verdict.votes_for,
        verdict.votes_against,
        len(critical),
        median_major,
        "sufficient" if verdict.sufficient else "insufficient",
    )
    return verdict


# =============================================================================
# Prompts
# =============================================================================


def build_vote_prompt(
    query: str,
    synthesis_text: str,
    challenge: ChallengeResult,
    *,
    section_ids: Iterable[str] = (OVERVIEW_SECTION,),
    manifest: Optional[GlobalManifest] = None,
    context: Optional[ChallengeContext] = None,
) -> str:
    if challenge.critiques:
        critique_points = "\n".join(
            f"{i}. ({c.section}) {c.issue}" for i, c in enumerate(challenge.critiques, 1)
        )
    else:
        critique_points = challenge.raw_response

    source_lines = []
    if context is not None and context.web_sources:
        source_lines.append(f"- {len(context.web_sources)} web sources available from web search")
    if context is not None and context.arxiv_papers:
        ids = ", ".join(f"[arxiv:{p.id}]" for p in context.arxiv_papers)
        source_lines.append(f"- {len(context.arxiv_papers)} arXiv papers available: {ids}")

    grounding = ""
    if manifest is not None and manifest.key_facts:
        facts = "\n".join(f"- {f}" for f in manifest.key_facts)
        grounding = (
            "**GROUNDING CONTEXT (source of truth from web search/papers):**\n"
            f"{facts}\n\n"
            f"IMPORTANT: The facts above are from live web searches and academic papers "
            f"({date.today().isoformat()}).\n"
            "Your training data may be outdated. Trust the provided context over your "
            "parametric knowledge.\n\n---\n\n"
        )

    preview = synthesis_text[:SYNTHESIS_PREVIEW_CHARS]
    if len(synthesis_text) > SYNTHESIS_PREVIEW_CHARS:
        preview += "..."
    valid_ids = ", ".join([*section_ids, GLOBAL_SECTION])
    sources = "\n".join(source_lines)

    return f"""You are evaluating a RESEARCH REPORT (not production code).

**CONTEXT**: This is exploratory research with illustrative code examples.
Research reports are NOT expected to be production-ready deployments.

**VALID CITATION FORMATS (NOT hallucinations):**
- [perplexity:N] - References to web search results (e.g., [perplexity:1], [perplexity:2])
- [arxiv:ID] - References to academic papers (e.g., [arxiv:2401.12345])
- [context7:library] - References to library documentation

These are LEGITIMATE citation formats used in this research system. Do NOT flag them as hallucinations.
{sources}

---

{grounding}ORIGINAL QUERY:
{query}

SYNTHESIS (first {SYNTHESIS_PREVIEW_CHARS} chars):
{preview}

CRITIQUE POINTS:
{critique_points}

---

**4-TIER TAXONOMY**

THE KEY TEST: Does the incompleteness **block the user from understanding or acting** on the research?

**PEDANTIC** (supporting details - omission does NOT block action):
- Code not production-ready (illustrative code demonstrates concepts)
- Mock implementations, placeholder API keys
- Suggestions for "more robust" code

**MINOR** (supporting details - omission does NOT block action):
- Missing optional examples when concept is clear
- Could use more detail, but user can still act
- Minor inconsistencies that don't change conclusions

**MAJOR** (essential elements - omission BLOCKS understanding or action):
- Core query not answered or partially addressed
- Missing essential information that prevents user from acting
- Contradictory recommendations without acknowledgment
- Promised section completely absent

**CRITICAL** (factually wrong - rare):
- Factual errors contradicting cited sources
- Hallucinated citations (invalid formats)
- Dangerous/harmful recommendations

---

**VOTING RULES**:
- 1+ CRITICAL -> "critique_wins"
- 3+ MAJOR (and 0 CRITICAL) -> "critique_wins"
- Otherwise -> "synthesis_wins"

ASK: "Can the user understand and act on this research despite this gap?"
- YES -> MINOR or PEDANTIC
- NO -> MAJOR

Every critique names the section it applies to: one of {valid_ids}
("global" means the problem spans the whole document).

Return JSON only:
{{
  "vote": "synthesis_wins" or "critique_wins",
  "reasoning": "One sentence",
  "counts": {{ "critical": 0, "major": 1, "minor": 1, "pedantic": 1 }},
  "critiques": [
    {{"category": "PEDANTIC", "section": "q2", "issue": "Uses a mock client for illustration"}},
    {{"category": "MINOR", "section": "overview", "issue": "Missing specific time estimate"}},
    {{"category": "MAJOR", "section": "q1", "issue": "Undefined success criteria for dataset quality"}}
  ]
}}

Categorize ALL critiques. Focus on impact, not perfection."""


def build_consensus_prompt(query: str, execution: ExecutionResult) -> str:
    if execution.papers:
        papers = "\n\n".join(
            f"{i}. **{p.title}** (arXiv:{p.id})\n   {p.summary}"
            for i, p in enumerate(execution.papers, 1)
        )
    else:
        papers = "No papers found"
    web = execution.web_content[:2500] or "No web results"
    if execution.web_sources:
        web += "\n\n**Web Sources:**\n" + "\n".join(
            f"{i}. {s}" for i, s in enumerate(execution.web_sources, 1)
        )
    docs = (
        f"**Library Documentation (Context7):**\n{execution.library_docs[:2000]}"
        if execution.library_docs
        else "No library documentation"
    )
    analysis = (execution.deep_analysis or "")[:2000] or "No deep analysis"

    return f"""Evaluate research findings for: "{query}"

**RESEARCH DATA GATHERED:**

**Web Search Results:**
{web}

**Academic Papers (arXiv):**
{papers}

{docs}

**Deep Analysis:**
{analysis}

---

**YOUR TASK:**

Evaluate the QUALITY and RELIABILITY of these research findings:

1. **Internal Consistency**: Do the different sources (web, papers, docs, analysis) agree or contradict?
2. **Evidence Quality**: Are claims backed by verifiable sources?
3. **Completeness**: Are there gaps in evidence or missing perspectives?
4. **Reliability**: Can these findings be trusted? Are sources authoritative?
5. **Actionability**: Is there enough concrete information to act on?

**IMPORTANT:**
- Evaluate based on what's PROVIDED, not what you think should exist
- If arXiv papers are irrelevant to the query, point that out explicitly
- If sources are missing or unclear, note that

Provide a 2-3 paragraph consensus evaluation focusing on reliability and actionability."""


def build_consensus_merge_prompt(query: str, evaluations: list[tuple[str, str]]) -> str:
    joined = "\n\n".join(f"**{model}:**\n{text}" for model, text in evaluations)
    return f"""Several reviewers independently evaluated the research gathered for: "{query}"

{joined}

---

Write a 2-3 paragraph consensus evaluation. State where the reviewers agree, call out any disagreement explicitly, and end with an overall judgement of reliability and actionability."""


# =============================================================================
# Voter
# =============================================================================


class SufficiencyVoter(ResearchStageBase):
    """Polls every voting model concurrently and aggregates the votes."""

    stage_name = "Vote"

    async def vote(
        self,
        query: str,
        synthesis_text: str,
        challenge: Optional[ChallengeResult],
        *,
        section_ids: Iterable[str] = (OVERVIEW_SECTION,),
        manifest: Optional[GlobalManifest] = None,
        context: Optional[ChallengeContext] = None,
    ) -> SufficiencyVerdict:
        """Vote on whether the synthesis survives the critique.

        Skipped (passing verdict) when the challenge found no significant
        gaps. With no voters or no usable replies the verdict also passes.
        """
        if challenge is None or not challenge.has_significant_gaps:
            logger.info("Vote: no significant critique, synthesis wins by default")
            return SufficiencyVerdict.passing()

        configs = self.llm.get_voting_configs()
        if not configs:
            logger.warning("Vote: no voting models configured, assuming synthesis wins")
            return SufficiencyVerdict.passing()

        prompt = build_vote_prompt(
            query,
            synthesis_text,
            challenge,
            section_ids=section_ids,
            manifest=manifest,
            context=context,
        )
        logger.info("Vote: polling %d voters", len(configs))
        self.counters.vote_rounds += 1
        self.counters.llm_calls += len(configs)
        responses = await self.llm.generate_many(prompt, configs)

        ceiling = self.config.pipeline.major_ceiling
        votes = [
            parse_vote_response(response.text, response.model or cfg.model, ceiling)
            for cfg, response in zip(configs, responses)
            if response.success and response.text
        ]
        if not votes:
            logger.warning("Vote: all votes failed, assuming synthesis wins")
        return aggregate_votes(votes, self.config.pipeline)


class ConsensusValidator(ResearchStageBase):
    """Multi-model evaluation of the gathered evidence (depth 4)."""

    stage_name = "Consensus"

    async def evaluate(self, query: str, execution: ExecutionResult) -> Optional[ConsensusResult]:
        configs = self.llm.get_voting_configs()
        if not configs:
            return None

        logger.info("Consensus: evaluating evidence with %d models", len(configs))
        self.counters.llm_calls += len(configs)
        responses = await self.llm.generate_many(build_consensus_prompt(query, execution), configs)
        evaluations = [
            (response.model or cfg.model, extract_content(response.text))
            for cfg, response in zip(configs, responses)
            if response.success and response.text.strip()
        ]
        if not evaluations:
            logger.warning("Consensus: no model produced an evaluation")
            return None

        models = [model for model, _ in evaluations]
        if len(evaluations) == 1:
            return ConsensusResult(content=evaluations[0][1], models=models)

        merged = await self._generate(
            build_consensus_merge_prompt(query, evaluations),
            self.config.synthesis_model,
            timeout=60.0,
        )
        if merged.success and merged.text.strip():
            return ConsensusResult(content=extract_content(merged.text), models=models)
        return ConsensusResult(content=evaluations[0][1], models=models)


async def run_consensus_validation(
    config: ResearchConfig,
    llm: LLMClient,
    query: str,
    execution: ExecutionResult,
    counters: Optional[RunCounters] = None,
) -> Optional[ConsensusResult]:
    """Depth-4 consensus evaluation; None when no model answered."""
    return await ConsensusValidator(config, llm, counters).evaluate(query, execution)
