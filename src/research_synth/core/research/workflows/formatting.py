"""Output building: markdown report, sections and executive summary.

Everything here is pure; the pipeline hands in the finished run state and
gets strings and models back.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from research_synth.core.research.models.enums import ConfidenceLevel, VoteOutcome
from research_synth.core.research.models.execution import ArxivPaper, ExecutionResult
from research_synth.core.research.models.output import ExecutiveSummary, ResearchResult, Section
from research_synth.core.research.models.synthesis import SynthesisOutput
from research_synth.core.research.models.validation import (
    ChallengeResult,
    ConsensusResult,
    SufficiencyVerdict,
)
from research_synth.core.research.providers.shared import extract_domain

_CITATION_RE = re.compile(r"\[perplexity:(\d+)\]")
_SENTENCE_BREAK_RE = re.compile(r"[.!?]+")

WAIT_SECONDS_BY_DEPTH = (20, 40, 80, 180)
KEY_RECOMMENDATION_CHARS = 200
NO_RECOMMENDATION = "See full report for recommendations."


# =============================================================================
# Citations
# =============================================================================


def resolve_citations(text: str, sources: list[str]) -> str:
    """Replace ``[perplexity:N]`` with ``[[domain]](url)``.

    Citations without a matching source are left as they are.
    """

    def _replace(match: re.Match[str]) -> str:
        index = int(match.group(1)) - 1
        if not 0 <= index < len(sources):
            return match.group(0)
        url = sources[index]
        domain = extract_domain(url) or "source"
        if domain.startswith("www."):
            domain = domain[4:]
        return f"[[{domain}]]({url})"

    return _CITATION_RE.sub(_replace, text)


# =============================================================================
# Validation content
# =============================================================================


def build_validation_content(
    complexity: int,
    challenge: Optional[ChallengeResult] = None,
    verdict: Optional[SufficiencyVerdict] = None,
    *,
    improved: bool = False,
    consensus: Optional[ConsensusResult] = None,
    include_consensus: bool = False,
) -> Optional[str]:
    """Markdown for the Validation section.

    Returns None at depth 1, or when there is neither a challenge nor a verdict.
    """
    if complexity < 2 or (challenge is None and verdict is None):
        return None

    parts: list[str] = []
    if challenge is not None:
        parts.append("### Critical Challenge\n")
        if challenge.has_significant_gaps and challenge.critiques:
            parts.extend(
                f"{i}. ({c.section}) {c.issue}" for i, c in enumerate(challenge.critiques, 1)
            )
        else:
            parts.append("No significant gaps found in the synthesis.")
        parts.append("")

    if verdict is not None:
        parts.append("### Quality Vote\n")
        parts.append(
            f"**Result**: {verdict.votes_for} synthesis_wins, {verdict.votes_against} critique_wins"
        )
        if improved:
            parts.append("**Status**: Synthesis improved after critique identified gaps\n")
        elif verdict.sufficient:
            parts.append("**Status**: Synthesis validated (addresses the query adequately)\n")
        else:
            parts.append("**Status**: Critique identified gaps (see below)\n")

        if verdict.critical_gaps:
            parts.append("**Critical Gaps Identified**:")
            parts.extend(f"- {gap}" for gap in verdict.critical_gaps)
            parts.append("")

        parts.append("**Model Reasoning**:")
        for detail in verdict.details:
            status = "PASS" if detail.vote == VoteOutcome.SYNTHESIS_WINS else "FAIL"
            parts.append(f"- {status} **{detail.model}**: {detail.reasoning}")
        parts.append("")

    if include_consensus and consensus is not None and consensus.content:
        parts.append("### Multi-Model Consensus\n")
        parts.append(consensus.content)
        parts.append("")

    return "\n".join(parts)


# =============================================================================
# Markdown
# =============================================================================


def format_papers_compact(papers: list[ArxivPaper]) -> str:
    if not papers:
        return "No papers found."
    return "\n\n".join(
        f"**{i}. {p.title}**\n- arXiv ID: {p.id}\n- Summary: {p.summary}\n- URL: {p.url}"
        for i, p in enumerate(papers, 1)
    )


def format_markdown(result: ResearchResult, complexity: int) -> str:
    """Render a finished run as a markdown report."""
    sources = result.execution.web_sources
    synthesis = result.synthesis
    parts = [f"# Research Results: {result.query}\n", "## Overview\n"]
    parts.append(resolve_citations(synthesis.overview, sources))
    parts.append("")

    for entry in synthesis.sub_questions.values():
        parts.append(f"## {entry.question}\n")
        parts.append(resolve_citations(entry.answer, sources))
        parts.append("")

    if synthesis.additional_insights and synthesis.additional_insights.strip():
        parts.append("## Additional Insights\n")
        parts.append(resolve_citations(synthesis.additional_insights, sources))
        parts.append("")

    if result.execution.papers:
        parts.append("## Academic Papers\n")
        parts.append(format_papers_compact(result.execution.papers))
        parts.append("")

    if sources:
        parts.append("## Sources\n")
        parts.extend(f"{i}. {source}" for i, source in enumerate(sources, 1))
        parts.append("")

    validation = build_validation_content(
        complexity,
        result.challenge,
        result.verdict,
        improved=result.improved,
        consensus=result.consensus,
        include_consensus=True,
    )
    if validation:
        parts.append("## Validation\n")
        parts.append(validation)

    return "\n".join(parts)


# =============================================================================
# Sections
# =============================================================================


def build_sections_from_result(
    synthesis: SynthesisOutput,
    complexity: int,
    *,
    challenge: Optional[ChallengeResult] = None,
    verdict: Optional[SufficiencyVerdict] = None,
    consensus: Optional[ConsensusResult] = None,
    improved: bool = False,
) -> dict[str, Section]:
    """Sections keyed by id, in report order, with empty summaries."""
    sections = {"overview": Section(id="overview", title="Overview", content=synthesis.overview)}
    for section_id, entry in synthesis.sub_questions.items():
        sections[section_id] = Section(id=section_id, title=entry.question, content=entry.answer)
    if synthesis.additional_insights and synthesis.additional_insights.strip():
        sections["additional_insights"] = Section(
            id="additional_insights",
            title="Additional Insights",
            content=synthesis.additional_insights,
        )

    validation = build_validation_content(complexity, challenge, verdict, improved=improved)
    if validation:
        sections["validation"] = Section(id="validation", title="Validation", content=validation)
    if consensus is not None and consensus.content:
        sections["consensus"] = Section(
            id="consensus", title="Multi-Model Consensus", content=consensus.content
        )
    return sections


# =============================================================================
# Executive summary
# =============================================================================


def determine_confidence(complexity: int, verdict: Optional[SufficiencyVerdict]) -> ConfidenceLevel:
    if verdict is not None and not verdict.sufficient:
        return ConfidenceLevel.LOW
    if complexity >= 4 and verdict is not None and verdict.votes_for >= 2:
        return ConfidenceLevel.HIGH
    return ConfidenceLevel.MEDIUM


def extract_key_recommendation(overview: str) -> str:
    """First two substantial sentences of the overview, capped at 200 chars."""
    sentences = [s.strip() for s in _SENTENCE_BREAK_RE.split(overview)]
    sentences = [s for s in sentences if len(s) > 20]
    if not sentences:
        return NO_RECOMMENDATION
    recommendation = ". ".join(sentences[:2]) + "."
    if len(recommendation) > KEY_RECOMMENDATION_CHARS:
        return recommendation[: KEY_RECOMMENDATION_CHARS - 3] + "..."
    return recommendation


def extract_budget_feasibility(enriched_context: Optional[str], overview: str) -> Optional[str]:
    """Feasibility note when the context mentions time or budget limits."""
    if not enriched_context:
        return None
    context = enriched_context.lower()
    if not any(word in context for word in ("hours", "budget", "time")):
        return None
    text = overview.lower()
    if "realistic" in text or "feasible" in text:
        return "Realistic based on constraints"
    if "challenging" in text or "ambitious" in text:
        return "Challenging but achievable"
    return None


def build_executive_summary(
    synthesis: SynthesisOutput,
    complexity: int,
    verdict: Optional[SufficiencyVerdict],
    enriched_context: Optional[str],
    section_ids: list[str],
) -> ExecutiveSummary:
    return ExecutiveSummary(
        query_answered=verdict.sufficient if verdict is not None else True,
        confidence=determine_confidence(complexity, verdict),
        key_recommendation=extract_key_recommendation(synthesis.overview),
        budget_feasibility=extract_budget_feasibility(enriched_context, synthesis.overview),
        available_sections=section_ids,
    )


# =============================================================================
# Caller helpers
# =============================================================================


def estimate_wait_seconds(depth: int) -> int:
    """Typical run duration for a depth level (1-4)."""
    return WAIT_SECONDS_BY_DEPTH[max(1, min(depth, 4)) - 1]


def generate_report_filename(query: str, now: Optional[datetime] = None) -> str:
    """``research-YYYY-MM-DD-HHMMSS-<slug>-<suffix>.md`` for persisting a report."""
    now = now or datetime.now(timezone.utc)
    slug = re.sub(r"[^a-z0-9]+", "-", query.lower()[:80]).strip("-")
    suffix = uuid.uuid4().hex[:6]
    return f"research-{now:%Y-%m-%d}-{now:%H%M%S}-{slug}-{suffix}.md"


def _bullets(items: list[str]) -> str:
    return "\n- ".join(items)


def build_enriched_context(
    *,
    project_description: Optional[str] = None,
    current_state: Optional[str] = None,
    problem_statement: Optional[str] = None,
    constraints: Optional[list[str]] = None,
    domain: Optional[str] = None,
    date_range: Optional[str] = None,
    papers_read: Optional[list[str]] = None,
    key_findings: Optional[list[str]] = None,
    rejected_approaches: Optional[list[str]] = None,
    output_format: Optional[str] = None,
    include_code_examples: Optional[bool] = None,
    sub_questions: Optional[list[str]] = None,
    tech_stack: Optional[list[str]] = None,
    existing_data_samples: Optional[str] = None,
    target_metrics: Optional[list[str]] = None,
) -> str:
    """Render structured project fields as the enriched-context string."""
    parts: list[str] = []
    if project_description:
        parts.append(f"**Project:** {project_description}")
    if current_state:
        parts.append(f"**Current State:** {current_state}")
    if problem_statement:
        parts.append(f"**Problem:** {problem_statement}")
    if domain:
        parts.append(f"**Domain:** {domain}")
    if constraints:
        parts.append(f"**Constraints:**\n- {_bullets(constraints)}")

    scope = []
    if date_range:
        scope.append(f"Date range: {date_range}")
    if output_format:
        scope.append(f"Output format: {output_format}")
    if include_code_examples is not None:
        scope.append(f"Include code: {'yes' if include_code_examples else 'no'}")
    if scope:
        parts.append(f"**Research Scope:** {', '.join(scope)}")

    if papers_read:
        parts.append(f"**Papers Already Reviewed (DO NOT re-summarize):**\n- {_bullets(papers_read)}")
    if key_findings:
        parts.append(f"**Known Findings (build on these):**\n- {_bullets(key_findings)}")
    if rejected_approaches:
        parts.append(f"**Rejected Approaches (do not recommend):**\n- {_bullets(rejected_approaches)}")
    if sub_questions:
        numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(sub_questions, 1))
        parts.append(f"**Specific Questions to Answer:**\n{numbered}")
    if tech_stack:
        parts.append(f"**Tech Stack:** {', '.join(tech_stack)}")
    if existing_data_samples:
        parts.append(f"**Data Samples:**\n{existing_data_samples}")
    if target_metrics:
        parts.append(f"**Target Metrics:** {', '.join(target_metrics)}")
    return "\n\n".join(parts)
