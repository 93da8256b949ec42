"""Section summaries and condensed report views.

Sections are built directly from the structured synthesis, so nothing
here parses markdown. Summaries are about 100 words each and feed the
condensed view that callers show before loading a full section.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.output import ExecutiveSummary, Section

logger = logging.getLogger(__name__)

SUMMARY_WORDS = 100

_HEADER_RE = re.compile(r"^#+\s+", re.MULTILINE)
_QUESTION_ID_RE = re.compile(r"^q(\d+)$")


def normalize_section_id(title: str) -> str:
    """``"Key Findings"`` -> ``"key_findings"``."""
    cleaned = re.sub(r"[^a-z0-9\s]", "", title.lower()).strip()
    return re.sub(r"\s+", "_", cleaned)


def extract_first_words(text: str, word_count: int = SUMMARY_WORDS) -> str:
    """First ``word_count`` words with markdown headers stripped."""
    words = _HEADER_RE.sub("", text).split()
    extracted = " ".join(words[:word_count])
    return extracted + ("..." if len(words) > word_count else "")


async def generate_section_summaries(
    sections: dict[str, Section], llm: Optional[LLMClient]
) -> dict[str, Section]:
    """Return copies of ``sections`` with ``summary`` filled in.

    Without a configured provider every summary is the leading words of
    its section.
    """
    if llm is None or not llm.is_configured:
        logger.info("Sectioning: no provider, using leading-word summaries")
        return {
            sid: s.model_copy(update={"summary": extract_first_words(s.content)})
            for sid, s in sections.items()
        }

    logger.info("Sectioning: generating summaries for %d sections", len(sections))

    async def summarize(section_id: str, section: Section) -> Section:
        try:
            summary = await llm.compress_text(section.content, SUMMARY_WORDS)
        except Exception as exc:
            logger.warning("Sectioning: summary for %s failed: %s", section_id, exc)
            summary = extract_first_words(section.content)
        return section.model_copy(update={"summary": summary})

    summarized = await asyncio.gather(*(summarize(sid, s) for sid, s in sections.items()))
    return dict(zip(sections.keys(), summarized))


def build_section_index(sections: dict[str, Section]) -> list[str]:
    return [f"**{sid}** - {section.title}" for sid, section in sections.items()]


def format_section_title(section_id: str) -> str:
    """``"q1"`` -> ``"Question 1"``, ``"additional_insights"`` -> ``"Additional Insights"``."""
    match = _QUESTION_ID_RE.match(section_id)
    if match:
        return f"Question {match.group(1)}"
    return " ".join(word.capitalize() for word in section_id.split("_"))


def format_condensed_view(
    report_id: str,
    query: str,
    summary: ExecutiveSummary,
    sections: dict[str, Section],
) -> str:
    """Executive summary plus an index of sections with their summaries."""
    parts = [
        f"# Research Report {report_id}\n",
        f"**Query:** {query}\n",
        "## Executive Summary\n",
        f"**Query Answered:** {'Yes' if summary.query_answered else 'No'} "
        f"({summary.confidence.value.capitalize()} Confidence)",
        f"**Key Recommendation:** {summary.key_recommendation}",
    ]
    if summary.budget_feasibility:
        parts.append(f"**Budget Feasibility:** {summary.budget_feasibility}")

    parts.append("")
    parts.append("## Available Sections\n")
    for index, (sid, section) in enumerate(sections.items(), 1):
        parts.append(f"### {index}. {section.title or format_section_title(sid)}")
        parts.append(f"- **ID:** `{sid}`")
        parts.append(f"- **Citation:** `{report_id}:{sid}`")
        if section.summary:
            parts.append(f"- **Summary:** {section.summary}")
        parts.append("")
    return "\n".join(parts)


def format_section_view(report_id: str, section_id: str, section: Section) -> str:
    return "\n".join(
        [
            f"# {section.title}\n",
            f"**Report:** {report_id}",
            f"**Section:** {section_id}\n",
            section.content,
        ]
    )
