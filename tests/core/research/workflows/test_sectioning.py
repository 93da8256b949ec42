"""Tests for section summaries and condensed views."""

from unittest.mock import AsyncMock

import pytest

from research_synth.core.research.models.enums import ConfidenceLevel
from research_synth.core.research.models.output import ExecutiveSummary, Section
from research_synth.core.research.workflows.sectioning import (
    build_section_index,
    extract_first_words,
    format_condensed_view,
    format_section_title,
    format_section_view,
    generate_section_summaries,
    normalize_section_id,
)

SECTIONS = {
    "overview": Section(id="overview", title="Overview", content="## Heading\nUse Redis for sessions."),
    "q1": Section(id="q1", title="How does Redis persist data?", content="RDB and AOF."),
}


@pytest.mark.parametrize(
    "title,expected",
    [
        ("Key Findings", "key_findings"),
        ("  Cost & Pricing!  ", "cost_pricing"),
        ("Overview", "overview"),
    ],
)
def test_normalize_section_id(title, expected):
    assert normalize_section_id(title) == expected


@pytest.mark.parametrize(
    "section_id,expected",
    [("q1", "Question 1"), ("q12", "Question 12"), ("additional_insights", "Additional Insights")],
)
def test_format_section_title(section_id, expected):
    assert format_section_title(section_id) == expected


def test_extract_first_words_strips_headers_and_truncates():
    assert extract_first_words("# Title\none two three four", 3) == "Title one two..."
    assert extract_first_words("one two", 5) == "one two"


class TestGenerateSummaries:
    """Tests for per-section summaries."""

    @pytest.mark.asyncio
    async def test_summaries_from_provider(self, mock_llm):
        mock_llm.compress_text = AsyncMock(side_effect=lambda text, words: f"short: {text[:5]}")

        summarized = await generate_section_summaries(SECTIONS, mock_llm)

        assert list(summarized) == ["overview", "q1"]
        assert summarized["q1"].summary == "short: RDB a"
        assert SECTIONS["q1"].summary == ""

    @pytest.mark.asyncio
    async def test_failed_summary_uses_leading_words(self, mock_llm):
        mock_llm.compress_text = AsyncMock(side_effect=RuntimeError("rate limited"))

        summarized = await generate_section_summaries(SECTIONS, mock_llm)

        assert summarized["overview"].summary == "Heading Use Redis for sessions."

    @pytest.mark.asyncio
    async def test_no_provider_uses_leading_words(self, unconfigured_llm):
        summarized = await generate_section_summaries(SECTIONS, unconfigured_llm)
        assert summarized["q1"].summary == "RDB and AOF."
        unconfigured_llm.compress_text.assert_not_called()


def test_section_index():
    assert build_section_index(SECTIONS) == [
        "**overview** - Overview",
        "**q1** - How does Redis persist data?",
    ]


def test_condensed_view():
    summary = ExecutiveSummary(
        query_answered=True,
        confidence=ConfidenceLevel.HIGH,
        key_recommendation="Use Redis.",
        budget_feasibility="Realistic based on constraints",
    )
    sections = {sid: s.model_copy(update={"summary": "sum"}) for sid, s in SECTIONS.items()}

    view = format_condensed_view("r-1", "Which cache?", summary, sections)

    assert view.startswith("# Research Report r-1")
    assert "**Query Answered:** Yes (High Confidence)" in view
    assert "**Budget Feasibility:** Realistic based on constraints" in view
    assert "### 2. How does Redis persist data?" in view
    assert "- **Citation:** `r-1:q1`" in view
    assert view.count("- **Summary:** sum") == 2


def test_section_view():
    view = format_section_view("r-1", "q1", SECTIONS["q1"])
    assert view.splitlines()[0] == "# How does Redis persist data?"
    assert "**Section:** q1" in view
    assert view.endswith("RDB and AOF.")
