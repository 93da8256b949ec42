"""Tests for depth-gated execution.

Tests cover:
1. DEPTH_GATES monotonicity and step filtering
2. Capability detection from free-form step names
3. Executor gating: which providers run at which depth
4. Failure isolation in Phase 1 and deep analysis in Phase 2
5. Sub-question docs and paper summarization
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from research_synth.core.errors.search import SearchProviderError
from research_synth.core.research.models.enums import ToolName
from research_synth.core.research.models.execution import (
    ArxivPaper,
    ArxivResult,
    ExecutionContext,
    WebResult,
)
from research_synth.core.research.models.plan import ActionPlan, PlanningOptions
from research_synth.core.research.workflows.execution import (
    DEPTH_GATES,
    DepthGatedExecutor,
    capability_for_step,
    enabled_capabilities,
    filter_steps_for_depth,
    is_capability_enabled,
    widen_steps_for_depth,
)
from tests.helpers import completion

ALL_STEPS = [
    ToolName.WEB_SEARCH.value,
    ToolName.DEEP_ANALYSIS.value,
    ToolName.LIBRARY_DOCS.value,
    ToolName.ARXIV_SEARCH.value,
    ToolName.CONSENSUS.value,
]


def make_web(content="Web answer [1].", sources=("https://example.com/a",)):
    web = MagicMock()
    web.search = AsyncMock(return_value=WebResult(content=content, sources=list(sources)))
    return web


def make_papers(papers=None):
    provider = MagicMock()
    provider.search = AsyncMock(
        return_value=ArxivResult(query="q", papers=papers or [], total_results=len(papers or []))
    )
    return provider


def make_docs(text="Redis docs: use SET with EX."):
    docs = MagicMock()
    docs.is_available = True
    docs.search_library_docs = AsyncMock(return_value=text)
    return docs


def context(depth, steps=None, **options):
    return ExecutionContext(
        query="Which cache should I use?",
        depth=depth,
        plan=ActionPlan(complexity=depth, steps=ALL_STEPS if steps is None else steps),
        options=PlanningOptions(**options),
    )


# =============================================================================
# Depth gating
# =============================================================================


class TestDepthGates:
    """Tests for the capability table."""

    def test_gate_levels(self):
        assert DEPTH_GATES[ToolName.WEB_SEARCH] == 1
        assert DEPTH_GATES[ToolName.DEEP_ANALYSIS] == 2
        assert DEPTH_GATES[ToolName.LIBRARY_DOCS] == 3
        assert DEPTH_GATES[ToolName.ARXIV_SEARCH] == 4
        assert DEPTH_GATES[ToolName.CONSENSUS] == 4

    @pytest.mark.parametrize("depth", [1, 2, 3])
    def test_capabilities_monotone(self, depth):
        """Raising depth never removes a capability."""
        assert enabled_capabilities(depth) <= enabled_capabilities(depth + 1)

    def test_depth_one_is_web_only(self):
        assert enabled_capabilities(1) == {ToolName.WEB_SEARCH}

    def test_depth_four_enables_everything(self):
        assert enabled_capabilities(4) == set(DEPTH_GATES)

    @pytest.mark.parametrize(
        "step,expected",
        [
            ("perplexity_search", ToolName.WEB_SEARCH),
            ("deep_thinking", ToolName.DEEP_ANALYSIS),
            ("context7_docs", ToolName.LIBRARY_DOCS),
            ("paper_search", ToolName.ARXIV_SEARCH),
            ("consensus", ToolName.CONSENSUS),
            ("challenge", None),
        ],
    )
    def test_capability_for_step(self, step, expected):
        assert capability_for_step(step) == expected

    def test_filter_keeps_order_and_ungated_steps(self):
        steps = ALL_STEPS + ["challenge", ToolName.WEB_SEARCH.value]
        assert filter_steps_for_depth(steps, 2) == [
            ToolName.WEB_SEARCH.value,
            ToolName.DEEP_ANALYSIS.value,
            "challenge",
        ]

    def test_widen_adds_tools_unlocked_by_deeper_run(self):
        steps = [ToolName.WEB_SEARCH.value, ToolName.DEEP_ANALYSIS.value]
        assert widen_steps_for_depth(steps, 2, 4) == ALL_STEPS
        assert widen_steps_for_depth(steps, 2, 2) == steps
        assert steps == [ToolName.WEB_SEARCH.value, ToolName.DEEP_ANALYSIS.value]

    def test_widen_skips_tools_already_planned(self):
        widened = widen_steps_for_depth(["perplexity", "arxiv"], 1, 4)
        assert widened.count(ToolName.ARXIV_SEARCH.value) == 0
        assert widened[:2] == ["perplexity", "arxiv"]
        assert ToolName.CONSENSUS.value in widened

    def test_capability_needs_plan_step(self):
        """A permitted capability still requires a matching plan step."""
        assert not is_capability_enabled(["perplexity_search"], 4, ToolName.ARXIV_SEARCH)
        assert is_capability_enabled(["arxiv_search"], 4, ToolName.ARXIV_SEARCH)
        assert not is_capability_enabled(["arxiv_search"], 3, ToolName.ARXIV_SEARCH)


# =============================================================================
# Executor
# =============================================================================


class TestDepthGatedExecutor:
    """Tests for evidence gathering."""

    @pytest.mark.asyncio
    async def test_depth_one_runs_web_only(self, research_config, mock_llm):
        web, papers, docs = make_web(), make_papers(), make_docs()
        executor = DepthGatedExecutor(research_config, mock_llm, web=web, papers=papers, docs=docs)

        result = await executor.execute(context(1, tech_stack=["redis"]))

        web.search.assert_awaited_once()
        papers.search.assert_not_called()
        docs.search_library_docs.assert_not_called()
        mock_llm.generate.assert_not_called()
        assert result.web_content == "Web answer [1]."
        assert result.deep_analysis is None

    @pytest.mark.asyncio
    async def test_depth_two_adds_deep_analysis(self, research_config, mock_llm):
        mock_llm.generate = AsyncMock(return_value=completion("Deep insight."))
        executor = DepthGatedExecutor(research_config, mock_llm, web=make_web())

        result = await executor.execute(context(2))

        assert result.deep_analysis == "Deep insight."
        prompt = mock_llm.generate.call_args.args[0]
        assert "Web answer [1]." in prompt

    @pytest.mark.asyncio
    async def test_depth_three_fetches_docs_per_library(self, research_config, mock_llm):
        docs = make_docs()
        executor = DepthGatedExecutor(research_config, mock_llm, web=make_web(), docs=docs)

        result = await executor.execute(context(3, tech_stack=["redis", "fastapi"]))

        assert docs.search_library_docs.await_count == 2
        assert set(result.doc_cache.base) == {"redis", "fastapi"}
        assert "Redis docs" in result.library_docs

    @pytest.mark.asyncio
    async def test_missing_library_not_cached(self, research_config, mock_llm):
        docs = make_docs(text="Could not find library: nosuchlib")
        executor = DepthGatedExecutor(research_config, mock_llm, web=make_web(), docs=docs)

        result = await executor.execute(context(3, tech_stack=["nosuchlib"]))

        assert result.doc_cache.is_empty
        assert result.library_docs is None

    @pytest.mark.asyncio
    async def test_depth_four_summarizes_papers(self, research_config, mock_llm):
        paper = ArxivPaper(id="2401.00001v1", title="Caching", summary="Long abstract " * 50)
        mock_llm.generate = AsyncMock(return_value=completion("x" * 400))
        executor = DepthGatedExecutor(
            research_config, mock_llm, web=make_web(), papers=make_papers([paper])
        )

        result = await executor.execute(context(4))

        summary = result.papers[0].summary
        assert len(summary) == 300
        assert summary.endswith("...")

    @pytest.mark.asyncio
    async def test_skipped_tool_not_run(self, research_config, mock_llm):
        papers = make_papers()
        executor = DepthGatedExecutor(research_config, mock_llm, web=make_web(), papers=papers)
        ctx = context(4)
        ctx.plan.tools_to_skip.append(ToolName.ARXIV_SEARCH.value)

        await executor.execute(ctx)

        papers.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_task_leaves_slot_empty(self, research_config, mock_llm):
        """A provider error in one Phase 1 task does not stop the others."""
        web = MagicMock()
        web.search = AsyncMock(side_effect=SearchProviderError("perplexity", "rate limited"))
        papers = MagicMock()
        papers.search = AsyncMock(side_effect=RuntimeError("boom"))
        docs = make_docs()
        executor = DepthGatedExecutor(
            research_config, mock_llm, web=web, papers=papers, docs=docs
        )

        result = await executor.execute(context(4, tech_stack=["redis"]))

        assert result.web_result is None
        assert result.academic_papers is None
        assert "redis" in result.doc_cache.base

    @pytest.mark.asyncio
    async def test_sub_questions_searched_with_targeted_docs(self, research_config, mock_llm):
        web = make_web()
        docs = make_docs()
        executor = DepthGatedExecutor(research_config, mock_llm, web=web, docs=docs)

        result = await executor.execute(
            context(
                3,
                tech_stack=["redis"],
                sub_questions=["How does Redis persist?", "What about cost?"],
            )
        )

        assert [s.question for s in result.sub_question_results] == [
            "How does Redis persist?",
            "What about cost?",
        ]
        assert result.sub_question_results[0].library_docs is not None
        assert result.sub_question_results[1].library_docs is None
        assert 0 in result.doc_cache.sub_question_specific
        # main query plus one search per sub-question
        assert web.search.await_count == 3

    @pytest.mark.asyncio
    async def test_search_papers_swallows_provider_errors(self, research_config, mock_llm):
        papers = MagicMock()
        papers.search = AsyncMock(side_effect=SearchProviderError("arxiv", "down"))
        executor = DepthGatedExecutor(research_config, mock_llm, papers=papers)

        assert await executor.search_papers("q") is None
