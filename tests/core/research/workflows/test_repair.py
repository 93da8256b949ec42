"""Tests for the repair loop.

Tests cover:
1. is_improvement: only a strictly lower median MAJOR count is accepted
2. Regression guard: a worse re-vote restores the pre-repair pair
3. Targeted repair with differential re-challenge and critique merge
4. Full re-synthesis when the global sentinel is present
5. Gap-driven paper and docs gathering
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from research_synth.core.research.models.enums import CritiqueCategory, VoteOutcome
from research_synth.core.research.models.execution import ArxivPaper, ArxivResult
from research_synth.core.research.models.plan import PlanningOptions
from research_synth.core.research.models.synthesis import SynthesisOutput
from research_synth.core.research.models.validation import (
    CategorizedCritique,
    ChallengeCritique,
    ChallengeResult,
    DocumentState,
    SufficiencyVerdict,
    VoteDetail,
)
from research_synth.core.research.workflows.repair import (
    RepairContext,
    RepairLoop,
    build_section_repair_prompt,
    critiques_for_section,
    is_improvement,
    merge_challenges,
)
from tests.helpers import completion


def verdict(median_major=0.0, critical=(), major=(), sufficient=False, failing=()):
    critiques = [CategorizedCritique(category=CritiqueCategory.CRITICAL, section=s, issue=i) for s, i in critical]
    critiques += [CategorizedCritique(category=CritiqueCategory.MAJOR, section=s, issue=i) for s, i in major]
    return SufficiencyVerdict(
        sufficient=sufficient,
        critical_gaps=[i for _, i in critical] or [i for _, i in major],
        failing_sections=list(failing),
        details=[VoteDetail(model="m", vote=VoteOutcome.CRITIQUE_WINS, critiques=critiques)],
        median_major=median_major,
    )


FAILING_Q1 = verdict(
    median_major=3.0,
    major=[("q1", "No persistence trade-offs"), ("q1", "No numbers"), ("q1", "No sources")],
    failing=["q1"],
)

PREVIOUS_CHALLENGE = ChallengeResult(
    critiques=[
        ChallengeCritique(section="q1", issue="Persistence answer is vague"),
        ChallengeCritique(section="q2", issue="Cost lacks a source"),
    ],
    has_significant_gaps=True,
)


@pytest.fixture
def collaborators():
    synthesizer = MagicMock()
    synthesizer.resynthesize_with_gaps = AsyncMock()
    challenger = MagicMock()
    challenger.challenge = AsyncMock(return_value=ChallengeResult())
    challenger.challenge_sections = AsyncMock(return_value=ChallengeResult())
    voter = MagicMock()
    voter.vote = AsyncMock()
    return synthesizer, challenger, voter


@pytest.fixture
def loop(research_config, mock_llm, collaborators):
    synthesizer, challenger, voter = collaborators
    return RepairLoop(
        research_config, mock_llm, synthesizer=synthesizer, challenger=challenger, voter=voter
    )


@pytest.fixture
def repair_ctx(sample_execution):
    return RepairContext(query="Which cache?", execution=sample_execution)


# =============================================================================
# Pure helpers
# =============================================================================


class TestIsImprovement:
    """Tests for the regression guard's acceptance rule."""

    def test_lower_median_major_improves(self):
        assert is_improvement(verdict(median_major=3.0), verdict(median_major=1.0))

    def test_equal_median_major_is_not_improvement(self):
        assert not is_improvement(verdict(median_major=3.0), verdict(median_major=3.0))

    def test_higher_median_major_is_regression(self):
        assert not is_improvement(verdict(median_major=1.0), verdict(median_major=2.0))

    def test_fewer_critical_issues_alone_is_not_improvement(self):
        before = verdict(critical=[("q1", "a"), ("q2", "b")])
        after = verdict(critical=[("q2", "b")])
        assert not is_improvement(before, after)

    def test_critical_only_failure_cannot_improve(self):
        before = verdict(median_major=0.0, critical=[("q1", "a")])
        assert not is_improvement(before, SufficiencyVerdict.passing())


def test_critiques_for_section_collects_blocking_and_challenge():
    issues = critiques_for_section("q1", FAILING_Q1, PREVIOUS_CHALLENGE)
    assert issues == [
        "No persistence trade-offs",
        "No numbers",
        "No sources",
        "Persistence answer is vague",
    ]


def test_merge_keeps_cached_critiques_for_untouched_sections():
    fresh = ChallengeResult(
        critiques=[ChallengeCritique(section="q1", issue="Still no numbers")],
        has_significant_gaps=True,
    )
    merged = merge_challenges(PREVIOUS_CHALLENGE, fresh, {"q1"})
    assert [(c.section, c.issue) for c in merged.critiques] == [
        ("q2", "Cost lacks a source"),
        ("q1", "Still no numbers"),
    ]
    assert merged.has_significant_gaps is True


def test_sub_question_prompt_anchors_on_overview():
    prompt = build_section_repair_prompt(
        "q1", "How?", "Old text", ["Fix it"], "evidence", overview="The overview."
    )
    assert prompt.startswith("You are revising ONE section of a research report.")
    assert "**OVERVIEW (read-only reference" in prompt
    assert "The overview." in prompt
    assert "1. Fix it" in prompt


# =============================================================================
# Repair loop
# =============================================================================


class TestRepairLoop:
    """Tests for the single repair iteration."""

    @pytest.mark.asyncio
    async def test_sufficient_verdict_untouched(self, loop, collaborators, repair_ctx, sample_synthesis, mock_llm):
        state = DocumentState(synthesis=sample_synthesis, verdict=SufficiencyVerdict.passing())

        outcome = await loop.repair(state, repair_ctx)

        assert outcome.state is state
        assert outcome.improved is False
        assert loop.counters.repair_iterations == 0
        mock_llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_regression_reverts_document_and_verdict(
        self, loop, collaborators, repair_ctx, sample_synthesis, mock_llm
    ):
        """A re-vote with more MAJOR critiques restores the pre-repair pair."""
        _, _, voter = collaborators
        mock_llm.generate = AsyncMock(return_value=completion("Rewritten persistence answer."))
        voter.vote = AsyncMock(return_value=verdict(median_major=4.0, failing=["q1"]))
        state = DocumentState(synthesis=sample_synthesis, verdict=FAILING_Q1, challenge=PREVIOUS_CHALLENGE)

        outcome = await loop.repair(state, repair_ctx)

        assert outcome.reverted is True
        assert outcome.improved is False
        assert outcome.state is state
        assert outcome.state.synthesis.sub_questions["q1"].answer == "Redis uses RDB and AOF."
        assert outcome.state.verdict is FAILING_Q1
        assert outcome.repaired_sections == ["q1"]
        assert loop.counters.repair_iterations == 1

    @pytest.mark.asyncio
    async def test_improvement_accepted(self, loop, collaborators, repair_ctx, sample_synthesis, mock_llm):
        _, challenger, voter = collaborators
        mock_llm.generate = AsyncMock(return_value=completion("Rewritten persistence answer."))
        better = verdict(median_major=1.0, sufficient=True)
        voter.vote = AsyncMock(return_value=better)
        state = DocumentState(synthesis=sample_synthesis, verdict=FAILING_Q1, challenge=PREVIOUS_CHALLENGE)

        outcome = await loop.repair(state, repair_ctx)

        assert outcome.improved is True
        assert outcome.state.verdict is better
        assert outcome.state.synthesis.sub_questions["q1"].answer == "Rewritten persistence answer."
        assert outcome.state.synthesis.overview == sample_synthesis.overview
        assert outcome.state.synthesis.sub_questions["q2"] == sample_synthesis.sub_questions["q2"]

        # only the changed section is re-challenged
        assert challenger.challenge_sections.call_args.args[2] == ["q1"]
        challenger.challenge.assert_not_called()
        merged = voter.vote.call_args.args[2]
        assert [c.section for c in merged.critiques] == ["q2"]

        prompt = mock_llm.generate.call_args.args[0]
        assert "No persistence trade-offs" in prompt
        assert "RDB snapshots and AOF logs." in prompt

    @pytest.mark.asyncio
    async def test_failed_regeneration_keeps_document(
        self, loop, collaborators, repair_ctx, sample_synthesis, mock_llm
    ):
        _, _, voter = collaborators
        mock_llm.generate = AsyncMock(return_value=completion("", error="timeout"))
        state = DocumentState(synthesis=sample_synthesis, verdict=FAILING_Q1)

        outcome = await loop.repair(state, repair_ctx)

        assert outcome.state is state
        assert outcome.reverted is False
        voter.vote.assert_not_called()

    @pytest.mark.asyncio
    async def test_global_triggers_full_resynthesis(
        self, loop, collaborators, repair_ctx, sample_synthesis, mock_llm
    ):
        synthesizer, challenger, voter = collaborators
        rewritten = SynthesisOutput(overview="Fresh overview.")
        synthesizer.resynthesize_with_gaps = AsyncMock(return_value=rewritten)
        challenger.challenge = AsyncMock(return_value=ChallengeResult())
        voter.vote = AsyncMock(return_value=SufficiencyVerdict.passing())
        failing = verdict(
            median_major=3.0,
            critical=[("overview", "Wrong"), ("q1", "Wrong too"), ("q2", "Also wrong")],
            failing=["overview", "q1", "q2", "global"],
        )
        state = DocumentState(synthesis=sample_synthesis, verdict=failing)

        outcome = await loop.repair(state, repair_ctx)

        assert outcome.improved is True
        assert outcome.repaired_sections == ["global"]
        assert outcome.state.synthesis is rewritten
        gaps = synthesizer.resynthesize_with_gaps.call_args.args[3]
        assert gaps == ["Wrong", "Wrong too", "Also wrong"]
        challenger.challenge.assert_awaited_once()
        mock_llm.generate.assert_not_called()


class TestGatherForGaps:
    """Tests for gap-driven evidence gathering."""

    @pytest.fixture
    def executor(self):
        executor = MagicMock()
        executor.docs_available = True
        executor.search_papers = AsyncMock(
            return_value=ArxivResult(papers=[ArxivPaper(id="2402.1", title="New paper")])
        )
        executor.fetch_docs = AsyncMock(return_value="redis docs")
        return executor

    @pytest.mark.asyncio
    async def test_paper_gap_fetches_papers(self, research_config, mock_llm, collaborators, executor, sample_execution):
        synthesizer, challenger, voter = collaborators
        loop = RepairLoop(
            research_config, mock_llm, synthesizer=synthesizer, challenger=challenger, voter=voter, executor=executor
        )
        sample_execution.academic_papers = None
        ctx = RepairContext(query="q", execution=sample_execution)

        await loop.gather_for_gaps(sample_execution, ["Cites no academic research"], ctx)

        executor.search_papers.assert_awaited_once_with("q")
        assert sample_execution.papers[0].id == "2402.1"

    @pytest.mark.asyncio
    async def test_code_gap_fetches_docs_for_tech_stack(
        self, research_config, mock_llm, collaborators, executor, sample_execution
    ):
        synthesizer, challenger, voter = collaborators
        loop = RepairLoop(
            research_config, mock_llm, synthesizer=synthesizer, challenger=challenger, voter=voter, executor=executor
        )
        ctx = RepairContext(
            query="q", execution=sample_execution, options=PlanningOptions(tech_stack=["redis"])
        )

        await loop.gather_for_gaps(sample_execution, ["Missing code example"], ctx)

        executor.fetch_docs.assert_awaited_once_with("redis", "q")
        assert sample_execution.library_docs == "redis docs"
        assert "redis" in sample_execution.doc_cache.base

    @pytest.mark.asyncio
    async def test_code_gap_without_tech_stack_skips_docs(
        self, research_config, mock_llm, collaborators, executor, sample_execution
    ):
        synthesizer, challenger, voter = collaborators
        loop = RepairLoop(
            research_config, mock_llm, synthesizer=synthesizer, challenger=challenger, voter=voter, executor=executor
        )
        ctx = RepairContext(query="q", execution=sample_execution)

        await loop.gather_for_gaps(sample_execution, ["Missing code example"], ctx)

        executor.fetch_docs.assert_not_called()
