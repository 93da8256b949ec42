"""Tests for cross-section consistency verification.

Tests cover:
1. Entailment score weighting and reroll section selection
2. Overview anchoring: re-rolls never touch the overview
3. Only sections in high-severity contradictions are rewritten
4. Logic operator conflicts force inconsistency
5. Fail-open behavior when claims or NLI are unavailable
"""

import json

import pytest

from research_synth.core.research.models.enums import ContradictionSeverity, ReasonCode
from research_synth.core.research.models.synthesis import SubQuestionAnswer, SynthesisOutput
from research_synth.core.research.models.validation import Contradiction
from research_synth.core.research.workflows.pvr import (
    PVRChecker,
    compute_entailment_score,
    normalize_severity,
    select_reroll_sections,
)
from tests.helpers import PromptRouter

CLAIMS_MARKER = "Extract ATOMIC CLAIMS"
NLI_MARKER = "You are a consistency checker"
LOGIC_MARKER = "You are checking for LOGIC OPERATOR CONFLICTS"
REROLL_MARKER = "You are rewriting ONE section"

SECTION_CLAIMS = {
    "Section: Overview": ["Redis costs $15/month"],
    "Section: How does Redis persist data?": ["Redis persists with AOF"],
    "Section: What does it cost?": ["Redis costs $40/month"],
}


def contradiction(a, b, severity=ContradictionSeverity.HIGH):
    return Contradiction(section_a=a, section_b=b, claim_a="x", claim_b="y", severity=severity)


def claims_reply(prompt):
    for marker, claims in SECTION_CLAIMS.items():
        if marker in prompt:
            return json.dumps({"claims": claims})
    return '{"claims": []}'


class NliScript:
    """Returns each scripted NLI reply in turn, then no contradictions."""

    def __init__(self, *replies):
        self.replies = list(replies)

    def __call__(self, prompt):
        if self.replies:
            return self.replies.pop(0)
        return '{"contradictions": []}'


COST_CONFLICT = json.dumps(
    {"contradictions": [{"claimA": 1, "claimB": 3, "reasonCode": "COST_CONFLICT", "severity": "high"}]}
)


@pytest.fixture
def pvr_router(mock_llm):
    router = PromptRouter(
        [
            (CLAIMS_MARKER, claims_reply),
            (LOGIC_MARKER, '{"hasConflict": false, "conflicts": []}'),
            (REROLL_MARKER, "Managed Redis costs $15/month [perplexity:1]."),
        ]
    )
    router.attach(mock_llm)
    return router


# =============================================================================
# Pure helpers
# =============================================================================


class TestScoring:
    """Tests for the weighted entailment score."""

    def test_no_contradictions_scores_one(self):
        assert compute_entailment_score([], 5) == 1.0

    def test_weights(self):
        contradictions = [
            contradiction("overview", "q1", ContradictionSeverity.HIGH),
            contradiction("overview", "q2", ContradictionSeverity.MEDIUM),
            contradiction("q1", "q2", ContradictionSeverity.LOW),
        ]
        # 4 claims -> 6 pairs; weighted 1.75
        assert compute_entailment_score(contradictions, 4) == pytest.approx(1 - 1.75 / 6)

    def test_floored_at_zero(self):
        assert compute_entailment_score([contradiction("q1", "q2")] * 5, 2) == 0.0

    def test_unknown_severity_is_medium(self):
        assert normalize_severity("catastrophic") == ContradictionSeverity.MEDIUM
        assert normalize_severity("HIGH") == ContradictionSeverity.HIGH


class TestSelectRerollSections:
    """Tests for choosing sections to rewrite."""

    def test_high_only_overview_excluded(self):
        contradictions = [
            contradiction("overview", "q2"),
            contradiction("q1", "q3", ContradictionSeverity.MEDIUM),
            contradiction("q3", "q2"),
        ]
        assert select_reroll_sections(contradictions, {"q1", "q2", "q3"}) == ["q2", "q3"]

    def test_unknown_sections_dropped(self):
        assert select_reroll_sections([contradiction("overview", "sub-question")], {"q1"}) == []


# =============================================================================
# Checker
# =============================================================================


class TestPVRChecker:
    """Tests for verify, re-roll and reconcile."""

    @pytest.mark.asyncio
    async def test_consistent_document(self, research_config, mock_llm, pvr_router, sample_synthesis):
        pvr_router.route(NLI_MARKER, '{"contradictions": []}')

        result = await PVRChecker(research_config, mock_llm).verify(sample_synthesis)

        assert result.is_consistent is True
        assert result.entailment_score == 1.0
        assert pvr_router.count(CLAIMS_MARKER) == 3

    @pytest.mark.asyncio
    async def test_reroll_keeps_overview_byte_identical(
        self, research_config, mock_llm, pvr_router, sample_synthesis, sample_execution
    ):
        """Only the contradicting sub-answer is rewritten; the overview is the anchor."""
        pvr_router.route(NLI_MARKER, NliScript(COST_CONFLICT))
        checker = PVRChecker(research_config, mock_llm)

        updated, result = await checker.verify_and_reconcile(sample_synthesis, None, sample_execution)

        assert updated.overview == sample_synthesis.overview
        assert updated.sub_questions["q1"] == sample_synthesis.sub_questions["q1"]
        assert updated.sub_questions["q2"].answer == "Managed Redis costs $15/month [perplexity:1]."
        assert updated.sub_questions["q2"].question == "What does it cost?"
        assert result.rerolled is True
        assert result.is_consistent is True
        assert checker.counters.sections_rerolled == 1
        assert checker.counters.pvr_checks == 2

        reroll_prompts = [p for p in pvr_router.prompts if REROLL_MARKER in p]
        assert len(reroll_prompts) == 1
        assert sample_synthesis.overview in reroll_prompts[0]
        assert '"Redis costs $15/month" vs (q2) "Redis costs $40/month"' in reroll_prompts[0]

    @pytest.mark.asyncio
    async def test_first_verdict_lists_reroll_targets(
        self, research_config, mock_llm, pvr_router, sample_synthesis
    ):
        pvr_router.route(NLI_MARKER, COST_CONFLICT)

        result = await PVRChecker(research_config, mock_llm).verify(sample_synthesis)

        assert result.is_consistent is False
        assert result.entailment_score == pytest.approx(1 - 1 / 3)
        assert result.sections_to_reroll == ["q2"]
        assert result.contradictions[0].reason_code == ReasonCode.COST_CONFLICT

    @pytest.mark.asyncio
    async def test_surviving_contradictions_reported(
        self, research_config, mock_llm, pvr_router, sample_synthesis, sample_execution
    ):
        pvr_router.route(NLI_MARKER, COST_CONFLICT)

        _, result = await PVRChecker(research_config, mock_llm).verify_and_reconcile(
            sample_synthesis, None, sample_execution
        )

        assert result.rerolled is True
        assert result.is_consistent is False
        assert result.contradictions

    @pytest.mark.asyncio
    async def test_bare_logic_conflict_is_inconsistent_without_reroll(
        self, research_config, mock_llm, pvr_router, sample_synthesis, sample_execution
    ):
        pvr_router.route(NLI_MARKER, '{"contradictions": []}')
        pvr_router.route(LOGIC_MARKER, '{"hasConflict": true, "conflicts": ["X OR Y vs X AND Y"]}')

        updated, result = await PVRChecker(research_config, mock_llm).verify_and_reconcile(
            sample_synthesis, None, sample_execution
        )

        assert result.is_consistent is False
        assert result.contradictions[0].reason_code == ReasonCode.LOGIC_CONFLICT
        assert result.sections_to_reroll == []
        assert updated is sample_synthesis
        assert pvr_router.count(REROLL_MARKER) == 0

    @pytest.mark.asyncio
    async def test_string_conflicts_payload_is_one_conflict(
        self, research_config, mock_llm, pvr_router, sample_synthesis
    ):
        pvr_router.route(NLI_MARKER, '{"contradictions": []}')
        pvr_router.route(LOGIC_MARKER, '{"hasConflict": true, "conflicts": "q1 vs q2 mismatch"}')

        result = await PVRChecker(research_config, mock_llm).verify(sample_synthesis)

        assert len(result.contradictions) == 1
        assert result.contradictions[0].claim_a == "q1 vs q2 mismatch"
        assert result.contradictions[0].reason_code == ReasonCode.LOGIC_CONFLICT

    @pytest.mark.asyncio
    async def test_non_list_conflicts_payload_is_ignored(
        self, research_config, mock_llm, pvr_router, sample_synthesis
    ):
        pvr_router.route(NLI_MARKER, '{"contradictions": []}')
        pvr_router.route(LOGIC_MARKER, '{"hasConflict": true, "conflicts": {"claimA": 1}}')

        result = await PVRChecker(research_config, mock_llm).verify(sample_synthesis)

        assert result.contradictions == []

    @pytest.mark.asyncio
    async def test_indexed_logic_conflict_rerolls(
        self, research_config, mock_llm, pvr_router, sample_synthesis
    ):
        pvr_router.route(NLI_MARKER, '{"contradictions": []}')
        pvr_router.route(
            LOGIC_MARKER,
            '{"hasConflict": true, "conflicts": [{"claimA": 1, "claimB": 2, "description": "OR vs AND"}]}',
        )

        result = await PVRChecker(research_config, mock_llm).verify(sample_synthesis)

        assert result.sections_to_reroll == ["q1"]
        assert result.contradictions[0].severity == ContradictionSeverity.HIGH
        assert result.contradictions[0].explanation == "OR vs AND"

    @pytest.mark.asyncio
    async def test_nli_failure_fails_open(self, research_config, mock_llm, pvr_router, sample_synthesis):
        pvr_router.route(NLI_MARKER, "not json at all")

        result = await PVRChecker(research_config, mock_llm).verify(sample_synthesis)

        assert result.is_consistent is True

    @pytest.mark.asyncio
    async def test_no_sub_questions_skips(self, research_config, mock_llm):
        result = await PVRChecker(research_config, mock_llm).verify(SynthesisOutput(overview="x"))
        assert result.is_consistent is True
        mock_llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_too_few_sections_with_claims(self, research_config, mock_llm, pvr_router):
        synthesis = SynthesisOutput(
            overview="Redis.",
            sub_questions={"q1": SubQuestionAnswer(question="Unrelated?", answer="Something.")},
        )
        result = await PVRChecker(research_config, mock_llm).verify(synthesis)
        assert result.is_consistent is True
        assert pvr_router.count(NLI_MARKER) == 0
