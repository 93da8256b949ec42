"""Tests for consensus planning.

Tests cover:
1. parse_action_plan: JSON, truncated output, clamping and max_depth caps
2. calculate_confidence heuristic
3. Judge arbitration and highest-confidence fallback
4. Fallback plan when no model is configured or planning times out
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from research_synth.core.research.models.enums import OutputFormat, ToolName
from research_synth.core.research.models.plan import ActionPlan, PlanningOptions
from research_synth.core.research.workflows.planning import (
    ConsensusPlanner,
    calculate_confidence,
    create_fallback_plan,
    generate_consensus_plan,
    parse_action_plan,
    parse_judge_response,
)
from tests.helpers import completion


def plan_json(complexity, tools, reasoning="Short reason", **extra):
    return json.dumps(
        {
            "complexity": complexity,
            "reasoning": reasoning,
            "steps": [{"tool": t, "description": "step"} for t in tools],
            **extra,
        }
    )


# =============================================================================
# Parsing
# =============================================================================


class TestParseActionPlan:
    """Tests for turning a planning response into an ActionPlan."""

    def test_parses_fenced_plan(self):
        """Tools are normalized and gated by the plan's complexity."""
        response = "```json\n" + plan_json(2, ["perplexity", "deep_analysis", "arxiv"]) + "\n```"

        plan, raw = parse_action_plan(response)

        assert raw == 2
        assert plan.complexity == 2
        assert plan.steps == [ToolName.WEB_SEARCH.value, ToolName.DEEP_ANALYSIS.value]

    def test_complexity_clamped_to_four(self):
        plan, raw = parse_action_plan(plan_json(7, ["perplexity"]))
        assert raw == 7
        assert plan.complexity == 4

    def test_zero_complexity_clamped_to_one(self):
        plan, raw = parse_action_plan(plan_json(0, ["perplexity"]))
        assert raw == 0
        assert plan.complexity == 1
        assert calculate_confidence(plan, raw) < calculate_confidence(plan, 1)

    def test_max_depth_caps_and_annotates_reasoning(self):
        """A user cap lowers complexity and drops steps above it."""
        plan, _ = parse_action_plan(
            plan_json(4, ["perplexity", "deep_analysis", "arxiv", "consensus"], "Needs all tools"),
            max_depth=2,
        )
        assert plan.complexity == 2
        assert "capped from 4 to 2" in plan.reasoning
        assert ToolName.ARXIV_SEARCH.value not in plan.steps
        assert ToolName.CONSENSUS.value not in plan.steps

    def test_truncated_response_uses_regex_fallback(self):
        """Unclosed JSON still yields complexity, reasoning and mentioned tools."""
        plan, raw = parse_action_plan('{"complexity": 4, "reasoning": "Needs papers and deep analysis')

        assert raw == 4
        assert plan.reasoning == "Needs papers and deep analysis"
        assert plan.steps == [ToolName.DEEP_ANALYSIS.value, ToolName.ARXIV_SEARCH.value]

    def test_garbage_gets_default_steps(self):
        plan, raw = parse_action_plan("I cannot help with that.")
        assert raw == 3
        assert plan.complexity == 3
        assert plan.steps == [ToolName.WEB_SEARCH.value, ToolName.DEEP_ANALYSIS.value]
        assert plan.reasoning == "Extracted from incomplete response"

    def test_output_format_and_code_flag(self):
        plan, _ = parse_action_plan(
            plan_json(1, ["perplexity"], output_format="summary", include_code_examples=True)
        )
        assert plan.output_format == OutputFormat.SUMMARY
        assert plan.include_code_examples is True

    def test_unknown_output_format_defaults_to_detailed(self):
        plan, _ = parse_action_plan(plan_json(1, ["perplexity"], output_format="poem"))
        assert plan.output_format == OutputFormat.DETAILED


class TestConfidence:
    """Tests for the candidate confidence heuristic."""

    def test_rich_plan_scores_high(self):
        plan = ActionPlan(complexity=3, reasoning="x" * 60, steps=["a", "b", "c"])
        assert calculate_confidence(plan) == pytest.approx(0.9)

    def test_out_of_range_proposal_penalized(self):
        plan = ActionPlan(complexity=4, reasoning="short", steps=["a"])
        assert calculate_confidence(plan, raw_complexity=9) == pytest.approx(0.4)


class TestJudgeResponse:
    """Tests for judge selection parsing."""

    def test_valid_selection_is_zero_based(self):
        assert parse_judge_response('{"selected": 2, "reasoning": "ok"}', 3) == 1

    @pytest.mark.parametrize("text", ['{"selected": 0}', '{"selected": 4}', "nope", '{"selected": "x"}'])
    def test_invalid_selection(self, text):
        assert parse_judge_response(text, 3) is None


# =============================================================================
# Planner
# =============================================================================


class TestConsensusPlanner:
    """Tests for multi-model planning with judge arbitration."""

    @pytest.mark.asyncio
    async def test_judge_selects_plan(self, research_config, mock_llm):
        """The judge's choice wins and every proposal is recorded as a vote."""
        proposals = [
            plan_json(1, ["perplexity"]),
            plan_json(2, ["perplexity", "deep_analysis"]),
            plan_json(3, ["perplexity", "deep_analysis", "context7"]),
        ]
        mock_llm.generate_many = AsyncMock(
            side_effect=lambda prompt, configs, **kw: [
                completion(p, model=c.model) for p, c in zip(proposals, configs)
            ]
        )
        mock_llm.generate = AsyncMock(return_value=completion('{"selected": 2, "reasoning": "fits"}'))

        plan = await ConsensusPlanner(research_config, mock_llm).generate_plan("How to cache?")

        assert plan.complexity == 2
        assert [v.complexity for v in plan.model_votes] == [1, 2, 3]
        judge_prompt = mock_llm.generate.call_args.args[0]
        assert judge_prompt.startswith("You are a research planning judge")

    @pytest.mark.asyncio
    async def test_judge_failure_picks_highest_confidence(self, research_config, mock_llm):
        """With no usable judge reply the most confident candidate is used."""
        proposals = [
            plan_json(1, ["perplexity"]),
            plan_json(3, ["perplexity", "deep_analysis", "context7"], "A" * 80),
            plan_json(2, ["perplexity", "deep_analysis"]),
        ]
        mock_llm.generate_many = AsyncMock(
            side_effect=lambda prompt, configs, **kw: [
                completion(p, model=c.model) for p, c in zip(proposals, configs)
            ]
        )
        mock_llm.generate = AsyncMock(return_value=completion("", error="judge down"))

        plan = await ConsensusPlanner(research_config, mock_llm).generate_plan("How to cache?")

        assert plan.complexity == 3
        assert len(plan.steps) == 3

    @pytest.mark.asyncio
    async def test_single_candidate_skips_judge(self, research_config, mock_llm):
        mock_llm.generate_many = AsyncMock(
            side_effect=lambda prompt, configs, **kw: [completion(plan_json(2, ["perplexity"]))]
            + [completion("", error="down") for _ in configs[1:]]
        )

        plan = await ConsensusPlanner(research_config, mock_llm).generate_plan("q")

        assert plan.complexity == 2
        mock_llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_voters_returns_fallback(self, research_config, unconfigured_llm):
        options = PlanningOptions(max_depth=1)

        plan = await ConsensusPlanner(research_config, unconfigured_llm).generate_plan("q", options=options)

        assert plan.complexity == 1
        assert plan.steps == [ToolName.WEB_SEARCH.value]
        unconfigured_llm.generate_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_options_override_plan_flags(self, research_config, mock_llm):
        """Caller-supplied code and format preferences beat the model's."""
        mock_llm.generate_many = AsyncMock(
            side_effect=lambda prompt, configs, **kw: [
                completion(plan_json(2, ["perplexity"], include_code_examples=False))
            ]
        )
        options = PlanningOptions(include_code_examples=True, output_format=OutputFormat.SUMMARY)

        plan = await ConsensusPlanner(research_config, mock_llm).generate_plan("q", options=options)

        assert plan.include_code_examples is True
        assert plan.output_format == OutputFormat.SUMMARY

    @pytest.mark.asyncio
    async def test_timeout_returns_fallback(self, research_config, mock_llm):
        async def slow(prompt, configs, **kwargs):
            await asyncio.sleep(5)
            return []

        mock_llm.generate_many = AsyncMock(side_effect=slow)
        planner = ConsensusPlanner(research_config, mock_llm)

        plan = await generate_consensus_plan(planner, "q", timeout=0.01)

        assert plan.reasoning.startswith("Fallback plan")


class TestFallbackPlan:
    """Tests for the static fallback plan."""

    def test_full_fallback_steps(self):
        options = PlanningOptions(tech_stack=["redis"], sub_questions=["Why?"])
        plan = create_fallback_plan(options)
        assert plan.complexity == 3
        assert plan.steps == [
            ToolName.WEB_SEARCH.value,
            ToolName.DEEP_ANALYSIS.value,
            ToolName.LIBRARY_DOCS.value,
            ToolName.SUB_QUESTIONS.value,
            ToolName.CHALLENGE.value,
        ]

    def test_capped_fallback(self):
        plan = create_fallback_plan(PlanningOptions(max_depth=2))
        assert plan.complexity == 2
        assert plan.reasoning.endswith("capped at depth 2")
