"""Consensus planning: turn a query into an ActionPlan.

Every voting model receives the same planning prompt concurrently. Each
response becomes a candidate plan (malformed or truncated output is
recovered with a regex field extractor rather than discarded), and a
judge call picks one. Without any inference provider a static fallback
plan is returned.

A user-supplied ``max_depth`` always caps the final complexity, and steps
gated above the capped depth are removed using the same table the
executor applies (``execution.DEPTH_GATES``).
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Optional

from research_synth.core.providers.registry import ModelConfig
from research_synth.core.research.models.enums import OutputFormat, ToolName
from research_synth.core.research.models.plan import (
    ActionPlan,
    ModelVote,
    PlanCandidate,
    PlanningOptions,
)
from research_synth.core.research.workflows._json_parsing import (
    find_balanced,
    parse_structured,
)
from research_synth.core.research.workflows.base import ResearchStageBase
from research_synth.core.research.workflows.execution import filter_steps_for_depth

logger = logging.getLogger(__name__)

DEFAULT_COMPLEXITY = 3
MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 4

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.MULTILINE)
_FENCE_CLOSE_RE = re.compile(r"```\s*$", re.MULTILINE)
_COMPLEXITY_RE = re.compile(r"[\"']?complexity[\"']?\s*:\s*(\d)")
_REASONING_RE = re.compile(r"[\"']?reasoning[\"']?\s*:\s*[\"']([^\"']{10,200})")


# =============================================================================
# Prompt
# =============================================================================


def build_planning_prompt(
    query: str,
    enriched_context: Optional[str],
    options: PlanningOptions,
) -> str:
    """Build the planning prompt sent to every voting model."""
    parts = [
        "You are a research planning expert. "
        "Create a detailed action plan to answer this research query.",
        f"Query: {query}",
    ]
    if options.max_depth:
        parts.append(
            f"**IMPORTANT: User requested max depth level: {options.max_depth}. "
            "Do NOT exceed this complexity level.**"
        )
    if enriched_context:
        parts.append(f"Context:\n{enriched_context}")
    if options.constraints:
        parts.append("Constraints:\n- " + "\n- ".join(options.constraints))
    if options.papers_read:
        parts.append("Papers Already Read (avoid):\n- " + "\n- ".join(options.papers_read))
    if options.tech_stack:
        parts.append(f"Tech Stack: {', '.join(options.tech_stack)}")
    if options.sub_questions:
        numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(options.sub_questions, 1))
        parts.append(f"Sub-questions:\n{numbered}")

    parts.append(
        """Available tools:
- perplexity: Web search for recent information and sources
- deep_analysis: AI reasoning and analysis
- context7: Library/framework documentation with code examples
- arxiv: Academic papers (with summaries)
- consensus: Multi-model validation (for critical findings)

Return a JSON action plan with this structure:
{
  "complexity": 1-4,
  "reasoning": "Why this complexity level",
  "include_code_examples": true | false,
  "output_format": "summary" | "detailed" | "actionable_steps",
  "steps": [
    {"tool": "perplexity", "description": "What this step achieves", "parameters": {"query": "Specific search query"}, "parallel": false},
    {"tool": "deep_analysis", "description": "Analyze findings", "parallel": false},
    {"tool": "context7", "description": "Library/framework documentation with code examples", "parallel": false},
    {"tool": "arxiv", "description": "Academic papers", "parallel": false},
    {"tool": "consensus", "description": "Multi-model validation", "parallel": false}
  ],
  "tools_to_skip": [],
  "estimated_time_seconds": 30
}

Rules:
1. Complexity 1: Use perplexity only
2. Complexity 2: Add deep_analysis
3. Complexity 3: Add context7 (if tech_stack provided)
4. Complexity 4: Add arxiv papers and consensus validation
5. Mark steps as parallel: true if they can run simultaneously
6. Avoid tools for papers_read papers
7. Keep total time under constraints if specified

Return ONLY the JSON, no explanation."""
    )
    return "\n\n".join(parts)


def build_judge_prompt(
    query: str,
    candidates: list[PlanCandidate],
    enriched_context: Optional[str],
) -> str:
    """Build the arbitration prompt listing every candidate plan."""
    plans = []
    for i, c in enumerate(candidates, 1):
        skip = ", ".join(c.plan.tools_to_skip) if c.plan.tools_to_skip else "none"
        plans.append(
            f"**Plan {i}** (from {c.model}, confidence: {c.confidence:.2f}):\n"
            f"- Complexity: {c.plan.complexity}/4\n"
            f"- Reasoning: {c.plan.reasoning}\n"
            f"- Steps: {' → '.join(c.plan.steps)}\n"
            f"- Tools to skip: {skip}"
        )
    context_block = f"Context:\n{enriched_context}\n\n" if enriched_context else ""
    return (
        "You are a research planning judge. Select the BEST plan for answering this query.\n\n"
        f"**Original Query:** {query}\n\n"
        f"{context_block}"
        "**Candidate Plans:**\n"
        + "\n\n".join(plans)
        + "\n\n**Evaluation Criteria:**\n"
        "1. **Appropriateness**: Does the complexity match the query difficulty?\n"
        "2. **Efficiency**: Does it avoid unnecessary steps while being thorough?\n"
        "3. **Coverage**: Will it gather sufficient information?\n"
        "4. **Practicality**: Is the step sequence logical?\n\n"
        "IMPORTANT: Return ONLY valid JSON with no other text.\n\n"
        "Format:\n"
        "{\n"
        f'  "selected": <1-{len(candidates)}>,\n'
        '  "reasoning": "Why this plan is best"\n'
        "}"
    )


# =============================================================================
# Parsing
# =============================================================================


def extract_fields_with_regex(response: str) -> dict[str, Any]:
    """Recover complexity and reasoning from truncated output."""
    complexity = _COMPLEXITY_RE.search(response)
    reasoning = _REASONING_RE.search(response)
    return {
        "complexity": int(complexity.group(1)) if complexity else DEFAULT_COMPLEXITY,
        "reasoning": (
            reasoning.group(1).replace("\\n", " ").strip()
            if reasoning
            else "Extracted from incomplete response"
        ),
        "steps": [],
    }


def _normalize_tool(tool: str) -> str:
    tool = tool.lower()
    if "perplexity" in tool:
        return ToolName.WEB_SEARCH.value
    if "deep" in tool or "thinking" in tool:
        return ToolName.DEEP_ANALYSIS.value
    if "arxiv" in tool or "paper" in tool:
        return ToolName.ARXIV_SEARCH.value
    if "context" in tool or "library" in tool or "doc" in tool:
        return ToolName.LIBRARY_DOCS.value
    if "consensus" in tool:
        return ToolName.CONSENSUS.value
    return f"{tool}_search"


def extract_steps(parsed: dict[str, Any], raw_response: str) -> list[str]:
    """Normalize step entries to tool names, falling back to raw mentions.

    Returns:
        Ordered, duplicate-free step names
    """
    steps: list[str] = []
    raw_steps = parsed.get("steps")
    if isinstance(raw_steps, list):
        for entry in raw_steps:
            if isinstance(entry, str):
                name = entry
            elif isinstance(entry, dict) and isinstance(entry.get("tool"), str):
                name = _normalize_tool(entry["tool"])
            else:
                name = ToolName.WEB_SEARCH.value
            if name not in steps:
                steps.append(name)

    if not steps:
        mentions = raw_response.lower()
        if "perplexity" in mentions:
            steps.append(ToolName.WEB_SEARCH.value)
        if "deep" in mentions or "thinking" in mentions:
            steps.append(ToolName.DEEP_ANALYSIS.value)
        if "arxiv" in mentions or "paper" in mentions:
            steps.append(ToolName.ARXIV_SEARCH.value)
        if "context7" in mentions or "library" in mentions:
            steps.append(ToolName.LIBRARY_DOCS.value)
        if "consensus" in mentions:
            steps.append(ToolName.CONSENSUS.value)
    return steps


def _default_steps(complexity: int) -> list[str]:
    steps = [ToolName.WEB_SEARCH.value]
    if complexity >= 2:
        steps.append(ToolName.DEEP_ANALYSIS.value)
    if complexity >= 4:
        steps.append(ToolName.ARXIV_SEARCH.value)
    return steps


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _load_plan_object(response: str) -> Optional[dict[str, Any]]:
    """Fence-stripped, balanced, repaired parse; None on failure."""
    stripped = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", response)).strip()
    region = find_balanced(stripped, "{")
    if region is None:
        logger.debug("Planning: incomplete JSON (no closing brace)")
        return None
    result = parse_structured(region, {})
    return result.value if result.ok else None


def parse_action_plan(response: str, max_depth: Optional[int] = None) -> tuple[ActionPlan, int]:
    """Parse one planning response into an ActionPlan.

    Never fails: unparseable output yields a plan built from regex-recovered
    fields and default steps.

    Args:
        response: Raw model output
        max_depth: Optional user cap on complexity

    Returns:
        ``(plan, raw_complexity)`` where ``raw_complexity`` is what the model
        proposed before clamping
    """
    parsed = _load_plan_object(response)
    if parsed is None:
        logger.debug("Planning: JSON parse failed, using regex fallback")
        parsed = extract_fields_with_regex(response)

    # Wrapped responses carry the plan as a JSON string under "content"
    content = parsed.get("content")
    if isinstance(content, str):
        inner = parse_structured(content, {})
        if inner.ok:
            parsed = inner.value

    raw_complexity = _coerce_int(parsed.get("complexity"))
    if raw_complexity is None:
        raw_complexity = DEFAULT_COMPLEXITY
    steps = extract_steps(parsed, response) or _default_steps(raw_complexity)

    complexity = min(MAX_COMPLEXITY, max(MIN_COMPLEXITY, raw_complexity))
    if max_depth is not None:
        complexity = min(complexity, max_depth)

    reasoning = parsed.get("reasoning") if isinstance(parsed.get("reasoning"), str) else None
    reasoning = reasoning or "No reasoning provided"
    if max_depth is not None and raw_complexity > max_depth:
        reasoning = f"{reasoning} (capped from {raw_complexity} to {max_depth})"

    tools_to_skip = parsed.get("tools_to_skip") or parsed.get("toolsToSkip") or []
    include_code = parsed.get("include_code_examples", parsed.get("includeCodeExamples"))
    output_format = parsed.get("output_format") or parsed.get("outputFormat")

    plan = ActionPlan(
        complexity=complexity,
        reasoning=reasoning,
        steps=filter_steps_for_depth(steps, complexity),
        tools_to_skip=[str(t) for t in tools_to_skip] if isinstance(tools_to_skip, list) else [],
        include_code_examples=include_code if isinstance(include_code, bool) else None,
        output_format=(
            OutputFormat(output_format)
            if output_format in {f.value for f in OutputFormat}
            else OutputFormat.DETAILED
        ),
    )
    logger.debug(
        "Planning: parsed plan complexity=%d steps=%s%s",
        plan.complexity,
        ", ".join(plan.steps),
        f" (max: {max_depth})" if max_depth else "",
    )
    return plan, raw_complexity


def calculate_confidence(plan: ActionPlan, raw_complexity: Optional[int] = None) -> float:
    """Heuristic confidence for a candidate plan.

    Base 0.5; +0.2 with any steps; +0.1 with three or more; +0.1 for
    reasoning over 50 characters; -0.3 when the proposed complexity was
    outside 1..5. Clamped to [0, 1].
    """
    score = 0.5
    if plan.steps:
        score += 0.2
    if len(plan.steps) >= 3:
        score += 0.1
    if len(plan.reasoning) > 50:
        score += 0.1
    complexity = plan.complexity if raw_complexity is None else raw_complexity
    if complexity < 1 or complexity > 5:
        score -= 0.3
    return min(1.0, max(0.0, score))


def parse_judge_response(response: str, candidate_count: int) -> Optional[int]:
    """Return the zero-based selected index, or None if invalid."""
    parsed = parse_structured(response, {})
    if not parsed.ok:
        return None
    selected = _coerce_int(parsed.value.get("selected"))
    if selected is None or not 1 <= selected <= candidate_count:
        logger.debug("Planning: judge selection %r out of range", parsed.value.get("selected"))
        return None
    return selected - 1


def create_fallback_plan(options: Optional[PlanningOptions] = None) -> ActionPlan:
    """Static plan used when no model could produce one.

    Complexity is ``min(3, max_depth)``; steps are the depth-appropriate
    subset of web search, deep analysis, library docs, sub-questions and
    challenge.
    """
    options = options or PlanningOptions()
    complexity = min(DEFAULT_COMPLEXITY, options.max_depth or DEFAULT_COMPLEXITY)

    steps = [ToolName.WEB_SEARCH.value]
    if complexity >= 2:
        steps.append(ToolName.DEEP_ANALYSIS.value)
    if complexity >= 3 and options.tech_stack:
        steps.append(ToolName.LIBRARY_DOCS.value)
    if options.sub_questions:
        steps.append(ToolName.SUB_QUESTIONS.value)
    if complexity >= 2:
        steps.append(ToolName.CHALLENGE.value)

    reasoning = "Fallback plan (LLM planning failed)"
    if options.max_depth:
        reasoning += f" - capped at depth {options.max_depth}"

    return ActionPlan(
        complexity=complexity,
        reasoning=reasoning,
        steps=steps,
        include_code_examples=options.include_code_examples,
        output_format=options.output_format,
    )


# =============================================================================
# Planner
# =============================================================================


class ConsensusPlanner(ResearchStageBase):
    """Multi-model planner with judge arbitration."""

    stage_name = "Planning"

    async def generate_plan(
        self,
        query: str,
        enriched_context: Optional[str] = None,
        options: Optional[PlanningOptions] = None,
    ) -> ActionPlan:
        """Produce the action plan for ``query``.

        Args:
            query: Research question
            enriched_context: Free-text background
            options: Constraints, tech stack, sub-questions, max depth

        Returns:
            The selected plan with ``model_votes`` from every usable proposal
        """
        options = options or PlanningOptions()
        configs = self.llm.get_voting_configs()
        if not configs:
            logger.warning("Planning: no API keys configured, using fallback plan")
            return create_fallback_plan(options)

        prompt = build_planning_prompt(query, enriched_context, options)
        candidates = await self._collect_candidates(prompt, configs, options.max_depth)
        if not candidates:
            logger.warning("Planning: no usable proposals, using fallback plan")
            return create_fallback_plan(options)

        logger.info("Planning: received %d valid proposals", len(candidates))
        selected = await self._select_best(candidates, query, enriched_context)
        logger.info(
            "Planning: selected plan from %s (confidence: %.2f, complexity: %d)",
            selected.model,
            selected.confidence,
            selected.plan.complexity,
        )

        update: dict[str, Any] = {
            "model_votes": [
                ModelVote(model=c.model, complexity=c.plan.complexity) for c in candidates
            ]
        }
        if options.include_code_examples is not None:
            update["include_code_examples"] = options.include_code_examples
        if "output_format" in options.model_fields_set:
            update["output_format"] = options.output_format
        return selected.plan.model_copy(update=update)

    async def _collect_candidates(
        self,
        prompt: str,
        configs: list[ModelConfig],
        max_depth: Optional[int],
    ) -> list[PlanCandidate]:
        self.counters.llm_calls += len(configs)
        responses = await self.llm.generate_many(prompt, configs)
        candidates: list[PlanCandidate] = []
        for config, response in zip(configs, responses):
            if not response.success or not response.text:
                continue
            plan, raw_complexity = parse_action_plan(response.text, max_depth)
            candidates.append(
                PlanCandidate(
                    model=response.model or config.model,
                    plan=plan,
                    confidence=calculate_confidence(plan, raw_complexity),
                )
            )
        return candidates

    async def _select_best(
        self,
        candidates: list[PlanCandidate],
        query: str,
        enriched_context: Optional[str],
    ) -> PlanCandidate:
        """Judge arbitration; highest confidence wins when the judge fails."""
        if len(candidates) == 1:
            return candidates[0]

        logger.info("Planning: judge evaluating %d plans", len(candidates))
        response = await self._generate(
            build_judge_prompt(query, candidates, enriched_context),
            self.config.judge_model,
        )
        index = parse_judge_response(response.text, len(candidates)) if response.success else None
        if index is None:
            logger.warning("Planning: judge failed, falling back to highest confidence")
            return max(candidates, key=lambda c: c.confidence)
        return candidates[index]


async def generate_consensus_plan(
    planner: ConsensusPlanner,
    query: str,
    enriched_context: Optional[str] = None,
    options: Optional[PlanningOptions] = None,
    timeout: Optional[float] = None,
) -> ActionPlan:
    """Run the planner with an overall timeout; fallback plan on expiry."""
    try:
        return await asyncio.wait_for(
            planner.generate_plan(query, enriched_context, options), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("Planning: timed out after %ss, using fallback plan", timeout)
        return create_fallback_plan(options)
