"""Pipeline entry point.

Flow: plan -> gather -> manifest -> synthesize -> code validation -> PVR
-> challenge (+ consensus at depth 4) -> vote -> repair -> output.

Only a missing inference provider aborts a run; every other failure
degrades to a default value inside the stage that hit it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Union

from research_synth.config.research import ResearchConfig
from research_synth.core.errors import ConfigurationError, DocsUnavailableError
from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.execution import ExecutionContext
from research_synth.core.research.models.output import PipelineOutput, ResearchResult
from research_synth.core.research.models.plan import ActionPlan, PlanningOptions
from research_synth.core.research.models.validation import (
    DocumentState,
    RunCounters,
    SufficiencyVerdict,
)
from research_synth.core.research.providers.arxiv import ArxivSearchProvider
from research_synth.core.research.providers.context7 import Context7DocsProvider
from research_synth.core.research.providers.perplexity import PerplexitySearchProvider
from research_synth.core.research.workflows._protocols import (
    DocsProvider,
    PaperSearchProvider,
    ProgressObserver,
    WebSearchProvider,
)
from research_synth.core.research.workflows.challenge import ChallengeContext, Challenger
from research_synth.core.research.workflows.code_validation import CodeValidator
from research_synth.core.research.workflows.execution import (
    DepthGatedExecutor,
    widen_steps_for_depth,
)
from research_synth.core.research.workflows.formatting import (
    build_executive_summary,
    build_sections_from_result,
    format_markdown,
)
from research_synth.core.research.workflows.manifest import ManifestExtractor
from research_synth.core.research.workflows.planning import (
    ConsensusPlanner,
    generate_consensus_plan,
)
from research_synth.core.research.workflows.pvr import PVRChecker
from research_synth.core.research.workflows.repair import RepairContext, RepairLoop
from research_synth.core.research.workflows.sectioning import generate_section_summaries
from research_synth.core.research.workflows.synthesis import PhasedSynthesizer
from research_synth.core.research.workflows.voting import (
    SufficiencyVoter,
    run_consensus_validation,
)

logger = logging.getLogger(__name__)

ProgressCallback = Union[ProgressObserver, Callable[[str, int], None]]

PLANNING_TIMEOUT = 120.0

PROGRESS_STEPS = (
    "planning",
    "gathering",
    "manifest",
    "synthesis",
    "code_validation",
    "consistency",
    "challenge",
    "vote",
    "repair",
    "output",
)


class _Progress:
    """Adapts an observer or a plain callable to fixed checkpoints."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback

    def step(self, name: str) -> None:
        if self._callback is None:
            return
        remaining = len(PROGRESS_STEPS) - PROGRESS_STEPS.index(name) - 1
        if isinstance(self._callback, ProgressObserver):
            self._callback.on_progress(name, remaining)
        else:
            self._callback(name, remaining)


def resolve_depth(plan: ActionPlan, depth_level: Optional[int], options: PlanningOptions) -> int:
    """Explicit depth wins over the plan; ``max_depth`` caps either."""
    depth = depth_level or plan.complexity
    if options.max_depth is not None:
        depth = min(depth, options.max_depth)
    return max(1, min(depth, 4))


def resolve_include_code(plan: ActionPlan, options: PlanningOptions) -> bool:
    if options.include_code_examples is not None:
        return options.include_code_examples
    if plan.include_code_examples is not None:
        return plan.include_code_examples
    return bool(options.tech_stack)


class ResearchPipeline:
    """Runs the full research flow for one query at a time.

    Providers are optional and injectable; ``from_config`` builds the
    default set from configured keys.

    Attributes:
        config: Research configuration
        llm: Vendor-agnostic LLM client
        web: Web search provider, if any
        papers: Paper search provider, if any
        docs: Documentation provider, if any
    """

    def __init__(
        self,
        config: ResearchConfig,
        llm: Optional[LLMClient] = None,
        *,
        web: Optional[WebSearchProvider] = None,
        papers: Optional[PaperSearchProvider] = None,
        docs: Optional[DocsProvider] = None,
    ):
        self.config = config
        self.llm = llm or LLMClient(config)
        self.web = web
        self.papers = papers
        self.docs = docs

    @classmethod
    def from_config(cls, config: ResearchConfig) -> "ResearchPipeline":
        llm = LLMClient(config)
        web = None
        perplexity_key = config.get_api_key("perplexity")
        if perplexity_key:
            web = PerplexitySearchProvider(
                api_key=perplexity_key,
                model=config.perplexity_model,
                timeout=config.perplexity_timeout,
                max_tokens=config.perplexity_max_tokens,
            )
        else:
            logger.info("Pipeline: no Perplexity key, web search disabled")
        return cls(
            config,
            llm,
            web=web,
            papers=ArxivSearchProvider(config.arxiv, llm),
            docs=Context7DocsProvider(
                command=config.context7_command,
                tokens=config.context7_tokens,
                enabled=config.context7_enabled,
            ),
        )

    async def run(
        self,
        query: str,
        enriched_context: Optional[str] = None,
        depth_level: Optional[int] = None,
        options: Optional[PlanningOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineOutput:
        """Research ``query`` end to end.

        Args:
            query: Research question
            enriched_context: Free-text project background
            depth_level: Explicit depth (1-4); the plan's complexity otherwise
            options: Constraints, tech stack, sub-questions, max depth
            on_progress: Observer or ``callable(step, remaining)``

        Returns:
            PipelineOutput with markdown, structured result, sections and
            executive summary

        Raises:
            ConfigurationError: If no inference provider key is configured
        """
        if not self.config.has_inference_provider():
            raise ConfigurationError(
                "No inference provider configured. Set GEMINI_API_KEY, OPENAI_API_KEY "
                "or ANTHROPIC_API_KEY.",
                setting="api_key",
            )

        started = time.perf_counter()
        options = options or PlanningOptions()
        progress = _Progress(on_progress)
        counters = RunCounters()

        connected_docs = await self._open_docs()
        try:
            return await self._run(
                query, enriched_context, depth_level, options, progress, counters, started
            )
        finally:
            if connected_docs:
                await self.docs.close()  # type: ignore[union-attr]

    async def _open_docs(self) -> bool:
        """Keep one Context7 session open for the run when possible."""
        if not isinstance(self.docs, Context7DocsProvider) or not self.docs.is_available:
            return False
        try:
            await self.docs.connect()
        except DocsUnavailableError as e:
            logger.warning("Pipeline: docs session unavailable, using per-call sessions: %s", e)
            return False
        return True

    async def _run(
        self,
        query: str,
        enriched_context: Optional[str],
        depth_level: Optional[int],
        options: PlanningOptions,
        progress: _Progress,
        counters: RunCounters,
        started: float,
    ) -> PipelineOutput:
        config, llm = self.config, self.llm

        # Plan
        progress.step("planning")
        plan = await generate_consensus_plan(
            ConsensusPlanner(config, llm, counters),
            query,
            enriched_context,
            options,
            timeout=PLANNING_TIMEOUT,
        )
        depth = resolve_depth(plan, depth_level, options)
        if depth > plan.complexity:
            plan = plan.model_copy(
                update={"steps": widen_steps_for_depth(plan.steps, plan.complexity, depth)}
            )
        include_code = resolve_include_code(plan, options)
        logger.info("Pipeline: depth %d, steps: %s", depth, ", ".join(plan.steps))

        # Gather
        progress.step("gathering")
        executor = DepthGatedExecutor(
            config, llm, web=self.web, papers=self.papers, docs=self.docs, counters=counters
        )
        execution = await executor.execute(
            ExecutionContext(
                query=query,
                enriched_context=enriched_context,
                depth=depth,
                plan=plan,
                options=options,
            )
        )

        progress.step("manifest")
        manifest = await ManifestExtractor(config, llm, counters).extract(execution, query)

        # Synthesize
        progress.step("synthesis")
        synthesizer = PhasedSynthesizer(config, llm, counters)
        synthesis = await synthesizer.synthesize(
            query,
            enriched_context,
            execution,
            options,
            manifest,
            include_code_examples=include_code,
        )

        progress.step("code_validation")
        code_validation = None
        if config.enable_code_validation:
            synthesis, code_validation = await CodeValidator(config, llm, counters).validate(
                synthesis, execution.doc_cache
            )

        progress.step("consistency")
        pvr = None
        if config.enable_pvr:
            synthesis, pvr = await PVRChecker(config, llm, counters).verify_and_reconcile(
                synthesis, manifest, execution
            )

        # Validate
        progress.step("challenge")
        challenger = Challenger(config, llm, counters)
        context = ChallengeContext.build(enriched_context, options, execution, include_code)
        section_ids = synthesis.section_ids()
        synthesis_text = synthesis.to_text()
        logger.info("Pipeline: running challenge and consensus in parallel")
        challenge, consensus = await asyncio.gather(
            challenger.challenge(query, synthesis_text, context, section_ids=section_ids),
            run_consensus_validation(config, llm, query, execution, counters)
            if depth >= 4
            else asyncio.sleep(0, result=None),
        )

        progress.step("vote")
        voter = SufficiencyVoter(config, llm, counters)
        verdict: SufficiencyVerdict = await voter.vote(
            query,
            synthesis_text,
            challenge,
            section_ids=section_ids,
            manifest=manifest,
            context=context,
        )
        state = DocumentState(synthesis=synthesis, verdict=verdict, challenge=challenge)

        # Repair
        progress.step("repair")
        improved = False
        if not verdict.sufficient:
            repair = RepairLoop(
                config,
                llm,
                synthesizer=synthesizer,
                challenger=challenger,
                voter=voter,
                executor=executor,
                counters=counters,
            )
            outcome = await repair.repair(
                state,
                RepairContext(
                    query=query,
                    execution=execution,
                    options=options,
                    enriched_context=enriched_context,
                    manifest=manifest,
                    challenge_context=context,
                    include_code_examples=include_code,
                ),
            )
            state, improved = outcome.state, outcome.improved

        # Output
        progress.step("output")
        sections = build_sections_from_result(
            state.synthesis,
            depth,
            challenge=state.challenge,
            verdict=state.verdict,
            consensus=consensus,
            improved=improved,
        )
        sections = await generate_section_summaries(sections, llm)

        result = ResearchResult(
            query=query,
            plan=plan,
            execution=execution,
            synthesis=state.synthesis,
            manifest=manifest,
            challenge=state.challenge,
            verdict=state.verdict,
            pvr=pvr,
            consensus=consensus,
            code_validation=code_validation,
            improved=improved,
            counters=counters,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        logger.info(
            "Pipeline: done in %.0fms (%d LLM calls, sufficient=%s, improved=%s)",
            result.duration_ms,
            counters.llm_calls,
            state.verdict.sufficient,
            improved,
        )
        return PipelineOutput(
            markdown=format_markdown(result, depth),
            structured_result=result,
            sections=sections,
            executive_summary=build_executive_summary(
                state.synthesis, depth, state.verdict, enriched_context, list(sections)
            ),
        )
