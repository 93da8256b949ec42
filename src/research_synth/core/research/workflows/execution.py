"""Depth-gated evidence gathering.

Capabilities are gated by depth (1..4) using ``DEPTH_GATES``; the planner
filters plan steps with the same table, so a step the plan keeps is
always one the executor may run.

Execution has two phases:

- Phase 1 runs every permitted gathering task concurrently (web search,
  arXiv search with paper summaries, docs per tech-stack entry, one web
  search per sub-question). A failing task leaves its slot empty.
- Phase 2 runs the deep-analysis LLM pass, which reads Phase 1 web
  results, so it starts only after Phase 1 settles.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Iterable, Optional

from research_synth.config.research import ResearchConfig
from research_synth.core.errors.search import SearchProviderError
from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.enums import ToolName
from research_synth.core.research.models.execution import (
    ArxivPaper,
    ArxivResult,
    DocEntry,
    DocumentationCache,
    ExecutionContext,
    ExecutionResult,
    SubQuestionResult,
)
from research_synth.core.research.models.validation import RunCounters
from research_synth.core.research.workflows._json_parsing import extract_content
from research_synth.core.research.workflows._protocols import (
    DocsProvider,
    PaperSearchProvider,
    WebSearchProvider,
)
from research_synth.core.research.workflows.base import ResearchStageBase

logger = logging.getLogger(__name__)

# =============================================================================
# Depth gating
# =============================================================================

DEPTH_GATES: dict[ToolName, int] = {
    ToolName.WEB_SEARCH: 1,
    ToolName.DEEP_ANALYSIS: 2,
    ToolName.LIBRARY_DOCS: 3,
    ToolName.ARXIV_SEARCH: 4,
    ToolName.CONSENSUS: 4,
}

# Substrings that identify a gated capability inside free-form step names
_GATE_KEYWORDS: list[tuple[tuple[str, ...], ToolName]] = [
    (("consensus",), ToolName.CONSENSUS),
    (("arxiv", "paper"), ToolName.ARXIV_SEARCH),
    (("library", "context", "docs"), ToolName.LIBRARY_DOCS),
    (("deep", "thinking"), ToolName.DEEP_ANALYSIS),
    (("perplexity", "web"), ToolName.WEB_SEARCH),
]

PAPER_SUMMARY_MAX_CHARS = 300
PAPER_SUMMARY_TIMEOUT = 30.0


def enabled_capabilities(depth: int) -> set[ToolName]:
    """Capabilities permitted at ``depth``; monotone in depth."""
    return {tool for tool, min_depth in DEPTH_GATES.items() if depth >= min_depth}


def capability_for_step(step: str) -> Optional[ToolName]:
    """Map a plan step name to the gated capability it invokes, if any."""
    lowered = step.lower()
    for keywords, tool in _GATE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return tool
    return None


def step_min_depth(step: str) -> int:
    capability = capability_for_step(step)
    return DEPTH_GATES[capability] if capability else 1


def filter_steps_for_depth(steps: Iterable[str], depth: int) -> list[str]:
    """Drop steps gated above ``depth``, keeping order and uniqueness."""
    kept: list[str] = []
    for step in steps:
        if step_min_depth(step) <= depth and step not in kept:
            kept.append(step)
    return kept


def widen_steps_for_depth(steps: Iterable[str], planned_depth: int, depth: int) -> list[str]:
    """Add the capabilities unlocked between ``planned_depth`` and ``depth``.

    The planner drops steps gated above the complexity it chose, so an
    explicit deeper run would otherwise never reach them.
    """
    widened = list(steps)
    for tool, min_depth in DEPTH_GATES.items():
        if planned_depth < min_depth <= depth and not any(
            capability_for_step(s) == tool for s in widened
        ):
            widened.append(tool.value)
    return widened


def is_capability_enabled(steps: Iterable[str], depth: int, capability: ToolName) -> bool:
    """True when the plan asks for ``capability`` and the depth permits it."""
    if capability not in enabled_capabilities(depth):
        return False
    return any(capability_for_step(s) == capability for s in steps)


# =============================================================================
# Prompts
# =============================================================================


def with_context(main: str, context: Optional[str]) -> str:
    return f"{main}\n\nContext: {context}" if context else main


def build_deep_analysis_prompt(
    query: str,
    context: Optional[str],
    search_results: Optional[str],
) -> str:
    context_block = f"**Context:**\n{context}\n\n" if context else ""
    return f"""You are a research analyst providing deep technical analysis. Analyze the following research query comprehensively.

**Research Query:** {query}

{context_block}**Web Search Results:**
{search_results or "No search results available yet."}

---

**Your Analysis Should Cover:**

1. **Key Insights and Findings**
   - What are the most important discoveries from the search results?
   - What patterns or trends emerge?
   - What are the consensus views vs. contrarian perspectives?

2. **Technical Details and Nuances**
   - Dive deep into the technical implementation details
   - Explain complex concepts clearly
   - Highlight important edge cases or gotchas

3. **Practical Implications**
   - How does this apply to real-world scenarios?
   - What are the trade-offs involved?
   - What should practitioners consider?

4. **Potential Challenges and Considerations**
   - What are the limitations or risks?
   - What could go wrong?
   - What are common mistakes to avoid?

5. **Recommendations**
   - Based on the analysis, what approach would you recommend?
   - What are the next steps for someone implementing this?

Provide a thorough, well-structured analysis. Be specific and cite evidence from the search results where applicable."""


def _truncate_summary(text: str) -> str:
    if len(text) > PAPER_SUMMARY_MAX_CHARS:
        return text[: PAPER_SUMMARY_MAX_CHARS - 3] + "..."
    return text


# =============================================================================
# Executor
# =============================================================================


class DepthGatedExecutor(ResearchStageBase):
    """Runs the gathering tasks a plan and depth permit.

    Providers are optional; a missing provider disables its capability.
    """

    stage_name = "Exec"

    def __init__(
        self,
        config: ResearchConfig,
        llm: LLMClient,
        *,
        web: Optional[WebSearchProvider] = None,
        papers: Optional[PaperSearchProvider] = None,
        docs: Optional[DocsProvider] = None,
        counters: Optional[RunCounters] = None,
    ):
        super().__init__(config, llm, counters)
        self.web = web
        self.papers = papers
        self.docs = docs

    @property
    def docs_available(self) -> bool:
        return self.docs is not None and self.docs.is_available

    async def execute(self, ctx: ExecutionContext) -> ExecutionResult:
        """Gather evidence for one run.

        Args:
            ctx: Query, context, depth, plan and options

        Returns:
            ExecutionResult; slots for failed or disabled tasks stay empty
        """
        result = ExecutionResult()
        steps = ctx.plan.steps
        skip = set(ctx.plan.tools_to_skip)
        options = ctx.options

        run_web = self.web is not None and is_capability_enabled(
            steps, ctx.depth, ToolName.WEB_SEARCH
        )
        run_deep = self.has_llm and is_capability_enabled(steps, ctx.depth, ToolName.DEEP_ANALYSIS)
        run_arxiv = (
            self.papers is not None
            and is_capability_enabled(steps, ctx.depth, ToolName.ARXIV_SEARCH)
            and ToolName.ARXIV_SEARCH.value not in skip
        )
        run_docs = (
            self.docs_available
            and bool(options.tech_stack)
            and is_capability_enabled(steps, ctx.depth, ToolName.LIBRARY_DOCS)
        )

        logger.info("Exec: Phase 1 gathering data in parallel (depth %d)", ctx.depth)
        tasks: list[Awaitable[None]] = []
        labels: list[str] = []
        if run_web:
            tasks.append(self._gather_web(result, ctx))
            labels.append("web")
        if run_arxiv:
            tasks.append(self._gather_papers(result, ctx.query))
            labels.append("arxiv")
        if run_docs:
            tasks.append(self._gather_docs(result, ctx.query, options.tech_stack))
            labels.append("docs")
        if options.sub_questions and self.web is not None:
            tasks.append(self._gather_sub_questions(result, ctx, run_docs))
            labels.append("sub_questions")

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for label, outcome in zip(labels, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Exec: %s gathering failed: %s", label, outcome)

        if run_deep:
            logger.info("Exec: Phase 2 deep analysis")
            response = await self._generate(
                build_deep_analysis_prompt(ctx.query, ctx.enriched_context, result.web_content),
                self.config.deep_analysis_model,
            )
            if response.success:
                result.deep_analysis = extract_content(response.text)

        return result

    # ------------------------------------------------------------------
    # Phase 1 members; each writes only its own slot
    # ------------------------------------------------------------------

    async def _gather_web(self, result: ExecutionResult, ctx: ExecutionContext) -> None:
        assert self.web is not None
        logger.info("Exec: web search")
        try:
            result.web_result = await self.web.search(with_context(ctx.query, ctx.enriched_context))
        except SearchProviderError as e:
            logger.warning("Exec: web search failed: %s", e)

    async def _gather_papers(self, result: ExecutionResult, query: str) -> None:
        assert self.papers is not None
        logger.info("Exec: arXiv search")
        papers = await self.papers.search(query, self.config.arxiv_max_results)
        result.academic_papers = papers
        if papers.papers and self.has_llm:
            summarized = await self.summarize_papers(papers.papers)
            result.academic_papers = papers.model_copy(update={"papers": summarized})

    async def _gather_docs(
        self, result: ExecutionResult, query: str, tech_stack: list[str]
    ) -> None:
        logger.info("Exec: library docs for %s", ", ".join(tech_stack))
        fetched = await asyncio.gather(
            *(self.fetch_docs(lib, query) for lib in tech_stack)
        )
        cache = result.doc_cache or DocumentationCache()
        texts = []
        for lib, text in zip(tech_stack, fetched):
            if text:
                cache.base[lib] = DocEntry(content=text, topic=query, library=lib)
                texts.append(text)
        result.doc_cache = cache
        if texts:
            result.library_docs = "\n\n---\n\n".join(texts)

    async def _gather_sub_questions(
        self, result: ExecutionResult, ctx: ExecutionContext, with_docs: bool
    ) -> None:
        assert self.web is not None
        questions = ctx.options.sub_questions
        logger.info("Exec: %d sub-questions", len(questions))

        async def one(index: int, question: str) -> SubQuestionResult:
            sub = SubQuestionResult(question=question)
            try:
                sub.web_result = await self.web.search(with_context(question, ctx.enriched_context))
            except SearchProviderError as e:
                logger.warning("Exec: sub-question %d search failed: %s", index + 1, e)
            if with_docs:
                library = _library_mentioned(question, ctx.options.tech_stack)
                if library:
                    docs = await self.fetch_docs(library, question)
                    if docs:
                        sub.library_docs = docs
                        cache = result.doc_cache or DocumentationCache()
                        cache.sub_question_specific[index] = DocEntry(
                            content=docs, topic=question, library=library
                        )
                        result.doc_cache = cache
            return sub

        result.sub_question_results = list(
            await asyncio.gather(*(one(i, q) for i, q in enumerate(questions)))
        )

    # ------------------------------------------------------------------
    # Shared helpers (also used by gap-driven gathering during repair)
    # ------------------------------------------------------------------

    async def fetch_docs(self, library: str, topic: str) -> Optional[str]:
        """Docs for one library; None when not found or the lookup fails."""
        if not self.docs_available:
            return None
        assert self.docs is not None
        try:
            text = await self.docs.search_library_docs(library, topic)
        except SearchProviderError as e:
            logger.warning("Exec: docs lookup for %s failed: %s", library, e)
            return None
        if not text or text.startswith("Could not find library:"):
            logger.info("Exec: no docs found for %s", library)
            return None
        return text

    async def search_papers(self, query: str) -> Optional[ArxivResult]:
        """Paper search with summaries; None without a provider or on failure."""
        if self.papers is None:
            return None
        try:
            papers = await self.papers.search(query, self.config.arxiv_max_results)
        except SearchProviderError as e:
            logger.warning("Exec: paper search failed: %s", e)
            return None
        if papers.papers and self.has_llm:
            papers = papers.model_copy(update={"papers": await self.summarize_papers(papers.papers)})
        return papers

    async def summarize_papers(self, papers: list[ArxivPaper]) -> list[ArxivPaper]:
        """Shorten each abstract to under 300 characters.

        When the model call fails the abstract is truncated instead.
        """

        async def one(paper: ArxivPaper) -> ArxivPaper:
            response = await self._generate(
                f"Summarize in <300 chars: {paper.title}\n{paper.summary}",
                self.config.synthesis_model,
                timeout=PAPER_SUMMARY_TIMEOUT,
            )
            summary = extract_content(response.text) if response.success else paper.summary
            return paper.model_copy(update={"summary": _truncate_summary(summary)})

        return list(await asyncio.gather(*(one(p) for p in papers)))


def _library_mentioned(question: str, tech_stack: list[str]) -> Optional[str]:
    lowered = question.lower()
    for lib in tech_stack:
        if lib.lower() in lowered:
            return lib
    return None
