"""Phased synthesis of gathered evidence into a structured answer.

Without sub-questions a single call produces the whole document, split on
``<!-- SECTION:name -->`` delimiters. With sub-questions the work is
phased to keep each prompt small:

1. Overview for the main query only.
2. A ~500 word key-findings digest of the overview.
3. One call per sub-question, in parallel, each given the key findings so
   that sub-answers stay consistent with the overview.

Every prompt carries the global manifest block so that independently
generated sections quote the same numbers.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from research_synth.core.research.models.execution import (
    ArxivPaper,
    ExecutionResult,
    SubQuestionResult,
)
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.models.plan import PlanningOptions
from research_synth.core.research.models.synthesis import (
    OVERVIEW_SECTION,
    SubQuestionAnswer,
    SynthesisOutput,
)
from research_synth.core.research.workflows._json_parsing import extract_content
from research_synth.core.research.workflows.base import ResearchStageBase

logger = logging.getLogger(__name__)

SECTION_DELIMITER_RE = re.compile(r"<!--\s*SECTION:(\w+)\s*-->")
_LEADING_HEADER_RE = re.compile(r"^##\s+[^\n]+\n")
_SUB_QUESTION_ID_RE = re.compile(r"^q(\d+)$")

# (timeout seconds, max output tokens) per call type
SINGLE_PHASE_LIMITS = (120.0, 32000)
OVERVIEW_LIMITS = (60.0, 16000)
KEY_FINDINGS_LIMITS = (30.0, 2000)
SUB_QUESTION_LIMITS = (60.0, 8000)

NO_PROVIDER_MESSAGE = "No synthesis available - no inference provider configured."
FALLBACK_INSIGHTS = "This is a fallback response due to missing API key."
SUB_QUESTION_FAILED_MESSAGE = "No answer could be generated for this sub-question."

CITATION_GUIDE = """- **Use inline citations** to indicate source of information:
  - [perplexity:N] for web search findings (N is the source number listed above)
  - [context7:library-name] for library documentation/code
  - [arxiv:paper-id] for academic papers
  - Example: "LangSmith provides dataset management [context7:langsmith] which allows version control [perplexity:2]"
- Cite sources when making specific claims or showing code examples"""


# =============================================================================
# Parsing
# =============================================================================


def parse_markdown_sections(
    markdown: str, sub_questions: Optional[list[str]] = None
) -> SynthesisOutput:
    """Split a delimited synthesis into its sections.

    Each section runs from its delimiter to the next one; a leading
    ``## header`` line is dropped. ``qN`` sections take their question text
    from ``sub_questions[N-1]``. Text with no delimiters at all becomes the
    overview.

    Args:
        markdown: Model output with ``<!-- SECTION:name -->`` delimiters
        sub_questions: Sub-questions in order, used for ``qN`` titles

    Returns:
        SynthesisOutput
    """
    matches = list(SECTION_DELIMITER_RE.finditer(markdown))
    if not matches:
        return SynthesisOutput(overview=markdown.strip())

    overview = ""
    insights: Optional[str] = None
    answers: dict[str, SubQuestionAnswer] = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(markdown)
        content = markdown[match.end() : end].strip()
        content = _LEADING_HEADER_RE.sub("", content, count=1).strip()
        name = match.group(1)

        if name == OVERVIEW_SECTION:
            overview = content
        elif name == "additional_insights":
            insights = content
        else:
            q_match = _SUB_QUESTION_ID_RE.match(name)
            if q_match is None:
                logger.debug("Synthesis: ignoring unknown section %r", name)
                continue
            index = int(q_match.group(1)) - 1
            if sub_questions and 0 <= index < len(sub_questions):
                question = sub_questions[index]
            else:
                question = f"Question {name}"
            answers[name] = SubQuestionAnswer(question=question, answer=content)

    return SynthesisOutput(overview=overview, sub_questions=answers, additional_insights=insights)


def build_fallback_synthesis(execution: ExecutionResult) -> SynthesisOutput:
    """Evidence-only document used when no model can be called."""
    parts = []
    if execution.web_content:
        parts.append(f"**Key Findings:**\n{execution.web_content[:1500]}")
    if execution.papers:
        parts.append(f"**Relevant Papers:** {len(execution.papers)} papers found")
    if execution.library_docs:
        parts.append("**Library Documentation:** Available")
    return SynthesisOutput(
        overview="\n\n".join(parts) or NO_PROVIDER_MESSAGE,
        additional_insights=FALLBACK_INSIGHTS,
    )


# =============================================================================
# Prompt building
# =============================================================================


def format_paper_lines(papers: list[ArxivPaper]) -> str:
    return "\n".join(f"- **{p.title}** [arxiv:{p.id}]: {p.summary}" for p in papers)


def format_numbered_sources(sources: list[str]) -> str:
    if not sources:
        return "Not available"
    return " ".join(f"[{i}] {url}" for i, url in enumerate(sources, 1))


def _bullets(items: list[str]) -> str:
    return "- " + "\n- ".join(items)


def build_gap_context(gaps: list[str]) -> str:
    """Mandatory-constraint block appended to the context on full re-synthesis."""
    numbered = "\n".join(f"{i}. {gap}" for i, gap in enumerate(gaps, 1))
    return (
        f"\n\nCRITICAL GAPS TO ADDRESS:\n{numbered}\n\n"
        "You MUST address these gaps in your synthesis."
    )


def build_synthesis_prompt(
    query: str,
    enriched_context: Optional[str],
    execution: ExecutionResult,
    options: PlanningOptions,
    manifest: Optional[GlobalManifest] = None,
    *,
    main_query_only: bool = False,
    include_code_examples: bool = False,
) -> str:
    """Prompt for a whole-document synthesis or the phased overview.

    Args:
        main_query_only: Build the phase-1 overview prompt (no sub-question
            data and no section delimiters)
    """
    sections: list[str] = []
    scope = " for the MAIN QUERY ONLY (sub-questions handled separately)" if main_query_only else ""
    label = "Main Research Query" if main_query_only else "Original Research Query"
    sections.append(f"You are synthesizing research findings{scope}.\n\n**{label}:** {query}\n")

    if enriched_context:
        sections.append(f"**User's Context:**\n{enriched_context}\n")
    if options.constraints:
        suffix = "" if main_query_only else " to Respect"
        sections.append(f"**Constraints{suffix}:**\n{_bullets(options.constraints)}\n")
    if options.papers_read:
        sections.append(
            f"**Papers Already Read (don't re-summarize):**\n{_bullets(options.papers_read)}\n"
        )
    if include_code_examples:
        sections.append(
            "**Code Examples Required:**\n"
            "- Include practical, working code examples where relevant\n"
            "- Show implementation patterns and best practices\n"
            "- Use markdown code blocks with language tags\n"
        )

    sections.append("---\n\n**GATHERED RESEARCH DATA:**\n")

    if execution.web_content:
        heading = "Web Search" if main_query_only else "Web Search Results"
        sections.append(
            f"**{heading} [perplexity]:**\n{execution.web_content[:3000]}\n\n"
            f"Sources: {format_numbered_sources(execution.web_sources)}\n"
        )
    if execution.papers:
        heading = "Academic Papers" if main_query_only else "Academic Papers Found"
        sections.append(f"**{heading} [arxiv]:**\n{format_paper_lines(execution.papers)}\n")
    if execution.library_docs:
        sections.append(f"**Library Documentation [context7]:**\n{execution.library_docs[:2000]}\n")
    if not main_query_only and execution.sub_question_results:
        sections.append(
            f"**Sub-Question Research:**\n{_format_sub_question_research(execution.sub_question_results)}\n"
        )
    if execution.deep_analysis:
        sections.append(
            f"**Deep Analysis [deep_analysis]:**\n{extract_content(execution.deep_analysis)[:2000]}\n"
        )

    if manifest is not None and not manifest.is_empty:
        sections.append(manifest.to_prompt_block() + "\n")

    if main_query_only:
        sections.append(
            "---\n\n**YOUR TASK:**\n\n"
            "Write a comprehensive answer to the main query. Be thorough and detailed.\n\n"
            "**Important:**\n"
            "- Include code examples where relevant (in markdown blocks)\n"
            f"{CITATION_GUIDE}\n"
            "- Use the exact values from GLOBAL FACTS when quoting numbers\n"
            "- This is ONLY for the main query - sub-questions handled separately\n"
            "- Be comprehensive, don't artificially limit length\n"
        )
    else:
        sub_sections = "\n\n".join(
            f"<!-- SECTION:q{i} -->\n## Q{i}: {q}\n[Comprehensive answer - multiple paragraphs with examples]"
            for i, q in enumerate(options.sub_questions, 1)
        )
        sections.append(
            "---\n\n**YOUR TASK:**\n\n"
            "Synthesize ALL the above research into a **unified, cohesive answer** "
            "using this EXACT format with section delimiters:\n\n"
            "<!-- SECTION:overview -->\n## Overview\n"
            "[Comprehensive answer to the main query - multiple paragraphs, be thorough and detailed]\n\n"
            f"{sub_sections}\n\n"
            "<!-- SECTION:additional_insights -->\n## Additional Insights\n"
            "[Optional: extra recommendations, caveats, or implementation tips]\n\n"
            "**Important:**\n"
            "- Use the EXACT section delimiters shown above: <!-- SECTION:name -->\n"
            "- Be comprehensive and thorough in each section\n"
            "- Include code examples in markdown code blocks where helpful\n"
            f"{CITATION_GUIDE}\n"
            "- Use the exact values from GLOBAL FACTS when quoting numbers\n"
            "- Don't artificially limit your response length\n"
        )

    return "\n".join(sections)


def _format_sub_question_research(results: list[SubQuestionResult]) -> str:
    entries = []
    for sub in results:
        tags = []
        if sub.web_result:
            tags.append("[perplexity]")
        if sub.library_docs:
            tags.append("[context7]")
        content = sub.web_result.content[:500] if sub.web_result and sub.web_result.content else "No results"
        entries.append(f"**Q: {sub.question}** {' '.join(tags)}\n{content}")
    return "\n\n".join(entries)


def build_key_findings_prompt(main_synthesis: str, query: str) -> str:
    return f"""Extract the KEY FINDINGS from this research synthesis in ~500 words.

Original Query: {query}

Synthesis:
{main_synthesis}

---

Write a concise summary of:
1. Main conclusions
2. Important patterns/principles discovered
3. Critical technical details (API names, approach names, etc.)
4. Any warnings or caveats

This will be used to ensure sub-questions don't contradict the main findings.

Keep it under 500 words, be specific."""


def build_sub_question_evidence(
    execution: ExecutionResult, index: int, *, web_chars: int = 2000, doc_chars: int = 1500
) -> str:
    """Evidence block for sub-question ``index`` (0-based).

    Shared by phase-3 synthesis and section regeneration during re-rolls
    and repairs.
    """
    sub = execution.sub_question_results[index] if index < len(execution.sub_question_results) else None
    parts: list[str] = []
    if sub and sub.web_result and sub.web_result.content:
        parts.append(
            f"**Web Search [perplexity]:**\n{sub.web_result.content[:web_chars]}\n\n"
            f"Sources: {format_numbered_sources(sub.web_result.sources)}\n"
        )
    if execution.papers:
        parts.append(f"**Academic Papers [arxiv]:**\n{format_paper_lines(execution.papers)}\n")
    if sub and sub.library_docs:
        parts.append(f"**Library Documentation [context7]:**\n{sub.library_docs[:doc_chars]}\n")
    elif execution.library_docs:
        parts.append(f"**Shared Library Documentation [context7]:**\n{execution.library_docs[:doc_chars]}\n")
    return "\n".join(parts)


def build_section_evidence(execution: ExecutionResult, section_id: str) -> str:
    """Evidence for any section id (``overview`` or ``qN``)."""
    q_match = _SUB_QUESTION_ID_RE.match(section_id)
    if q_match is not None:
        return build_sub_question_evidence(execution, int(q_match.group(1)) - 1)
    parts = []
    if execution.web_content:
        parts.append(
            f"**Web Search [perplexity]:**\n{execution.web_content[:3000]}\n\n"
            f"Sources: {format_numbered_sources(execution.web_sources)}\n"
        )
    if execution.papers:
        parts.append(f"**Academic Papers [arxiv]:**\n{format_paper_lines(execution.papers)}\n")
    if execution.library_docs:
        parts.append(f"**Library Documentation [context7]:**\n{execution.library_docs[:2000]}\n")
    return "\n".join(parts)


def build_sub_question_prompt(
    sub_question: str,
    key_findings: str,
    evidence: str,
    manifest: Optional[GlobalManifest] = None,
) -> str:
    sections = [
        "You are answering a SUB-QUESTION that is part of a larger research query.\n\n"
        f"**Sub-Question:** {sub_question}\n\n"
        f"**Key Findings from Main Research (ensure consistency):**\n{key_findings}\n\n"
        "---\n\n**GATHERED DATA FOR THIS SUB-QUESTION:**\n",
        evidence,
    ]
    if manifest is not None and not manifest.is_empty:
        sections.append(manifest.to_prompt_block() + "\n")
    sections.append(
        "---\n\n**YOUR TASK:**\n\n"
        "Answer the sub-question thoroughly. Ensure your answer:\n"
        "- Aligns with the key findings above (don't contradict)\n"
        "- Uses the exact values from GLOBAL FACTS for any number it states\n"
        "- Uses inline citations: [perplexity:N], [context7:library], [arxiv:id]\n"
        "- Includes code examples if relevant\n"
        "- Leverages academic papers if relevant to this specific question\n"
        "- Is comprehensive and detailed\n\n"
        "Don't artificially limit your response length."
    )
    return "\n".join(sections)


# =============================================================================
# Synthesizer
# =============================================================================


class PhasedSynthesizer(ResearchStageBase):
    """Turns an ``ExecutionResult`` into a ``SynthesisOutput``."""

    stage_name = "Synthesis"

    async def synthesize(
        self,
        query: str,
        enriched_context: Optional[str],
        execution: ExecutionResult,
        options: Optional[PlanningOptions] = None,
        manifest: Optional[GlobalManifest] = None,
        *,
        include_code_examples: bool = False,
    ) -> SynthesisOutput:
        """Synthesize the gathered evidence.

        Uses the phased path when sub-questions exist. Never raises: without
        a provider, or when the single-phase call fails, the evidence-only
        fallback document is returned.
        """
        options = options or PlanningOptions()
        if not self.has_llm:
            logger.warning("Synthesis: no inference provider, using fallback synthesis")
            return build_fallback_synthesis(execution)

        if options.sub_questions:
            logger.info("Synthesis: phased approach for %d sub-questions", len(options.sub_questions))
            return await self._synthesize_phased(
                query, enriched_context, execution, options, manifest, include_code_examples
            )

        logger.info("Synthesis: single-phase synthesis")
        timeout, max_tokens = SINGLE_PHASE_LIMITS
        response = await self._generate(
            build_synthesis_prompt(
                query,
                enriched_context,
                execution,
                options,
                manifest,
                include_code_examples=include_code_examples,
            ),
            self.config.synthesis_model,
            timeout=timeout,
            max_output_tokens=max_tokens,
        )
        if not response.success or not response.text.strip():
            return build_fallback_synthesis(execution)
        return parse_markdown_sections(response.text, options.sub_questions)

    async def resynthesize_with_gaps(
        self,
        query: str,
        enriched_context: Optional[str],
        execution: ExecutionResult,
        gaps: list[str],
        options: Optional[PlanningOptions] = None,
        manifest: Optional[GlobalManifest] = None,
        *,
        include_code_examples: bool = False,
    ) -> SynthesisOutput:
        """Full re-synthesis with the gaps appended as mandatory constraints."""
        logger.info("Synthesis: full re-synthesis addressing %d gaps", len(gaps))
        return await self.synthesize(
            query,
            (enriched_context or "") + build_gap_context(gaps),
            execution,
            options,
            manifest,
            include_code_examples=include_code_examples,
        )

    async def _synthesize_phased(
        self,
        query: str,
        enriched_context: Optional[str],
        execution: ExecutionResult,
        options: PlanningOptions,
        manifest: Optional[GlobalManifest],
        include_code_examples: bool,
    ) -> SynthesisOutput:
        logger.info("Synthesis: phase 1 main query overview")
        timeout, max_tokens = OVERVIEW_LIMITS
        main = await self._generate(
            build_synthesis_prompt(
                query,
                enriched_context,
                execution,
                options,
                manifest,
                main_query_only=True,
                include_code_examples=include_code_examples,
            ),
            self.config.synthesis_model,
            timeout=timeout,
            max_output_tokens=max_tokens,
        )
        if not main.success or not main.text.strip():
            logger.warning("Synthesis: overview failed, using fallback synthesis")
            return build_fallback_synthesis(execution)
        overview = main.text.strip()

        logger.info("Synthesis: phase 2 extracting key findings")
        key_findings = await self.extract_key_findings(overview, query)

        logger.info("Synthesis: phase 3 %d sub-questions in parallel", len(options.sub_questions))
        answers = await asyncio.gather(
            *(
                self.synthesize_sub_question(
                    question, key_findings, build_sub_question_evidence(execution, i), manifest
                )
                for i, question in enumerate(options.sub_questions)
            )
        )

        insights = None
        if execution.deep_analysis:
            insights = f"**Deep Analysis:** {extract_content(execution.deep_analysis)[:1000]}"

        return SynthesisOutput(
            overview=overview,
            sub_questions={
                f"q{i}": SubQuestionAnswer(question=question, answer=answer)
                for i, (question, answer) in enumerate(zip(options.sub_questions, answers), 1)
            },
            additional_insights=insights,
        )

    async def extract_key_findings(self, overview: str, query: str) -> str:
        """~500 word digest of the overview; the overview head on failure."""
        timeout, max_tokens = KEY_FINDINGS_LIMITS
        response = await self._generate(
            build_key_findings_prompt(overview, query),
            self.config.synthesis_model,
            timeout=timeout,
            max_output_tokens=max_tokens,
        )
        if response.success and response.text.strip():
            return response.text.strip()
        return overview[:3000]

    async def synthesize_sub_question(
        self,
        question: str,
        key_findings: str,
        evidence: str,
        manifest: Optional[GlobalManifest] = None,
    ) -> str:
        timeout, max_tokens = SUB_QUESTION_LIMITS
        response = await self._generate(
            build_sub_question_prompt(question, key_findings, evidence, manifest),
            self.config.synthesis_model,
            timeout=timeout,
            max_output_tokens=max_tokens,
        )
        if response.success and response.text.strip():
            return response.text.strip()
        logger.warning("Synthesis: sub-question failed: %s", question[:80])
        return SUB_QUESTION_FAILED_MESSAGE
