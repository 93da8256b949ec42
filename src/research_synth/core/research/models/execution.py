"""Models for gathered evidence (web results, papers, documentation)."""

from typing import Optional

from pydantic import BaseModel, Field

from research_synth.core.research.models.plan import ActionPlan, PlanningOptions


class WebResult(BaseModel):
    """Web search answer with its citation URLs (1-indexed in the text)."""

    content: str = Field(default="")
    sources: list[str] = Field(default_factory=list)
    model: Optional[str] = Field(default=None)

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


class ArxivPaper(BaseModel):
    """A paper returned by arXiv."""

    id: str = Field(..., description="arXiv identifier, e.g. 2401.01234v1")
    title: str
    summary: str = Field(default="")
    authors: list[str] = Field(default_factory=list)
    published: str = Field(default="")
    url: str = Field(default="")
    pdf_url: str = Field(default="")


class ArxivResult(BaseModel):
    """Papers matched for a query."""

    query: str = Field(default="")
    papers: list[ArxivPaper] = Field(default_factory=list)
    total_results: int = Field(default=0)


class DocEntry(BaseModel):
    """Documentation fetched for one library."""

    content: str
    topic: str
    library: Optional[str] = Field(default=None)


class DocumentationCache(BaseModel):
    """Authoritative docs, shared base plus per-sub-question lookups."""

    base: dict[str, DocEntry] = Field(default_factory=dict)
    sub_question_specific: dict[int, DocEntry] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.base and not self.sub_question_specific

    def combined(self) -> str:
        """All base docs joined for prompt injection."""
        return "\n\n---\n\n".join(
            f"### {name}\n{entry.content}" for name, entry in self.base.items()
        )


class SubQuestionResult(BaseModel):
    """Evidence gathered for one sub-question."""

    question: str
    web_result: Optional[WebResult] = Field(default=None)
    library_docs: Optional[str] = Field(default=None)


class ExecutionResult(BaseModel):
    """Everything Phase 1 and Phase 2 gathered for one run.

    Owned by a single pipeline run; gap-filling during repair adds papers
    or docs in place.
    """

    web_result: Optional[WebResult] = Field(default=None)
    deep_analysis: Optional[str] = Field(default=None)
    library_docs: Optional[str] = Field(default=None)
    academic_papers: Optional[ArxivResult] = Field(default=None)
    sub_question_results: list[SubQuestionResult] = Field(default_factory=list)
    doc_cache: Optional[DocumentationCache] = Field(default=None)

    @property
    def papers(self) -> list[ArxivPaper]:
        return self.academic_papers.papers if self.academic_papers else []

    @property
    def web_content(self) -> str:
        return self.web_result.content if self.web_result else ""

    @property
    def web_sources(self) -> list[str]:
        return self.web_result.sources if self.web_result else []


class ExecutionContext(BaseModel):
    """Inputs for the depth-gated executor."""

    query: str
    enriched_context: Optional[str] = Field(default=None)
    depth: int = Field(..., ge=1, le=4)
    plan: ActionPlan
    options: PlanningOptions = Field(default_factory=PlanningOptions)
