"""Planning models: the action plan and the inputs that shape it."""

from typing import Optional

from pydantic import BaseModel, Field

from research_synth.core.research.models.enums import OutputFormat


class ModelVote(BaseModel):
    """Complexity proposed by one planning model."""

    model: str = Field(..., description="Model that proposed the plan")
    complexity: int = Field(..., description="Proposed complexity level")


class ActionPlan(BaseModel):
    """Plan selected for one research query.

    ``complexity`` doubles as the depth level that gates which capabilities
    run. ``steps`` is ordered and free of duplicates.
    """

    complexity: int = Field(..., ge=1, le=4)
    reasoning: str = Field(default="No reasoning provided")
    steps: list[str] = Field(default_factory=list)
    tools_to_skip: list[str] = Field(default_factory=list)
    include_code_examples: Optional[bool] = Field(
        default=None, description="Whether the answer should carry code (None = auto)"
    )
    output_format: OutputFormat = Field(default=OutputFormat.DETAILED)
    model_votes: list[ModelVote] = Field(default_factory=list)

    def has_step(self, step: str) -> bool:
        return step in self.steps


class PlanningOptions(BaseModel):
    """Caller-supplied hints for planning, execution and synthesis."""

    constraints: list[str] = Field(default_factory=list)
    papers_read: list[str] = Field(default_factory=list)
    tech_stack: list[str] = Field(default_factory=list)
    sub_questions: list[str] = Field(default_factory=list)
    max_depth: Optional[int] = Field(default=None, ge=1, le=4)
    include_code_examples: Optional[bool] = Field(default=None)
    output_format: OutputFormat = Field(default=OutputFormat.DETAILED)


class PlanCandidate(BaseModel):
    """A parsed proposal awaiting selection."""

    model: str
    plan: ActionPlan
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
