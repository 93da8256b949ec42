"""Pipeline output models."""

from typing import Optional

from pydantic import BaseModel, Field

from research_synth.core.research.models.enums import ConfidenceLevel
from research_synth.core.research.models.execution import ExecutionResult
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.models.plan import ActionPlan
from research_synth.core.research.models.synthesis import SynthesisOutput
from research_synth.core.research.models.validation import (
    ChallengeResult,
    CodeValidationResult,
    ConsensusResult,
    PVRResult,
    RunCounters,
    SufficiencyVerdict,
)


class Section(BaseModel):
    """A report section with a short summary for condensed views."""

    id: str
    title: str
    content: str
    summary: str = Field(default="")


class ExecutiveSummary(BaseModel):
    """At-a-glance outcome of a run."""

    query_answered: bool
    confidence: ConfidenceLevel
    key_recommendation: str
    budget_feasibility: Optional[str] = Field(default=None)
    available_sections: list[str] = Field(default_factory=list)


class ResearchResult(BaseModel):
    """Structured result of one run for programmatic consumers."""

    query: str
    plan: ActionPlan
    execution: ExecutionResult
    synthesis: SynthesisOutput
    manifest: Optional[GlobalManifest] = Field(default=None)
    challenge: Optional[ChallengeResult] = Field(default=None)
    verdict: Optional[SufficiencyVerdict] = Field(default=None)
    pvr: Optional[PVRResult] = Field(default=None)
    consensus: Optional[ConsensusResult] = Field(default=None)
    code_validation: Optional[CodeValidationResult] = Field(default=None)
    improved: bool = Field(default=False, description="True when a repair was accepted")
    counters: RunCounters = Field(default_factory=RunCounters)
    duration_ms: float = Field(default=0.0)


class PipelineOutput(BaseModel):
    """What ``ResearchPipeline.run`` returns."""

    markdown: str
    structured_result: ResearchResult
    sections: dict[str, Section] = Field(default_factory=dict)
    executive_summary: ExecutiveSummary
