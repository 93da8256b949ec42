"""Pydantic models for the research synthesis pipeline."""

from research_synth.core.research.models.enums import (
    ConfidenceLevel,
    ContradictionSeverity,
    CritiqueCategory,
    OutputFormat,
    ReasonCode,
    ToolName,
    VoteOutcome,
)
from research_synth.core.research.models.execution import (
    ArxivPaper,
    ArxivResult,
    DocEntry,
    DocumentationCache,
    ExecutionContext,
    ExecutionResult,
    SubQuestionResult,
    WebResult,
)
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.models.output import (
    ExecutiveSummary,
    PipelineOutput,
    ResearchResult,
    Section,
)
from research_synth.core.research.models.plan import (
    ActionPlan,
    ModelVote,
    PlanCandidate,
    PlanningOptions,
)
from research_synth.core.research.models.synthesis import (
    GLOBAL_SECTION,
    OVERVIEW_SECTION,
    SubQuestionAnswer,
    SynthesisOutput,
)
from research_synth.core.research.models.validation import (
    CategorizedCritique,
    ChallengeCritique,
    ChallengeResult,
    CodeBlockCorrection,
    CodeValidationResult,
    ConsensusResult,
    Contradiction,
    DocumentState,
    PVRResult,
    RunCounters,
    SufficiencyVerdict,
    VoteDetail,
)

__all__ = [
    # Enums
    "ConfidenceLevel",
    "ContradictionSeverity",
    "CritiqueCategory",
    "OutputFormat",
    "ReasonCode",
    "ToolName",
    "VoteOutcome",
    # Planning
    "ActionPlan",
    "ModelVote",
    "PlanCandidate",
    "PlanningOptions",
    # Execution
    "ArxivPaper",
    "ArxivResult",
    "DocEntry",
    "DocumentationCache",
    "ExecutionContext",
    "ExecutionResult",
    "SubQuestionResult",
    "WebResult",
    # Manifest / synthesis
    "GlobalManifest",
    "GLOBAL_SECTION",
    "OVERVIEW_SECTION",
    "SubQuestionAnswer",
    "SynthesisOutput",
    # Validation
    "CategorizedCritique",
    "ChallengeCritique",
    "ChallengeResult",
    "CodeBlockCorrection",
    "CodeValidationResult",
    "ConsensusResult",
    "Contradiction",
    "DocumentState",
    "PVRResult",
    "RunCounters",
    "SufficiencyVerdict",
    "VoteDetail",
    # Output
    "ExecutiveSummary",
    "PipelineOutput",
    "ResearchResult",
    "Section",
]
