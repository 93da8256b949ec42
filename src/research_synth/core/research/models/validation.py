"""Validation models: challenge, votes, PVR and repair state."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from research_synth.core.research.models.enums import (
    ContradictionSeverity,
    CritiqueCategory,
    ReasonCode,
    VoteOutcome,
)
from research_synth.core.research.models.synthesis import OVERVIEW_SECTION, SynthesisOutput


# =============================================================================
# Challenge
# =============================================================================


class ChallengeCritique(BaseModel):
    """A gap flagged by the challenger."""

    section: str = Field(default=OVERVIEW_SECTION)
    issue: str


class ChallengeResult(BaseModel):
    """Challenger output."""

    critiques: list[ChallengeCritique] = Field(default_factory=list)
    has_significant_gaps: bool = Field(default=False)
    raw_response: str = Field(default="")

    def for_sections(self, sections: set[str]) -> list[ChallengeCritique]:
        return [c for c in self.critiques if c.section in sections]


# =============================================================================
# Voting
# =============================================================================


class CategorizedCritique(BaseModel):
    """One voter critique with severity and target section."""

    model_config = ConfigDict(frozen=True)

    category: CritiqueCategory
    section: str = Field(default=OVERVIEW_SECTION)
    issue: str


class VoteDetail(BaseModel):
    """One voter's parsed response."""

    model: str
    vote: VoteOutcome
    reasoning: str = Field(default="")
    critiques: list[CategorizedCritique] = Field(default_factory=list)

    def count(self, category: CritiqueCategory) -> int:
        return sum(1 for c in self.critiques if c.category == category)

    @property
    def major_count(self) -> int:
        return self.count(CritiqueCategory.MAJOR)

    @property
    def critical_count(self) -> int:
        return self.count(CritiqueCategory.CRITICAL)


class SufficiencyVerdict(BaseModel):
    """Aggregated vote result. Recomputed from scratch every round."""

    sufficient: bool
    critical_gaps: list[str] = Field(default_factory=list)
    stylistic_preferences: list[str] = Field(default_factory=list)
    failing_sections: list[str] = Field(
        default_factory=list, description="Ordered, unique; may contain 'global'"
    )
    details: list[VoteDetail] = Field(default_factory=list)
    votes_for: int = Field(default=0)
    votes_against: int = Field(default=0)
    median_major: float = Field(default=0.0)

    @classmethod
    def passing(cls) -> "SufficiencyVerdict":
        """Verdict used when voting is skipped or no vote could be counted."""
        return cls(sufficient=True)


class ConsensusResult(BaseModel):
    """Multi-model evaluation of the gathered evidence (depth 4)."""

    content: str = Field(default="")
    models: list[str] = Field(default_factory=list)


# =============================================================================
# PVR
# =============================================================================


class Contradiction(BaseModel):
    """Two claims from different sections that cannot both hold."""

    section_a: str
    section_b: str
    claim_a: str
    claim_b: str
    severity: ContradictionSeverity = Field(default=ContradictionSeverity.MEDIUM)
    reason_code: Optional[ReasonCode] = Field(default=None)
    explanation: str = Field(default="")


class PVRResult(BaseModel):
    """Cross-section consistency verdict."""

    is_consistent: bool = Field(default=True)
    entailment_score: float = Field(default=1.0, ge=0.0, le=1.0)
    contradictions: list[Contradiction] = Field(default_factory=list)
    sections_to_reroll: list[str] = Field(default_factory=list)
    verification_time_ms: float = Field(default=0.0)
    rerolled: bool = Field(default=False)


# =============================================================================
# Code validation
# =============================================================================


class CodeBlockCorrection(BaseModel):
    """Verdict on one code block checked against the docs."""

    block_index: int
    has_issues: bool = Field(default=False)
    reason: str = Field(default="")
    corrected_code: Optional[str] = Field(default=None)


class CodeValidationResult(BaseModel):
    """Outcome of code-vs-docs validation."""

    blocks_checked: int = Field(default=0)
    corrections: list[CodeBlockCorrection] = Field(default_factory=list)
    applied: int = Field(default=0)


# =============================================================================
# Repair state
# =============================================================================


class DocumentState(BaseModel):
    """A document together with the verdict that evaluated it.

    Replacing the document always replaces the verdict too.
    """

    synthesis: SynthesisOutput
    verdict: SufficiencyVerdict
    challenge: Optional[ChallengeResult] = Field(default=None)


class RunCounters(BaseModel):
    """Per-run call counters, passed explicitly to the stages that bump them."""

    llm_calls: int = Field(default=0)
    challenge_calls: int = Field(default=0)
    vote_rounds: int = Field(default=0)
    pvr_checks: int = Field(default=0)
    repair_iterations: int = Field(default=0)
    sections_rerolled: int = Field(default=0)
