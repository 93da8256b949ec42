"""Shared enums for research pipeline models."""

from enum import Enum


class ToolName(str, Enum):
    """Plan step identifiers understood by the executor.

    Plans may also carry other ``<name>_search`` steps proposed by a
    model; those are kept for display but never executed.
    """

    WEB_SEARCH = "perplexity_search"
    DEEP_ANALYSIS = "deep_analysis"
    LIBRARY_DOCS = "library_docs"
    ARXIV_SEARCH = "arxiv_search"
    CONSENSUS = "consensus"
    CHALLENGE = "challenge"
    SUB_QUESTIONS = "sub_questions"


class CritiqueCategory(str, Enum):
    """Severity taxonomy used by sufficiency voters.

    CRITICAL: factually wrong, unsafe, or fails to answer the question
    MAJOR: significant gap or unsupported claim that weakens the answer
    MINOR: small omission or imprecision
    PEDANTIC: style, formatting, or preference
    """

    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    PEDANTIC = "PEDANTIC"


class VoteOutcome(str, Enum):
    """A single voter's verdict."""

    SYNTHESIS_WINS = "synthesis_wins"
    CRITIQUE_WINS = "critique_wins"


class ContradictionSeverity(str, Enum):
    """Severity of a cross-section contradiction."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReasonCode(str, Enum):
    """Why two claims contradict each other."""

    NUMERIC_CONFLICT = "NUMERIC_CONFLICT"
    OPPOSITE_RECOMMENDATION = "OPPOSITE_RECOMMENDATION"
    TIME_CONFLICT = "TIME_CONFLICT"
    COST_CONFLICT = "COST_CONFLICT"
    MUTUAL_EXCLUSION = "MUTUAL_EXCLUSION"
    LOGIC_CONFLICT = "LOGIC_CONFLICT"


class ConfidenceLevel(str, Enum):
    """Overall confidence reported in the executive summary."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OutputFormat(str, Enum):
    """Requested report shape."""

    SUMMARY = "summary"
    DETAILED = "detailed"
    ACTIONABLE_STEPS = "actionable_steps"
