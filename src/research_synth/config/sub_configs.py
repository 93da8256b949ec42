"""Nested sub-config dataclasses for ResearchConfig.

These provide typed, organized views over the flat ResearchConfig fields.
They are used as return types for ResearchConfig's grouped property
accessors (``config.pipeline``, ``config.arxiv``, ``config.models``) and
are what the pipeline components receive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class PipelineConfig:
    """Validation thresholds for the synthesis pipeline.

    Attributes:
        major_ceiling: Median per-voter MAJOR count at which a synthesis fails
        entailment_threshold: Minimum PVR entailment score to count as consistent
        global_spread_threshold: Distinct failing sections that trigger a
            full re-synthesis instead of per-section repair
        global_spread_max_per_section: Average critiques per failing section
            at or below which failures count as spread thinly
        max_claims_per_section: Claims extracted per section for PVR
        claim_extraction_timeout: Seconds allowed per claim-extraction call
        max_repair_iterations: Repair loop cap (always 1 today)
    """

    major_ceiling: int = 3
    entailment_threshold: float = 0.85
    global_spread_threshold: int = 3
    global_spread_max_per_section: float = 1.0
    max_claims_per_section: int = 10
    claim_extraction_timeout: float = 15.0
    max_repair_iterations: int = 1


@dataclass(frozen=True)
class ArxivConfig:
    """arXiv search configuration.

    Groups all ``arxiv_*`` fields from ResearchConfig.
    """

    base_url: str = "http://export.arxiv.org/api/query"
    min_interval: float = 3.0
    max_retries: int = 3
    max_results: int = 5
    categories: List[str] = field(
        default_factory=lambda: ["cs.AI", "cs.LG", "cs.CL", "cs.CV", "cs.NE", "stat.ML"]
    )


@dataclass(frozen=True)
class ModelRoleConfig:
    """Role-based model routing.

    Planning proposals and votes fan out across every configured vendor
    (see ``get_voting_configs``); the roles below pick single models for
    the remaining calls.
    """

    synthesis_model: str = "gemini-2.5-flash"
    fast_model: str = "gemini-2.5-flash-lite"
    challenge_model: str = "gemini-2.5-flash-lite"
    judge_model: str = "gemini-2.5-flash-lite"
    deep_analysis_model: str = "gemini-2.5-flash"
