"""Pipeline stages for research synthesis and validation."""

from research_synth.core.research.workflows.base import ResearchStageBase
from research_synth.core.research.workflows.challenge import ChallengeContext, Challenger
from research_synth.core.research.workflows.code_validation import CodeValidator
from research_synth.core.research.workflows.execution import DepthGatedExecutor
from research_synth.core.research.workflows.manifest import ManifestExtractor
from research_synth.core.research.workflows.pipeline import ResearchPipeline
from research_synth.core.research.workflows.planning import (
    ConsensusPlanner,
    generate_consensus_plan,
)
from research_synth.core.research.workflows.pvr import PVRChecker
from research_synth.core.research.workflows.repair import RepairContext, RepairLoop, RepairOutcome
from research_synth.core.research.workflows.synthesis import PhasedSynthesizer
from research_synth.core.research.workflows.voting import (
    ConsensusValidator,
    SufficiencyVoter,
    run_consensus_validation,
)

__all__ = [
    "ChallengeContext",
    "Challenger",
    "CodeValidator",
    "ConsensusPlanner",
    "ConsensusValidator",
    "DepthGatedExecutor",
    "ManifestExtractor",
    "PVRChecker",
    "PhasedSynthesizer",
    "RepairContext",
    "RepairLoop",
    "RepairOutcome",
    "ResearchPipeline",
    "ResearchStageBase",
    "SufficiencyVoter",
    "generate_consensus_plan",
    "run_consensus_validation",
]
