"""Research pipeline configuration.

Contains ResearchConfig: provider credentials, model routing, provider
tuning and validation thresholds for the research synthesis pipeline.
"""

from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional

from research_synth.config.parsing import _parse_bool, _parse_str_list
from research_synth.config.sub_configs import (
    ArxivConfig,
    ModelRoleConfig,
    PipelineConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class ResearchConfig:
    """Configuration for the research synthesis pipeline.

    API keys default to the conventional provider environment variables
    when not set explicitly, so an empty ``[research]`` table still picks
    up ``GEMINI_API_KEY`` and friends.

    Attributes:
        gemini_api_key: Gemini API key (reads GEMINI_API_KEY env var)
        openai_api_key: OpenAI API key (reads OPENAI_API_KEY env var)
        anthropic_api_key: Anthropic API key (reads ANTHROPIC_API_KEY env var)
        perplexity_api_key: Perplexity API key (reads PERPLEXITY_API_KEY env var)
        default_llm_timeout: Default per-call timeout for LLM requests in seconds
        default_max_output_tokens: Default output token cap for LLM requests
        default_temperature: Default sampling temperature
        synthesis_model: Model used for synthesis and repair
        fast_model: Cheap model for extraction, compression and classification
        challenge_model: Model used by the challenger
        judge_model: Model used to pick among plan proposals
        deep_analysis_model: Model used for the Phase 2 deep analysis
        perplexity_model: Perplexity model name
        perplexity_timeout: Perplexity request timeout in seconds
        perplexity_max_tokens: Perplexity response token cap
        arxiv_base_url: arXiv export API endpoint
        arxiv_min_interval: Minimum seconds between arXiv requests
        arxiv_max_retries: Attempts on HTTP 429 before giving up
        arxiv_max_results: Papers requested per arXiv search
        arxiv_categories: arXiv categories allowed in searches
        context7_command: Command used to launch the Context7 MCP server
        context7_tokens: Token budget requested per docs lookup
        context7_enabled: Master switch for documentation lookup
        major_ceiling: Median MAJOR count at which a synthesis fails
        entailment_threshold: Minimum PVR entailment score
        global_spread_threshold: Distinct failing sections that force full re-synthesis
        global_spread_max_per_section: Average critiques per section considered "thin"
        max_claims_per_section: Claims extracted per section for PVR
        claim_extraction_timeout: Seconds allowed per claim-extraction call
        enable_code_validation: Validate code blocks against fetched docs
        enable_pvr: Run cross-section consistency verification
    """

    # Provider credentials
    gemini_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    perplexity_api_key: Optional[str] = None

    # LLM call defaults
    default_llm_timeout: float = 30.0
    default_max_output_tokens: int = 10000
    default_temperature: float = 0.7

    # Model routing
    synthesis_model: str = "gemini-2.5-flash"
    fast_model: str = "gemini-2.5-flash-lite"
    challenge_model: str = "gemini-2.5-flash-lite"
    judge_model: str = "gemini-2.5-flash-lite"
    deep_analysis_model: str = "gemini-2.5-flash"

    # Perplexity
    perplexity_model: str = "sonar"
    perplexity_timeout: float = 60.0
    perplexity_max_tokens: int = 3000

    # arXiv
    arxiv_base_url: str = "http://export.arxiv.org/api/query"
    arxiv_min_interval: float = 3.0  # arXiv asks for one request every 3 seconds
    arxiv_max_retries: int = 3
    arxiv_max_results: int = 5
    arxiv_categories: List[str] = field(
        default_factory=lambda: ["cs.AI", "cs.LG", "cs.CL", "cs.CV", "cs.NE", "stat.ML"]
    )

    # Context7 documentation lookup
    context7_command: List[str] = field(
        default_factory=lambda: ["npx", "-y", "@upstash/context7-mcp"]
    )
    context7_tokens: int = 1000
    context7_enabled: bool = True

    # Validation thresholds
    major_ceiling: int = 3
    entailment_threshold: float = 0.85
    global_spread_threshold: int = 3
    global_spread_max_per_section: float = 1.0
    max_claims_per_section: int = 10
    claim_extraction_timeout: float = 15.0

    # Optional stages
    enable_code_validation: bool = True
    enable_pvr: bool = True

    _API_KEY_ENV_VARS: ClassVar[Dict[str, str]] = {
        "gemini": "GEMINI_API_KEY",
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "perplexity": "PERPLEXITY_API_KEY",
    }
    _INFERENCE_PROVIDERS: ClassVar[tuple[str, ...]] = ("gemini", "openai", "anthropic")
    _MAX_MAJOR_CEILING: ClassVar[int] = 20

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_thresholds()
        self._validate_arxiv_config()

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "ResearchConfig":
        """Create config from TOML dict (typically [research] section).

        Args:
            data: Dict from TOML parsing

        Returns:
            ResearchConfig instance
        """
        defaults = cls()

        # context7_command accepts either a shell-style string or a list
        context7_command = data.get("context7_command", defaults.context7_command)
        if isinstance(context7_command, str):
            context7_command = context7_command.split()

        arxiv_categories = data.get("arxiv_categories")
        if arxiv_categories is not None:
            arxiv_categories = _parse_str_list(arxiv_categories)
        else:
            arxiv_categories = defaults.arxiv_categories

        return cls(
            gemini_api_key=data.get("gemini_api_key"),
            openai_api_key=data.get("openai_api_key"),
            anthropic_api_key=data.get("anthropic_api_key"),
            perplexity_api_key=data.get("perplexity_api_key"),
            default_llm_timeout=float(data.get("default_llm_timeout", defaults.default_llm_timeout)),
            default_max_output_tokens=int(
                data.get("default_max_output_tokens", defaults.default_max_output_tokens)
            ),
            default_temperature=float(data.get("default_temperature", defaults.default_temperature)),
            synthesis_model=str(data.get("synthesis_model", defaults.synthesis_model)),
            fast_model=str(data.get("fast_model", defaults.fast_model)),
            challenge_model=str(data.get("challenge_model", defaults.challenge_model)),
            judge_model=str(data.get("judge_model", defaults.judge_model)),
            deep_analysis_model=str(data.get("deep_analysis_model", defaults.deep_analysis_model)),
            perplexity_model=str(data.get("perplexity_model", defaults.perplexity_model)),
            perplexity_timeout=float(data.get("perplexity_timeout", defaults.perplexity_timeout)),
            perplexity_max_tokens=int(data.get("perplexity_max_tokens", defaults.perplexity_max_tokens)),
            arxiv_base_url=str(data.get("arxiv_base_url", defaults.arxiv_base_url)),
            arxiv_min_interval=float(data.get("arxiv_min_interval", defaults.arxiv_min_interval)),
            arxiv_max_retries=int(data.get("arxiv_max_retries", defaults.arxiv_max_retries)),
            arxiv_max_results=int(data.get("arxiv_max_results", defaults.arxiv_max_results)),
            arxiv_categories=arxiv_categories,
            context7_command=list(context7_command),
            context7_tokens=int(data.get("context7_tokens", defaults.context7_tokens)),
            context7_enabled=_parse_bool(data.get("context7_enabled", True)),
            major_ceiling=int(data.get("major_ceiling", defaults.major_ceiling)),
            entailment_threshold=float(data.get("entailment_threshold", defaults.entailment_threshold)),
            global_spread_threshold=int(
                data.get("global_spread_threshold", defaults.global_spread_threshold)
            ),
            global_spread_max_per_section=float(
                data.get("global_spread_max_per_section", defaults.global_spread_max_per_section)
            ),
            max_claims_per_section=int(
                data.get("max_claims_per_section", defaults.max_claims_per_section)
            ),
            claim_extraction_timeout=float(
                data.get("claim_extraction_timeout", defaults.claim_extraction_timeout)
            ),
            enable_code_validation=_parse_bool(data.get("enable_code_validation", True)),
            enable_pvr=_parse_bool(data.get("enable_pvr", True)),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_thresholds(self) -> None:
        """Clamp validation thresholds to usable ranges (warns on clamp)."""
        if self.major_ceiling < 1:
            warnings.warn(
                f"major_ceiling={self.major_ceiling} must be at least 1; clamping to 1.",
                stacklevel=2,
            )
            self.major_ceiling = 1
        elif self.major_ceiling > self._MAX_MAJOR_CEILING:
            warnings.warn(
                f"major_ceiling={self.major_ceiling} exceeds maximum "
                f"({self._MAX_MAJOR_CEILING}); clamping to {self._MAX_MAJOR_CEILING}.",
                stacklevel=2,
            )
            self.major_ceiling = self._MAX_MAJOR_CEILING

        if not 0.0 <= self.entailment_threshold <= 1.0:
            clamped = min(max(self.entailment_threshold, 0.0), 1.0)
            warnings.warn(
                f"entailment_threshold={self.entailment_threshold} is outside [0, 1]; "
                f"clamping to {clamped}.",
                stacklevel=2,
            )
            self.entailment_threshold = clamped

        if self.global_spread_threshold < 2:
            warnings.warn(
                f"global_spread_threshold={self.global_spread_threshold} must be at least 2; "
                "clamping to 2.",
                stacklevel=2,
            )
            self.global_spread_threshold = 2

        if self.max_claims_per_section < 1:
            raise ValueError(
                f"Invalid max_claims_per_section: {self.max_claims_per_section}. Must be >= 1"
            )

    def _validate_arxiv_config(self) -> None:
        """Validate arXiv configuration fields.

        Raises:
            ValueError: If any arXiv config field has an invalid value.
        """
        if self.arxiv_min_interval < 0:
            raise ValueError(
                f"Invalid arxiv_min_interval: {self.arxiv_min_interval}. Must be >= 0"
            )
        if self.arxiv_max_retries < 1:
            raise ValueError(
                f"Invalid arxiv_max_retries: {self.arxiv_max_retries}. Must be >= 1"
            )
        if not 1 <= self.arxiv_max_results <= 50:
            raise ValueError(
                f"Invalid arxiv_max_results: {self.arxiv_max_results}. Must be between 1 and 50"
            )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_api_key(self, provider: str) -> Optional[str]:
        """Get the API key for a provider, falling back to its env var.

        Args:
            provider: One of ``gemini``, ``openai``, ``anthropic``, ``perplexity``

        Returns:
            API key string, or None when not configured
        """
        explicit = getattr(self, f"{provider}_api_key", None)
        if explicit:
            return explicit
        env_var = self._API_KEY_ENV_VARS.get(provider)
        if env_var:
            return os.environ.get(env_var) or None
        return None

    def has_inference_provider(self) -> bool:
        """Return True if at least one text-generation provider has a key."""
        return any(self.get_api_key(p) for p in self._INFERENCE_PROVIDERS)

    def configured_providers(self) -> List[str]:
        """List every provider with a usable key, in a stable order."""
        return [p for p in self._API_KEY_ENV_VARS if self.get_api_key(p)]

    @property
    def pipeline(self) -> PipelineConfig:
        """Validation thresholds as a frozen sub-config."""
        return PipelineConfig(
            major_ceiling=self.major_ceiling,
            entailment_threshold=self.entailment_threshold,
            global_spread_threshold=self.global_spread_threshold,
            global_spread_max_per_section=self.global_spread_max_per_section,
            max_claims_per_section=self.max_claims_per_section,
            claim_extraction_timeout=self.claim_extraction_timeout,
        )

    @property
    def arxiv(self) -> ArxivConfig:
        """arXiv settings as a frozen sub-config."""
        return ArxivConfig(
            base_url=self.arxiv_base_url,
            min_interval=self.arxiv_min_interval,
            max_retries=self.arxiv_max_retries,
            max_results=self.arxiv_max_results,
            categories=list(self.arxiv_categories),
        )

    @property
    def models(self) -> ModelRoleConfig:
        """Role-based model routing as a frozen sub-config."""
        return ModelRoleConfig(
            synthesis_model=self.synthesis_model,
            fast_model=self.fast_model,
            challenge_model=self.challenge_model,
            judge_model=self.judge_model,
            deep_analysis_model=self.deep_analysis_model,
        )
