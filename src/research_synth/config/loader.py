"""AppConfig loading logic.

Provides ``_AppConfigLoader``, a mixin class whose methods are inherited by
``AppConfig`` (defined in ``settings.py``). Splitting loading logic into its
own module keeps ``settings.py`` focused on field definitions.
"""

from __future__ import annotations

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, cast

if TYPE_CHECKING:
    from research_synth.config.settings import AppConfig

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from research_synth.config.parsing import (
    _parse_optional_float,
    _parse_optional_int,
    _parse_str_list,
    _try_parse_bool,
)
from research_synth.config.research import ResearchConfig

logger = logging.getLogger(__name__)

_ENV_PREFIX = "RESEARCH_SYNTH_"

# RESEARCH_SYNTH_<NAME> overrides for scalar ResearchConfig fields
_RESEARCH_ENV_FIELDS: Dict[str, str] = {
    "MAJOR_CEILING": "major_ceiling",
    "ENTAILMENT_THRESHOLD": "entailment_threshold",
    "GLOBAL_SPREAD_THRESHOLD": "global_spread_threshold",
    "MAX_CLAIMS_PER_SECTION": "max_claims_per_section",
    "SYNTHESIS_MODEL": "synthesis_model",
    "FAST_MODEL": "fast_model",
    "CHALLENGE_MODEL": "challenge_model",
    "JUDGE_MODEL": "judge_model",
    "ARXIV_MIN_INTERVAL": "arxiv_min_interval",
    "ARXIV_MAX_RESULTS": "arxiv_max_results",
    "CONTEXT7_ENABLED": "context7_enabled",
    "ENABLE_CODE_VALIDATION": "enable_code_validation",
    "ENABLE_PVR": "enable_pvr",
}


class _AppConfigLoader:
    """Mixin providing config-loading methods for ``AppConfig``.

    These methods are inherited by the ``AppConfig`` dataclass defined in
    ``settings.py``. At runtime ``self`` is always an ``AppConfig`` instance.
    """

    if TYPE_CHECKING:
        log_level: str
        structured_logging: bool
        research: ResearchConfig
        startup_warnings: List[str]

        def _add_startup_warning(self, message: str) -> None: ...

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "AppConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. Project TOML config (./research-synth.toml)
        3. User TOML config (~/.research-synth.toml)
        4. XDG config (~/.config/research-synth/config.toml)
        5. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get(f"{_ENV_PREFIX}CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            # Layered config loading (lowest to highest priority)
            xdg_config_home = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
            xdg_config = Path(xdg_config_home) / "research-synth" / "config.toml"
            if xdg_config.exists():
                config._load_toml(xdg_config)
                logger.debug("Loaded XDG config from %s", xdg_config)

            home_config = Path.home() / ".research-synth.toml"
            if home_config.exists():
                config._load_toml(home_config)
                logger.debug("Loaded user config from %s", home_config)

            project_config = Path("research-synth.toml")
            if project_config.exists():
                config._load_toml(project_config)
                logger.debug("Loaded project config from %s", project_config)

        config._load_env()
        return cast("AppConfig", config)

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning("Config file not found: %s", path)
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Error loading config file %s: %s", path, e)
            self._add_startup_warning(f"Could not load {path}: {e}")
            return

        # Logging settings
        if "logging" in data:
            log = data["logging"]
            if "level" in log:
                self.log_level = str(log["level"]).upper()
            if "structured" in log:
                parsed = _try_parse_bool(log["structured"])
                if parsed is not None:
                    self.structured_logging = parsed

        # Research pipeline settings
        if "research" in data:
            research_data = data["research"]
            if isinstance(research_data, dict):
                self.research = ResearchConfig.from_toml_dict(research_data)
            else:
                self._add_startup_warning(
                    f"Ignoring [research] in {path}: expected table/dict, got {type(research_data).__name__}"
                )

    def _load_env(self) -> None:
        """Apply environment variable overrides."""
        if level := os.environ.get(f"{_ENV_PREFIX}LOG_LEVEL"):
            self.log_level = level.upper()
        if structured := os.environ.get(f"{_ENV_PREFIX}STRUCTURED_LOGGING"):
            parsed = _try_parse_bool(structured)
            if parsed is not None:
                self.structured_logging = parsed

        if command := os.environ.get(f"{_ENV_PREFIX}CONTEXT7_COMMAND"):
            self.research.context7_command = command.split()
        if categories := os.environ.get(f"{_ENV_PREFIX}ARXIV_CATEGORIES"):
            self.research.arxiv_categories = _parse_str_list(categories)

        field_types = {f.name: f.type for f in fields(ResearchConfig)}
        for suffix, attr in _RESEARCH_ENV_FIELDS.items():
            raw = os.environ.get(f"{_ENV_PREFIX}{suffix}")
            if raw is None:
                continue
            value = self._coerce_env_value(raw, str(field_types.get(attr, "str")), attr)
            if value is not None:
                setattr(self.research, attr, value)

        # Re-run clamping after env overrides
        self.research.__post_init__()

    @staticmethod
    def _coerce_env_value(raw: str, type_name: str, name: str) -> Any:
        if "bool" in type_name:
            return _try_parse_bool(raw)
        if "int" in type_name:
            return _parse_optional_int(raw, name=name)
        if "float" in type_name:
            return _parse_optional_float(raw, name=name)
        return raw
