"""AppConfig dataclass and global configuration state.

This module defines the ``AppConfig`` class (field declarations, logging
setup) and the global ``get_config`` / ``set_config`` helpers. Loading
logic lives in the ``_AppConfigLoader`` mixin (``loader.py``) which
``AppConfig`` inherits from.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from research_synth.config.loader import _AppConfigLoader
from research_synth.config.research import ResearchConfig


@dataclass
class AppConfig(_AppConfigLoader):
    """Application configuration with support for env vars and TOML overrides."""

    # Logging configuration
    log_level: str = "INFO"
    structured_logging: bool = False

    # Research pipeline configuration
    research: ResearchConfig = field(default_factory=ResearchConfig)

    startup_warnings: List[str] = field(default_factory=list, repr=False)

    def _add_startup_warning(self, message: str) -> None:
        if message and message not in self.startup_warnings:
            self.startup_warnings.append(message)

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level, logging.INFO)

        if self.structured_logging:
            # JSON-style structured logging
            formatter = logging.Formatter(
                '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
            )
        else:
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        handler = logging.StreamHandler()
        handler.setFormatter(formatter)

        root_logger = logging.getLogger("research_synth")
        root_logger.setLevel(level)
        root_logger.addHandler(handler)


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
