"""Configuration package for research-synth.

Sub-modules:
    parsing      – Boolean/list/number parsing helpers
    sub_configs  – PipelineConfig, ArxivConfig, ModelRoleConfig
    research     – ResearchConfig dataclass
    loader       – AppConfig loading mixin (_AppConfigLoader)
    settings     – AppConfig dataclass, get_config/set_config globals
"""

from research_synth.config.parsing import (  # noqa: F401
    _parse_bool,
    _parse_str_list,
    _try_parse_bool,
)
from research_synth.config.research import ResearchConfig  # noqa: F401
from research_synth.config.settings import (  # noqa: F401
    AppConfig,
    get_config,
    set_config,
)
from research_synth.config.sub_configs import (  # noqa: F401
    ArxivConfig,
    ModelRoleConfig,
    PipelineConfig,
)
