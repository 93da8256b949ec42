"""Tests for ResearchConfig and AppConfig loading.

Tests cover:
- Threshold clamping and arXiv validation
- API key lookup with environment fallback
- [research] TOML parsing (string commands, comma lists, booleans)
- Layered TOML loading and RESEARCH_SYNTH_* environment overrides
"""

import os

import pytest

from research_synth.config import AppConfig, ResearchConfig, get_config, set_config
from research_synth.config.parsing import _parse_str_list, _try_parse_bool
from research_synth.config.sub_configs import ArxivConfig, PipelineConfig


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch, tmp_path):
    """Hide real config files and RESEARCH_SYNTH_* variables."""
    for name in list(os.environ):
        if name.startswith("RESEARCH_SYNTH_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# ResearchConfig
# ---------------------------------------------------------------------------


class TestResearchConfigValidation:
    """Tests for __post_init__ clamping and validation."""

    def test_defaults(self):
        config = ResearchConfig()
        assert config.major_ceiling == 3
        assert config.entailment_threshold == 0.85
        assert config.global_spread_threshold == 3
        assert config.context7_command == ["npx", "-y", "@upstash/context7-mcp"]

    @pytest.mark.parametrize("value,expected", [(0, 1), (50, 20)])
    def test_major_ceiling_clamped(self, value, expected):
        with pytest.warns(UserWarning, match="major_ceiling"):
            config = ResearchConfig(major_ceiling=value)
        assert config.major_ceiling == expected

    def test_entailment_threshold_clamped(self):
        with pytest.warns(UserWarning, match="entailment_threshold"):
            config = ResearchConfig(entailment_threshold=1.5)
        assert config.entailment_threshold == 1.0

    def test_global_spread_threshold_minimum(self):
        with pytest.warns(UserWarning, match="global_spread_threshold"):
            config = ResearchConfig(global_spread_threshold=1)
        assert config.global_spread_threshold == 2

    def test_invalid_claims_per_section(self):
        with pytest.raises(ValueError, match="max_claims_per_section"):
            ResearchConfig(max_claims_per_section=0)

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"arxiv_min_interval": -1.0}, "arxiv_min_interval"),
            ({"arxiv_max_retries": 0}, "arxiv_max_retries"),
            ({"arxiv_max_results": 51}, "arxiv_max_results"),
        ],
    )
    def test_invalid_arxiv_settings(self, kwargs, field):
        with pytest.raises(ValueError, match=field):
            ResearchConfig(**kwargs)


class TestApiKeys:
    """Tests for key lookup."""

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        assert ResearchConfig(gemini_api_key="explicit").get_api_key("gemini") == "explicit"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = ResearchConfig()
        assert config.get_api_key("openai") == "sk-env"
        assert config.get_api_key("anthropic") is None
        assert config.get_api_key("unknown") is None

    def test_empty_env_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        assert ResearchConfig().get_api_key("anthropic") is None

    def test_perplexity_alone_is_not_inference(self):
        config = ResearchConfig(perplexity_api_key="pplx")
        assert config.has_inference_provider() is False
        assert config.configured_providers() == ["perplexity"]

    def test_configured_providers_order(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a")
        config = ResearchConfig(gemini_api_key="g")
        assert config.has_inference_provider() is True
        assert config.configured_providers() == ["gemini", "anthropic"]


class TestFromTomlDict:
    """Tests for [research] table parsing."""

    def test_string_command_and_comma_categories(self):
        config = ResearchConfig.from_toml_dict(
            {
                "context7_command": "node /opt/context7/server.js",
                "arxiv_categories": "cs.AI, cs.DB",
                "context7_enabled": "false",
                "major_ceiling": 5,
                "fast_model": "gpt-4.1-mini",
            }
        )
        assert config.context7_command == ["node", "/opt/context7/server.js"]
        assert config.arxiv_categories == ["cs.AI", "cs.DB"]
        assert config.context7_enabled is False
        assert config.major_ceiling == 5
        assert config.fast_model == "gpt-4.1-mini"

    def test_empty_table_uses_defaults(self):
        assert ResearchConfig.from_toml_dict({}) == ResearchConfig()

    def test_grouped_views(self):
        config = ResearchConfig(major_ceiling=4, arxiv_max_results=7, judge_model="claude-haiku")
        assert config.pipeline == PipelineConfig(major_ceiling=4)
        assert config.arxiv == ArxivConfig(max_results=7)
        assert config.models.judge_model == "claude-haiku"


# ---------------------------------------------------------------------------
# AppConfig
# ---------------------------------------------------------------------------


TOML = """
[logging]
level = "debug"
structured = "yes"

[research]
major_ceiling = 4
entailment_threshold = 0.9
arxiv_categories = ["cs.IR"]
"""


class TestAppConfigLoading:
    """Tests for layered TOML and environment loading."""

    def test_explicit_file(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text(TOML)

        config = AppConfig.from_env(str(path))

        assert config.log_level == "DEBUG"
        assert config.structured_logging is True
        assert config.research.major_ceiling == 4
        assert config.research.entailment_threshold == 0.9
        assert config.research.arxiv_categories == ["cs.IR"]

    def test_project_file_overrides_user_file(self, tmp_path):
        home = tmp_path / "home"
        home.mkdir()
        (home / ".research-synth.toml").write_text("[research]\nmajor_ceiling = 6\n")
        (tmp_path / "research-synth.toml").write_text("[research]\nmajor_ceiling = 2\n")

        assert AppConfig.from_env().research.major_ceiling == 2

    def test_xdg_file(self, tmp_path):
        xdg_dir = tmp_path / "xdg" / "research-synth"
        xdg_dir.mkdir(parents=True)
        (xdg_dir / "config.toml").write_text('[logging]\nlevel = "warning"\n')

        assert AppConfig.from_env().log_level == "WARNING"

    def test_config_file_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "env.toml"
        path.write_text(TOML)
        monkeypatch.setenv("RESEARCH_SYNTH_CONFIG_FILE", str(path))

        assert AppConfig.from_env().research.major_ceiling == 4

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text(TOML)
        monkeypatch.setenv("RESEARCH_SYNTH_MAJOR_CEILING", "7")
        monkeypatch.setenv("RESEARCH_SYNTH_LOG_LEVEL", "error")
        monkeypatch.setenv("RESEARCH_SYNTH_ENABLE_PVR", "off")
        monkeypatch.setenv("RESEARCH_SYNTH_FAST_MODEL", "claude-haiku")
        monkeypatch.setenv("RESEARCH_SYNTH_CONTEXT7_COMMAND", "bunx context7")
        monkeypatch.setenv("RESEARCH_SYNTH_ARXIV_CATEGORIES", "cs.AI,cs.SE")

        config = AppConfig.from_env(str(path))

        assert config.log_level == "ERROR"
        assert config.research.major_ceiling == 7
        assert config.research.enable_pvr is False
        assert config.research.fast_model == "claude-haiku"
        assert config.research.context7_command == ["bunx", "context7"]
        assert config.research.arxiv_categories == ["cs.AI", "cs.SE"]

    def test_unparseable_env_value_ignored(self, monkeypatch):
        monkeypatch.setenv("RESEARCH_SYNTH_ENTAILMENT_THRESHOLD", "high")
        assert AppConfig.from_env().research.entailment_threshold == 0.85

    def test_env_values_are_clamped(self, monkeypatch):
        monkeypatch.setenv("RESEARCH_SYNTH_MAJOR_CEILING", "0")
        with pytest.warns(UserWarning, match="major_ceiling"):
            config = AppConfig.from_env()
        assert config.research.major_ceiling == 1

    def test_invalid_toml_records_warning(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[research\nmajor_ceiling = ")

        config = AppConfig.from_env(str(path))

        assert config.research == ResearchConfig()
        assert len(config.startup_warnings) == 1
        assert "broken.toml" in config.startup_warnings[0]

    def test_research_not_a_table(self, tmp_path):
        path = tmp_path / "odd.toml"
        path.write_text('research = "yes"\n')

        config = AppConfig.from_env(str(path))

        assert any("[research]" in w for w in config.startup_warnings)

    def test_missing_explicit_file(self, tmp_path):
        config = AppConfig.from_env(str(tmp_path / "absent.toml"))
        assert config.log_level == "INFO"


def test_global_config_roundtrip():
    config = AppConfig(log_level="DEBUG")
    set_config(config)
    try:
        assert get_config() is config
    finally:
        set_config(None)


@pytest.mark.parametrize(
    "raw,expected",
    [("yes", True), ("OFF", False), (True, True), ("maybe", None)],
)
def test_try_parse_bool(raw, expected):
    assert _try_parse_bool(raw) is expected


def test_parse_str_list():
    assert _parse_str_list(" a, ,b ") == ["a", "b"]
    assert _parse_str_list(["x", " y "]) == ["x", "y"]
    assert _parse_str_list(None) == []
