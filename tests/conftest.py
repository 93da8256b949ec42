"""Shared fixtures for research-synth tests.

Provides a configured ``ResearchConfig``, a ``MagicMock`` LLM client with
async generation methods, and sample evidence and synthesis documents.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from research_synth.config.research import ResearchConfig
from research_synth.core.providers.registry import LLMClient
from research_synth.core.research.models.execution import (
    ArxivPaper,
    ArxivResult,
    ExecutionResult,
    SubQuestionResult,
    WebResult,
)
from research_synth.core.research.models.synthesis import SubQuestionAnswer, SynthesisOutput
from tests.helpers import VOTERS, PromptRouter, completion

PROVIDER_ENV_VARS = ("GEMINI_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "PERPLEXITY_API_KEY")


@pytest.fixture(autouse=True)
def _clear_provider_env(monkeypatch):
    """Keep real API keys in the environment out of every test."""
    for var in PROVIDER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def research_config():
    return ResearchConfig(gemini_api_key="test-gemini-key")


@pytest.fixture
def mock_llm():
    """LLM client mock; every call succeeds with ``"{}"`` unless overridden."""
    llm = MagicMock(spec=LLMClient)
    llm.is_configured = True
    llm.generate = AsyncMock(return_value=completion("{}"))
    llm.generate_many = AsyncMock(
        side_effect=lambda prompt, configs, **kw: [completion("{}", model=c.model) for c in configs]
    )
    llm.get_voting_configs.return_value = list(VOTERS)
    llm.compress_text = AsyncMock(side_effect=lambda text, max_words: f"summary of {len(text)} chars")
    return llm


@pytest.fixture
def unconfigured_llm(mock_llm):
    mock_llm.is_configured = False
    mock_llm.get_voting_configs.return_value = []
    return mock_llm


@pytest.fixture
def router(mock_llm):
    """A ``PromptRouter`` already wired into ``mock_llm``."""
    prompt_router = PromptRouter()
    prompt_router.attach(mock_llm)
    return prompt_router


@pytest.fixture
def sample_execution():
    return ExecutionResult(
        web_result=WebResult(
            content="Redis handles 100,000 ops/sec on a single node. Latency: 0.5 ms.",
            sources=["https://www.redis.io/docs", "https://example.com/bench"],
        ),
        deep_analysis="Redis is the better fit for session caching.",
        academic_papers=ArxivResult(
            query="caching",
            papers=[
                ArxivPaper(
                    id="2401.01234v1",
                    title="Cache Eviction at Scale",
                    summary="A study of eviction policies.",
                    url="https://arxiv.org/abs/2401.01234v1",
                )
            ],
            total_results=1,
        ),
        sub_question_results=[
            SubQuestionResult(
                question="How does Redis persist data?",
                web_result=WebResult(content="RDB snapshots and AOF logs.", sources=[]),
            ),
            SubQuestionResult(
                question="What does it cost?",
                web_result=WebResult(content="Managed Redis starts at $15/month.", sources=[]),
            ),
        ],
    )


@pytest.fixture
def sample_synthesis():
    return SynthesisOutput(
        overview="Use Redis for session caching. It handles 100,000 ops/sec [perplexity:1].",
        sub_questions={
            "q1": SubQuestionAnswer(
                question="How does Redis persist data?", answer="Redis uses RDB and AOF."
            ),
            "q2": SubQuestionAnswer(
                question="What does it cost?", answer="Managed Redis starts at $15/month."
            ),
        },
    )
