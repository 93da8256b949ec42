"""Tests for LLMClient routing and the HTTP vendor providers.

Tests cover:
1. Vendor inference and substitution when a vendor has no key
2. Failed calls returned as failed responses, critical calls raising
3. Voting model selection per configured vendor set
4. compress_text shortcuts and fallbacks
5. Gemini/OpenAI/Anthropic request building, parsing and status mapping
6. Malformed or non-JSON bodies degrading to failed responses
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from research_synth.config.research import ResearchConfig
from research_synth.core.errors.llm import (
    AuthenticationError,
    EmptyResponseError,
    InvalidRequestError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
)
from research_synth.core.llm_provider import CompletionRequest, FinishReason
from research_synth.core.providers import (
    AnthropicProvider,
    GeminiProvider,
    LLMClient,
    ModelConfig,
    OpenAIProvider,
    count_words,
    extract_leading_sentences,
    provider_for_model,
)
from research_synth.core.research.providers.resilience import (
    reset_resilience_manager_for_testing,
)
from tests.helpers import FAST_RESILIENCE, completion, make_client, make_response


@pytest.fixture(autouse=True)
def _fresh_resilience_state():
    reset_resilience_manager_for_testing()
    yield
    reset_resilience_manager_for_testing()


def fake_provider(*responses):
    provider = MagicMock()
    provider.complete = AsyncMock(side_effect=list(responses))
    return provider


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "model,vendor",
    [
        ("claude-haiku-4-5", "anthropic"),
        ("gpt-5-nano", "openai"),
        ("o3-mini", "openai"),
        ("gemini-2.5-flash", "gemini"),
        ("something-else", "gemini"),
    ],
)
def test_provider_for_model(model, vendor):
    assert provider_for_model(model) == vendor


class TestGenerate:
    """Tests for single-model generation."""

    @pytest.mark.asyncio
    async def test_applies_config_defaults(self):
        gemini = fake_provider(completion("Hello there, world."))
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})

        response = await client.generate("Say hi", "gemini-2.5-flash-lite")

        assert response.success
        request = gemini.complete.await_args.args[0]
        assert request.model == "gemini-2.5-flash-lite"
        assert request.max_tokens == 10000
        assert request.temperature == 0.7
        assert request.timeout == 30.0

    @pytest.mark.asyncio
    async def test_missing_vendor_routes_to_configured_one(self):
        gemini = fake_provider(completion("Routed response text."))
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})

        await client.generate("prompt", "claude-haiku-4-5")

        assert gemini.complete.await_args.args[0].model == GeminiProvider.default_model

    @pytest.mark.asyncio
    async def test_failure_becomes_failed_response(self):
        client = LLMClient(ResearchConfig(), providers={"gemini": fake_provider(LLMError("boom"))})

        response = await client.generate("prompt", "gemini-2.5-flash")

        assert response.success is False
        assert response.error == "boom"
        assert response.finish_reason == FinishReason.ERROR

    @pytest.mark.asyncio
    async def test_critical_failure_raises(self):
        client = LLMClient(ResearchConfig(), providers={"gemini": fake_provider(LLMError("boom"))})
        with pytest.raises(LLMError, match="boom"):
            await client.generate("prompt", critical=True)

    @pytest.mark.asyncio
    async def test_critical_short_content_raises(self):
        client = LLMClient(ResearchConfig(), providers={"gemini": fake_provider(completion("ok"))})
        with pytest.raises(LLMError, match="insufficient content"):
            await client.generate("prompt", critical=True)

    @pytest.mark.asyncio
    async def test_no_key_at_all(self):
        client = LLMClient(ResearchConfig())

        response = await client.generate("prompt")

        assert client.is_configured is False
        assert "No API key configured for gemini" in response.error


class TestGenerateMany:
    """Tests for fan-out."""

    @pytest.mark.asyncio
    async def test_results_in_config_order(self):
        gemini = MagicMock()
        gemini.complete = AsyncMock(
            side_effect=lambda request: completion(f"answer from {request.model}", model=request.model)
        )
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})
        configs = [
            ModelConfig(provider="gemini", model="gemini-2.5-flash-lite"),
            ModelConfig(provider="gemini", model="gemini-2.5-flash", temperature=0.1),
        ]

        results = await client.generate_many("q", configs)

        assert [r.model for r in results] == ["gemini-2.5-flash-lite", "gemini-2.5-flash"]
        temperatures = sorted(call.args[0].temperature for call in gemini.complete.await_args_list)
        assert temperatures == [0.1, 0.7]

    @pytest.mark.asyncio
    async def test_critical_floor(self):
        gemini = fake_provider(completion("fine answer here"), LLMError("down"))
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})
        configs = [ModelConfig(provider="gemini", model="a"), ModelConfig(provider="gemini", model="b")]

        with pytest.raises(LLMError, match="only 1/2"):
            await client.generate_many("q", configs, critical=True, min_successful=2)

    @pytest.mark.asyncio
    async def test_unexpected_exception_isolated_to_its_member(self):
        gemini = fake_provider(completion("fine answer here"), ValueError("No JSON"))
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})
        configs = [ModelConfig(provider="gemini", model="a"), ModelConfig(provider="gemini", model="b")]

        results = await client.generate_many("q", configs)

        assert results[0].success is True
        assert results[1].success is False
        assert results[1].model == "b"
        assert "ValueError" in results[1].error


class TestVotingConfigs:
    """Tests for voter selection."""

    def test_gemini_only_pads_to_three(self):
        client = LLMClient(ResearchConfig(gemini_api_key="g"))
        assert [c.model for c in client.get_voting_configs()] == [
            "gemini-2.5-flash-lite",
            "gemini-3-flash-preview",
            "gemini-2.5-flash-lite",
        ]

    def test_one_per_vendor(self):
        client = LLMClient(ResearchConfig(gemini_api_key="g", openai_api_key="o"))
        assert [(c.provider, c.model) for c in client.get_voting_configs()] == [
            ("gemini", "gemini-2.5-flash-lite"),
            ("openai", "gpt-5-nano"),
            ("gemini", "gemini-3-flash-preview"),
        ]

    def test_without_gemini_no_padding(self):
        client = LLMClient(ResearchConfig(openai_api_key="o", anthropic_api_key="a"))
        assert [c.provider for c in client.get_voting_configs()] == ["openai", "anthropic"]

    def test_nothing_configured(self):
        assert LLMClient(ResearchConfig()).get_voting_configs() == []


class TestCompressText:
    """Tests for compress_text."""

    @pytest.mark.asyncio
    async def test_short_complete_text_unchanged(self):
        client = LLMClient(ResearchConfig())
        assert await client.compress_text("Short and done.", 10) == "Short and done."

    @pytest.mark.asyncio
    async def test_short_text_cut_to_sentences(self):
        client = LLMClient(ResearchConfig())
        assert await client.compress_text("First sentence. Second half", 10) == "First sentence."

    @pytest.mark.asyncio
    async def test_long_text_without_provider(self):
        client = LLMClient(ResearchConfig())
        text = "One two three. Four five six. Seven eight nine."
        assert await client.compress_text(text, 6) == "One two three. Four five six."

    @pytest.mark.asyncio
    async def test_long_text_summarized(self):
        gemini = fake_provider(completion("  A tidy summary.  "))
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})

        summary = await client.compress_text("word " * 50, 10)

        assert summary == "A tidy summary."
        request = gemini.complete.await_args.args[0]
        assert "50 character summary" in request.prompt
        assert request.max_tokens == 8000

    @pytest.mark.asyncio
    async def test_failed_summary_falls_back(self):
        gemini = fake_provider(LLMError("down"))
        client = LLMClient(ResearchConfig(), providers={"gemini": gemini})

        summary = await client.compress_text("alpha beta gamma delta epsilon zeta eta", 3)

        assert summary == "alpha beta gamma..."


def test_count_words_ignores_link_targets():
    assert count_words("See [[redis.io]](https://redis.io/docs) now") == 3


def test_extract_leading_sentences_long_first_sentence():
    assert extract_leading_sentences("a b c d e f g.", 3) == "a b c..."


# ---------------------------------------------------------------------------
# HTTP providers
# ---------------------------------------------------------------------------


GEMINI_OK = {
    "candidates": [
        {"content": {"parts": [{"text": "Gemini says hi."}]}, "finishReason": "MAX_TOKENS"}
    ],
    "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 4, "totalTokenCount": 7},
}


class TestHttpProviders:
    """Tests for vendor request/response handling."""

    def test_missing_key(self):
        with pytest.raises(AuthenticationError):
            GeminiProvider("")

    @pytest.mark.asyncio
    async def test_gemini_success(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            client = make_client(mock_client_class, post=make_response(200, GEMINI_OK))

            response = await provider.complete(
                CompletionRequest(prompt="hi", model="gemini-2.5-flash-lite", max_tokens=50)
            )

        assert response.text == "Gemini says hi."
        assert response.finish_reason == FinishReason.LENGTH
        assert response.usage.total_tokens == 7
        url = client.post.call_args.args[0]
        body = client.post.call_args.kwargs["json"]
        assert url.endswith("/gemini-2.5-flash-lite:generateContent?key=g-key")
        assert body["generationConfig"]["maxOutputTokens"] == 50

    @pytest.mark.asyncio
    async def test_openai_request_shape(self):
        provider = OpenAIProvider("sk-test", resilience_config=FAST_RESILIENCE)
        data = {"choices": [{"message": {"content": "OpenAI answer."}, "finish_reason": "stop"}]}
        with patch("httpx.AsyncClient") as mock_client_class:
            client = make_client(mock_client_class, post=make_response(200, data))

            response = await provider.complete(CompletionRequest(prompt="hi"))

        assert response.model == "gpt-5-nano"
        body = client.post.call_args.kwargs["json"]
        assert body["max_completion_tokens"] == 10000
        assert "temperature" not in body
        assert client.post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_anthropic_joins_text_blocks(self):
        provider = AnthropicProvider("a-key", resilience_config=FAST_RESILIENCE)
        data = {
            "content": [{"type": "text", "text": "Part one. "}, {"type": "text", "text": "Part two."}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 5, "output_tokens": 6},
        }
        with patch("httpx.AsyncClient") as mock_client_class:
            client = make_client(mock_client_class, post=make_response(200, data))

            response = await provider.complete(CompletionRequest(prompt="hi"))

        assert response.text == "Part one. Part two."
        assert response.usage.total_tokens == 11
        assert client.post.call_args.kwargs["headers"]["x-api-key"] == "a-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_class",
        [(401, AuthenticationError), (404, ModelNotFoundError), (400, InvalidRequestError)],
    )
    async def test_status_mapping(self, status, error_class):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            make_client(mock_client_class, post=make_response(status, {"error": {"message": "nope"}}))

            with pytest.raises(error_class, match="nope"):
                await provider.complete(CompletionRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            make_client(
                mock_client_class,
                post=make_response(429, {"error": "slow down"}, headers={"Retry-After": "4"}),
            )

            with pytest.raises(RateLimitError) as exc_info:
                await provider.complete(CompletionRequest(prompt="hi"))

        assert exc_info.value.retry_after == 4.0

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            make_client(mock_client_class, post=make_response(503, text="busy"))

            with pytest.raises(LLMError) as exc_info:
                await provider.complete(CompletionRequest(prompt="hi"))

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_empty_candidates(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            make_client(mock_client_class, post=make_response(200, {"candidates": []}))

            with pytest.raises(EmptyResponseError):
                await provider.complete(CompletionRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_network_error_wrapped(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            client = make_client(mock_client_class)
            client.post.side_effect = httpx.ConnectError("connection refused")

            with pytest.raises(LLMError, match="Network error"):
                await provider.complete(CompletionRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with pytest.raises(InvalidRequestError):
            await provider.complete(CompletionRequest(prompt=""))

    @pytest.mark.asyncio
    async def test_non_json_body_becomes_llm_error(self):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            client = make_client(mock_client_class, post=make_response(200, text="<html>oops</html>"))

            with pytest.raises(LLMError, match="Malformed response body"):
                await provider.complete(CompletionRequest(prompt="hi"))

        assert client.post.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [{"candidates": [{"content": "not an object"}]}, ["unexpected", "list"]],
    )
    async def test_unexpected_shape_becomes_llm_error(self, body):
        provider = GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)
        with patch("httpx.AsyncClient") as mock_client_class:
            make_client(mock_client_class, post=make_response(200, body))

            with pytest.raises(LLMError, match="Unexpected response shape"):
                await provider.complete(CompletionRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_client_degrades_on_garbage_body(self):
        client = LLMClient(
            ResearchConfig(gemini_api_key="g-key"),
            providers={"gemini": GeminiProvider("g-key", resilience_config=FAST_RESILIENCE)},
        )
        with patch("httpx.AsyncClient") as mock_client_class:
            make_client(mock_client_class, post=make_response(200, text="not json"))

            response = await client.generate("hello")

        assert response.success is False
        assert "Malformed response body" in response.error
