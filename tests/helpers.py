"""Test helpers shared across the suite."""

from typing import Callable, Optional, Union
from unittest.mock import AsyncMock, MagicMock

from research_synth.core.llm_provider import CompletionResponse
from research_synth.core.providers.registry import ModelConfig
from research_synth.core.research.providers.resilience import ProviderResilienceConfig

# No retries and a generous bucket so provider tests never sleep on backoff.
FAST_RESILIENCE = ProviderResilienceConfig(
    requests_per_second=100.0,
    burst_limit=100,
    max_retries=0,
    jitter=0.0,
)

VOTERS = [
    ModelConfig(provider="gemini", model="gemini-2.5-flash-lite"),
    ModelConfig(provider="gemini", model="gemini-3-flash-preview"),
    ModelConfig(provider="gemini", model="gemini-2.5-flash"),
]


def completion(text: str = "", *, model: str = "test-model", error: Optional[str] = None) -> CompletionResponse:
    """Build a successful (or, with ``error``, failed) completion."""
    if error is not None:
        return CompletionResponse.failed(model, error)
    return CompletionResponse(text=text, model=model)


Reply = Union[str, Callable[[str], str]]


class PromptRouter:
    """Answers prompts by the first registered marker they contain.

    Replies are strings or callables taking the prompt. Prompts matching
    no marker get ``default``. Every prompt is recorded in ``prompts``.
    """

    def __init__(self, routes: Optional[list[tuple[str, Reply]]] = None, default: str = ""):
        self.routes: list[tuple[str, Reply]] = list(routes or [])
        self.default = default
        self.prompts: list[str] = []

    def route(self, marker: str, reply: Reply) -> None:
        self.routes.insert(0, (marker, reply))

    def reply(self, prompt: str) -> str:
        self.prompts.append(prompt)
        for marker, reply in self.routes:
            if marker in prompt:
                return reply(prompt) if callable(reply) else reply
        return self.default

    def count(self, marker: str) -> int:
        return sum(1 for p in self.prompts if marker in p)

    def attach(self, llm: MagicMock) -> MagicMock:
        """Wire ``generate`` and ``generate_many`` on a mocked client."""

        async def generate(prompt, model=None, **kwargs):
            return completion(self.reply(prompt), model=model or "test-model")

        async def generate_many(prompt, configs, **kwargs):
            return [completion(self.reply(prompt), model=c.model) for c in configs]

        llm.generate = AsyncMock(side_effect=generate)
        llm.generate_many = AsyncMock(side_effect=generate_many)
        return llm


def make_response(status_code=200, json_data=None, text="", headers=None):
    """Build a mock ``httpx.Response``."""
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError("No JSON")
    return response


def make_client(mock_client_class, *, get=None, post=None):
    """Wire a patched ``httpx.AsyncClient`` class to serve canned responses.

    ``get`` and ``post`` take one response or a list served in turn.
    """
    client = AsyncMock()
    if get is not None:
        client.get = AsyncMock(side_effect=get if isinstance(get, list) else [get])
    if post is not None:
        client.post = AsyncMock(side_effect=post if isinstance(post, list) else [post])
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = client
    return client
