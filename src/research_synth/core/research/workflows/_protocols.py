"""Structural interfaces for the collaborators the pipeline consumes.

Concrete providers live in ``research_synth.core.research.providers``;
tests substitute any object with matching methods.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from research_synth.core.research.models.execution import ArxivResult, WebResult


@runtime_checkable
class WebSearchProvider(Protocol):
    """Web search returning answer text plus citation URLs."""

    async def search(self, query: str) -> WebResult: ...


@runtime_checkable
class PaperSearchProvider(Protocol):
    """Academic search; returns an empty result instead of raising."""

    async def search(self, query: str, max_results: Optional[int] = None) -> ArxivResult: ...


@runtime_checkable
class DocsProvider(Protocol):
    """Library documentation lookup.

    Returns docs text, or ``"Could not find library: <name>"``.
    """

    @property
    def is_available(self) -> bool: ...

    async def search_library_docs(self, library: str, topic: str = "") -> str: ...


@runtime_checkable
class ProgressObserver(Protocol):
    """Receives synchronous progress callbacks at fixed checkpoints."""

    def on_progress(self, step: str, remaining: int) -> None: ...
