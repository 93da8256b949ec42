"""Context7 provider for authoritative library documentation.

Context7 runs as an MCP server over stdio (by default launched with
``npx -y @upstash/context7-mcp``). A docs lookup is two tool calls:
``resolve-library-id`` maps a library name to a Context7 id, then
``get-library-docs`` returns prose and code for a topic.

A session can be held open for a whole pipeline run::

    async with Context7DocsProvider() as docs:
        text = await docs.search_library_docs("fastapi", "dependency injection")

Calls made outside ``async with`` open a short-lived session each time.
The session must be entered and exited from the same task; pipeline stages
that fan out share the session but never open it themselves.
"""

import asyncio
import logging
import re
import shutil
from contextlib import AsyncExitStack
from typing import Any, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from research_synth.core.errors.search import DocsUnavailableError, SearchProviderError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = ["npx", "-y", "@upstash/context7-mcp"]
DEFAULT_TOKENS = 1000
DEFAULT_TIMEOUT = 60.0

NOT_FOUND_PREFIX = "Could not find library:"

_LIBRARY_ID_RE = re.compile(r"Context7-compatible library ID: (/\S+)")


def _tool_text(result: Any) -> str:
    """Join the text parts of an MCP tool result."""
    parts = []
    for item in getattr(result, "content", None) or []:
        if getattr(item, "type", None) == "text":
            parts.append(item.text)
    return "\n".join(parts)


def is_not_found(text: Optional[str]) -> bool:
    """True for empty docs or the not-found sentinel."""
    return not text or text.startswith(NOT_FOUND_PREFIX)


class Context7DocsProvider:
    """Documentation lookup through the Context7 MCP server.

    Attributes:
        command: Executable and arguments that start the server
        tokens: Token budget requested per docs call
        timeout: Seconds allowed per tool call
        enabled: Master switch; a disabled provider reports unavailable
    """

    def __init__(
        self,
        command: Optional[list[str]] = None,
        tokens: int = DEFAULT_TOKENS,
        timeout: float = DEFAULT_TIMEOUT,
        enabled: bool = True,
    ):
        self.command = list(command or DEFAULT_COMMAND)
        self.tokens = tokens
        self.timeout = timeout
        self.enabled = enabled
        self._session: Optional[ClientSession] = None
        self._stack: Optional[AsyncExitStack] = None

    def get_provider_name(self) -> str:
        return "context7"

    @property
    def is_available(self) -> bool:
        """True when enabled and the launcher executable is on PATH."""
        return self.enabled and bool(self.command) and shutil.which(self.command[0]) is not None

    def _server_params(self) -> StdioServerParameters:
        return StdioServerParameters(command=self.command[0], args=self.command[1:])

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "Context7DocsProvider":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Start the server and open a session.

        Raises:
            DocsUnavailableError: If the server cannot be started
        """
        if self._session is not None:
            return
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(self._server_params()))
            session = await stack.enter_async_context(ClientSession(read, write))
            await asyncio.wait_for(session.initialize(), timeout=self.timeout)
        except Exception as e:
            await stack.aclose()
            raise DocsUnavailableError(
                f"Could not start Context7 server: {e}", original_error=e
            ) from e
        self._stack = stack
        self._session = session
        logger.info("Context7: connected (%s)", " ".join(self.command))

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            logger.info("Context7: closed")
        self._stack = None
        self._session = None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def search_library_docs(self, library: str, topic: str = "") -> str:
        """Fetch docs for ``library`` focused on ``topic``.

        Args:
            library: Library name, e.g. ``"fastapi"``
            topic: Focus topic, usually the research query

        Returns:
            Documentation text, or ``"Could not find library: <name>"``

        Raises:
            DocsUnavailableError: If no session could be opened
            SearchProviderError: If the docs call fails
        """
        if self._session is not None:
            return await self._search(self._session, library, topic)

        async with AsyncExitStack() as stack:
            try:
                read, write = await stack.enter_async_context(
                    stdio_client(self._server_params())
                )
                session = await stack.enter_async_context(ClientSession(read, write))
                await asyncio.wait_for(session.initialize(), timeout=self.timeout)
            except Exception as e:
                raise DocsUnavailableError(
                    f"Could not start Context7 server: {e}", original_error=e
                ) from e
            return await self._search(session, library, topic)

    async def _search(self, session: ClientSession, library: str, topic: str) -> str:
        library_id = await self._resolve_library_id(session, library)
        if not library_id:
            logger.info("Context7: no library id for %r", library)
            return f"{NOT_FOUND_PREFIX} {library}"
        try:
            result = await asyncio.wait_for(
                session.call_tool(
                    "get-library-docs",
                    {
                        "context7CompatibleLibraryID": library_id,
                        "topic": topic or "",
                        "tokens": self.tokens,
                    },
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            raise SearchProviderError(
                provider="context7",
                message=f"get-library-docs failed for {library_id}: {e}",
                retryable=True,
                original_error=e,
            ) from e
        text = _tool_text(result)
        logger.info("Context7: %d chars of docs for %s", len(text), library_id)
        return text

    async def _resolve_library_id(self, session: ClientSession, library: str) -> Optional[str]:
        """Resolve a library name; None when unknown or the call fails."""
        try:
            result = await asyncio.wait_for(
                session.call_tool("resolve-library-id", {"libraryName": library}),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning("Context7: resolve-library-id failed for %r: %s", library, e)
            return None
        match = _LIBRARY_ID_RE.search(_tool_text(result))
        return match.group(1) if match else None
