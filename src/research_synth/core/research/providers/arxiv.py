"""arXiv provider for academic paper search.

This module implements ArxivSearchProvider, which queries the arXiv Atom
export API and parses the feed locally. Searches are narrowed in three
stages when an LLM is available:

1. Keyword extraction turns the natural-language query into 3-5 academic
   keywords, searched in titles and abstracts only.
2. Results are restricted to CS/ML categories and physics is excluded.
3. An LLM relevance pass drops papers that do not address the query.

If the narrowed search leaves no papers, one broader ``all:`` query is
tried before giving up. Without an LLM only the broad query is used.

arXiv API documentation: https://info.arxiv.org/help/api/user-manual.html

Resilience Configuration:
    - Spacing: at least 3 seconds between requests (MinIntervalRateLimiter),
      shared by every caller in the process
    - 429: waits min(5s * attempt, 15s) and retries, 3 attempts in total
    - Other errors: no retry
    - Exhausted attempts return an empty ArxivResult instead of raising

Example usage:
    provider = ArxivSearchProvider(llm=llm_client)
    result = await provider.search("retrieval augmented generation", max_results=5)
"""

from __future__ import annotations

import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, Optional

import httpx

from research_synth.config.sub_configs import ArxivConfig
from research_synth.core.errors.search import RateLimitError, SearchProviderError
from research_synth.core.research.models.execution import ArxivPaper, ArxivResult
from research_synth.core.research.providers.resilience import (
    ErrorClassification,
    MinIntervalRateLimiter,
    ProviderResilienceConfig,
    SleepFunc,
    get_arxiv_rate_limiter,
    get_provider_config,
)
from research_synth.core.research.providers.shared import (
    classify_http_error,
    create_resilience_executor,
    parse_retry_after,
)

if TYPE_CHECKING:
    from research_synth.core.providers.registry import LLMClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
KEYWORD_TIMEOUT = 10.0
RELEVANCE_TIMEOUT = 30.0
RATE_LIMIT_BACKOFF = 5.0
RATE_LIMIT_BACKOFF_MAX = 15.0

_ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}
_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"\d+")


# ---------------------------------------------------------------------------
# Query construction
# ---------------------------------------------------------------------------


def _category_clause(categories: list[str]) -> str:
    return " OR ".join(f"cat:{c}" for c in categories)


def build_keyword_query(keywords: list[str], categories: list[str]) -> str:
    """Build a title/abstract-scoped query restricted to ``categories``.

    Example:
        >>> build_keyword_query(["RAG"], ["cs.AI"])
        '(ti:"RAG" OR abs:"RAG") AND (cat:cs.AI) ANDNOT cat:physics.*'
    """
    keyword_clause = " OR ".join(f'ti:"{k}" OR abs:"{k}"' for k in keywords)
    return f"({keyword_clause}) AND ({_category_clause(categories)}) ANDNOT cat:physics.*"


def build_broad_query(query: str, categories: list[str]) -> str:
    """Build an ``all:`` query restricted to ``categories``."""
    return f"(all:{query}) AND ({_category_clause(categories)}) ANDNOT cat:physics.*"


def fallback_keywords(query: str) -> list[str]:
    """Words longer than three characters, at most five."""
    return [w for w in query.split() if len(w) > 3][:5]


# ---------------------------------------------------------------------------
# Feed parsing
# ---------------------------------------------------------------------------


def _text(entry: ET.Element, tag: str) -> str:
    node = entry.find(f"atom:{tag}", _ATOM_NS)
    if node is None or node.text is None:
        return ""
    return node.text.strip()


def parse_arxiv_feed(xml_text: str) -> list[ArxivPaper]:
    """Parse an arXiv Atom feed into papers.

    Titles and summaries have internal whitespace collapsed. The arXiv id
    is the part of the entry id after ``/abs/``.

    Args:
        xml_text: Raw Atom XML

    Returns:
        Papers in feed order; empty when the XML cannot be parsed
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.warning("arXiv: could not parse feed: %s", e)
        return []

    papers: list[ArxivPaper] = []
    for entry in root.findall("atom:entry", _ATOM_NS):
        raw_id = _text(entry, "id")
        if not raw_id:
            continue
        arxiv_id = raw_id.split("/abs/", 1)[1] if "/abs/" in raw_id else raw_id
        authors = [
            name.text.strip()
            for name in entry.findall("atom:author/atom:name", _ATOM_NS)
            if name.text
        ]
        papers.append(
            ArxivPaper(
                id=arxiv_id,
                title=_WHITESPACE_RE.sub(" ", _text(entry, "title")).strip(),
                summary=_WHITESPACE_RE.sub(" ", _text(entry, "summary")).strip(),
                authors=authors,
                published=_text(entry, "published"),
                url=f"https://arxiv.org/abs/{arxiv_id}",
                pdf_url=f"https://arxiv.org/pdf/{arxiv_id}.pdf",
            )
        )
    return papers


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class ArxivSearchProvider:
    """arXiv search with keyword narrowing and relevance filtering.

    The rate limiter is injectable; by default every provider instance in
    the process shares one limiter so that concurrent searches stay spaced.

    Attributes:
        config: arXiv settings (endpoint, interval, retries, categories)
        llm: Optional LLM client used for keywords and relevance checks
    """

    def __init__(
        self,
        config: Optional[ArxivConfig] = None,
        llm: Optional["LLMClient"] = None,
        rate_limiter: Optional[MinIntervalRateLimiter] = None,
        timeout: float = DEFAULT_TIMEOUT,
        resilience_config: Optional[ProviderResilienceConfig] = None,
        sleep_func: Optional[SleepFunc] = None,
    ):
        self.config = config or ArxivConfig()
        self.llm = llm
        self._rate_limiter = rate_limiter or get_arxiv_rate_limiter(self.config.min_interval)
        self._timeout = timeout
        self._resilience_config = resilience_config
        self._sleep = sleep_func or asyncio.sleep

    def get_provider_name(self) -> str:
        return "arxiv"

    @property
    def resilience_config(self) -> ProviderResilienceConfig:
        if self._resilience_config is not None:
            return self._resilience_config
        return get_provider_config("arxiv")

    @property
    def _has_llm(self) -> bool:
        return self.llm is not None and self.llm.is_configured

    def classify_error(self, error: Exception) -> ErrorClassification:
        return classify_http_error(error, self.get_provider_name())

    async def search(self, query: str, max_results: Optional[int] = None) -> ArxivResult:
        """Search arXiv for papers addressing ``query``.

        Never raises: every failure path returns an empty result.

        Args:
            query: Natural-language research query
            max_results: Papers to request (default from config)

        Returns:
            ArxivResult with validated papers
        """
        limit = max_results or self.config.max_results
        categories = self.config.categories

        if self._has_llm:
            keywords = await self._extract_keywords(query)
            search_query = build_keyword_query(keywords, categories)
            logger.info("arXiv: keywords %s", ", ".join(keywords))
        else:
            search_query = build_broad_query(query, categories)
            logger.info("arXiv: using broad query (no LLM for keyword extraction)")

        papers = await self._fetch(search_query, limit)
        if papers is None:
            logger.warning("arXiv: all attempts failed, returning empty result")
            return ArxivResult(query=query)
        logger.info("arXiv: found %d papers", len(papers))

        if self._has_llm and papers:
            papers = await self._validate_relevance(papers, query)

        if not papers and self._has_llm:
            logger.info("arXiv: no results with strict filtering, trying broader search")
            broader = await self._fetch(build_broad_query(query, categories), limit, attempts=1)
            papers = broader or []
            if papers:
                papers = await self._validate_relevance(papers, query)

        return ArxivResult(query=query, papers=papers, total_results=len(papers))

    # ------------------------------------------------------------------
    # LLM-assisted stages
    # ------------------------------------------------------------------

    async def _extract_keywords(self, query: str) -> list[str]:
        """Ask the fast model for 3-5 academic keywords."""
        assert self.llm is not None
        response = await self.llm.generate(
            "Extract 3-5 core academic keywords from this query for arXiv search. "
            "Return only comma-separated keywords, no explanation.\n\n"
            f"Query: {query}",
            self.llm.config.fast_model,
            timeout=KEYWORD_TIMEOUT,
        )
        if response.success:
            keywords = [k.strip() for k in response.text.split(",") if k.strip()]
            if keywords:
                return keywords
        logger.warning("arXiv: keyword extraction failed, using raw query words")
        return fallback_keywords(query) or [query]

    async def _validate_relevance(self, papers: list[ArxivPaper], query: str) -> list[ArxivPaper]:
        """Keep only papers the model marks as directly relevant.

        When the call fails every paper is kept.
        """
        assert self.llm is not None
        listing = "\n\n".join(
            f"{i}. {p.title}\nAbstract: {p.summary[:300]}" for i, p in enumerate(papers, 1)
        )
        response = await self.llm.generate(
            "For each paper, answer YES if it directly addresses this research query, "
            "NO otherwise.\n\n"
            f"Query: {query}\n\n"
            f"Papers:\n{listing}\n\n"
            'Return only numbers of YES papers, comma-separated (e.g., "1, 3, 5"):',
            self.llm.config.fast_model,
            timeout=RELEVANCE_TIMEOUT,
        )
        if not response.success:
            logger.warning("arXiv: relevance validation failed, keeping all papers")
            return papers
        keep = {int(n) - 1 for n in _NUMBER_RE.findall(response.text)}
        valid = [p for i, p in enumerate(papers) if i in keep]
        logger.info("arXiv: validation kept %d/%d papers", len(valid), len(papers))
        return valid

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _fetch(
        self,
        search_query: str,
        max_results: int,
        attempts: Optional[int] = None,
    ) -> Optional[list[ArxivPaper]]:
        """Fetch and parse one query, retrying on HTTP 429.

        Returns:
            Parsed papers, or None when every attempt failed
        """
        params = {
            "search_query": search_query,
            "start": 0,
            "max_results": max_results,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        total = attempts or self.config.max_retries
        for attempt in range(total):
            try:
                await self._rate_limiter.wait()
                xml_text = await self._execute_request(params)
                return parse_arxiv_feed(xml_text)
            except RateLimitError:
                wait_time = min(RATE_LIMIT_BACKOFF * (attempt + 1), RATE_LIMIT_BACKOFF_MAX)
                logger.warning(
                    "arXiv: rate limited (429), waiting %.0fs before retry %d/%d",
                    wait_time,
                    attempt + 1,
                    total,
                )
                await self._sleep(wait_time)
            except SearchProviderError as e:
                logger.warning("arXiv: attempt %d/%d failed: %s", attempt + 1, total, e)
                break
        return None

    async def _execute_request(self, params: dict[str, Any]) -> str:
        """Execute API request with resilience executor."""
        url = self.config.base_url

        async def make_request() -> str:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, params=params)
                if response.status_code == 429:
                    raise RateLimitError(
                        provider="arxiv",
                        retry_after=parse_retry_after(response),
                    )
                if response.status_code >= 400:
                    raise SearchProviderError(
                        provider="arxiv",
                        message=f"API error {response.status_code}: {response.text[:200]}",
                        retryable=response.status_code >= 500,
                    )
                return response.text

        executor = create_resilience_executor(
            "arxiv",
            self.resilience_config,
            self.classify_error,
        )
        return await executor(make_request, timeout=self._timeout)
