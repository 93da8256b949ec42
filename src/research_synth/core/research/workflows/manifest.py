"""Global manifest extraction.

After execution, one pass distills the gathered evidence into key facts,
exact numeric values and sources. The manifest is injected into every
synthesis prompt so that independently generated sections agree on
numbers, and PVR uses it as the source of truth when judging
contradictions.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from research_synth.core.research.models.execution import ExecutionResult
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.workflows._json_parsing import parse_structured
from research_synth.core.research.workflows.base import ResearchStageBase

logger = logging.getLogger(__name__)

MAX_KEY_FACTS = 15
MAX_NUMERICS = 20
MAX_EVIDENCE_CHARS = 12_000
MANIFEST_TIMEOUT = 30.0
MANIFEST_MAX_TOKENS = 4000

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_DIGIT_RE = re.compile(r"\d")
_UNIT = r"(?:%|ms|seconds|secs|s|minutes|hours|GB|MB|KB|TB|x|USD|tokens|k|K|M|B)"
_NAMED_VALUE_RE = re.compile(
    rf"(?m)^\s*[-*]?\s*\**([A-Za-z][A-Za-z0-9 ()/_-]{{2,40}}?)\**\s*:\s*"
    rf"([$€£]?\d[\d,.]*\s?{_UNIT}?)(?=[\s.,;)]|$)"
)
_UNIT_VALUE_RE = re.compile(
    rf"\b((?:[A-Za-z][\w-]*\s+){{1,3}})([$€£]?\d[\d,.]*\s?{_UNIT})(?=[\s.,;)]|$)"
)


def build_manifest_prompt(query: str, evidence: str) -> str:
    return f"""Extract the canonical facts from this research evidence. These values will be treated as the single source of truth for every section of the final answer.

**Research Query:** {query}

**Evidence:**
{evidence}

---

Return ONLY valid JSON with this structure:
{{
  "key_facts": ["Short factual statement with exact values", "..."],
  "numerics": {{"metric or quantity name": "exact value with unit"}},
  "sources": ["URL or paper id backing the facts"]
}}

Rules:
- At most {MAX_KEY_FACTS} key facts and {MAX_NUMERICS} numerics
- Copy numbers exactly as they appear in the evidence; never compute new ones
- Omit anything the evidence does not state"""


def collect_evidence(execution: ExecutionResult, max_chars: int = MAX_EVIDENCE_CHARS) -> str:
    """Concatenate gathered evidence with source labels."""
    parts: list[str] = []
    if execution.web_content:
        parts.append(f"[web]\n{execution.web_content}")
    for i, sub in enumerate(execution.sub_question_results, 1):
        if sub.web_result and sub.web_result.content:
            parts.append(f"[web q{i}: {sub.question}]\n{sub.web_result.content}")
    for paper in execution.papers:
        parts.append(f"[arxiv:{paper.id}] {paper.title}: {paper.summary}")
    if execution.deep_analysis:
        parts.append(f"[deep_analysis]\n{execution.deep_analysis}")
    return "\n\n".join(parts)[:max_chars]


def collect_sources(execution: ExecutionResult) -> list[str]:
    sources: list[str] = []
    for url in execution.web_sources:
        if url not in sources:
            sources.append(url)
    for sub in execution.sub_question_results:
        for url in sub.web_result.sources if sub.web_result else []:
            if url not in sources:
                sources.append(url)
    sources.extend(f"arxiv:{p.id}" for p in execution.papers)
    return sources


def extract_manifest_deterministic(execution: ExecutionResult) -> GlobalManifest:
    """Regex-based manifest used without an LLM or when the call fails.

    Key facts are evidence sentences that contain numbers; numerics come
    from ``name: value`` lines and number-with-unit phrases.
    """
    text = collect_evidence(execution)

    facts: list[str] = []
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        sentence = " ".join(sentence.split())
        if 20 <= len(sentence) <= 300 and _DIGIT_RE.search(sentence) and sentence not in facts:
            facts.append(sentence)
        if len(facts) >= MAX_KEY_FACTS:
            break

    numerics: dict[str, str] = {}
    for pattern in (_NAMED_VALUE_RE, _UNIT_VALUE_RE):
        for match in pattern.finditer(text):
            name = " ".join(match.group(1).split()).strip(" *-").lower()
            if name and name not in numerics:
                numerics[name] = match.group(2).strip()
            if len(numerics) >= MAX_NUMERICS:
                break

    return GlobalManifest(key_facts=facts, numerics=numerics, sources=collect_sources(execution))


def _coerce_manifest(data: dict[str, Any], execution: ExecutionResult) -> Optional[GlobalManifest]:
    facts = data.get("key_facts") or data.get("keyFacts") or []
    numerics = data.get("numerics") or {}
    sources = data.get("sources") or []
    if not isinstance(facts, list) or not isinstance(numerics, dict):
        return None
    clean_facts = [str(f).strip() for f in facts if str(f).strip()][:MAX_KEY_FACTS]
    clean_numerics = {
        str(k).strip(): str(v).strip()
        for k, v in list(numerics.items())[:MAX_NUMERICS]
        if str(k).strip() and str(v).strip()
    }
    clean_sources = [str(s) for s in sources if s] if isinstance(sources, list) else []
    if not clean_facts and not clean_numerics:
        return None
    return GlobalManifest(
        key_facts=clean_facts,
        numerics=clean_numerics,
        sources=clean_sources or collect_sources(execution),
    )


class ManifestExtractor(ResearchStageBase):
    """Distills evidence into the read-only global manifest."""

    stage_name = "Manifest"

    async def extract(self, execution: ExecutionResult, query: str = "") -> GlobalManifest:
        """Build the manifest for one run.

        Args:
            execution: Gathered evidence
            query: Research query (focuses the extraction)

        Returns:
            GlobalManifest; falls back to regex extraction on any failure
        """
        evidence = collect_evidence(execution)
        if not evidence:
            logger.info("Manifest: no evidence gathered, manifest is empty")
            return GlobalManifest()

        if self.has_llm:
            response = await self._generate(
                build_manifest_prompt(query, evidence),
                self.config.fast_model,
                temperature=0.0,
                timeout=MANIFEST_TIMEOUT,
                max_output_tokens=MANIFEST_MAX_TOKENS,
            )
            if response.success:
                parsed = parse_structured(response.text, {})
                manifest = _coerce_manifest(parsed.value, execution) if parsed.ok else None
                if manifest is not None:
                    logger.info(
                        "Manifest: %d facts, %d numerics",
                        len(manifest.key_facts),
                        len(manifest.numerics),
                    )
                    return manifest
            logger.warning("Manifest: LLM extraction failed, using regex extraction")

        manifest = extract_manifest_deterministic(execution)
        logger.info(
            "Manifest: regex extraction found %d facts, %d numerics",
            len(manifest.key_facts),
            len(manifest.numerics),
        )
        return manifest
