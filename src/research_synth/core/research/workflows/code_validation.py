"""Code-vs-docs validation.

Code blocks in the synthesis are checked against the documentation
fetched during execution. Corrections come back per block index and each
one replaces exactly that block inside its own section.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from research_synth.core.research.models.execution import DocumentationCache
from research_synth.core.research.models.synthesis import OVERVIEW_SECTION, SynthesisOutput
from research_synth.core.research.models.validation import (
    CodeBlockCorrection,
    CodeValidationResult,
)
from research_synth.core.research.workflows._json_parsing import parse_structured
from research_synth.core.research.workflows.base import ResearchStageBase

logger = logging.getLogger(__name__)

INSIGHTS_SECTION = "additional_insights"
CODE_BLOCK_RE = re.compile(r"```(\w+)?\n([\s\S]*?)```")
MAX_DOC_CHARS = 5000
VALIDATION_TIMEOUT = 60.0
VALIDATION_MAX_TOKENS = 16000


@dataclass(frozen=True)
class CodeBlock:
    """A fenced code block located inside one section."""

    section: str
    start: int
    end: int
    code: str
    language: Optional[str] = None


def _section_texts(synthesis: SynthesisOutput) -> list[tuple[str, str]]:
    texts = [(OVERVIEW_SECTION, synthesis.overview)]
    texts.extend((sid, entry.answer) for sid, entry in synthesis.sub_questions.items())
    if synthesis.additional_insights:
        texts.append((INSIGHTS_SECTION, synthesis.additional_insights))
    return texts


def extract_code_blocks(synthesis: SynthesisOutput) -> list[CodeBlock]:
    """All fenced blocks, in document order (overview, qN, insights)."""
    blocks = []
    for section, text in _section_texts(synthesis):
        for match in CODE_BLOCK_RE.finditer(text):
            blocks.append(
                CodeBlock(
                    section=section,
                    start=match.start(),
                    end=match.end(),
                    code=match.group(2).strip(),
                    language=match.group(1),
                )
            )
    return blocks


def build_code_validation_prompt(blocks: list[CodeBlock], docs: str) -> str:
    examples = "\n\n".join(
        f"**Code Block {i}** ({block.language or 'unknown'}):\n```\n{block.code}\n```"
        for i, block in enumerate(blocks, 1)
    )
    return f"""You are a code validator. Check the following code blocks against AUTHORITATIVE documentation.

**AUTHORITATIVE DOCUMENTATION (source of truth):**
{docs[:MAX_DOC_CHARS]}

---

**CODE BLOCKS TO VALIDATE:**
{examples}

---

**YOUR TASK:**

For EACH code block:
1. Check if the syntax matches the authoritative docs
2. Identify any hallucinated APIs, incorrect method names, or outdated patterns
3. Provide corrected code ONLY if there are issues

Output format:
```json
[
  {{
    "blockIndex": 1,
    "hasIssues": true,
    "reason": "Uses old API method 'foo()' which should be 'bar()'",
    "correctedCode": "corrected code here"
  }}
]
```

If a code block is correct, set hasIssues: false and omit correctedCode.

Return ONLY the JSON array, no explanation."""


def parse_code_corrections(response: str, block_count: int) -> list[CodeBlockCorrection]:
    """Corrections with a valid 1-based index, issues flagged and code present.

    Only the first correction per block is kept.
    """
    parsed = parse_structured(response, [])
    corrections = []
    seen: set[int] = set()
    for item in parsed.value:
        if not isinstance(item, dict):
            continue
        index = item.get("blockIndex", item.get("block_index"))
        code = item.get("correctedCode", item.get("corrected_code"))
        has_issues = bool(item.get("hasIssues", item.get("has_issues", False)))
        if not isinstance(index, int) or not 1 <= index <= block_count or index in seen:
            continue
        if not has_issues or not isinstance(code, str) or not code.strip():
            continue
        seen.add(index)
        corrections.append(
            CodeBlockCorrection(
                block_index=index,
                has_issues=True,
                reason=str(item.get("reason") or "Syntax correction"),
                corrected_code=code.strip(),
            )
        )
    return corrections


def apply_code_corrections(
    synthesis: SynthesisOutput,
    blocks: list[CodeBlock],
    corrections: list[CodeBlockCorrection],
) -> tuple[SynthesisOutput, int]:
    """Replace each corrected block in place, keeping its language tag.

    Returns:
        The updated document and the number of blocks replaced
    """
    by_section: dict[str, list[tuple[CodeBlock, str]]] = {}
    for correction in corrections:
        block = blocks[correction.block_index - 1]
        by_section.setdefault(block.section, []).append((block, correction.corrected_code or ""))

    texts = dict(_section_texts(synthesis))
    applied = 0
    updated = synthesis
    for section, replacements in by_section.items():
        text = texts[section]
        # Later blocks first so earlier offsets stay valid
        for block, code in sorted(replacements, key=lambda r: r[0].start, reverse=True):
            fence = f"```{block.language or ''}\n{code}\n```"
            text = text[: block.start] + fence + text[block.end :]
            applied += 1
        if section == INSIGHTS_SECTION:
            updated = updated.model_copy(update={"additional_insights": text})
        else:
            updated = updated.with_section(section, text)
    return updated, applied


def _all_docs(cache: DocumentationCache) -> str:
    contents = [entry.content for entry in cache.base.values()]
    contents.extend(entry.content for entry in cache.sub_question_specific.values())
    return "\n\n---\n\n".join(contents)


class CodeValidator(ResearchStageBase):
    """Checks synthesized code against authoritative docs."""

    stage_name = "Code Validation"

    async def validate(
        self, synthesis: SynthesisOutput, doc_cache: Optional[DocumentationCache]
    ) -> tuple[SynthesisOutput, CodeValidationResult]:
        """Validate and correct code blocks.

        Skipped (document returned unchanged) without a provider, without
        docs, or when the synthesis has no code blocks.
        """
        if not self.has_llm or doc_cache is None or not doc_cache.base:
            return synthesis, CodeValidationResult()

        blocks = extract_code_blocks(synthesis)
        if not blocks:
            logger.info("Code Validation: no code blocks found, skipping")
            return synthesis, CodeValidationResult()

        logger.info("Code Validation: checking %d code blocks against docs", len(blocks))
        response = await self._generate(
            build_code_validation_prompt(blocks, _all_docs(doc_cache)),
            self.config.fast_model,
            timeout=VALIDATION_TIMEOUT,
            max_output_tokens=VALIDATION_MAX_TOKENS,
        )
        if not response.success:
            return synthesis, CodeValidationResult(blocks_checked=len(blocks))

        corrections = parse_code_corrections(response.text, len(blocks))
        if not corrections:
            logger.info("Code Validation: no corrections needed")
            return synthesis, CodeValidationResult(blocks_checked=len(blocks))

        updated, applied = apply_code_corrections(synthesis, blocks, corrections)
        for correction in corrections:
            logger.info("Code Validation: block %d fixed: %s", correction.block_index, correction.reason)
        return updated, CodeValidationResult(
            blocks_checked=len(blocks), corrections=corrections, applied=applied
        )
