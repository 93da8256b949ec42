"""Tests for code-vs-docs validation.

Tests cover:
1. Code block extraction across sections
2. Correction parsing: index bounds, issue flag, duplicates
3. In-place application keeping language tags
4. Skip conditions (no docs, no code)
"""

from unittest.mock import AsyncMock

import pytest

from research_synth.core.research.models.execution import DocEntry, DocumentationCache
from research_synth.core.research.models.synthesis import SubQuestionAnswer, SynthesisOutput
from research_synth.core.research.models.validation import CodeBlockCorrection
from research_synth.core.research.workflows.code_validation import (
    CodeValidator,
    apply_code_corrections,
    extract_code_blocks,
    parse_code_corrections,
)
from tests.helpers import completion


@pytest.fixture
def synthesis():
    return SynthesisOutput(
        overview="Connect:\n\n```python\nr = redis.connect()\n```\n\nThen:\n\n```python\nr.put('k', 1)\n```",
        sub_questions={
            "q1": SubQuestionAnswer(question="Expire?", answer="Use:\n```\nr.expire_key('k')\n```"),
        },
        additional_insights="No code here.",
    )


@pytest.fixture
def docs():
    return DocumentationCache(
        base={"redis": DocEntry(content="Use redis.Redis() and r.set(key, value).", topic="q", library="redis")}
    )


class TestExtractCodeBlocks:
    """Tests for locating fenced blocks."""

    def test_document_order(self, synthesis):
        blocks = extract_code_blocks(synthesis)
        assert [(b.section, b.language, b.code) for b in blocks] == [
            ("overview", "python", "r = redis.connect()"),
            ("overview", "python", "r.put('k', 1)"),
            ("q1", None, "r.expire_key('k')"),
        ]


class TestParseCodeCorrections:
    """Tests for filtering validator output."""

    def test_keeps_valid_corrections_only(self):
        response = """```json
[
  {"blockIndex": 1, "hasIssues": true, "reason": "connect() does not exist", "correctedCode": "r = redis.Redis()"},
  {"blockIndex": 1, "hasIssues": true, "correctedCode": "duplicate"},
  {"blockIndex": 2, "hasIssues": false},
  {"blockIndex": 3, "hasIssues": true, "correctedCode": ""},
  {"blockIndex": 9, "hasIssues": true, "correctedCode": "out of range"}
]
```"""
        corrections = parse_code_corrections(response, 3)
        assert [(c.block_index, c.corrected_code) for c in corrections] == [(1, "r = redis.Redis()")]
        assert corrections[0].reason == "connect() does not exist"

    def test_garbage_is_no_corrections(self):
        assert parse_code_corrections("All good!", 2) == []


class TestApplyCorrections:
    """Tests for in-place replacement."""

    def test_replaces_blocks_and_keeps_language(self, synthesis):
        blocks = extract_code_blocks(synthesis)
        corrections = [
            CodeBlockCorrection(block_index=1, has_issues=True, corrected_code="r = redis.Redis()"),
            CodeBlockCorrection(block_index=2, has_issues=True, corrected_code="r.set('k', 1)"),
        ]

        updated, applied = apply_code_corrections(synthesis, blocks, corrections)

        assert applied == 2
        assert "```python\nr = redis.Redis()\n```" in updated.overview
        assert "```python\nr.set('k', 1)\n```" in updated.overview
        assert updated.overview.startswith("Connect:")
        assert updated.sub_questions == synthesis.sub_questions
        # the original document is untouched
        assert "redis.connect()" in synthesis.overview


class TestCodeValidator:
    """Tests for the validation stage."""

    @pytest.mark.asyncio
    async def test_applies_corrections(self, research_config, mock_llm, synthesis, docs):
        mock_llm.generate = AsyncMock(
            return_value=completion(
                '[{"blockIndex": 3, "hasIssues": true, "reason": "wrong name", "correctedCode": "r.expire(\'k\', 60)"}]'
            )
        )

        updated, result = await CodeValidator(research_config, mock_llm).validate(synthesis, docs)

        assert result.blocks_checked == 3
        assert result.applied == 1
        assert "r.expire('k', 60)" in updated.sub_questions["q1"].answer
        prompt = mock_llm.generate.call_args.args[0]
        assert prompt.startswith("You are a code validator")
        assert "redis.Redis()" in prompt

    @pytest.mark.asyncio
    async def test_skipped_without_docs(self, research_config, mock_llm, synthesis):
        updated, result = await CodeValidator(research_config, mock_llm).validate(
            synthesis, DocumentationCache()
        )
        assert updated is synthesis
        assert result.blocks_checked == 0
        mock_llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_skipped_without_code(self, research_config, mock_llm, docs):
        plain = SynthesisOutput(overview="No code.")
        updated, result = await CodeValidator(research_config, mock_llm).validate(plain, docs)
        assert updated is plain
        mock_llm.generate.assert_not_called()
