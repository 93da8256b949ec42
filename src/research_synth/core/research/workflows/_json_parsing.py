"""JSON extraction utilities for LLM output.

Model responses are untyped: JSON may be fenced, wrapped in prose,
truncated, or syntactically sloppy (trailing commas, single quotes,
unquoted keys, raw newlines inside strings). ``parse_structured`` turns
any such text into either ``Ok(value)`` or ``Fallback(fallback)`` and
never raises, so every caller gets a structurally valid value.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CODE_BLOCK_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_IDENT_START_RE = re.compile(r"[A-Za-z_$]")
_IDENT_CHAR_RE = re.compile(r"[A-Za-z0-9_$\-]")
_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}


# ---------------------------------------------------------------------------
# Parse results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Structured data was found and has the expected shape."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Fallback(Generic[T]):
    """Nothing usable was found; ``value`` is the caller's fallback."""

    value: T

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[Ok[T], Fallback[T]]


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def find_balanced(content: str, openers: str = "{[") -> Optional[str]:
    """Return the first balanced ``{...}`` or ``[...]`` region.

    Brackets inside JSON strings (double or single quoted) are ignored.
    Returns None when no region closes, e.g. for truncated output.
    """
    positions = [p for p in (content.find(o) for o in openers) if p != -1]
    if not positions:
        return None
    start = min(positions)

    stack: list[str] = []
    quote: Optional[str] = None
    escape = False
    closers = {"{": "}", "[": "]"}
    for i, char in enumerate(content[start:], start):
        if escape:
            escape = False
            continue
        if quote is not None:
            if char == "\\":
                escape = True
            elif char == quote:
                quote = None
            continue
        if char in ('"', "'"):
            # Apostrophes in prose (don't) are only quotes at value boundaries
            if char == "'" and i > 0 and content[i - 1].isalnum():
                continue
            quote = char
        elif char in closers:
            stack.append(closers[char])
        elif char in ("}", "]"):
            if not stack or stack[-1] != char:
                return None
            stack.pop()
            if not stack:
                return content[start : i + 1]
    return None


def extract_json(content: str, openers: str = "{[") -> Optional[str]:
    """Extract a JSON object or array from content that may contain other text.

    Handles cases where JSON is wrapped in markdown code blocks
    or mixed with explanatory text.

    Args:
        content: Raw content that may contain JSON
        openers: Opening brackets to look for (``"{"`` for objects only)

    Returns:
        Extracted JSON string or None if not found
    """
    # Prefer a fenced block that holds JSON
    for match in _CODE_BLOCK_RE.findall(content):
        match = match.strip()
        if match.startswith(tuple(openers)):
            region = find_balanced(match, openers)
            return region if region is not None else match

    return find_balanced(content, openers)


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


def _strip_trailing_comma(out: list[str]) -> None:
    """Drop a comma (plus whitespace) at the end of the output buffer."""
    j = len(out) - 1
    while j >= 0 and out[j].isspace():
        j -= 1
    if j >= 0 and out[j] == ",":
        del out[j]


def _last_significant(out: list[str]) -> str:
    for ch in reversed(out):
        if not ch.isspace():
            return ch
    return ""


def repair_json(text: str) -> str:
    """Fix common LLM JSON defects without touching string contents.

    - trailing commas before ``}`` or ``]`` are removed
    - single-quoted strings become double-quoted
    - unquoted object keys are quoted
    - raw newlines, carriage returns and tabs inside strings are escaped
    - Python ``True``/``False``/``None`` become JSON literals
    """
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        char = text[i]

        if char in ('"', "'"):
            quote = char
            out.append('"')
            i += 1
            while i < n:
                c = text[i]
                if c == "\\" and i + 1 < n:
                    nxt = text[i + 1]
                    if quote == "'" and nxt == "'":
                        out.append("'")
                    else:
                        out.append(c + nxt)
                    i += 2
                    continue
                if c == quote:
                    i += 1
                    break
                if c == '"':
                    out.append('\\"')
                elif c == "\n":
                    out.append("\\n")
                elif c == "\r":
                    out.append("\\r")
                elif c == "\t":
                    out.append("\\t")
                else:
                    out.append(c)
                i += 1
            out.append('"')
            continue

        if char in ("}", "]"):
            _strip_trailing_comma(out)
            out.append(char)
            i += 1
            continue

        if _IDENT_START_RE.match(char):
            j = i
            while j < n and _IDENT_CHAR_RE.match(text[j]):
                j += 1
            word = text[i:j]
            k = j
            while k < n and text[k].isspace():
                k += 1
            is_key = k < n and text[k] == ":" and _last_significant(out) in ("{", ",")
            if is_key:
                out.append(f'"{word}"')
            else:
                out.append(_PY_LITERALS.get(word, word))
            i = j
            continue

        out.append(char)
        i += 1
    return "".join(out)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def _matches_shape(value: Any, fallback: Any) -> bool:
    if fallback is None:
        return isinstance(value, (dict, list))
    if isinstance(fallback, dict):
        return isinstance(value, dict)
    if isinstance(fallback, list):
        return isinstance(value, list)
    return isinstance(value, type(fallback))


def parse_structured(text: Any, fallback: T) -> ParseResult[T]:
    """Best-effort parse of JSON embedded in model output.

    Steps: strip fences, locate the first balanced region, try a plain
    parse, then a repaired parse. A parsed value whose type does not match
    the fallback's type counts as a failure.

    Args:
        text: Raw model output (non-strings yield the fallback)
        fallback: Value returned on any failure; also fixes the expected type

    Returns:
        ``Ok(value)`` or ``Fallback(fallback)``; never raises

    Example:
        >>> parse_structured('{"a":1,}', {})
        Ok(value={'a': 1})
        >>> parse_structured("not json", {"x": 1})
        Fallback(value={'x': 1})
    """
    if not isinstance(text, str) or not text.strip():
        return Fallback(fallback)

    if isinstance(fallback, dict):
        openers = "{"
    elif isinstance(fallback, list):
        openers = "["
    else:
        openers = "{["

    try:
        candidate = extract_json(text, openers)
        if candidate is None:
            return Fallback(fallback)
        for attempt in (candidate, None):
            try:
                value = json.loads(attempt if attempt is not None else repair_json(candidate))
            except ValueError:
                continue
            if _matches_shape(value, fallback):
                return Ok(value)
            logger.debug("Parsed JSON has unexpected type %s", type(value).__name__)
            return Fallback(fallback)
    except (TypeError, ValueError, RecursionError) as e:
        logger.debug("JSON extraction failed: %s", e)
    return Fallback(fallback)


def safe_parse_json(text: Any, fallback: T) -> T:
    """Like ``parse_structured`` but returns the bare value."""
    return parse_structured(text, fallback).value


# ---------------------------------------------------------------------------
# Prose cleanup
# ---------------------------------------------------------------------------

_AGENT_FOOTER_RE = re.compile(r"---\s*\n*AGENT'S TURN:[\s\S]*$", re.IGNORECASE)
_WRAPPER_PATTERNS = [
    re.compile(r'\{"status":\s*"[^"]*"[\s\S]*?\}'),
    re.compile(r'\{"challenge_accepted"[\s\S]*?\}'),
    re.compile(r'\{"challenge_prompt"[\s\S]*?\}'),
    re.compile(r'\{"original_statement"[\s\S]*?\}'),
    re.compile(r'\{"instructions"[\s\S]*?\}'),
    re.compile(r'\{"mandatory_instructions"[\s\S]*?\}'),
    re.compile(r'\{"files_needed"[\s\S]*?\}'),
    re.compile(r'\{"files_required_to_continue"[\s\S]*?\}'),
]
_JSON_FENCE_RE = re.compile(r"```json\s*\{[\s\S]*?\}\s*```")
_EXTRA_NEWLINES_RE = re.compile(r"\n{3,}")


def extract_content(response: str) -> str:
    """Clean prose returned by a model.

    Unwraps ``{"content": "..."}`` responses, drops agent-turn footers and
    leftover JSON wrapper objects, and collapses runs of blank lines.
    """
    content = response or ""
    try:
        parsed = json.loads(content)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and isinstance(parsed.get("content"), str) and parsed["content"]:
        content = parsed["content"]

    content = _AGENT_FOOTER_RE.sub("", content).strip()
    for pattern in _WRAPPER_PATTERNS:
        content = pattern.sub("", content).strip()
    content = _JSON_FENCE_RE.sub("", content).strip()
    return _EXTRA_NEWLINES_RE.sub("\n\n", content)
