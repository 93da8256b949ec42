"""Parsing and normalization helpers for configuration values.

Provides boolean, list and bounded-number parsing used by the other
config sub-modules when reading TOML tables and environment variables.
"""

import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _try_parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    return None


def _parse_str_list(value: Any) -> List[str]:
    """Parse a comma-separated string or a list into a list of stripped strings.

    Args:
        value: ``"a, b"`` style string, list/tuple, or None

    Returns:
        List of non-empty strings (empty list for None)
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    return [str(p).strip() for p in value if str(p).strip()]


def _parse_optional_float(value: Any, *, name: str) -> Optional[float]:
    """Parse a float, logging and returning None when the value is unusable."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric value for %s: %r", name, value)
        return None


def _parse_optional_int(value: Any, *, name: str) -> Optional[int]:
    """Parse an int, logging and returning None when the value is unusable."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer value for %s: %r", name, value)
        return None
