"""Type conversion utilities for safely handling feed and database values.

This module is the single source of truth for safe type conversion.
All other modules should import from here instead of defining their own.
"""

import re
from typing import Any

_PRICE_CHARS_RE = re.compile(r"[^0-9.\-]")


def safe_float(val: Any, default: float = 0.0) -> float:
    """Safely convert a value to float.

    Args:
        val: Value to convert (can be str, int, float, None, etc.)
        default: Value to return if conversion fails

    Returns:
        Converted float or default value

    Examples:
        >>> safe_float("3.14")
        3.14
        >>> safe_float(None)
        0.0
        >>> safe_float("invalid", default=-1.0)
        -1.0
    """
    if val is None or val == "":
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def safe_int(val: Any, default: int = 0) -> int:
    """Safely convert a value to int.

    Examples:
        >>> safe_int("42")
        42
        >>> safe_int(3.7)
        3
        >>> safe_int(None)
        0
    """
    if val is None or val == "":
        return default
    try:
        return int(float(val))  # Handle "3.0" -> 3
    except (ValueError, TypeError):
        return default


def parse_price(val: Any) -> float | None:
    """Parse a currency string into a positive float.

    Strips currency symbols and thousands separators. Zero, negative and
    unparseable values return None, since feeds use 0 for "call for price".

    Examples:
        >>> parse_price("$3,450")
        3450.0
        >>> parse_price("3450.00")
        3450.0
        >>> parse_price("Call") is None
        True
    """
    if val is None:
        return None
    if isinstance(val, (int, float)):
        return float(val) if val > 0 else None
    cleaned = _PRICE_CHARS_RE.sub("", str(val))
    if not cleaned:
        return None
    price = safe_float(cleaned, default=0.0)
    return price if price > 0 else None


def clean_text(val: Any) -> str:
    """Collapse whitespace and strip, returning "" for None."""
    if val is None:
        return ""
    return re.sub(r"\s+", " ", str(val)).strip()
