from __future__ import annotations

import re
from typing import Any

_LEADING_INT_RE = re.compile(r"^\s*(\d+)")


def safe_text(value: Any) -> str:
    """Convert value to string, handling None."""
    return "" if value is None else str(value)


def leading_int(val: Any) -> int | None:
    """Return the leading run of digits of a free-text value.

    Volume and issue fields carry things like ``"12"``, ``"3-4"`` or
    ``"Suppl. 2"``; only a value that starts with digits is comparable.
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, int):
        return val
    match = _LEADING_INT_RE.match(str(val))
    if not match:
        return None
    return int(match.group(1))


def as_string_list(value: Any) -> list[str]:
    """Normalize a scalar-or-list JSON value to a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    text = str(value).strip()
    return [text] if text else []
