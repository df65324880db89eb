from __future__ import annotations

import re
from typing import Any, Mapping


_QUOTE_MAP = str.maketrans(
    {
        "‘": "'",
        "’": "'",
        "‚": "'",
        "‛": "'",
        "“": '"',
        "”": '"',
        "„": '"',
        "‟": '"',
    }
)
_KEEP_PUNCTUATION = {" ", "'", '"', "-"}
_SPACES = re.compile(r" +")


def normalize_text(value: Any) -> str:
    """Canonical form used for every asset-name comparison and override key."""
    if value is None:
        return ""
    lowered = str(value).lower().translate(_QUOTE_MAP)
    kept = []
    for char in lowered:
        if char.isspace():
            kept.append(" ")
        elif char.isalnum() or char in _KEEP_PUNCTUATION:
            kept.append(char)
    return _SPACES.sub(" ", "".join(kept)).strip()


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def row_value(row: Mapping[str, Any], name: str) -> Any:
    """Case-insensitive field lookup; upstream sends lower-case keys, callers may not."""
    if name in row:
        return row[name]
    wanted = name.lower()
    for key, value in row.items():
        if str(key).lower() == wanted:
            return value
    return None
