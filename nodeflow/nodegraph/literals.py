"""PowerShell literal helpers used by controls and the script generator."""

from __future__ import annotations

import json
import math
import re
from typing import Any

_NUMERIC_RE = re.compile(r"^(?:0x[0-9A-Fa-f]+|[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)$")
_VARIABLE_RE = re.compile(r"^\$\w[\w:]*$")
_TRUE_WORDS = {"true", "1", "yes", "on"}


def to_powershell_literal(value: Any) -> str:
    """
    Convert a Python value into PowerShell source text.

    Already-quoted strings, $variables and numeric literals pass through,
    everything else becomes a single-quoted string with ' doubled.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return ""
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return to_powershell_literal(json.dumps(value))

    text = str(value)
    if not text.strip():
        return "''"

    trimmed = text.strip()
    if _is_quoted(trimmed):
        return trimmed
    if _VARIABLE_RE.match(trimmed):
        return trimmed
    if _NUMERIC_RE.match(trimmed):
        return trimmed

    return "'" + text.replace("'", "''") + "'"


def extract_literal_raw(value: Any) -> str:
    """Inverse of to_powershell_literal for quoted strings."""
    if value is None:
        return ""
    text = str(value).strip()
    if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
        return text[1:-1].replace("''", "'")
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1]
    return text


def to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_WORDS


def _is_quoted(text: str) -> bool:
    if len(text) < 2:
        return False
    return (text[0] == "'" and text[-1] == "'") or (text[0] == '"' and text[-1] == '"')
