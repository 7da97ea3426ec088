"""Robust JSON object extraction from LLM responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object found in *text*, or ``None``.

    Strategy:
    1. ``json.loads`` on the whole text (native structured output).
    2. Contents of a fenced code block, if any.
    3. Brace-balanced scan from every ``{``.
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()

    parsed = _loads_object(stripped)
    if parsed is not None:
        return parsed

    fence = _FENCE_RE.search(stripped)
    if fence:
        parsed = _loads_object(fence.group(1).strip())
        if parsed is not None:
            return parsed

    start = stripped.find("{")
    while start != -1:
        candidate = _balanced_object(stripped, start)
        if candidate is not None:
            parsed = _loads_object(candidate)
            if parsed is not None:
                return parsed
        start = stripped.find("{", start + 1)

    return None


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _balanced_object(text: str, start: int) -> str | None:
    """Return the brace-balanced substring starting at *start*, string-aware."""
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None
