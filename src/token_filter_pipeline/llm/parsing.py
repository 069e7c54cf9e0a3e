"""Validation helpers for untrusted decision-function output.

Everything the model returns is parsed into a strict shape here; any
failure raises DecisionParseError, which callers handle locally.
"""

from __future__ import annotations

import json
import math
from typing import Any


class DecisionParseError(ValueError):
    """Raised when decision-function output cannot be parsed or validated."""


def extract_json(text: str) -> Any:
    """Parse JSON out of model text, tolerating code fences and leading prose."""
    if not isinstance(text, str):
        raise DecisionParseError("response is not text")

    if "```json" in text:
        candidate = text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif "```" in text:
        candidate = text.split("```", 1)[1].split("```", 1)[0].strip()
    else:
        candidate = text.strip()

    if not candidate:
        raise DecisionParseError("no JSON content in response")

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    # Prose before or after the document: decode from the first bracket.
    decoder = json.JSONDecoder()
    for i, ch in enumerate(candidate):
        if ch in "{[":
            try:
                value, _ = decoder.raw_decode(candidate[i:])
                return value
            except json.JSONDecodeError:
                continue
    raise DecisionParseError("response does not contain valid JSON")


def parse_number(value: Any) -> float | None:
    """Return a finite float for a JSON number (or numeric string), else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def clamp_unit(value: float) -> tuple[float, bool]:
    """Clamp to [0, 1]. Returns (clamped_value, was_clamped)."""
    if value < 0.0:
        return 0.0, True
    if value > 1.0:
        return 1.0, True
    return value, False


def string_list(value: Any) -> tuple[str, ...]:
    """Coerce a list-ish field to a tuple of non-empty strings."""
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if v is not None and str(v).strip())


def required_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise DecisionParseError(f"missing or empty field: {key}")
    return value.strip()


def token_entries(parsed: Any) -> list[dict[str, Any]]:
    """Locate per-token entries in a scoring response.

    Accepts a bare list or a mapping holding the list under ``tokens``,
    ``filtered_tokens`` or ``results``.
    """
    if isinstance(parsed, list):
        entries = parsed
    elif isinstance(parsed, dict):
        entries = None
        for key in ("tokens", "filtered_tokens", "results"):
            if isinstance(parsed.get(key), list):
                entries = parsed[key]
                break
        if entries is None:
            raise DecisionParseError("scoring response has no token list")
    else:
        raise DecisionParseError("scoring response is not an object or list")
    return [e for e in entries if isinstance(e, dict)]
