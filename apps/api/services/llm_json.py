"""
Helpers for turning JSON-only model responses into Python values.

Models are told to answer with a bare JSON object, but still wrap it in
markdown fences or add a sentence now and then.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, Optional

from core.exceptions import GenerationFailure


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        cleaned = cleaned[first_newline + 1:] if first_newline != -1 else cleaned[3:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Extract the first JSON object from model output."""
    if not text or not text.strip():
        raise GenerationFailure("Empty model response")

    cleaned = _strip_code_fence(text)

    # Fast path: direct JSON
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    # Fallback: first {...} block
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise GenerationFailure("No JSON object found in model response")

    try:
        parsed = json.loads(cleaned[start:end + 1])
    except ValueError as e:
        raise GenerationFailure(f"Model response is not valid JSON: {e}")
    if not isinstance(parsed, dict):
        raise GenerationFailure("Model response JSON is not an object")
    return parsed


def coerce_float(value: Any) -> Optional[float]:
    """Finite float or None. inf and nan count as missing."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            f = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        v = value.strip()
        if v == "":
            return None
        try:
            f = float(v)
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def coerce_int(value: Any) -> Optional[int]:
    f = coerce_float(value)
    if f is None:
        return None
    return int(round(f))
