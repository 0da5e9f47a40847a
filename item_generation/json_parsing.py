"""
Tolerant JSON extraction from LLM responses.

Pipeline (first success wins):
  1. strict json.loads on the whole response
  2. the first ```json fenced block
  3. bracket scan: outermost {...} (or [...]) span, repaired with json_repair
Returns None when nothing usable is found. Pure; no I/O.
"""

import json
import re
from typing import Any, List, Optional

import json_repair

_FENCE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def _strict(raw: str) -> Optional[Any]:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None


def _usable(value: Any) -> bool:
    return isinstance(value, (dict, list)) and bool(value)


def _bracket_spans(raw: str) -> List[str]:
    """Outermost {...} and [...] spans; an array enclosing the object goes first."""
    obj_start, obj_end = raw.find("{"), raw.rfind("}")
    arr_start, arr_end = raw.find("["), raw.rfind("]")
    obj = raw[obj_start:obj_end + 1] if obj_start != -1 and obj_end > obj_start else None
    arr = raw[arr_start:arr_end + 1] if arr_start != -1 and arr_end > arr_start else None
    if obj and arr and arr_start < obj_start and arr_end > obj_end:
        return [arr, obj]
    return [s for s in (obj, arr) if s]


def parse_json_response(raw: Optional[str]) -> Optional[Any]:
    """
    Extract a JSON object/array from free-form model output.

    Args:
        raw: model response text

    Returns:
        dict or list, or None if every strategy failed
    """
    if not raw or not raw.strip():
        return None
    raw = raw.strip()

    value = _strict(raw)
    if _usable(value):
        return value

    for block in _FENCE.findall(raw):
        value = _strict(block.strip())
        if _usable(value):
            return value

    for span in _bracket_spans(raw):
        value = _strict(span)
        if _usable(value):
            return value
        try:
            value = json_repair.loads(span)
        except Exception:
            continue
        if _usable(value):
            return value
    return None
