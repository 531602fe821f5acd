"""
Best-effort JSON extraction from LLM responses

Models often wrap the requested JSON in prose or markdown fences. These
helpers pull out the first brace-delimited object and coerce individual
fields with explicit defaults, so callers never deal with raw parse errors.
"""

import json
import math
import re
from typing import Any, Dict, Optional

from core.logger import get_logger

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _find_object_span(text: str) -> Optional[str]:
    """Return the first balanced {...} block, ignoring braces inside strings"""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        # Unbalanced from this brace, try the next one
        start = text.find("{", start + 1)
    return None


def parse_json_from_response(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Extract a JSON object from free-form model output

    Args:
        content: Raw completion text

    Returns:
        Parsed dict, or None when no object could be decoded
    """
    if not content:
        return None

    candidates = [match.strip() for match in _FENCE_RE.findall(content)]
    candidates.append(content)

    for candidate in candidates:
        block = _find_object_span(candidate)
        if block is None:
            continue
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    logger.debug(f"No JSON object found in response: {content[:200]!r}")
    return None


def coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return default


def coerce_int(value: Any, default: int = 0, lower: int = 0, upper: int = 100) -> int:
    """Coerce to an int clamped into [lower, upper]"""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    # json accepts Infinity, NaN and 1e999
    if not math.isfinite(number):
        return default
    return max(lower, min(upper, int(round(number))))


def coerce_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def coerce_optional_id(value: Any) -> Optional[str]:
    """Project ids arrive as strings, numbers or null"""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text
