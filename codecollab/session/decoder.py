"""
Resilient decoder for AI message payloads.

AI replies are supposed to be a JSON object such as
``{"text": "...", "fileTree": {...}}`` but the model does not always produce
well-formed JSON. ``safe_json_parse`` tries a fixed list of strategies and
returns the first one that yields an object, falling back to salvaging some
displayable text. It never raises.

Strategy order:
  1. direct parse
  2. brace-balanced extraction of the first top-level object
  3. non-greedy regex extraction of the first ``{...}`` span
  4. heuristic repair (trailing commas, bare keys, bare values) + step 3
  5. ``"text": "..."`` field salvage
  6. first quoted run of 10+ characters
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ALL_STRATEGIES_FAILED = "All parsing strategies failed"
NOT_A_STRING = "Input is not a string"

_FIRST_OBJECT_RE = re.compile(r"\{.*?\}", re.DOTALL)
_TRAILING_COMMA_OBJ_RE = re.compile(r",\s*}")
_TRAILING_COMMA_ARR_RE = re.compile(r",\s*]")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([a-zA-Z_$][a-zA-Z0-9_$]*)\s*:")
_BARE_VALUE_RE = re.compile(r":\s*([a-zA-Z_$][a-zA-Z0-9_$]*)\s*([,}])")
# Naive on purpose: stops at the first embedded quote, escaped or not.
_TEXT_FIELD_RE = re.compile(r'"text"\s*:\s*"([^"]+)"')
_LONG_QUOTED_RE = re.compile(r'"([^"]{10,})"')


@dataclass
class DecodeResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error}


def _loads_object(text: str) -> Dict[str, Any]:
    result = json.loads(text)
    if not isinstance(result, dict):
        raise ValueError(f"expected a JSON object, got {type(result).__name__}")
    return result


def _direct(raw: str) -> Optional[Dict[str, Any]]:
    return _loads_object(raw)


def _balanced_braces(raw: str) -> Optional[Dict[str, Any]]:
    depth = 0
    start = -1
    for i, ch in enumerate(raw):
        if ch == "{":
            if start == -1:
                start = i
            depth += 1
        elif ch == "}" and start != -1:
            depth -= 1
            if depth == 0:
                return _loads_object(raw[start:i + 1])
    return None


def _first_object_span(raw: str) -> Optional[Dict[str, Any]]:
    match = _FIRST_OBJECT_RE.search(raw)
    if not match:
        return None
    return _loads_object(match.group(0))


def repair_json(raw: str) -> str:
    """Apply the textual fixes used by the repair strategy."""
    fixed = _TRAILING_COMMA_OBJ_RE.sub("}", raw)
    fixed = _TRAILING_COMMA_ARR_RE.sub("]", fixed)
    fixed = _BARE_KEY_RE.sub(r'\1"\2":', fixed)
    fixed = _BARE_VALUE_RE.sub(r': "\1"\2', fixed)
    return fixed


def _repaired(raw: str) -> Optional[Dict[str, Any]]:
    return _first_object_span(repair_json(raw))


def _text_field(raw: str) -> Optional[Dict[str, Any]]:
    match = _TEXT_FIELD_RE.search(raw)
    return {"text": match.group(1)} if match else None


def _long_quoted(raw: str) -> Optional[Dict[str, Any]]:
    match = _LONG_QUOTED_RE.search(raw)
    return {"text": match.group(1)} if match else None


STRATEGIES: List[Tuple[str, Callable[[str], Optional[Dict[str, Any]]]]] = [
    ("direct", _direct),
    ("balanced_braces", _balanced_braces),
    ("regex_object", _first_object_span),
    ("repair", _repaired),
    ("text_field", _text_field),
    ("quoted_text", _long_quoted),
]


def safe_json_parse(raw: Any) -> DecodeResult:
    if not isinstance(raw, str):
        return DecodeResult(success=False, error=NOT_A_STRING)

    for name, strategy in STRATEGIES:
        try:
            data = strategy(raw)
        except (ValueError, RecursionError) as e:
            # json.JSONDecodeError is a ValueError subclass
            logger.debug("decoder strategy %s failed: %s", name, e)
            continue
        if data is not None:
            if name != "direct":
                logger.debug("decoder recovered payload with strategy %s", name)
            return DecodeResult(success=True, data=data)

    return DecodeResult(success=False, error=ALL_STRATEGIES_FAILED)
