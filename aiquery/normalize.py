"""Quirk-tolerant response parsing and validation.

Models wrap answers in ``{"data": ...}``, append notes after the JSON, or
return bare values when JSON was asked for.  :func:`parse_and_validate`
turns whatever came back into a validated value or a typed error.
"""
from __future__ import annotations

import json
import re
from typing import Any, Optional

from pydantic import ValidationError

from core.errors import AIValidationError, ProviderError

from .introspect import classify, validate
from .schema import Shape

__all__ = ["ENVELOPE_KEYS", "MISSING", "parse_json", "unwrap", "parse_and_validate"]

ENVELOPE_KEYS = ("data", "result", "response", "output", "answer", "error", "message", "text", "value")

# One top-level object at the start of the text, prose allowed after it.
_LEADING_OBJECT_RE = re.compile(r"^\s*(\{[\s\S]*\})\s*(?:\n|$)")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def parse_json(text: str) -> Any:
    """Strict JSON, then a leading-object recovery; MISSING when both fail."""
    try:
        return json.loads(text)
    except ValueError:
        pass
    match = _LEADING_OBJECT_RE.match(text)
    if match:
        try:
            return json.loads(match.group(1))
        except ValueError:
            return MISSING
    return MISSING


def unwrap(candidate: Any, shape: Shape, is_primitive: bool) -> Any:
    if not isinstance(candidate, dict):
        return candidate
    if is_primitive:
        if len(candidate) == 1:
            for key in ENVELOPE_KEYS:
                if key in candidate:
                    return candidate[key]
            return next(iter(candidate.values()))
        return candidate
    if "data" in candidate and "data" not in getattr(shape, "fields", {}):
        return candidate["data"]
    return candidate


def _looks_structured(text: str) -> bool:
    return text.startswith("{") or text.startswith("[")


def parse_and_validate(
    raw: Any,
    shape: Shape,
    is_primitive: Optional[bool] = None,
    source: str = "Provider",
) -> Any:
    """Normalize ``raw`` provider output and validate it against ``shape``.

    Raises ``ProviderError`` when nothing usable came back and
    ``AIValidationError`` (validator diagnostic as ``cause``) on mismatch.
    """
    if is_primitive is None:
        is_primitive = classify(shape).is_primitive

    if is_primitive and isinstance(raw, str):
        trimmed = raw.strip()
        if trimmed and not _looks_structured(trimmed):
            try:
                return validate(shape, trimmed)
            except ValidationError:
                pass

    candidate = parse_json(raw) if isinstance(raw, str) else raw
    if candidate is not MISSING:
        candidate = unwrap(candidate, shape, is_primitive)

    if candidate is MISSING or (candidate is None and raw is None):
        raise ProviderError(f"{source} returned no data")

    try:
        return validate(shape, candidate)
    except ValidationError as e:
        raise AIValidationError(f"{source} returned invalid schema", cause=e) from e
