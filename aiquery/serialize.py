"""Canonical JSON serialization used for cache keys and prompt context.

Two semantically equal values always serialize identically:

- mapping keys are sorted,
- cyclic references are replaced by ``"[Circular]"``,
- callable values are dropped (``null`` inside sequences),
- pydantic models, dataclasses, enums, sets and datetimes are normalized first,
- other objects use their ``__str__``, or their attributes when they only
  have the default ``object`` representation.
"""
from __future__ import annotations

import dataclasses
import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel

__all__ = ["CIRCULAR", "canonicalize", "stable_stringify"]

CIRCULAR = "[Circular]"

_DROP = object()


def canonicalize(value: Any) -> Any:
    """Return a JSON-compatible, key-sorted copy of ``value``."""
    result = _walk(value, frozenset())
    return None if result is _DROP else result


def stable_stringify(value: Any) -> str:
    """Compact canonical JSON; falls back to ``str(value)`` if encoding fails."""
    try:
        return json.dumps(canonicalize(value), separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _walk(val: Any, ancestors: frozenset) -> Any:
    if val is None or isinstance(val, (bool, int, float, str)):
        return val
    if isinstance(val, Enum):
        return _walk(val.value, ancestors)
    if isinstance(val, (datetime, date)):
        return val.isoformat()
    if isinstance(val, bytes):
        return val.decode("utf-8", errors="replace")
    if callable(val) and not isinstance(val, (BaseModel, Mapping, list, tuple)):
        return _DROP

    if id(val) in ancestors:
        return CIRCULAR
    inner = ancestors | {id(val)}

    if isinstance(val, BaseModel):
        return _walk_mapping({name: getattr(val, name) for name in type(val).model_fields}, inner)
    if dataclasses.is_dataclass(val) and not isinstance(val, type):
        return _walk_mapping({f.name: getattr(val, f.name) for f in dataclasses.fields(val)}, inner)
    if isinstance(val, Mapping):
        return _walk_mapping(val, inner)
    if isinstance(val, (list, tuple)):
        return [None if item is _DROP else item for item in (_walk(v, inner) for v in val)]
    if isinstance(val, (set, frozenset)):
        items = [_walk(v, inner) for v in val]
        items = [item for item in items if item is not _DROP]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=str))
    if type(val).__repr__ is object.__repr__ and type(val).__str__ is object.__str__:
        # The default repr carries a memory address.
        state = getattr(val, "__dict__", None)
        if state is not None:
            return _walk_mapping(state, inner)
        return f"<{type(val).__qualname__}>"
    return str(val)


def _walk_mapping(mapping: Mapping[Any, Any], ancestors: frozenset) -> dict:
    result = {}
    for key in sorted(mapping, key=str):
        serialized = _walk(mapping[key], ancestors)
        if serialized is not _DROP:
            result[str(key)] = serialized
    return result
