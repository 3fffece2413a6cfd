"""Prompt compiler: task + context + example → system/user instructions."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

from .introspect import as_shape, classify, example
from .serialize import stable_stringify

__all__ = ["Instructions", "has_context", "build_instructions", "compile_request"]

_PRIMITIVE_PHRASING = {
    "string": "For strings: output just the text, no quotes.",
    "number": "For numbers: output just the number, no units or separators.",
    "boolean": "For booleans: output just true or false.",
}


@dataclass(frozen=True)
class Instructions:
    system: str
    user: str


def has_context(context: Any) -> bool:
    """A context is rendered only when it carries something."""
    if context is None:
        return False
    if isinstance(context, str):
        return bool(context.strip())
    if isinstance(context, (dict, list, tuple, set)):
        return len(context) > 0
    return True


def _system_prompt(is_primitive: bool, primitive_kind: Optional[str]) -> str:
    if is_primitive:
        return " ".join([
            "You are a deterministic function.",
            "Output ONLY the raw value requested. No JSON wrapping.",
            _PRIMITIVE_PHRASING.get(primitive_kind or "", "Output just the value."),
            "DO NOT wrap in objects like {\"data\": ...} or {\"result\": ...}.",
            "DO NOT add notes, explanations, or any extra text.",
        ])
    return " ".join([
        "You are a deterministic JSON-only function.",
        "Output ONLY a single JSON object. No text before or after.",
        "Use lowercase for enum values (e.g., 'positive' not 'POSITIVE').",
        "DO NOT add notes, explanations, or any text outside the JSON.",
    ])


def build_instructions(
    task: str,
    context: Any,
    example_value: Any,
    is_primitive: bool,
    primitive_kind: Optional[str] = None,
) -> Instructions:
    """Pure text construction; identical inputs give identical output."""
    lines = [f"Task: {task}"]
    if has_context(context):
        lines.append(f"Context: {stable_stringify(context)}")
    if is_primitive:
        lines.append(f"Return ONLY a {primitive_kind or 'raw'} value. No JSON, no wrapping, just the raw value.")
    else:
        rendered = json.dumps(example_value, separators=(",", ":"), ensure_ascii=False, default=str)
        lines.append(f"Required JSON format: {rendered}")
        lines.append("Return ONLY the JSON object matching this format.")
    return Instructions(system=_system_prompt(is_primitive, primitive_kind), user="\n".join(lines))


def compile_request(task: str, context: Any, schema: Any) -> Instructions:
    """Run the introspector and the compiler together."""
    shape = as_shape(schema)
    kind = classify(shape)
    return build_instructions(task, context, example(shape), kind.is_primitive, kind.primitive_kind)
