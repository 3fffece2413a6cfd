"""Deterministic offline provider.

Builds plausible data straight from the requested shape, using field names
and the request context to pick values.  No network, no randomness: the same
request always yields the same answer, which makes it the default for tests
and local development.
"""
import asyncio
import json
import math
import re
from typing import Any, AsyncIterator, Dict, List, Optional

from core.logging import logger

from ..cost import estimate_tokens
from ..introspect import ShapeVisitor, classify
from ..prompts import has_context
from ..schema import Shape
from ..serialize import stable_stringify
from ..types import ProviderRequest, ProviderResult, StreamDelta
from .providers import StreamingProvider

__all__ = ["MockProvider", "build_mock_data"]

# Field-name keyed strings; the first fragment contained in the field name wins.
MOCK_STRINGS: Dict[str, str] = {
    "reason": "Based on the input analysis, this decision reflects standard processing criteria.",
    "suggestedaction": "Please try again in a few moments. If the issue persists, contact our support team.",
    "userfriendlymessage": "We're having trouble completing your request right now.",
    "technicalcontext": "HTTP error response received from upstream service.",
    "summary": "The input contains structured information including contact details and transaction data.",
    "description": "Retrieves filtered data based on the specified criteria and parameters.",
    "label": "Order ID",
    "value": "#INV-2024-0892",
    "endpoint": "/api/v1/users",
    "key": "filter",
}

ERROR_SEVERITY: Dict[str, str] = {
    "AUTH_TOKEN_EXPIRED": "warning",
    "RATE_LIMIT_EXCEEDED": "warning",
    "VALIDATION_ERROR": "info",
    "RESOURCE_NOT_FOUND": "warning",
    "PAYMENT_DECLINED": "error",
    "DUPLICATE_ENTRY": "info",
    "INTERNAL_ERROR": "critical",
    "GATEWAY_TIMEOUT": "error",
    "SERVICE_MAINTENANCE": "warning",
    "PERMISSION_DENIED": "error",
}

MOCK_KEY_POINTS = [
    "User reports functionality change after recent update",
    "Long-term customer expressing frustration",
    "Specific feature mentioned as critical for workflow",
]

_NON_RETRYABLE_CODES = ("VALIDATION_ERROR", "PERMISSION_DENIED", "DUPLICATE_ENTRY", "RESOURCE_NOT_FOUND")


def _normalize_field(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def _pick(values, candidate: str) -> Any:
    """Return ``candidate`` only when it is one of the legal ``values``."""
    for value in values:
        if value.lower() == candidate.lower():
            return value
    return None


def _within(value: float, shape) -> bool:
    return not (
        (shape.gt is not None and value <= shape.gt)
        or (shape.ge is not None and value < shape.ge)
        or (shape.lt is not None and value >= shape.lt)
        or (shape.le is not None and value > shape.le)
    )


def _integer_within(candidate: float, shape) -> int:
    """Truncate ``candidate`` and pull it back inside the integer bounds."""
    value = int(candidate)
    if shape.gt is not None:
        value = max(value, math.floor(shape.gt) + 1)
    if shape.ge is not None:
        value = max(value, math.ceil(shape.ge))
    if shape.lt is not None:
        value = min(value, math.ceil(shape.lt) - 1)
    if shape.le is not None:
        value = min(value, math.floor(shape.le))
    return value


class _MockBuilder(ShapeVisitor):
    def __init__(self, task: str, context: str):
        self.task = task
        self.context = context
        self.field = "root"

    def build(self, shape: Shape, field_name: str) -> Any:
        previous, self.field = self.field, field_name
        try:
            return self.visit(shape)
        finally:
            self.field = previous

    def _mentions(self, *fragments: str) -> bool:
        return any(f in self.context or f in self.task for f in fragments)

    # --- scalars ---

    def visit_string(self, shape):
        text = self._contextual_string()
        if shape.max_length is not None:
            text = text[: shape.max_length]
        if shape.min_length is not None and len(text) < shape.min_length:
            text = text.ljust(shape.min_length, ".")
        return text

    def _contextual_string(self) -> str:
        field = _normalize_field(self.field)
        for fragment, text in MOCK_STRINGS.items():
            if fragment in field:
                return text
        if self._mentions("feedback"):
            return "Customer feedback indicates mixed sentiment requiring attention."
        if self._mentions("moderat"):
            return "Content reviewed against community guidelines and safety policies."
        if self._mentions("extract"):
            return "Data extracted from unstructured text input."
        if self._mentions("api", "API"):
            return "API endpoint suggestion based on natural language query."
        return f"Generated response for: {self.field}"

    def visit_number(self, shape):
        field = self.field.lower()
        low = shape.ge if shape.ge is not None else shape.gt if shape.gt is not None else 0
        high = shape.le if shape.le is not None else shape.lt if shape.lt is not None else max(low, 0) + 100
        candidate = (low + high) / 2
        if "urgency" in field and _within(3, shape):
            candidate = 3
        elif "confidence" in field and _within(85, shape):
            candidate = 85
        if shape.integer:
            return _integer_within(candidate, shape)
        if float(candidate).is_integer():
            return int(candidate)
        return candidate

    def visit_boolean(self, shape):
        field = self.field.lower()
        if "safe" in field:
            return "spam" not in self.context and "scam" not in self.context
        if "approve" in field:
            return "manager" in self.context or "pro" in self.context
        if "retryable" in field:
            return not any(code in self.context for code in _NON_RETRYABLE_CODES)
        return True

    def visit_null(self, shape):
        return None

    def visit_literal(self, shape):
        return shape.value

    def visit_enum(self, shape):
        values = list(shape.values)
        if not values:
            return "enum_value"
        field = self.field.lower()
        choice: Optional[str] = None
        if "severity" in field:
            choice = self._severity(values)
        elif "sentiment" in field:
            if self._mentions("frustrat", "angry", "terrible"):
                choice = _pick(values, "negative")
            elif self._mentions("love", "great", "amazing"):
                choice = _pick(values, "positive")
        elif "category" in field:
            if self._mentions("bug", "broken", "error"):
                choice = _pick(values, "bug")
            elif self._mentions("feature", "would be nice", "wish"):
                choice = _pick(values, "feature_request")
            elif self._mentions("love", "great", "thank"):
                choice = _pick(values, "praise")
        elif "method" in field:
            if self._mentions("create", "add", "new"):
                choice = _pick(values, "POST")
            elif self._mentions("update", "change", "modify"):
                choice = _pick(values, "PUT")
            elif self._mentions("delete", "remove"):
                choice = _pick(values, "DELETE")
            else:
                choice = _pick(values, "GET")
        return choice or values[0]

    def _severity(self, values: List[str]) -> Optional[str]:
        for code, severity in ERROR_SEVERITY.items():
            if code in self.context:
                return _pick(values, severity)
        if any(status in self.context for status in ("500", "502", "503")):
            return _pick(values, "critical")
        if any(status in self.context for status in ("401", "403", "429")):
            return _pick(values, "warning")
        if any(status in self.context for status in ("400", "404", "409")):
            return _pick(values, "info")
        return _pick(values, "error")

    # --- containers ---

    def visit_array(self, shape):
        field = self.field.lower()
        if "keypoint" in _normalize_field(field) and shape.element.kind == "string":
            items = list(MOCK_KEY_POINTS)
        else:
            items = [self.build(shape.element, f"{self.field}[{i}]") for i in range(2)]
        if shape.max_items is not None:
            items = items[: shape.max_items]
        while shape.min_items is not None and len(items) < shape.min_items:
            items.append(self.build(shape.element, f"{self.field}[{len(items)}]"))
        return items

    def visit_object(self, shape):
        return {name: self.build(field, name) for name, field in shape.fields.items()}

    def visit_record(self, shape):
        return {"key": self.build(shape.value, "key")}

    def visit_optional(self, shape):
        return self.visit(shape.inner)

    def visit_default(self, shape):
        value = shape.default
        return value() if callable(value) else value

    def visit_union(self, shape):
        if shape.alternatives:
            return self.visit(shape.alternatives[0])
        return "union_value"

    def visit_any(self, shape):
        return "any_value"

    def generic_visit(self, shape):
        return f"<mock:{type(shape).__name__}>"


def build_mock_data(shape: Shape, task: str, context: Any = None) -> Any:
    """Shape-driven mock value for ``task`` and ``context``."""
    rendered = stable_stringify(context) if has_context(context) else ""
    return _MockBuilder(task, rendered).build(shape, "root")


def _render(value: Any, is_primitive: bool) -> str:
    if is_primitive:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    return json.dumps(value, ensure_ascii=False)


class MockProvider(StreamingProvider):
    """Offline provider returning shape-driven data with heuristic token counts."""

    name = "mock"

    def __init__(self, latency: float = 0.0, chunk_size: int = 12):
        self.latency = latency
        self.chunk_size = max(1, chunk_size)

    async def execute(self, request: ProviderRequest) -> ProviderResult:
        if self.latency:
            await asyncio.sleep(self.latency)
        data = build_mock_data(request.schema, request.task, request.context)
        logger.debug(f"Mock provider answered '{request.task[:40]}'")
        return ProviderResult(data=data, tokens=estimate_tokens(request.task, request.context))

    async def execute_stream(self, request: ProviderRequest) -> AsyncIterator[StreamDelta]:
        data = build_mock_data(request.schema, request.task, request.context)
        text = _render(data, classify(request.schema).is_primitive)
        for start in range(0, len(text), self.chunk_size):
            if self.latency:
                await asyncio.sleep(self.latency)
            yield StreamDelta(text=text[start:start + self.chunk_size])
        yield StreamDelta(tokens=estimate_tokens(request.task, request.context))
