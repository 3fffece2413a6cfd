"""Schema introspection.

Every consumer of a shape is a :class:`ShapeVisitor`: the example builder that
drives prompt construction, the identity builder behind cache keys and the
validator builder that turns a shape into a pydantic ``TypeAdapter``.
"""
from __future__ import annotations

import copy
import dataclasses
import hashlib
import threading
from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Type, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    create_model,
)

from core.logging import logger

from .schema import Shape, _identifier, from_json_schema, from_model
from .serialize import stable_stringify

__all__ = [
    "Classification",
    "ShapeVisitor",
    "as_shape",
    "classify",
    "example",
    "identity",
    "build_validator",
    "validate",
]

_PRIMITIVE_KINDS = ("string", "number", "boolean")


def as_shape(schema: Any) -> Shape:
    """Accept a shape, a pydantic model class or a JSON Schema mapping."""
    if isinstance(schema, Shape):
        return schema
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return from_model(schema)
    if isinstance(schema, Mapping):
        return from_json_schema(schema)
    raise TypeError(f"Unsupported schema type: {type(schema).__name__}")


class ShapeVisitor:
    """Dispatch on ``shape.kind`` to ``visit_<kind>`` methods."""

    def visit(self, shape: Shape) -> Any:
        method = getattr(self, f"visit_{getattr(shape, 'kind', '')}", None)
        if method is None:
            return self.generic_visit(shape)
        return method(shape)

    def generic_visit(self, shape: Shape) -> Any:
        raise NotImplementedError(f"No visitor for {type(shape).__name__}")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Classification:
    is_primitive: bool
    primitive_kind: Optional[str] = None


def classify(shape: Shape) -> Classification:
    kind = getattr(shape, "kind", None)
    if kind in _PRIMITIVE_KINDS:
        return Classification(True, kind)
    return Classification(False)


# ---------------------------------------------------------------------------
# Example builder
# ---------------------------------------------------------------------------


def _resolve_default(value: Any) -> Any:
    return value() if callable(value) else copy.deepcopy(value)


class ExampleBuilder(ShapeVisitor):
    def visit_string(self, shape):
        return "string"

    def visit_number(self, shape):
        return 0

    def visit_boolean(self, shape):
        return True

    def visit_null(self, shape):
        return None

    def visit_literal(self, shape):
        return shape.value

    def visit_enum(self, shape):
        # Every legal option, so the model sees all of them.
        return " | ".join(shape.values) if shape.values else "enum"

    def visit_array(self, shape):
        return [self.visit(shape.element)]

    def visit_object(self, shape):
        return {name: self.visit(field) for name, field in shape.fields.items()}

    def visit_record(self, shape):
        return {"key": self.visit(shape.value)}

    def visit_optional(self, shape):
        return self.visit(shape.inner)

    def visit_default(self, shape):
        try:
            return _resolve_default(shape.default)
        except Exception:  # noqa: BLE001
            return self.visit(shape.inner)

    def visit_union(self, shape):
        if shape.alternatives:
            return self.visit(shape.alternatives[0])
        return "union_value"

    def visit_any(self, shape):
        return "any_value"

    def generic_visit(self, shape):
        return f"<{type(shape).__name__}>"


def example(shape: Shape) -> Any:
    """JSON-like example of the value ``shape`` expects. Never raises."""
    try:
        return ExampleBuilder().visit(shape)
    except Exception as e:  # noqa: BLE001
        logger.debug(f"Example generation degraded for {type(shape).__name__}: {e}")
        return f"<{type(shape).__name__}>"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class DescriptorBuilder(ShapeVisitor):
    """Structural descriptor of a shape; the same for structurally equal shapes."""

    def generic_visit(self, shape):
        descriptor: Dict[str, Any] = {"kind": getattr(shape, "kind", None), "type": type(shape).__name__}
        if not dataclasses.is_dataclass(shape):
            descriptor["repr"] = repr(shape)
            return descriptor
        for f in dataclasses.fields(shape):
            descriptor[f.name] = self._value(getattr(shape, f.name))
        return descriptor

    def _value(self, value):
        if isinstance(value, Shape):
            return self.visit(value)
        if isinstance(value, Mapping):
            # Declared field order is part of the shape.
            return [[key, self._value(item)] for key, item in value.items()]
        if isinstance(value, (list, tuple)):
            return [self._value(item) for item in value]
        if callable(value):
            # Default factories: two distinct functions never share a token.
            module = getattr(value, "__module__", None) or "?"
            qualname = getattr(value, "__qualname__", None) or type(value).__qualname__
            return {"callable": f"{module}.{qualname}", "id": id(value)}
        return value


def identity(shape: Shape) -> str:
    """Canonical identity token used for cache-key derivation."""
    descriptor = DescriptorBuilder().visit(shape)
    return hashlib.sha256(stable_stringify(descriptor).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Validator builder (pydantic)
# ---------------------------------------------------------------------------


def _match_case(values):
    """Map incoming strings onto the declared spelling, ignoring case."""
    canonical = {v.lower(): v for v in values}

    def convert(value: Any) -> Any:
        if isinstance(value, str):
            return canonical.get(value.lower(), value)
        return value
    return convert


def _equals(expected: Any):
    def check(value: Any) -> Any:
        if value != expected:
            raise ValueError(f"Expected literal {expected!r}")
        return value
    return check


def _reject(message: str):
    def check(value: Any) -> Any:
        raise ValueError(message)
    return check


class AnnotationBuilder(ShapeVisitor):
    """Translate a shape into a type annotation pydantic can validate."""

    def visit_string(self, shape):
        return Annotated[StrictStr, Field(min_length=shape.min_length, max_length=shape.max_length,
                                          pattern=shape.pattern)]

    def visit_number(self, shape):
        bounds = Field(gt=shape.gt, ge=shape.ge, lt=shape.lt, le=shape.le)
        if shape.integer:
            return Annotated[StrictInt, bounds]
        return Union[Annotated[StrictInt, bounds], Annotated[StrictFloat, bounds]]

    def visit_boolean(self, shape):
        return StrictBool

    def visit_null(self, shape):
        return None

    def visit_literal(self, shape):
        if isinstance(shape.value, (str, int, bool)) or shape.value is None:
            return Literal[shape.value]
        return Annotated[Any, AfterValidator(_equals(shape.value))]

    def visit_enum(self, shape):
        if not shape.values:
            return Annotated[Any, AfterValidator(_reject("Enum has no allowed values"))]
        annotation = Literal[tuple(shape.values)]
        if shape.case_insensitive:
            return Annotated[annotation, BeforeValidator(_match_case(shape.values))]
        return annotation

    def visit_array(self, shape):
        return Annotated[List[self.visit(shape.element)],
                         Field(min_length=shape.min_items, max_length=shape.max_items)]

    def visit_object(self, shape):
        return self._model_for(shape)

    def visit_record(self, shape):
        return Dict[StrictStr, self.visit(shape.value)]

    def visit_optional(self, shape):
        return Optional[self.visit(shape.inner)]

    def visit_default(self, shape):
        fallback = shape.default

        def fill(value: Any) -> Any:
            return _resolve_default(fallback) if value is None else value

        return Annotated[Optional[self.visit(shape.inner)], AfterValidator(fill)]

    def visit_union(self, shape):
        members = tuple(self.visit(alt) for alt in shape.alternatives)
        if not members:
            return Any
        if len(members) == 1:
            return members[0]
        return Union[members]

    def visit_any(self, shape):
        return Any

    def generic_visit(self, shape):
        return Any

    def _model_for(self, shape) -> Type[BaseModel]:
        # Python attribute names are synthetic; the declared names live in aliases
        # so fields like "json", "schema" or "_id" work unchanged.
        definitions: Dict[str, Any] = {}
        for index, (name, field_shape) in enumerate(shape.fields.items()):
            attr = f"field_{index}"
            if getattr(field_shape, "kind", None) == "optional":
                definitions[attr] = (self.visit(field_shape), Field(None, alias=name))
            elif getattr(field_shape, "kind", None) == "default":
                default_value = field_shape.default
                annotation = self.visit(field_shape.inner)
                if callable(default_value):
                    definitions[attr] = (annotation, Field(default_factory=default_value, alias=name))
                else:
                    definitions[attr] = (annotation, Field(default_value, alias=name))
            else:
                definitions[attr] = (self.visit(field_shape), Field(..., alias=name))
        return create_model(
            _identifier(shape.name or "Result"),
            __config__=ConfigDict(extra="ignore", populate_by_name=False),
            **definitions,
        )


_validators: Dict[str, TypeAdapter] = {}
_validators_lock = threading.Lock()


def build_validator(shape: Shape) -> TypeAdapter:
    """Return a (cached) pydantic TypeAdapter for ``shape``."""
    key = identity(shape)
    with _validators_lock:
        adapter = _validators.get(key)
    if adapter is None:
        adapter = TypeAdapter(AnnotationBuilder().visit(shape))
        with _validators_lock:
            _validators[key] = adapter
    return adapter


def validate(shape: Shape, value: Any) -> Any:
    """Validate ``value`` against ``shape`` and return plain Python data.

    Raises ``pydantic.ValidationError`` on mismatch.
    """
    adapter = build_validator(shape)
    return adapter.dump_python(adapter.validate_python(value), by_alias=True)
