"""Declarative result shapes.

A *shape* describes the value a caller expects back from the model.  Shapes
are a closed family of small frozen dataclasses; every consumer (example
builder, validator, identity) walks them with a visitor keyed on ``kind``.

Shapes can be written by hand with the builder functions::

    from aiquery import schema as s

    review = s.obj(
        sentiment=s.enum(["positive", "neutral", "negative"]),
        score=s.number(ge=0, le=1),
        tags=s.array(s.string()),
    )

or converted from a JSON Schema / pydantic model with :func:`from_json_schema`
and :func:`from_model`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

__all__ = [
    "Shape",
    "StringShape",
    "NumberShape",
    "BooleanShape",
    "NullShape",
    "LiteralShape",
    "EnumShape",
    "ArrayShape",
    "ObjectShape",
    "RecordShape",
    "OptionalShape",
    "DefaultShape",
    "UnionShape",
    "AnyShape",
    "string",
    "number",
    "integer",
    "boolean",
    "null",
    "literal",
    "enum",
    "array",
    "obj",
    "record",
    "optional",
    "default",
    "union",
    "any_",
    "from_json_schema",
    "from_model",
]


# ---------------------------------------------------------------------------
# Shape descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Shape:
    kind: ClassVar[str] = "shape"
    description: Optional[str] = field(default=None, kw_only=True)


@dataclass(frozen=True)
class StringShape(Shape):
    kind: ClassVar[str] = "string"
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None


@dataclass(frozen=True)
class NumberShape(Shape):
    kind: ClassVar[str] = "number"
    gt: Optional[float] = None
    ge: Optional[float] = None
    lt: Optional[float] = None
    le: Optional[float] = None
    integer: bool = False


@dataclass(frozen=True)
class BooleanShape(Shape):
    kind: ClassVar[str] = "boolean"


@dataclass(frozen=True)
class NullShape(Shape):
    kind: ClassVar[str] = "null"


@dataclass(frozen=True)
class LiteralShape(Shape):
    kind: ClassVar[str] = "literal"
    value: Any = None


@dataclass(frozen=True)
class EnumShape(Shape):
    kind: ClassVar[str] = "enum"
    values: Tuple[str, ...] = ()
    # Incoming strings match ignoring case and come back in the declared spelling.
    case_insensitive: bool = False


@dataclass(frozen=True)
class ArrayShape(Shape):
    kind: ClassVar[str] = "array"
    element: Shape = field(default_factory=lambda: AnyShape())
    min_items: Optional[int] = None
    max_items: Optional[int] = None


@dataclass(frozen=True)
class ObjectShape(Shape):
    kind: ClassVar[str] = "object"
    fields: Mapping[str, Shape] = field(default_factory=dict)
    name: str = "Result"


@dataclass(frozen=True)
class RecordShape(Shape):
    kind: ClassVar[str] = "record"
    value: Shape = field(default_factory=lambda: AnyShape())


@dataclass(frozen=True)
class OptionalShape(Shape):
    kind: ClassVar[str] = "optional"
    inner: Shape = field(default_factory=lambda: AnyShape())


@dataclass(frozen=True)
class DefaultShape(Shape):
    kind: ClassVar[str] = "default"
    inner: Shape = field(default_factory=lambda: AnyShape())
    default: Any = None


@dataclass(frozen=True)
class UnionShape(Shape):
    kind: ClassVar[str] = "union"
    alternatives: Tuple[Shape, ...] = ()


@dataclass(frozen=True)
class AnyShape(Shape):
    kind: ClassVar[str] = "any"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def string(*, min_length: Optional[int] = None, max_length: Optional[int] = None,
           pattern: Optional[str] = None, description: Optional[str] = None) -> StringShape:
    return StringShape(min_length, max_length, pattern, description=description)


def number(*, gt: Optional[float] = None, ge: Optional[float] = None, lt: Optional[float] = None,
           le: Optional[float] = None, description: Optional[str] = None) -> NumberShape:
    return NumberShape(gt, ge, lt, le, description=description)


def integer(*, gt: Optional[float] = None, ge: Optional[float] = None, lt: Optional[float] = None,
            le: Optional[float] = None, description: Optional[str] = None) -> NumberShape:
    return NumberShape(gt, ge, lt, le, integer=True, description=description)


def boolean(*, description: Optional[str] = None) -> BooleanShape:
    return BooleanShape(description=description)


def null() -> NullShape:
    return NullShape()


def literal(value: Any, *, description: Optional[str] = None) -> LiteralShape:
    return LiteralShape(value, description=description)


def enum(values: Sequence[str], *, case_insensitive: bool = False,
         description: Optional[str] = None) -> EnumShape:
    if isinstance(values, str):
        raise TypeError("enum() expects a sequence of strings, not a single string")
    return EnumShape(tuple(values), case_insensitive, description=description)


def array(element: Shape, *, min_items: Optional[int] = None, max_items: Optional[int] = None,
          description: Optional[str] = None) -> ArrayShape:
    return ArrayShape(element, min_items, max_items, description=description)


def obj(fields: Optional[Mapping[str, Shape]] = None, /, *, model_name: str = "Result",
        doc: Optional[str] = None, **more: Shape) -> ObjectShape:
    """Object shape; declaration order is field order.

    Fields go in as keywords, or as a mapping when a field name is not a
    valid identifier or clashes with ``model_name`` or ``doc``.
    """
    declared = dict(fields or {})
    declared.update(more)
    return ObjectShape(declared, model_name, description=doc)


def record(value: Shape, *, description: Optional[str] = None) -> RecordShape:
    return RecordShape(value, description=description)


def optional(inner: Shape) -> OptionalShape:
    return OptionalShape(inner)


def default(inner: Shape, value: Any) -> DefaultShape:
    return DefaultShape(inner, value)


def union(*alternatives: Shape, description: Optional[str] = None) -> UnionShape:
    return UnionShape(tuple(alternatives), description=description)


def any_(*, description: Optional[str] = None) -> AnyShape:
    return AnyShape(description=description)


# ---------------------------------------------------------------------------
# JSON Schema conversion
# ---------------------------------------------------------------------------


def from_model(model_class: Type[BaseModel]) -> Shape:
    """Convert a pydantic model class into a shape via its JSON schema."""
    return from_json_schema(model_class.model_json_schema(), name=model_class.__name__)


def from_json_schema(schema: Mapping[str, Any], name: str = "Result") -> Shape:
    """Convert a JSON Schema document into a shape.

    Supports local ``$ref`` into ``$defs``/``definitions``, ``anyOf``/``oneOf``
    (a ``null`` alternative becomes an optional), ``enum``/``const``, numeric
    and string constraints, arrays, objects and ``additionalProperties``
    records.  Anything else degrades to :class:`AnyShape`.
    """
    return _JsonSchemaConverter(schema).convert(schema, name)


class _JsonSchemaConverter:
    def __init__(self, root: Mapping[str, Any]):
        self._root = root

    def _resolve(self, ref: str) -> Tuple[Mapping[str, Any], str]:
        if not ref.startswith("#/"):
            raise ValueError(f"Only local $ref values are supported: {ref}")
        node: Any = self._root
        for part in ref[2:].split("/"):
            node = node[part]
        return node, ref.rsplit("/", 1)[-1]

    def convert(self, schema: Mapping[str, Any], name: str = "Result") -> Shape:
        description = schema.get("description")

        if "$ref" in schema:
            target, ref_name = self._resolve(schema["$ref"])
            return self.convert(target, ref_name)

        if "const" in schema:
            return LiteralShape(schema["const"], description=description)

        if "enum" in schema:
            values = list(schema["enum"])
            if values and all(isinstance(v, str) for v in values):
                return EnumShape(tuple(values), description=description)
            return UnionShape(tuple(LiteralShape(v) for v in values), description=description)

        for key in ("anyOf", "oneOf"):
            if key in schema:
                options = [o for o in schema[key] if o.get("type") != "null"]
                nullable = len(options) != len(schema[key])
                if len(options) == 1:
                    inner = self.convert(options[0], name)
                else:
                    inner = UnionShape(tuple(self.convert(o, name) for o in options), description=description)
                return OptionalShape(inner) if nullable else inner

        if "allOf" in schema and len(schema["allOf"]) == 1:
            return self.convert(schema["allOf"][0], name)

        schema_type = schema.get("type")
        if isinstance(schema_type, list):
            types = [t for t in schema_type if t != "null"]
            if not types:
                return NullShape(description=description)
            alternatives = [self.convert({**schema, "type": t}, name) for t in types]
            inner = alternatives[0] if len(alternatives) == 1 else UnionShape(tuple(alternatives))
            return OptionalShape(inner) if "null" in schema_type else inner

        if schema_type == "string":
            return StringShape(schema.get("minLength"), schema.get("maxLength"), schema.get("pattern"),
                               description=description)
        if schema_type in ("number", "integer"):
            return NumberShape(
                schema.get("exclusiveMinimum"),
                schema.get("minimum"),
                schema.get("exclusiveMaximum"),
                schema.get("maximum"),
                integer=schema_type == "integer",
                description=description,
            )
        if schema_type == "boolean":
            return BooleanShape(description=description)
        if schema_type == "null":
            return NullShape(description=description)
        if schema_type == "array":
            items = schema.get("items")
            element = self.convert(items, name) if isinstance(items, Mapping) else AnyShape()
            return ArrayShape(element, schema.get("minItems"), schema.get("maxItems"), description=description)
        if schema_type == "object" or "properties" in schema:
            return self._convert_object(schema, schema.get("title") or name)

        return AnyShape(description=description)

    def _convert_object(self, schema: Mapping[str, Any], name: str) -> Shape:
        properties: Dict[str, Any] = schema.get("properties") or {}
        additional = schema.get("additionalProperties")
        if not properties and isinstance(additional, Mapping):
            return RecordShape(self.convert(additional, name), description=schema.get("description"))

        required = set(schema.get("required") or ())
        fields: Dict[str, Shape] = {}
        for prop_name, prop_schema in properties.items():
            shape = self.convert(prop_schema, prop_name.title().replace("_", ""))
            if prop_name not in required:
                if prop_schema.get("default") is not None:
                    shape = DefaultShape(shape, prop_schema["default"])
                elif not isinstance(shape, OptionalShape):
                    shape = OptionalShape(shape)
            fields[prop_name] = shape
        return ObjectShape(fields, _identifier(name), description=schema.get("description"))


def _identifier(name: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in name).strip("_")
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"Model_{cleaned}"
    return cleaned
