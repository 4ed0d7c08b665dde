"""
Wire-level classification of type annotations.

A procedure's input is spread over the URL path, the query string and the
request body. Only values that survive being a single URL token can live in
the path or the query string, so every input field is classified here:

  - VoidShape        no input / no output
  - StringLikeShape  str, string literals/enums, and unions/intersections of them
  - ObjectShape      a pydantic model, fields in declaration order
  - OpaqueShape      everything else (fine inside a JSON body)

Modifiers that do not change the wire shape (Optional, defaults, Annotated
validators and constraints, lazy type aliases) are unwrapped first.
"""

from __future__ import annotations

import datetime
import decimal
import enum
import types
import typing
import uuid
from dataclasses import dataclass
from typing import Any, Annotated, Literal, NoReturn, Optional, Union

import typing_extensions
from pydantic import BaseModel
from pydantic.fields import FieldInfo

from restgate.errors import ConfigurationError
from restgate.schema.types import AllOf

_TYPE_ALIAS_TYPES: tuple[type, ...] = tuple(
    {
        t
        for t in (
            getattr(typing, "TypeAliasType", None),
            getattr(typing_extensions, "TypeAliasType", None),
        )
        if t is not None
    }
)

_VOID_TYPES = {None, type(None), NoReturn, typing_extensions.Never}
if hasattr(typing, "Never"):
    _VOID_TYPES.add(typing.Never)

_COERCIBLE_SCALARS = (
    bool,
    int,
    float,
    decimal.Decimal,
    datetime.date,
    datetime.datetime,
    datetime.time,
    uuid.UUID,
)


@dataclass(frozen=True)
class VoidShape:
    pass


@dataclass(frozen=True)
class StringLikeShape:
    pass


@dataclass(frozen=True)
class OpaqueShape:
    # scalar that pydantic's lax mode can parse from a string
    coercible: bool = False


@dataclass(frozen=True)
class FieldShape:
    name: str               # wire name (alias if any)
    attribute: str          # python attribute name on the model
    annotation: Any
    shape: "ShapeDescriptor"
    required: bool
    description: Optional[str] = None


@dataclass(frozen=True)
class ObjectShape:
    model: type
    fields: tuple[FieldShape, ...]
    optional: bool = False

    def field(self, name: str) -> Optional[FieldShape]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)


ShapeDescriptor = Union[VoidShape, StringLikeShape, ObjectShape, OpaqueShape]


def is_void(annotation: Any) -> bool:
    try:
        return annotation in _VOID_TYPES
    except TypeError:
        # unhashable annotations are never void
        return False


def _is_union(annotation: Any) -> bool:
    origin = typing.get_origin(annotation)
    return origin is Union or origin is types.UnionType


def _intersection_operands(annotation: Any) -> Optional[tuple[Any, ...]]:
    if typing.get_origin(annotation) is not Annotated:
        return None
    inner, *metadata = typing.get_args(annotation)
    operands: list[Any] = []
    for m in metadata:
        if isinstance(m, AllOf):
            operands.extend(m.operands)
    if not operands:
        return None
    return (inner, *operands)


def _unwrap_once(annotation: Any) -> tuple[Any, bool]:
    """Strip one wire-neutral modifier. Returns (inner, was_optional)."""
    if isinstance(annotation, _TYPE_ALIAS_TYPES):
        return annotation.__value__, False

    if typing.get_origin(annotation) is Annotated and _intersection_operands(annotation) is None:
        return typing.get_args(annotation)[0], False

    if _is_union(annotation):
        arms = [a for a in typing.get_args(annotation) if not is_void(a)]
        if len(arms) < len(typing.get_args(annotation)):
            if len(arms) == 1:
                return arms[0], True
            return Union[tuple(arms)], True

    return annotation, False


def unwrap(annotation: Any) -> Any:
    """Strip Optional/Annotated/lazy aliases until nothing changes."""
    return unwrap_optional(annotation)[0]


def unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    optional = False
    seen = 0
    while True:
        inner, was_optional = _unwrap_once(annotation)
        optional = optional or was_optional
        if inner is annotation:
            return annotation, optional
        annotation = inner
        seen += 1
        if seen > 100:
            raise ConfigurationError(f"Cannot unwrap self-referencing type {annotation!r}")


def _is_string_value(value: Any) -> bool:
    if isinstance(value, enum.Enum):
        value = value.value
    return isinstance(value, str)


def _is_numeric_value(value: Any) -> bool:
    if isinstance(value, enum.Enum):
        value = value.value
    return isinstance(value, (int, float, decimal.Decimal))


def is_string_like(annotation: Any) -> bool:
    annotation = unwrap(annotation)

    operands = _intersection_operands(annotation)
    if operands is not None:
        return all(is_string_like(op) for op in operands)

    if _is_union(annotation):
        return all(is_string_like(arm) for arm in typing.get_args(annotation))

    if typing.get_origin(annotation) is Literal:
        return all(_is_string_value(v) for v in typing.get_args(annotation))

    if _is_class(annotation) and issubclass(annotation, enum.Enum):
        return not any(_is_numeric_value(m.value) for m in annotation)

    return annotation is str


def is_coercible_scalar(annotation: Any) -> bool:
    """True for values pydantic's lax mode parses out of a single string."""
    annotation = unwrap(annotation)

    operands = _intersection_operands(annotation)
    if operands is not None:
        return all(is_coercible_scalar(op) for op in operands)

    if _is_union(annotation):
        return all(is_coercible_scalar(arm) for arm in typing.get_args(annotation))

    if typing.get_origin(annotation) is Literal:
        return all(isinstance(v, (str, int, float, bool, enum.Enum)) for v in typing.get_args(annotation))

    if _is_class(annotation):
        if issubclass(annotation, enum.Enum):
            return True
        return annotation is str or issubclass(annotation, _COERCIBLE_SCALARS)

    return False


def _is_class(annotation: Any) -> bool:
    # list[int] and friends pass isinstance(..., type) on some interpreters
    return isinstance(annotation, type) and typing.get_origin(annotation) is None


def _is_model(annotation: Any) -> bool:
    return _is_class(annotation) and issubclass(annotation, BaseModel)


def _field_annotation(info: FieldInfo) -> Any:
    # pydantic moves Annotated metadata off the annotation; put it back
    if info.metadata:
        return Annotated[(info.annotation, *info.metadata)]
    return info.annotation


def _wire_name(name: str, info: FieldInfo) -> str:
    if isinstance(info.validation_alias, str):
        return info.validation_alias
    return info.alias or name


def describe_model(model: type[BaseModel], coerce: bool = False, optional: bool = False) -> ObjectShape:
    fields: list[FieldShape] = []
    for attr, info in model.model_fields.items():
        annotation = _field_annotation(info)
        fields.append(
            FieldShape(
                name=_wire_name(attr, info),
                attribute=attr,
                annotation=annotation,
                shape=classify(annotation, coerce=coerce, nested=True),
                required=info.is_required(),
                description=info.description,
            )
        )
    return ObjectShape(model=model, fields=tuple(fields), optional=optional)


def classify(annotation: Any, coerce: bool = False, nested: bool = False) -> ShapeDescriptor:
    """
    Classify an annotation into a ShapeDescriptor.

    Nested model fields are not expanded (they are Opaque on the wire);
    only the top-level annotation becomes an ObjectShape.
    """
    if is_void(annotation):
        return VoidShape()

    inner, optional = unwrap_optional(annotation)
    if is_void(inner):
        return VoidShape()

    if _is_model(inner) and not nested:
        return describe_model(inner, coerce=coerce, optional=optional)

    if is_string_like(inner):
        return StringLikeShape()

    if is_coercible_scalar(inner):
        return OpaqueShape(coercible=True)

    return OpaqueShape()


def require_param_field(field: FieldShape, location: str, coerce: bool = False) -> None:
    """Raise if a field cannot be carried as a path/query parameter."""
    if isinstance(field.shape, StringLikeShape):
        return
    if coerce and isinstance(field.shape, OpaqueShape) and field.shape.coercible:
        return
    if coerce:
        raise ConfigurationError(
            f"Input field '{field.name}' is bound to a {location} parameter "
            f"but is neither string-like nor a coercible scalar"
        )
    raise ConfigurationError(
        f"Input field '{field.name}' is bound to a {location} parameter but is not "
        f"string-like (enable coerce_params to accept scalars)"
    )
