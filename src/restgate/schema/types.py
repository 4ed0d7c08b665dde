from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, Optional

from pydantic import TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError, PydanticUserError
from pydantic_core import core_schema

from restgate.errors import ConfigurationError

if TYPE_CHECKING:
    from restgate.schema.introspect import ShapeDescriptor
    from restgate.schema.jsonschema import ComponentRegistry

JsonSchemaMode = Literal["validation", "serialization"]


class AllOf:
    """
    Intersection marker: ``Annotated[str, AllOf(Literal["a", "b"])]``.

    A value must satisfy the annotated type and every operand. The value
    returned by the last operand wins. Documented as JSON Schema ``allOf``.
    """

    def __init__(self, *operands: Any) -> None:
        if not operands:
            raise ValueError("AllOf needs at least one operand")
        self.operands = operands

    def __repr__(self) -> str:
        return f"AllOf{self.operands!r}"

    def __get_pydantic_core_schema__(self, source: Any, handler: Any) -> core_schema.CoreSchema:
        steps = [handler(source)]
        steps.extend(handler.generate_schema(op) for op in self.operands)
        return core_schema.chain_schema(steps)

    def __get_pydantic_json_schema__(self, schema: core_schema.CoreSchema, handler: Any) -> dict:
        steps = schema.get("steps") or [schema]
        return {"allOf": [handler(step) for step in steps]}


class Schema:
    """
    Validator capability used everywhere a procedure declares a shape.

    Wraps a type annotation (usually a pydantic model) and exposes
    validation, JSON dumping, introspection and JSON Schema generation.
    ``None`` means the procedure takes or returns nothing.
    """

    def __init__(self, annotation: Any) -> None:
        from restgate.schema.introspect import is_void

        self.annotation = annotation
        try:
            self._adapter: TypeAdapter[Any] = TypeAdapter(None if is_void(annotation) else annotation)
        except (PydanticSchemaGenerationError, PydanticUserError, TypeError) as e:
            raise ConfigurationError(
                f"{annotation!r} is not a type pydantic can validate: {e}"
            ) from e

    @classmethod
    def of(cls, annotation: Any) -> "Schema":
        if isinstance(annotation, Schema):
            return annotation
        return cls(annotation)

    @property
    def is_void(self) -> bool:
        from restgate.schema.introspect import is_void

        return is_void(self.annotation)

    def validate(self, value: Any) -> Any:
        """Return the validated value or raise ``pydantic.ValidationError``."""
        if self.is_void:
            # callers that still send {} for "no input" are accepted
            if value is None or value == {}:
                return None
        return self._adapter.validate_python(value)

    def dump(self, value: Any) -> Any:
        if self.is_void:
            return None
        return self._adapter.dump_python(value, mode="json")

    def introspect(self, coerce: bool = False) -> "ShapeDescriptor":
        from restgate.schema.introspect import classify

        return classify(self.annotation, coerce=coerce)

    def json_schema(
        self,
        mode: JsonSchemaMode = "validation",
        registry: Optional["ComponentRegistry"] = None,
    ) -> dict[str, Any]:
        from restgate.schema.jsonschema import ComponentRegistry, OpenApi30JsonSchema

        raw = self._adapter.json_schema(mode=mode, schema_generator=OpenApi30JsonSchema)
        return (registry or ComponentRegistry()).absorb(raw)

    def __repr__(self) -> str:
        return f"Schema({self.annotation!r})"


def validation_issues(error: ValidationError) -> list[dict[str, Any]]:
    """Flatten a pydantic ValidationError into wire issues (code/message/path)."""
    issues: list[dict[str, Any]] = []
    for e in error.errors(include_url=False, include_input=False):
        issues.append(
            {
                "code": e.get("type", "invalid"),
                "message": e.get("msg", ""),
                "path": list(e.get("loc", ())),
            }
        )
    return issues
