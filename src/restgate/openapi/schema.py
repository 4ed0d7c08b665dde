from __future__ import annotations

import copy
from typing import Any, Optional

from restgate.domain.models import ProcedureDescriptor
from restgate.errors import ConfigurationError
from restgate.http.envelope import ErrorEnvelope
from restgate.routing.path import PathTemplate
from restgate.schema.introspect import ObjectShape, VoidShape, require_param_field
from restgate.schema.jsonschema import ComponentRegistry
from restgate.schema.types import Schema

SUCCESS_DESCRIPTION = "Successful response"
ERROR_DESCRIPTION = "Error response"
ERROR_RESPONSE_REF = {"$ref": "#/components/responses/error"}


def object_schema(schema: Schema, registry: ComponentRegistry, mode: str = "validation") -> dict[str, Any]:
    """JSON schema of a model, with a top-level ``$ref`` followed so properties are visible."""
    return copy.deepcopy(registry.resolve(schema.json_schema(mode=mode, registry=registry)))


def input_shape(schema: Schema, coerce: bool) -> ObjectShape | VoidShape:
    shape = schema.introspect(coerce=coerce)
    if not isinstance(shape, (ObjectShape, VoidShape)):
        raise ConfigurationError("Input parser must be a pydantic model or None")
    return shape


def check_path_params(template: PathTemplate, shape: ObjectShape | VoidShape, coerce: bool) -> None:
    if not template.param_names:
        return
    if isinstance(shape, VoidShape):
        raise ConfigurationError(
            "Input parser must be a pydantic model when the path has parameters "
            f"({', '.join(template.param_names)})"
        )
    for name in template.param_names:
        field = shape.field(name)
        if field is None:
            raise ConfigurationError(f"Input parser is missing path parameter '{name}'")
        if not field.required:
            raise ConfigurationError(f"Path parameter '{name}' must be a required input field")
        require_param_field(field, "path", coerce=coerce)


def parameter_objects(
    descriptor: ProcedureDescriptor,
    template: PathTemplate,
    shape: ObjectShape | VoidShape,
    schema: Schema,
    registry: ComponentRegistry,
    coerce: bool,
    in_query: bool,
) -> list[dict[str, Any]]:
    """
    Path parameters, then (for queries) every other field as a query
    parameter, then declared header parameters.
    """
    params: list[dict[str, Any]] = []
    example = (descriptor.example.request or {}) if descriptor.example else {}

    if isinstance(shape, ObjectShape):
        properties = object_schema(schema, registry).get("properties", {})
        for field in shape.fields:
            is_path = field.name in template.param_names
            if not is_path and not in_query:
                continue
            if not is_path:
                require_param_field(field, "query", coerce=coerce)

            param: dict[str, Any] = {
                "name": field.name,
                "in": "path" if is_path else "query",
                "required": True if is_path else field.required,
                "schema": properties.get(field.name, {}),
            }
            if field.description:
                param["description"] = field.description
            if not is_path:
                param["style"] = "form"
                param["explode"] = True
            if field.name in example:
                param["example"] = example[field.name]
            params.append(param)

        # path parameters first, in template order
        order = {name: i for i, name in enumerate(template.param_names)}
        params.sort(key=lambda p: (p["in"] != "path", order.get(p["name"], 0)))

    for header in descriptor.headers:
        param = {
            "name": header.name,
            "in": "header",
            "required": header.required,
            "schema": {"type": "string"},
        }
        if header.description:
            param["description"] = header.description
        params.append(param)

    return params


def request_body_object(
    descriptor: ProcedureDescriptor,
    template: PathTemplate,
    shape: ObjectShape | VoidShape,
    schema: Schema,
    registry: ComponentRegistry,
) -> Optional[dict[str, Any]]:
    if isinstance(shape, VoidShape):
        return None

    body = object_schema(schema, registry)
    path_names = set(template.param_names)
    if path_names:
        body["properties"] = {
            k: v for k, v in body.get("properties", {}).items() if k not in path_names
        }
        required = [r for r in body.get("required", []) if r not in path_names]
        if required:
            body["required"] = required
        else:
            body.pop("required", None)

    if not descriptor.content_types:
        raise ConfigurationError("content_types must not be empty")

    content: dict[str, Any] = {}
    for content_type in descriptor.content_types:
        media: dict[str, Any] = {"schema": body}
        if descriptor.example and descriptor.example.request is not None:
            media["example"] = {
                k: v for k, v in descriptor.example.request.items() if k not in path_names
            }
        content[content_type] = media

    return {"required": not shape.optional, "content": content}


def responses_object(
    descriptor: ProcedureDescriptor, schema: Schema, registry: ComponentRegistry
) -> dict[str, Any]:
    shape = schema.introspect()
    if not isinstance(shape, (ObjectShape, VoidShape)):
        raise ConfigurationError("Output parser must be a pydantic model or None")

    properties: dict[str, Any] = {"ok": {"type": "boolean", "enum": [True]}}
    required = ["ok"]
    if isinstance(shape, ObjectShape):
        properties["data"] = schema.json_schema(mode="serialization", registry=registry)
        required.append("data")

    media: dict[str, Any] = {
        "schema": {
            "type": "object",
            "properties": properties,
            "required": required,
        }
    }
    if descriptor.example and descriptor.example.response is not None:
        media["example"] = {"ok": True, "data": descriptor.example.response}

    success: dict[str, Any] = {
        "description": SUCCESS_DESCRIPTION,
        "content": {"application/json": media},
    }
    if descriptor.response_headers:
        success["headers"] = {
            name: (h if isinstance(h, dict) else {"schema": {"type": "string"}, "description": str(h)})
            for name, h in descriptor.response_headers.items()
        }

    return {"200": success, "default": ERROR_RESPONSE_REF}


def error_response_object(registry: ComponentRegistry) -> dict[str, Any]:
    return {
        "description": ERROR_DESCRIPTION,
        "content": {
            "application/json": {
                "schema": Schema.of(ErrorEnvelope).json_schema(mode="serialization", registry=registry),
            }
        },
    }
