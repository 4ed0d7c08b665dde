from __future__ import annotations

import logging
from typing import Any, Optional

from restgate.config import DEFAULT_SECURITY_SCHEMES, OPENAPI_VERSION, OpenApiDocumentOptions
from restgate.domain.models import MUTATION_METHODS, QUERY_METHODS, ProcedureDescriptor
from restgate.errors import ConfigurationError, prefix_error
from restgate.openapi.schema import (
    check_path_params,
    error_response_object,
    input_shape,
    parameter_objects,
    request_body_object,
    responses_object,
)
from restgate.procedures.router import ProcedureSource, as_descriptors
from restgate.routing.path import compile_path
from restgate.schema.jsonschema import ComponentRegistry
from restgate.schema.types import Schema

logger = logging.getLogger(__name__)

_ALLOWED_METHODS = {"query": QUERY_METHODS, "mutation": MUTATION_METHODS}


def check_method(descriptor: ProcedureDescriptor) -> None:
    if descriptor.kind == "subscription":
        raise ConfigurationError("Subscriptions are not supported by OpenAPI v3")

    allowed = _ALLOWED_METHODS.get(descriptor.kind)
    if allowed is None:
        raise ConfigurationError(f"Unknown procedure kind '{descriptor.kind}'")
    if descriptor.method not in allowed:
        raise ConfigurationError(
            f"{descriptor.kind.capitalize()} method must be {' or '.join(allowed)} "
            f"(got {descriptor.method})"
        )


def build_operation(
    descriptor: ProcedureDescriptor,
    registry: ComponentRegistry,
    coerce: bool = False,
    security_names: tuple[str, ...] = ("Authorization",),
) -> tuple[str, dict[str, Any]]:
    """Validate one descriptor and return ``(path_key, operation_object)``."""
    check_method(descriptor)

    template = compile_path(descriptor.path)
    input_schema = Schema.of(descriptor.input)
    output_schema = Schema.of(descriptor.output)

    shape = input_shape(input_schema, coerce=coerce)
    check_path_params(template, shape, coerce=coerce)

    operation: dict[str, Any] = {"operationId": descriptor.name}
    if descriptor.summary:
        operation["summary"] = descriptor.summary
    if descriptor.description:
        operation["description"] = descriptor.description
    if descriptor.tags:
        operation["tags"] = list(descriptor.tags)
    if descriptor.deprecated:
        operation["deprecated"] = True
    if descriptor.protect:
        operation["security"] = [{name: []} for name in security_names]

    is_query = descriptor.kind == "query"
    parameters = parameter_objects(
        descriptor, template, shape, input_schema, registry, coerce=coerce, in_query=is_query
    )
    if parameters:
        operation["parameters"] = parameters

    if not is_query:
        body = request_body_object(descriptor, template, shape, input_schema, registry)
        if body is not None:
            operation["requestBody"] = body

    operation["responses"] = responses_object(descriptor, output_schema, registry)
    return template.path, operation


def build_paths(
    descriptors: list[ProcedureDescriptor],
    registry: ComponentRegistry,
    coerce: bool = False,
    security_names: tuple[str, ...] = ("Authorization",),
) -> dict[str, dict[str, Any]]:
    paths: dict[str, dict[str, Any]] = {}
    # (method, route_key) -> registration label, for duplicate detection
    seen: dict[tuple[str, str], str] = {}

    for d in descriptors:
        if not d.enabled:
            continue
        try:
            path_key, operation = build_operation(
                d, registry, coerce=coerce, security_names=security_names
            )

            route_key = compile_path(d.path).route_key
            previous = seen.get((d.method, route_key))
            if previous is not None:
                raise ConfigurationError(
                    f"Duplicate procedure defined for route {d.method} {path_key} "
                    f"(already defined by {previous})"
                )
            seen[(d.method, route_key)] = d.label

            paths.setdefault(path_key, {})[d.method.lower()] = operation
        except ConfigurationError as e:
            raise prefix_error(e, f"[{d.label}]")

    return paths


def generate_openapi_document(
    procedures: ProcedureSource,
    options: OpenApiDocumentOptions,
    registry: Optional[ComponentRegistry] = None,
) -> dict[str, Any]:
    """
    Build an OpenAPI 3.0.3 document for every enabled procedure.

    Raises ConfigurationError (prefixed with ``[<kind>.<name>]``) on the
    first procedure that cannot be expressed as a REST operation.
    """
    registry = registry if registry is not None else ComponentRegistry()
    descriptors = as_descriptors(procedures)

    security_schemes = options.security_schemes or dict(DEFAULT_SECURITY_SCHEMES)
    paths = build_paths(
        descriptors, registry, coerce=options.coerce_params, security_names=tuple(security_schemes)
    )
    error_response = error_response_object(registry)

    info: dict[str, Any] = {"title": options.title, "version": options.version}
    if options.description:
        info["description"] = options.description

    components: dict[str, Any] = {
        "securitySchemes": security_schemes,
        "responses": {"error": error_response},
    }
    if registry.schemas:
        components["schemas"] = dict(sorted(registry.schemas.items()))

    document: dict[str, Any] = {
        "openapi": OPENAPI_VERSION,
        "info": info,
        "servers": [{"url": options.base_url}],
        "paths": paths,
        "components": components,
    }
    if options.tags:
        document["tags"] = [{"name": tag} for tag in options.tags]
    if options.docs_url:
        document["externalDocs"] = {"url": options.docs_url}

    logger.debug("Generated OpenAPI document with %d paths", len(paths))
    return document
