from __future__ import annotations

import copy
import re
from typing import Any, Optional

from pydantic import BaseModel
from pydantic.json_schema import GenerateJsonSchema

from restgate.errors import ConfigurationError

COMPONENT_REF_PREFIX = "#/components/schemas/"
_DEFS_REF_PREFIX = "#/$defs/"
_COMPONENT_NAME = re.compile(r"[^A-Za-z0-9._-]+")

# Schema Object keywords allowed by OpenAPI 3.0.x
_OPENAPI30_KEYWORDS = {
    "title",
    "multipleOf",
    "maximum",
    "exclusiveMaximum",
    "minimum",
    "exclusiveMinimum",
    "maxLength",
    "minLength",
    "pattern",
    "maxItems",
    "minItems",
    "uniqueItems",
    "maxProperties",
    "minProperties",
    "required",
    "enum",
    "type",
    "not",
    "allOf",
    "oneOf",
    "anyOf",
    "items",
    "properties",
    "additionalProperties",
    "description",
    "format",
    "default",
    "nullable",
    "discriminator",
    "readOnly",
    "writeOnly",
    "example",
    "externalDocs",
    "deprecated",
    "xml",
}

_OPENAPI30_TYPES = {"array", "boolean", "integer", "number", "object", "string"}


def _is_null_schema(schema: Any) -> bool:
    return isinstance(schema, dict) and schema.get("type") == "null" and len(schema) == 1


def _nullable(schema: dict[str, Any]) -> dict[str, Any]:
    if "$ref" in schema:
        return {"allOf": [schema], "nullable": True}
    return {**schema, "nullable": True}


def to_openapi30(schema: Any) -> Any:
    """
    Rewrite a JSON Schema (draft 2020-12, as pydantic emits it) into an
    OpenAPI 3.0 Schema Object.

    null arms become ``nullable``, ``const`` becomes a one-value ``enum``,
    numeric ``exclusiveMinimum``/``exclusiveMaximum`` become the boolean form,
    tuple ``prefixItems`` collapse into ``items``. Unknown keywords are dropped.
    """
    if schema is False:
        return {"not": {}}
    if not isinstance(schema, dict):
        return {}

    if "$ref" in schema:
        siblings = {k: v for k, v in schema.items() if k not in ("$ref", "$defs")}
        ref = {"$ref": schema["$ref"]}
        if not siblings:
            return ref
        out = to_openapi30(siblings)
        out["allOf"] = [ref, *out.get("allOf", [])]
        return out

    s = dict(schema)

    # anyOf/oneOf with a null arm -> nullable
    for key in ("anyOf", "oneOf"):
        arms = s.get(key)
        if isinstance(arms, list) and any(_is_null_schema(a) for a in arms):
            rest = [a for a in arms if not _is_null_schema(a)]
            del s[key]
            if len(rest) == 1:
                merged = _nullable(to_openapi30(rest[0]))
                s.pop("nullable", None)
                return {**to_openapi30(s), **merged} if s else merged
            if not rest:
                s["nullable"] = True
            else:
                s[key] = rest
                s["nullable"] = True

    t = s.get("type")
    if isinstance(t, list):
        kinds = [k for k in t if k != "null"]
        if len(kinds) < len(t):
            s["nullable"] = True
        if len(kinds) == 1:
            s["type"] = kinds[0]
        else:
            del s["type"]
            if kinds:
                s["anyOf"] = [{"type": k} for k in kinds]
    elif t == "null":
        del s["type"]
        s["nullable"] = True
        s.setdefault("enum", [None])

    if "const" in s:
        const = s.pop("const")
        s.setdefault("enum", [const])

    for bound, plain in (("exclusiveMinimum", "minimum"), ("exclusiveMaximum", "maximum")):
        value = s.get(bound)
        if value is not None and not isinstance(value, bool):
            s[plain] = value
            s[bound] = True

    if "examples" in s:
        examples = s.pop("examples")
        if isinstance(examples, list) and examples:
            s.setdefault("example", examples[0])
        elif isinstance(examples, dict) and examples:
            s.setdefault("example", next(iter(examples.values())))

    if "prefixItems" in s:
        prefix = [to_openapi30(p) for p in s.pop("prefixItems")]
        tail = s.get("items")
        arms = prefix + ([tail] if isinstance(tail, dict) and tail else [])
        s["items"] = arms[0] if len(arms) == 1 else {"anyOf": arms}

    if "patternProperties" in s and "additionalProperties" not in s:
        patterns = list(s["patternProperties"].values())
        if len(patterns) == 1:
            s["additionalProperties"] = patterns[0]

    out: dict[str, Any] = {}
    for key, value in s.items():
        if key not in _OPENAPI30_KEYWORDS and not key.startswith("x-"):
            continue
        if key == "properties":
            out[key] = {name: to_openapi30(v) for name, v in value.items()}
        elif key in ("allOf", "anyOf", "oneOf"):
            out[key] = [to_openapi30(v) for v in value]
        elif key in ("items", "not"):
            out[key] = to_openapi30(value)
        elif key == "additionalProperties" and isinstance(value, dict):
            out[key] = to_openapi30(value)
        elif key == "required":
            if value:
                out[key] = list(value)
        elif key == "enum":
            if value:
                out[key] = list(value)
        elif key == "type":
            if value in _OPENAPI30_TYPES:
                out[key] = value
        else:
            out[key] = value
    return out


class OpenApi30JsonSchema(GenerateJsonSchema):
    """pydantic JSON Schema generator emitting OpenAPI 3.0 Schema Objects."""

    def generate(self, schema, mode="validation"):
        json_schema = super().generate(schema, mode=mode)
        defs = json_schema.pop("$defs", None)
        out = to_openapi30(json_schema)
        if defs:
            out["$defs"] = {name: to_openapi30(d) for name, d in defs.items()}
        return out


def _rewrite_refs(node: Any, renames: dict[str, str]) -> Any:
    if isinstance(node, dict):
        out = {}
        for key, value in node.items():
            if key == "$ref" and isinstance(value, str) and value.startswith(_DEFS_REF_PREFIX):
                name = value[len(_DEFS_REF_PREFIX):]
                out[key] = COMPONENT_REF_PREFIX + renames.get(name, name)
            elif key == "mapping" and isinstance(value, dict):
                out[key] = {k: _rewrite_refs({"$ref": v}, renames)["$ref"] for k, v in value.items()}
            else:
                out[key] = _rewrite_refs(value, renames)
        return out
    if isinstance(node, list):
        return [_rewrite_refs(v, renames) for v in node]
    return node


class ComponentRegistry:
    """
    Named schema definitions shared by a whole document (``components.schemas``).

    One registry is created per document build and handed to every schema
    generation so nested models are emitted once and referenced by ``$ref``.
    Two different definitions under the same name get a numeric suffix.
    """

    def __init__(self) -> None:
        self.schemas: dict[str, dict[str, Any]] = {}

    def _free_name(self, name: str, definition: dict[str, Any]) -> str:
        base = _COMPONENT_NAME.sub("_", name) or "Schema"
        candidate = base
        n = 1
        while candidate in self.schemas and self.schemas[candidate] != definition:
            n += 1
            candidate = f"{base}{n}"
        return candidate

    def absorb(self, json_schema: dict[str, Any]) -> dict[str, Any]:
        """Move ``$defs`` into the registry and point refs at components."""
        json_schema = dict(json_schema)
        defs: dict[str, Any] = json_schema.pop("$defs", None) or {}

        identity = {name: name for name in defs}
        renames = {
            name: self._free_name(name, _rewrite_refs(d, identity)) for name, d in defs.items()
        }
        for name, definition in defs.items():
            final = renames[name]
            if final not in self.schemas:
                self.schemas[final] = _rewrite_refs(definition, renames)

        return _rewrite_refs(json_schema, renames)

    def register_model(self, model: type[BaseModel], name: Optional[str] = None) -> str:
        """Pre-register a model so it always shows up under components.schemas."""
        from restgate.schema.types import Schema

        schema = Schema.of(model).json_schema(mode="validation", registry=self)
        name = name or model.__name__
        if "$ref" in schema and len(schema) == 1:
            existing = schema["$ref"][len(COMPONENT_REF_PREFIX):]
            if name == existing:
                return existing
            schema = copy.deepcopy(self.schemas[existing])
        if name in self.schemas and self.schemas[name] != schema:
            raise ConfigurationError(f"Component schema '{name}' is already registered")
        self.schemas[name] = schema
        return name

    def resolve(self, schema: dict[str, Any]) -> dict[str, Any]:
        """Follow a top-level ``$ref`` (or a nullable ``allOf: [$ref]`` wrapper) into the registry."""
        seen = 0
        while seen < 32:
            wrapped = schema.get("allOf")
            if "$ref" not in schema and isinstance(wrapped, list) and len(wrapped) == 1:
                schema = wrapped[0]
            ref = schema.get("$ref")
            if not isinstance(ref, str) or not ref.startswith(COMPONENT_REF_PREFIX):
                break
            schema = self.schemas[ref[len(COMPONENT_REF_PREFIX):]]
            seen += 1
        return schema
