import enum
from typing import Annotated, Literal, Optional, Union

import pytest
from openapi_spec_validator import validate
from pydantic import AfterValidator, BaseModel, Field

from restgate.config import OpenApiDocumentOptions
from restgate.errors import ConfigurationError
from restgate.openapi.generator import generate_openapi_document
from restgate.procedures.router import Router
from restgate.schema.jsonschema import ComponentRegistry, to_openapi30
from restgate.schema.types import AllOf

OPTIONS = OpenApiDocumentOptions(title="Test API", version="1.0.0", base_url="http://localhost:3000")


class Status(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class Address(BaseModel):
    street: str
    city: str


class Person(BaseModel):
    id: str
    name: str
    address: Optional[Address] = None
    friends: list["Person"] = Field(default_factory=list)


class SearchIn(BaseModel):
    q: Annotated[str, AfterValidator(lambda v: v.strip())] = Field(description="Search text")
    status: Status = Status.ACTIVE
    sort: Literal["asc", "desc"] = "asc"
    cursor: Optional[str] = None
    kind: Union[Literal["person"], Literal["company"]] = "person"
    code: Annotated[str, AllOf(Literal["a", "b"])] = "a"


class SearchOut(BaseModel):
    results: list[Person]
    total: int = Field(ge=0)


class IdIn(BaseModel):
    id: str


class UpdateIn(BaseModel):
    id: str
    name: str
    age: Optional[int] = None


def _router() -> Router:
    router = Router()

    @router.query(
        "people.search",
        path="/people",
        input=SearchIn,
        output=SearchOut,
        summary="Search people",
        tags=["people"],
        headers=[{"name": "X-Request-Id", "required": False, "description": "Trace id"}],
    )
    def search(input, ctx):
        return {"results": [], "total": 0}

    @router.mutation(
        "people.update",
        path="/people/{id}",
        method="PUT",
        input=UpdateIn,
        output=Person,
        protect=True,
        content_types=["application/json", "application/x-www-form-urlencoded"],
        example={"request": {"id": "1", "name": "Ann"}, "response": {"id": "1", "name": "Ann"}},
    )
    def update(input, ctx):
        return Person(id=input.id, name=input.name)

    @router.mutation("ping", path="/ping", output=None, deprecated=True)
    def ping(input, ctx):
        return None

    @router.query("hidden", path="/hidden", output=None, enabled=False)
    def hidden(input, ctx):
        return None

    return router


def test_document_is_valid_openapi_30():
    doc = generate_openapi_document(_router(), OPTIONS)
    validate(doc)

    assert doc["openapi"] == "3.0.3"
    assert doc["info"] == {"title": "Test API", "version": "1.0.0"}
    assert doc["servers"] == [{"url": "http://localhost:3000"}]
    assert "externalDocs" not in doc
    assert set(doc["paths"]) == {"/people", "/people/{id}", "/ping"}


def test_example_router_document_is_valid(router):
    validate(generate_openapi_document(router, OPTIONS))


def test_document_level_fields():
    options = OPTIONS.model_copy(
        update={"description": "People", "docs_url": "https://docs.example.com", "tags": ["people"]}
    )
    doc = generate_openapi_document(_router(), options)

    assert doc["info"]["description"] == "People"
    assert doc["externalDocs"] == {"url": "https://docs.example.com"}
    assert doc["tags"] == [{"name": "people"}]
    assert doc["components"]["securitySchemes"] == {"Authorization": {"type": "http", "scheme": "bearer"}}
    assert doc["components"]["responses"]["error"]["description"] == "Error response"


def test_query_fields_become_query_parameters():
    doc = generate_openapi_document(_router(), OPTIONS)
    op = doc["paths"]["/people"]["get"]

    assert op["operationId"] == "people.search"
    assert op["summary"] == "Search people"
    assert op["tags"] == ["people"]
    assert "security" not in op
    assert "requestBody" not in op

    params = {p["name"]: p for p in op["parameters"]}
    assert [p["name"] for p in op["parameters"]] == ["q", "status", "sort", "cursor", "kind", "code", "X-Request-Id"]
    assert params["q"]["in"] == "query"
    assert params["q"]["required"] is True
    assert params["q"]["description"] == "Search text"
    assert params["cursor"]["required"] is False
    assert params["sort"]["schema"]["enum"] == ["asc", "desc"]
    assert params["X-Request-Id"]["in"] == "header"


def test_mutation_path_params_and_request_body():
    doc = generate_openapi_document(_router(), OPTIONS)
    op = doc["paths"]["/people/{id}"]["put"]

    assert op["security"] == [{"Authorization": []}]
    assert op["parameters"] == [
        {"name": "id", "in": "path", "required": True, "schema": {"type": "string", "title": "Id"}, "example": "1"}
    ]

    body = op["requestBody"]
    assert body["required"] is True
    assert set(body["content"]) == {"application/json", "application/x-www-form-urlencoded"}
    schema = body["content"]["application/json"]["schema"]
    assert set(schema["properties"]) == {"name", "age"}
    assert schema["required"] == ["name"]
    assert body["content"]["application/json"]["example"] == {"name": "Ann"}
    assert body["content"]["application/json"]["schema"] == body["content"]["application/x-www-form-urlencoded"]["schema"]


def test_responses_wrap_output_in_envelope():
    doc = generate_openapi_document(_router(), OPTIONS)
    responses = doc["paths"]["/people/{id}"]["put"]["responses"]

    assert responses["default"] == {"$ref": "#/components/responses/error"}
    success = responses["200"]
    assert success["description"] == "Successful response"
    envelope = success["content"]["application/json"]["schema"]
    assert envelope["required"] == ["ok", "data"]
    assert envelope["properties"]["ok"] == {"type": "boolean", "enum": [True]}

    void = doc["paths"]["/ping"]["post"]
    assert void["deprecated"] is True
    assert "requestBody" not in void
    assert void["responses"]["200"]["content"]["application/json"]["schema"]["required"] == ["ok"]


def test_nested_and_recursive_models_become_components():
    doc = generate_openapi_document(_router(), OPTIONS)
    schemas = doc["components"]["schemas"]

    assert {"Person", "Address", "ErrorBody", "ErrorIssue"} <= set(schemas)
    assert schemas["Person"]["properties"]["friends"]["items"] == {"$ref": "#/components/schemas/Person"}
    assert "$defs" not in str(doc)


def test_custom_security_schemes():
    options = OPTIONS.model_copy(update={"security_schemes": {"ApiKey": {"type": "apiKey", "in": "header", "name": "X-Key"}}})
    doc = generate_openapi_document(_router(), options)

    assert doc["paths"]["/people/{id}"]["put"]["security"] == [{"ApiKey": []}]
    validate(doc)


def test_registry_can_be_prefilled():
    registry = ComponentRegistry()
    registry.register_model(Address)

    doc = generate_openapi_document(_router(), OPTIONS, registry=registry)
    assert doc["components"]["schemas"]["Address"]["required"] == ["street", "city"]


def _single(kind, **kwargs):
    router = Router()
    getattr(router, kind)("proc", **kwargs)(lambda input, ctx: None)
    return router


def test_wrong_method_for_kind():
    with pytest.raises(ConfigurationError, match=r"^\[query.proc\] - Query method must be GET or DELETE \(got POST\)"):
        generate_openapi_document(_single("query", path="/p", method="POST", output=None), OPTIONS)

    with pytest.raises(ConfigurationError, match=r"Mutation method must be POST or PUT or PATCH \(got GET\)"):
        generate_openapi_document(_single("mutation", path="/p", method="GET", output=None), OPTIONS)


def test_subscriptions_are_rejected():
    with pytest.raises(ConfigurationError, match=r"\[subscription.proc\] - Subscriptions are not supported"):
        generate_openapi_document(_single("subscription", path="/p", output=None), OPTIONS)


def test_duplicate_route_names_the_later_procedure():
    router = Router()
    router.query("first", path="/Users/{id}", input=IdIn, output=None)(lambda i, c: None)
    router.query("second", path="/users/{id}/", input=IdIn, output=None)(lambda i, c: None)

    with pytest.raises(ConfigurationError, match=r"^\[query.second\] - Duplicate procedure defined for route GET /users/\{id\} \(already defined by query.first\)"):
        generate_openapi_document(router, OPTIONS)


def test_path_params_require_object_input():
    with pytest.raises(ConfigurationError, match="must be a pydantic model when the path has parameters"):
        generate_openapi_document(_single("query", path="/p/{id}", output=None), OPTIONS)


def test_path_param_must_be_an_input_field():
    with pytest.raises(ConfigurationError, match="missing path parameter 'slug'"):
        generate_openapi_document(_single("query", path="/p/{slug}", input=UpdateIn, output=None), OPTIONS)


def test_path_param_must_be_required():
    class In(BaseModel):
        id: Optional[str] = None

    with pytest.raises(ConfigurationError, match="'id' must be a required"):
        generate_openapi_document(_single("query", path="/p/{id}", input=In, output=None), OPTIONS)


def test_non_string_query_field_is_rejected_unless_coerced():
    class In(BaseModel):
        page: int
        tags: list[str] = Field(default_factory=list)

    router = _single("query", path="/p", input=In, output=None)
    with pytest.raises(ConfigurationError, match=r"\[query.proc\] - Input field 'page'"):
        generate_openapi_document(router, OPTIONS)

    with pytest.raises(ConfigurationError, match="'tags'"):
        generate_openapi_document(router, OPTIONS.model_copy(update={"coerce_params": True}))


def test_body_fields_may_be_anything():
    class In(BaseModel):
        tags: list[str]
        meta: dict[str, int] = Field(default_factory=dict)

    doc = generate_openapi_document(_single("mutation", path="/p", input=In, output=None), OPTIONS)
    validate(doc)


def test_top_level_input_must_be_an_object():
    with pytest.raises(ConfigurationError, match="Input parser must be a pydantic model"):
        generate_openapi_document(_single("query", path="/p", input=str, output=None), OPTIONS)


def test_disabled_procedures_are_skipped_even_when_invalid():
    router = _single("query", path="/p", method="POST", output=None, enabled=False)
    doc = generate_openapi_document(router, OPTIONS)
    assert doc["paths"] == {}


def test_to_openapi30_rewrites_draft_2020_keywords():
    assert to_openapi30({"anyOf": [{"type": "string"}, {"type": "null"}], "default": None}) == {
        "type": "string",
        "nullable": True,
        "default": None,
    }
    assert to_openapi30({"const": "x"}) == {"enum": ["x"]}
    assert to_openapi30({"type": "integer", "exclusiveMinimum": 0}) == {
        "type": "integer",
        "minimum": 0,
        "exclusiveMinimum": True,
    }
    assert to_openapi30({"type": "array", "prefixItems": [{"type": "string"}]}) == {
        "type": "array",
        "items": {"type": "string"},
    }
    assert to_openapi30({"$ref": "#/$defs/A", "description": "d"}) == {
        "description": "d",
        "allOf": [{"$ref": "#/$defs/A"}],
    }
    assert to_openapi30(False) == {"not": {}}


def test_optional_body_is_not_required():
    router = Router()
    router.mutation("touch", path="/touch/{id}", input=Optional[UpdateIn], output=None)(lambda i, c: None)

    doc = generate_openapi_document(router, OPTIONS)
    op = doc["paths"]["/touch/{id}"]["post"]

    assert op["requestBody"]["required"] is False
    assert set(op["requestBody"]["content"]["application/json"]["schema"]["properties"]) == {"name", "age"}
    assert op["parameters"][0]["name"] == "id"
    validate(doc)


def test_error_response_requires_ok_and_error():
    doc = generate_openapi_document(_router(), OPTIONS)
    schema = doc["components"]["responses"]["error"]["content"]["application/json"]["schema"]
    if "$ref" in schema:
        schema = doc["components"]["schemas"][schema["$ref"].rsplit("/", 1)[-1]]

    assert set(schema["required"]) == {"ok", "error"}
    assert schema["properties"]["ok"]["enum"] == [False]
