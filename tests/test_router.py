import asyncio

import pytest
from pydantic import BaseModel

from restgate.errors import ConfigurationError, ProcedureError
from restgate.procedures.caller import ProcedureCaller
from restgate.procedures.router import Router, as_descriptors


class NameIn(BaseModel):
    name: str


class NameOut(BaseModel):
    name: str


def _noop(input, ctx):
    return {"name": "x"}


def test_decorators_build_descriptors_with_default_methods():
    router = Router()
    router.query("list", path="/things", output=NameOut)(_noop)
    router.mutation("create", path="/things", input=NameIn, output=NameOut)(_noop)

    by_name = {d.name: d for d in router.descriptors()}
    assert by_name["list"].method == "GET"
    assert by_name["list"].kind == "query"
    assert by_name["create"].method == "POST"
    assert by_name["create"].content_types == ("application/json",)


def test_decorator_returns_the_function():
    router = Router()

    @router.query("hello", path="/hello", output=NameOut)
    def hello(input, ctx):
        return {"name": "hi"}

    assert hello(None, None) == {"name": "hi"}


def test_nested_routers_get_qualified_names():
    posts = Router()
    posts.query("list", path="/posts", output=NameOut)(_noop)

    users = Router()
    users.query("get", path="/users/{id}", output=NameOut)(_noop)
    users.include(posts, prefix="posts")

    root = Router()
    root.query("health", path="/health", output=NameOut)(_noop)
    root.include(users, prefix="users")

    assert [d.name for d in root.descriptors()] == ["health", "users.get", "users.posts.list"]
    assert [d.label for d in root.descriptors()][-1] == "query.users.posts.list"
    assert len(root) == 3


def test_duplicate_names_are_rejected():
    router = Router()
    router.query("a", path="/a", output=NameOut)(_noop)
    with pytest.raises(ConfigurationError, match="Duplicate procedure name 'a'"):
        router.query("a", path="/b", output=NameOut)(_noop)

    child = Router()
    child.query("b", path="/c", output=NameOut)(_noop)
    clash = Router()
    clash.query("x.b", path="/d", output=NameOut)(_noop)
    clash.include(child, prefix="x")
    with pytest.raises(ConfigurationError, match="'x.b'"):
        clash.flatten()


def test_router_cycles_are_rejected():
    a = Router()
    b = Router()
    a.include(b, prefix="b")
    b.include(a, prefix="a")

    with pytest.raises(ConfigurationError, match="cycle"):
        a.flatten()


def test_dict_example_and_headers_are_normalized():
    router = Router()
    router.query(
        "hello",
        path="/hello",
        input=NameIn,
        output=NameOut,
        headers=[{"name": "X-Trace", "required": True}],
        example={"request": {"name": "Ann"}, "response": {"name": "Ann"}},
    )(_noop)

    (d,) = as_descriptors(router)
    assert d.headers[0].name == "X-Trace"
    assert d.headers[0].required is True
    assert d.example.request == {"name": "Ann"}


def test_caller_validates_input_and_output():
    router = Router()

    @router.mutation("rename", path="/rename", input=NameIn, output=NameOut)
    async def rename(input, ctx):
        assert isinstance(input, NameIn)
        return NameOut(name=input.name.upper())

    caller = ProcedureCaller(router)

    assert asyncio.run(caller("mutation", "rename", {"name": "ann"}, None)) == {"name": "ANN"}

    with pytest.raises(ProcedureError) as exc:
        asyncio.run(caller("mutation", "rename", {"nope": 1}, None))
    assert exc.value.code == "BAD_REQUEST"
    assert exc.value.http_status == 400

    with pytest.raises(ProcedureError) as exc:
        asyncio.run(caller("query", "rename", {}, None))
    assert exc.value.code == "NOT_FOUND"


def test_unknown_error_code_is_rejected():
    with pytest.raises(ValueError):
        ProcedureError("I_AM_A_TEAPOT", "nope")
