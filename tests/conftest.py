from __future__ import annotations

import asyncio
import json
from typing import Optional

import pytest
from pydantic import BaseModel, Field

from restgate.errors import ProcedureError
from restgate.http.dispatcher import Gateway
from restgate.http.port import GatewayRequest
from restgate.procedures.router import Router


class SayHelloIn(BaseModel):
    name: str = Field(description="Who to greet")


class SayHelloOut(BaseModel):
    greeting: str


class EchoIn(BaseModel):
    payload: str


class EchoOut(BaseModel):
    payload: str


class GetUserIn(BaseModel):
    id: str


class User(BaseModel):
    id: str
    name: str


class UpdateUserIn(BaseModel):
    id: str
    name: str
    nickname: Optional[str] = None


def build_router() -> Router:
    router = Router()

    @router.query("sayHello", path="/say-hello", input=SayHelloIn, output=SayHelloOut)
    def say_hello(input, ctx):
        return {"greeting": f"Hello {input.name}!"}

    @router.query("echo", path="/echo", input=EchoIn, output=EchoOut)
    def echo(input, ctx):
        return EchoOut(payload=input.payload)

    @router.query("upper", path="/UPPER", output=EchoOut)
    def upper(input, ctx):
        return {"payload": "upper"}

    @router.query("whoami", path="/whoami", output=EchoOut)
    async def whoami(input, ctx):
        return {"payload": str((ctx or {}).get("user", "anonymous"))}

    @router.mutation("broken", path="/broken", output=User)
    def broken(input, ctx):
        return {"name": "no id"}

    @router.query("crash", path="/crash", output=EchoOut)
    def crash(input, ctx):
        raise RuntimeError("secret database password")

    users = Router()

    @users.query("get", path="/users/{id}", input=GetUserIn, output=User, protect=True, tags=["users"])
    async def get_user(input, ctx):
        if input.id == "missing":
            raise ProcedureError("NOT_FOUND", "User not found")
        return User(id=input.id, name="James")

    @users.mutation(
        "update", path="/users/{id}", method="PATCH", input=UpdateUserIn, output=User, tags=["users"]
    )
    def update_user(input, ctx):
        return User(id=input.id, name=input.name)

    @users.mutation(
        "create",
        path="/users",
        input=UpdateUserIn,
        output=User,
        content_types=["application/json", "application/x-www-form-urlencoded"],
    )
    def create_user(input, ctx):
        return User(id=input.id, name=input.name)

    router.include(users, prefix="users")
    return router


@pytest.fixture
def router() -> Router:
    return build_router()


@pytest.fixture
def gateway(router) -> Gateway:
    return Gateway(router)


@pytest.fixture
def send(gateway):
    """Dispatch one request through a gateway and return (status, headers, json body)."""

    def _send(method, url, body=None, headers=None, gw=None, next=None):
        request = GatewayRequest(method=method, url=url, headers=headers or {}, body=body)
        response = asyncio.run((gw or gateway).handle(request, next=next))
        if not hasattr(response, "status"):
            return response
        payload = json.loads(response.body) if response.body else None
        return response.status, response.headers, payload

    return _send
