from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from restgate.http.dispatcher import Gateway
from restgate.http.port import GatewayRequest, GatewayResponse

logger = logging.getLogger(__name__)


def _route_path(scope: Scope) -> str:
    # "raw_path" is still percent-encoded; params are decoded once while matching
    raw = scope.get("raw_path")
    if raw:
        path = raw.decode("latin-1").split("?", 1)[0]
    else:
        path = quote(scope.get("path") or "/")
    # starlette keeps the mount prefix in the path and mirrors it in "root_path"
    root_path = scope.get("root_path") or ""
    for prefix in (root_path, quote(root_path)):
        if prefix and path.startswith(prefix):
            return path[len(prefix):] or "/"
    return path or "/"


def to_gateway_request(request: Request) -> GatewayRequest:
    url = _route_path(request.scope)
    query = request.scope.get("query_string", b"")
    if query:
        url = f"{url}?{query.decode('latin-1')}"
    return GatewayRequest(
        method=request.method,
        url=url,
        headers=dict(request.headers),
        body=request.stream(),
        raw=request,
    )


def to_starlette_response(response: GatewayResponse) -> Response:
    return Response(content=response.body, status_code=response.status, headers=response.headers)


class GatewayASGIApp:
    """
    ASGI application serving a Gateway, e.g. ``app.mount("/api", GatewayASGIApp(gateway))``.

    Unmatched requests go to ``fallback`` when one is given; otherwise the
    gateway answers them (404 envelope, or 204 for HEAD).
    """

    def __init__(self, gateway: Gateway, fallback: Optional[ASGIApp] = None) -> None:
        self.gateway = gateway
        self.fallback = fallback

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            if self.fallback is not None:
                await self.fallback(scope, receive, send)
                return
            raise RuntimeError(f"Unsupported ASGI scope type: {scope['type']}")

        request = Request(scope, receive)
        delegated = False

        async def next_app() -> None:
            nonlocal delegated
            delegated = True
            await self.fallback(scope, receive, send)

        result = await self.gateway.handle(
            to_gateway_request(request), next=next_app if self.fallback is not None else None
        )
        if delegated:
            return

        await to_starlette_response(result)(scope, receive, send)
