"""
Request dispatch.

Built once (flatten procedures, validate them by generating the OpenAPI
document, index the routes), then every request goes through:

    match -> decode -> create context -> call procedure -> encode -> teardown

Known gap: if the transport drops the connection while the body is being
read, the body iterator may never finish and teardown does not run.
Timeouts belong to the transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from restgate.config import GatewayOptions, OpenApiDocumentOptions
from restgate.domain.models import ProcedureKind
from restgate.errors import ProcedureError, error_from_unknown
from restgate.http.decode import decode_input
from restgate.http.encode import encode_error, encode_success, error_body
from restgate.http.port import GatewayRequest, GatewayResponse
from restgate.openapi.generator import generate_openapi_document
from restgate.procedures.caller import CallerFn, ProcedureCaller, maybe_await
from restgate.procedures.router import ProcedureSource, as_procedures
from restgate.routing.table import RouteTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseMeta:
    status: Optional[int] = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResponseMetaContext:
    kind: Union[ProcedureKind, str]
    name: Optional[str]
    ctx: Any
    data: Any
    errors: tuple[ProcedureError, ...] = ()


@dataclass(frozen=True)
class ErrorEvent:
    error: ProcedureError
    kind: Union[ProcedureKind, str]
    name: Optional[str]
    input: Any
    ctx: Any
    request: GatewayRequest


ContextFactory = Callable[[GatewayRequest], Union[Any, Awaitable[Any]]]
ResponseMetaHook = Callable[[ResponseMetaContext], Optional[ResponseMeta]]
ErrorHook = Callable[[ErrorEvent], Any]
ErrorFormatter = Callable[[dict[str, Any], ProcedureError], dict[str, Any]]
Teardown = Callable[[], Union[None, Awaitable[None]]]
NextFn = Callable[[], Any]

_VALIDATION_DOCUMENT = OpenApiDocumentOptions(title="-", version="-", base_url="-")


class Gateway:
    """
    REST gateway over a set of procedures.

    Construction fails with ConfigurationError if any enabled procedure
    cannot be expressed as a REST operation, so malformed routes never
    reach request time. The route table is read-only afterwards; requests
    share no mutable state.
    """

    def __init__(
        self,
        procedures: ProcedureSource,
        *,
        options: Optional[GatewayOptions] = None,
        caller: Optional[CallerFn] = None,
        create_context: Optional[ContextFactory] = None,
        response_meta: Optional[ResponseMetaHook] = None,
        on_error: Optional[ErrorHook] = None,
        format_error: Optional[ErrorFormatter] = None,
        teardown: Optional[Teardown] = None,
    ) -> None:
        self.options = options or GatewayOptions()
        flat = as_procedures(procedures)

        # fail fast: every route must be documentable
        generate_openapi_document(
            flat, _VALIDATION_DOCUMENT.model_copy(update={"coerce_params": self.options.coerce_params})
        )

        self.procedures = tuple(flat)
        self.routes = RouteTable(flat)
        self.caller: CallerFn = caller or ProcedureCaller(flat)
        self.create_context = create_context
        self.response_meta = response_meta
        self.on_error = on_error
        self.format_error = format_error
        self.teardown = teardown
        logger.debug("Gateway ready: %d procedures, %d routes", len(flat), len(self.routes))

    def openapi(self, options: OpenApiDocumentOptions) -> dict[str, Any]:
        if options.coerce_params != self.options.coerce_params:
            options = options.model_copy(update={"coerce_params": self.options.coerce_params})
        return generate_openapi_document(self.procedures, options)

    async def handle(self, request: GatewayRequest, next: Optional[NextFn] = None) -> Any:
        match = self.routes.match(request.method, request.pathname)

        if match is None:
            if next is not None:
                logger.debug("No route for %s %s, delegating", request.method, request.pathname)
                return await maybe_await(next())
            if request.method == "HEAD":
                # liveness probe
                response = GatewayResponse(status=204, headers={})
                await self._run_teardown()
                return response

        descriptor = match.procedure.descriptor if match else None
        kind = descriptor.kind if descriptor else "unknown"
        name = descriptor.name if descriptor else None
        input: Any = None
        ctx: Any = None
        data: Any = None

        try:
            try:
                if match is None or descriptor is None:
                    raise ProcedureError("NOT_FOUND", "Not found")

                logger.debug("%s %s -> %s", request.method, request.pathname, descriptor.label)
                input = await decode_input(
                    request, descriptor, match.path_params, self.options.max_body_size
                )
                if self.create_context is not None:
                    ctx = await maybe_await(self.create_context(request))
                data = await maybe_await(self.caller(descriptor.kind, descriptor.name, input, ctx))

                meta = self._response_meta(ResponseMetaContext(kind=kind, name=name, ctx=ctx, data=data))
                return encode_success(data, status=meta.status or 200, headers=meta.headers)
            except Exception as cause:
                error = error_from_unknown(cause, debug=self.options.debug)
                if error is not cause:
                    logger.exception("Unhandled error in %s", name or request.pathname)
                else:
                    logger.debug("%s %s failed: %s %s", request.method, request.pathname, error.code, error.message)

                self._notify(ErrorEvent(error=error, kind=kind, name=name, input=input, ctx=ctx, request=request))
                try:
                    meta = self._response_meta(
                        ResponseMetaContext(kind=kind, name=name, ctx=ctx, data=data, errors=(error,))
                    )
                    return encode_error(
                        error, body=self._format(error), status=meta.status, headers=meta.headers
                    )
                except Exception:
                    logger.exception("Error response hook failed for %s", name or request.pathname)
                    return encode_error(error)
        finally:
            await self._run_teardown()

    # ----------------------------
    # Hooks
    # ----------------------------

    def _response_meta(self, context: ResponseMetaContext) -> ResponseMeta:
        if self.response_meta is None:
            return ResponseMeta()
        return self.response_meta(context) or ResponseMeta()

    def _notify(self, event: ErrorEvent) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(event)
        except Exception:
            # observation only; it must not change the response
            logger.exception("on_error hook failed")

    def _format(self, error: ProcedureError) -> dict[str, Any]:
        body = error_body(error)
        if self.format_error is None:
            return body
        formatted = self.format_error(body, error)
        err = formatted.get("error")
        if isinstance(err, dict):
            err["code"] = error.code
        return formatted

    async def _run_teardown(self) -> None:
        if self.teardown is not None:
            await maybe_await(self.teardown())
