from __future__ import annotations

from typing import Any, Literal, Optional

ErrorCode = Literal[
    "PARSE_ERROR",
    "BAD_REQUEST",
    "NOT_FOUND",
    "INTERNAL_SERVER_ERROR",
    "UNAUTHORIZED",
    "FORBIDDEN",
    "TIMEOUT",
    "CONFLICT",
    "CLIENT_CLOSED_REQUEST",
    "PRECONDITION_FAILED",
    "PAYLOAD_TOO_LARGE",
    "METHOD_NOT_SUPPORTED",
    "TOO_MANY_REQUESTS",
    "UNPROCESSABLE_CONTENT",
]

ERROR_CODE_HTTP_STATUS: dict[str, int] = {
    "PARSE_ERROR": 400,
    "BAD_REQUEST": 400,
    "NOT_FOUND": 404,
    "INTERNAL_SERVER_ERROR": 500,
    "UNAUTHORIZED": 401,
    "FORBIDDEN": 403,
    "TIMEOUT": 408,
    "CONFLICT": 409,
    "CLIENT_CLOSED_REQUEST": 499,
    "PRECONDITION_FAILED": 412,
    "PAYLOAD_TOO_LARGE": 413,
    "METHOD_NOT_SUPPORTED": 405,
    "TOO_MANY_REQUESTS": 429,
    "UNPROCESSABLE_CONTENT": 422,
}


class RestGateError(Exception):
    """Base class for everything raised by restgate."""


class ConfigurationError(RestGateError):
    """A procedure (or the set of procedures) cannot be exposed over REST.

    Raised while building the document or the route table, never per request.
    """


class ProcedureError(RestGateError):
    """An error with a wire code, raised by procedures or by the gateway itself."""

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        if code not in ERROR_CODE_HTTP_STATUS:
            raise ValueError(f"Unknown error code: {code}")
        self.code = code
        self.message = message or (str(cause) if cause is not None else code)
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def http_status(self) -> int:
        return ERROR_CODE_HTTP_STATUS.get(self.code, 500)

    def __repr__(self) -> str:
        return f"ProcedureError(code={self.code!r}, message={self.message!r})"


def error_from_unknown(cause: Any, debug: bool = False) -> ProcedureError:
    """
    Coerce anything raised during a request into a ProcedureError.

    Unknown exceptions become INTERNAL_SERVER_ERROR. Their message is only
    kept in debug mode; otherwise a generic message is used.
    """
    if isinstance(cause, ProcedureError):
        return cause

    message = "Internal server error"
    if debug and isinstance(cause, BaseException) and str(cause):
        message = str(cause)

    return ProcedureError(
        "INTERNAL_SERVER_ERROR",
        message,
        cause=cause if isinstance(cause, BaseException) else None,
    )


def prefix_error(error: ConfigurationError, prefix: str) -> ConfigurationError:
    # keep the original exception type, only decorate the message
    message = f"{prefix} - {error}"
    error.args = (message,)
    return error
