from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import ValidationError

from restgate.errors import ProcedureError
from restgate.http.envelope import error_envelope, success_envelope
from restgate.http.port import GatewayResponse
from restgate.schema.types import validation_issues

INPUT_VALIDATION_MESSAGE = "Input validation failed"


def is_input_validation_error(error: ProcedureError) -> bool:
    return error.code == "BAD_REQUEST" and isinstance(error.cause, ValidationError)


def error_body(error: ProcedureError) -> dict[str, Any]:
    """Wire envelope for an error; input validation errors carry their issues."""
    if is_input_validation_error(error):
        return error_envelope(
            INPUT_VALIDATION_MESSAGE, error.code, validation_issues(error.cause)  # type: ignore[arg-type]
        )
    return error_envelope(error.message, error.code)


def json_response(
    status: int, body: Optional[dict[str, Any]], headers: Optional[dict[str, str]] = None
) -> GatewayResponse:
    out_headers = {"content-type": "application/json"}
    for key, value in (headers or {}).items():
        if value is not None:
            out_headers[key.lower()] = str(value)
    payload = b"" if body is None else json.dumps(body).encode("utf-8")
    return GatewayResponse(status=status, headers=out_headers, body=payload)


def encode_success(data: Any, status: int = 200, headers: Optional[dict[str, str]] = None) -> GatewayResponse:
    return json_response(status, success_envelope(data), headers)


def encode_error(
    error: ProcedureError,
    body: Optional[dict[str, Any]] = None,
    status: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
) -> GatewayResponse:
    return json_response(status or error.http_status, body or error_body(error), headers)
