from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.parse import parse_qsl

from restgate.domain.models import ProcedureDescriptor
from restgate.errors import ProcedureError
from restgate.http.port import GatewayRequest
from restgate.schema.introspect import is_void

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def first_value_pairs(text: str) -> dict[str, str]:
    """Parse ``a=1&b=2&a=3``; the first value of a repeated key wins."""
    out: dict[str, str] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        out.setdefault(key, value)
    return out


def _too_large(max_body_size: int) -> ProcedureError:
    return ProcedureError(
        "PAYLOAD_TOO_LARGE", f"Request body exceeds the maximum size of {max_body_size} bytes"
    )


async def read_body(request: GatewayRequest, max_body_size: Optional[int] = None) -> bytes:
    """Read the whole body, failing with PAYLOAD_TOO_LARGE as soon as the limit is crossed."""
    declared = request.header("content-length")
    if max_body_size is not None and declared and declared.isdigit() and int(declared) > max_body_size:
        raise _too_large(max_body_size)

    body = request.body
    if body is None:
        return b""
    if isinstance(body, (bytes, bytearray)):
        if max_body_size is not None and len(body) > max_body_size:
            raise _too_large(max_body_size)
        return bytes(body)

    chunks: list[bytes] = []
    size = 0
    async for chunk in body:
        size += len(chunk)
        if max_body_size is not None and size > max_body_size:
            raise _too_large(max_body_size)
        chunks.append(chunk)
    return b"".join(chunks)


def _media_type(request: GatewayRequest) -> str:
    content_type = request.header("content-type") or ""
    return content_type.split(";", 1)[0].strip().lower()


def parse_body(raw: bytes, media_type: str) -> Any:
    if not raw.strip():
        return {}

    text = raw.decode("utf-8", errors="replace")
    if media_type == JSON_CONTENT_TYPE or media_type.endswith("+json"):
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ProcedureError("PARSE_ERROR", f"Failed to parse request body: {e.msg}", cause=e) from e
    if media_type == FORM_CONTENT_TYPE:
        return first_value_pairs(text)

    # left to input validation to reject
    return text


async def decode_input(
    request: GatewayRequest,
    descriptor: ProcedureDescriptor,
    path_params: dict[str, str],
    max_body_size: Optional[int] = None,
) -> Any:
    """
    Assemble the raw (unvalidated) input of a matched procedure.

    Queries read the query string, mutations the body. Path parameters are
    merged on top and win over same-named query/body values.
    """
    if is_void(descriptor.input):
        if descriptor.kind != "query":
            # drained so the size limit still applies
            await read_body(request, max_body_size)
        return {}

    if descriptor.kind == "query":
        data: Any = first_value_pairs(request.query_string)
    else:
        raw = await read_body(request, max_body_size)
        data = parse_body(raw, _media_type(request))

    if path_params:
        if isinstance(data, dict):
            data = {**data, **path_params}
        else:
            logger.debug("Body of %s is not an object; path params not merged", descriptor.name)
    return data
