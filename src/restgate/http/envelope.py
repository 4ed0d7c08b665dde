from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python

from restgate.errors import ErrorCode


class ErrorIssue(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str
    code: Optional[str] = None
    path: list[Union[str, int]] = Field(default_factory=list)


class ErrorBody(BaseModel):
    message: str
    code: ErrorCode
    issues: Optional[list[ErrorIssue]] = None


class ErrorEnvelope(BaseModel):
    """``{"ok": false, "error": {...}}`` on every failed request."""

    ok: Literal[False]
    error: ErrorBody


def success_envelope(data: Any) -> dict[str, Any]:
    return {"ok": True, "data": to_jsonable_python(data)}


def error_envelope(
    message: str, code: str, issues: Optional[list[dict[str, Any]]] = None
) -> dict[str, Any]:
    error: dict[str, Any] = {"message": message, "code": code}
    if issues is not None:
        error["issues"] = issues
    return {"ok": False, "error": error}
