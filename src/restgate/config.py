from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

OPENAPI_VERSION = "3.0.3"

DEFAULT_SECURITY_SCHEMES: dict[str, dict[str, Any]] = {
    "Authorization": {"type": "http", "scheme": "bearer"},
}


class OpenApiDocumentOptions(BaseModel):
    """Document-level metadata for the generated OpenAPI document."""

    model_config = ConfigDict(frozen=True)

    title: str
    version: str
    base_url: str
    description: Optional[str] = None
    docs_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    security_schemes: Optional[dict[str, dict[str, Any]]] = None
    coerce_params: bool = False


class GatewayOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_body_size: Optional[int] = Field(default=None, ge=0)
    # pydantic lax mode turns "42" into 42, so scalars may be bound to query/path params
    coerce_params: bool = False
    # keep messages of unexpected exceptions in error responses (local diagnostics only)
    debug: bool = False
