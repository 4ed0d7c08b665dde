from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

ProcedureKind = Literal["query", "mutation", "subscription"]

QUERY_METHODS = ("GET", "DELETE")
MUTATION_METHODS = ("POST", "PUT", "PATCH")

DEFAULT_CONTENT_TYPES = ("application/json",)


@dataclass(frozen=True)
class HeaderParam:
    name: str
    required: bool = False
    description: str = ""


@dataclass(frozen=True)
class ProcedureExample:
    request: Optional[dict[str, Any]] = None
    response: Optional[Any] = None


@dataclass(frozen=True)
class ProcedureDescriptor:
    """
    Everything needed to expose one procedure over REST.

    ``name`` is the fully-qualified dotted registration name (``users.get``).
    ``input``/``output`` are type annotations (pydantic models, or None).
    Immutable once registered.
    """

    name: str
    kind: ProcedureKind
    method: str
    path: str
    input: Any = None
    output: Any = None
    summary: Optional[str] = None
    description: Optional[str] = None
    tags: tuple[str, ...] = ()
    protect: bool = False
    content_types: tuple[str, ...] = DEFAULT_CONTENT_TYPES
    headers: tuple[HeaderParam, ...] = ()
    enabled: bool = True
    deprecated: bool = False
    example: Optional[ProcedureExample] = None
    response_headers: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.kind}.{self.name}"


@dataclass(frozen=True)
class Procedure:
    descriptor: ProcedureDescriptor
    resolver: Optional[Callable[..., Any]] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def kind(self) -> ProcedureKind:
        return self.descriptor.kind
