from __future__ import annotations

import dataclasses
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from restgate.domain.models import (
    DEFAULT_CONTENT_TYPES,
    HeaderParam,
    Procedure,
    ProcedureDescriptor,
    ProcedureExample,
    ProcedureKind,
)
from restgate.errors import ConfigurationError

_DEFAULT_METHOD: dict[str, str] = {"query": "GET", "mutation": "POST", "subscription": "GET"}


class Router:
    """
    Procedure registry, assembled with decorators::

        router = Router()

        @router.query("sayHello", path="/say-hello", input=SayHelloIn, output=SayHelloOut)
        def say_hello(input, ctx):
            return {"greeting": f"Hello {input.name}!"}

    Child routers are nested with ``include``; their procedures are exposed
    under ``<prefix>.<name>``.
    """

    def __init__(self) -> None:
        self._procedures: dict[str, Procedure] = {}
        self._children: list[tuple[str, "Router"]] = []

    # ----------------------------
    # Registration
    # ----------------------------

    def add(self, procedure: Procedure) -> Procedure:
        name = procedure.name
        if not name or name.startswith(".") or name.endswith("."):
            raise ConfigurationError(f"Invalid procedure name '{name}'")
        if name in self._procedures:
            raise ConfigurationError(f"Duplicate procedure name '{name}'")
        self._procedures[name] = procedure
        return procedure

    def procedure(
        self,
        kind: ProcedureKind,
        name: str,
        *,
        path: str,
        output: Any,
        input: Any = None,
        method: Optional[str] = None,
        summary: Optional[str] = None,
        description: Optional[str] = None,
        tags: Sequence[str] = (),
        protect: bool = False,
        content_types: Sequence[str] = DEFAULT_CONTENT_TYPES,
        headers: Iterable[Union[HeaderParam, dict[str, Any]]] = (),
        enabled: bool = True,
        deprecated: bool = False,
        example: Optional[Union[ProcedureExample, dict[str, Any]]] = None,
        response_headers: Optional[dict[str, Any]] = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        if isinstance(example, dict):
            example = ProcedureExample(**example)

        descriptor = ProcedureDescriptor(
            name=name,
            kind=kind,
            method=(method or _DEFAULT_METHOD[kind]).upper(),
            path=path,
            input=input,
            output=output,
            summary=summary,
            description=description,
            tags=tuple(tags),
            protect=protect,
            content_types=tuple(content_types),
            headers=tuple(h if isinstance(h, HeaderParam) else HeaderParam(**h) for h in headers),
            enabled=enabled,
            deprecated=deprecated,
            example=example,
            response_headers=dict(response_headers or {}),
        )

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add(Procedure(descriptor=descriptor, resolver=fn))
            return fn

        return decorator

    def query(self, name: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.procedure("query", name, **kwargs)

    def mutation(self, name: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.procedure("mutation", name, **kwargs)

    def subscription(self, name: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.procedure("subscription", name, **kwargs)

    def include(self, router: "Router", prefix: str = "") -> "Router":
        if router is self:
            raise ConfigurationError("A router cannot include itself")
        self._children.append((prefix.strip("."), router))
        return self

    # ----------------------------
    # Flattening
    # ----------------------------

    def flatten(self) -> list[Procedure]:
        """
        Flat list of procedures with fully-qualified names, registration order
        first, then included routers depth-first.
        """
        out: list[Procedure] = []
        seen: set[str] = set()
        self._flatten_into("", out, seen, stack=())
        return out

    def _flatten_into(
        self, prefix: str, out: list[Procedure], seen: set[str], stack: tuple[int, ...]
    ) -> None:
        if id(self) in stack:
            raise ConfigurationError("Router nesting contains a cycle")
        stack = (*stack, id(self))

        for name, proc in self._procedures.items():
            qualified = f"{prefix}.{name}" if prefix else name
            if qualified in seen:
                raise ConfigurationError(f"Duplicate procedure name '{qualified}'")
            seen.add(qualified)
            if qualified != proc.name:
                proc = dataclasses.replace(
                    proc, descriptor=dataclasses.replace(proc.descriptor, name=qualified)
                )
            out.append(proc)

        for child_prefix, child in self._children:
            joined = ".".join(p for p in (prefix, child_prefix) if p)
            child._flatten_into(joined, out, seen, stack)

    def descriptors(self) -> list[ProcedureDescriptor]:
        return [p.descriptor for p in self.flatten()]

    def __len__(self) -> int:
        return len(self.flatten())


ProcedureSource = Union[Router, Iterable[Procedure], Iterable[ProcedureDescriptor]]


def as_descriptors(source: ProcedureSource) -> list[ProcedureDescriptor]:
    if isinstance(source, Router):
        return source.descriptors()
    out: list[ProcedureDescriptor] = []
    for item in source:
        out.append(item.descriptor if isinstance(item, Procedure) else item)
    return out


def as_procedures(source: ProcedureSource) -> list[Procedure]:
    if isinstance(source, Router):
        return source.flatten()
    return [item if isinstance(item, Procedure) else Procedure(descriptor=item) for item in source]
