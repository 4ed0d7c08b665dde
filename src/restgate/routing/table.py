from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional
from urllib.parse import unquote

from restgate.domain.models import Procedure
from restgate.errors import ConfigurationError
from restgate.routing.path import PathTemplate, compile_path, normalize_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    method: str
    template: PathTemplate
    procedure: Procedure


@dataclass(frozen=True)
class RouteMatch:
    route: Route
    path_params: dict[str, str]

    @property
    def procedure(self) -> Procedure:
        return self.route.procedure


class RouteTable:
    """
    Read-only ``(method, path) -> procedure`` index built once at startup.

    Static paths are looked up directly; templated paths are tried in
    registration order afterwards. Matching ignores case and redundant slashes.
    """

    def __init__(self, procedures: Iterable[Procedure]) -> None:
        static: dict[tuple[str, str], Route] = {}
        dynamic: dict[str, list[Route]] = {}
        keys: dict[tuple[str, str], str] = {}
        routes: list[Route] = []

        for proc in procedures:
            d = proc.descriptor
            if not d.enabled or d.kind == "subscription":
                continue
            method = d.method.upper()
            template = compile_path(d.path)
            key = (method, template.route_key)
            if key in keys:
                raise ConfigurationError(
                    f"[{d.label}] - Duplicate procedure defined for route "
                    f"{method} {template.path} (already defined by {keys[key]})"
                )
            keys[key] = d.label

            route = Route(method=method, template=template, procedure=proc)
            routes.append(route)
            if template.is_static:
                static[key] = route
            else:
                dynamic.setdefault(method, []).append(route)

        self._static: Mapping[tuple[str, str], Route] = MappingProxyType(static)
        self._dynamic: Mapping[str, tuple[Route, ...]] = MappingProxyType(
            {m: tuple(r) for m, r in dynamic.items()}
        )
        self.routes: tuple[Route, ...] = tuple(routes)
        logger.debug("Route table built with %d routes", len(self.routes))

    def __len__(self) -> int:
        return len(self.routes)

    def match(self, method: str, pathname: str) -> Optional[RouteMatch]:
        method = method.upper()
        route = self._static.get((method, unquote(normalize_path(pathname)).lower()))
        if route is not None:
            return RouteMatch(route=route, path_params={})

        for route in self._dynamic.get(method, ()):
            params = route.template.match(pathname)
            if params is not None:
                return RouteMatch(route=route, path_params=params)
        return None
