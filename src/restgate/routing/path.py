from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from restgate.errors import ConfigurationError

_PARAM = re.compile(r"\{(.*?)\}")
_PARAM_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class Segment:
    """
    One ``/``-separated piece of a path template.

    A literal segment has ``param=None``. A parameter segment may carry a
    literal prefix/suffix around the parameter: ``{name}.json``.
    """

    prefix: str
    param: Optional[str] = None
    suffix: str = ""

    def match(self, value: str) -> Optional[str]:
        """Return the captured parameter ("" for literals) or None if no match."""
        if self.param is None:
            return "" if unquote(value).lower() == self.prefix.lower() else None
        lowered = value.lower()
        if not lowered.startswith(self.prefix.lower()) or not lowered.endswith(self.suffix.lower()):
            return None
        end = len(value) - len(self.suffix)
        captured = value[len(self.prefix):end]
        if not captured or end < len(self.prefix):
            return None
        return unquote(captured)

    def render(self, placeholder: Optional[str] = None) -> str:
        if self.param is None:
            return self.prefix
        name = self.param if placeholder is None else placeholder
        return f"{self.prefix}{{{name}}}{self.suffix}"


@dataclass(frozen=True)
class PathTemplate:
    template: str
    segments: tuple[Segment, ...]
    param_names: tuple[str, ...]

    @property
    def path(self) -> str:
        """Normalized path with parameter names kept (used as the OpenAPI path key)."""
        return "/" + "/".join(s.render() for s in self.segments)

    @property
    def route_key(self) -> str:
        """Case-insensitive key; parameter names do not matter for collisions."""
        return ("/" + "/".join(s.render("") for s in self.segments)).lower()

    @property
    def is_static(self) -> bool:
        return not self.param_names

    def match(self, pathname: str) -> Optional[dict[str, str]]:
        parts = split_path(pathname)
        if len(parts) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for segment, part in zip(self.segments, parts):
            captured = segment.match(part)
            if captured is None:
                return None
            if segment.param is not None:
                params[segment.param] = captured
        return params


def split_path(path: str) -> list[str]:
    # duplicate, leading and trailing slashes carry no meaning
    return [p for p in (path or "").split("/") if p]


def normalize_path(path: str) -> str:
    return "/" + "/".join(split_path(path))


def compile_path(template: str) -> PathTemplate:
    """
    Compile a template such as ``/users/{id}/posts``.

    Parameters are collected left to right; duplicate names, empty names and
    more than one parameter inside a single segment are rejected.
    """
    segments: list[Segment] = []
    names: list[str] = []

    for part in split_path(template):
        found = list(_PARAM.finditer(part))
        if not found:
            if "{" in part or "}" in part:
                raise ConfigurationError(f"Malformed path template segment '{part}' in '{template}'")
            segments.append(Segment(prefix=part))
            continue
        if len(found) > 1:
            raise ConfigurationError(
                f"Path template '{template}' has more than one parameter in segment '{part}'"
            )

        m = found[0]
        name = m.group(1).strip()
        if not _PARAM_NAME.match(name):
            raise ConfigurationError(f"Invalid path parameter name '{{{m.group(1)}}}' in '{template}'")
        if name in names:
            raise ConfigurationError(f"Duplicate path parameter '{name}' in '{template}'")
        prefix, suffix = part[: m.start()], part[m.end():]
        if "{" in prefix + suffix or "}" in prefix + suffix:
            raise ConfigurationError(f"Malformed path template segment '{part}' in '{template}'")

        names.append(name)
        segments.append(Segment(prefix=prefix, param=name, suffix=suffix))

    return PathTemplate(template=template, segments=tuple(segments), param_names=tuple(names))
