from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterable, Mapping, Optional, Union
from urllib.parse import urlsplit

Body = Union[bytes, AsyncIterable[bytes], None]


@dataclass
class GatewayRequest:
    """
    Framework-neutral request handed to the gateway by an adapter.

    ``url`` may be absolute or just ``/path?query``. ``body`` is either the
    raw bytes or an async iterator of chunks (read lazily, bounded).
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Body = None
    # whatever the adapter wants the context factory to see (framework request, etc.)
    raw: object = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    @property
    def pathname(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def query_string(self) -> str:
        return urlsplit(self.url).query

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)


@dataclass
class GatewayResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
