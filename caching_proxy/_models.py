from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Literal, Optional

from typing_extensions import TypeAlias

from caching_proxy._headers import Headers

CacheStatus: TypeAlias = Literal["HIT", "MISS", "BYPASS", "REVALIDATED", "NO-STORE", "UNCACHEABLE"]

CACHEABLE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
SUPPORTED_METHODS = CACHEABLE_METHODS | MUTATING_METHODS


@dataclass
class Request:
    """An inbound request, as seen by the proxy."""

    method: str
    path: str
    query: str = ""
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""


@dataclass
class OriginRequest:
    """A request addressed to the origin server."""

    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    body: Optional[bytes] = None


@dataclass
class Response:
    status: int
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""


@dataclass(frozen=True)
class CacheEntry:
    status: int
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    expires_at: Optional[float] = None
    """Absolute unix timestamp after which the entry is stale; None never expires."""

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (time.time() if now is None else now)

    def to_response(self) -> Response:
        return Response(status=self.status, headers=self.headers.copy(), body=self.body)

    @classmethod
    def from_response(cls, response: Response) -> "CacheEntry":
        return cls(status=response.status, headers=response.headers.copy(), body=response.body)
