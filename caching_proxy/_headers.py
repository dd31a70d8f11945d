from __future__ import annotations

import re
from typing import (
    Any,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Union,
)

__all__ = (
    "Headers",
    "HOP_BY_HOP_HEADERS",
    "strip_hop_by_hop",
    "parse_cache_control",
    "extract_ttl",
)

HOP_BY_HOP_HEADERS: FrozenSet[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

_DIGITS = re.compile(r"[0-9]+")

HeadersInput = Union[Mapping[str, Union[str, List[str]]], Iterable[Tuple[str, str]]]


class Headers(MutableMapping[str, str]):
    """
    An ordered, case-insensitive header mapping.

    Lookups ignore case, while iteration yields header names exactly as they were
    first given. Repeated fields are kept as a list of values and joined with
    ``", "`` when read through ``headers[name]``.
    """

    def __init__(self, headers: Optional[HeadersInput] = None) -> None:
        self._headers: dict[str, Tuple[str, List[str]]] = {}
        if headers is None:
            return
        items = headers.items() if isinstance(headers, Mapping) else headers
        for key, value in items:
            if isinstance(value, str):
                self.add(key, value)
            else:
                for item in value:
                    self.add(key, item)

    def add(self, key: str, value: str) -> None:
        _, values = self._headers.setdefault(key.lower(), (key, []))
        values.append(value)

    def get_list(self, key: str) -> Optional[List[str]]:
        entry = self._headers.get(key.lower())
        return entry[1][:] if entry is not None else None

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(name, value) for name, values in self._headers.values() for value in values]

    def copy(self) -> "Headers":
        return Headers(self.multi_items())

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()][1])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers[key.lower()] = (key, [value])

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._headers

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._headers.values())

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.multi_items()!r})"

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and sorted(
            (name.lower(), value) for name, value in self.multi_items()
        ) == sorted((name.lower(), value) for name, value in other_headers.multi_items())


def strip_hop_by_hop(headers: Headers, extra: Iterable[str] = ()) -> Headers:
    """
    Return a copy of ``headers`` without connection-level fields.

    Removes the fixed hop-by-hop set, any field nominated by the ``Connection``
    header itself (RFC 9110, Section 7.6.1), and the names given in ``extra``.
    Matching is case-insensitive.
    """
    excluded = set(HOP_BY_HOP_HEADERS)
    excluded.update(name.lower() for name in extra)

    for connection_value in headers.get_list("connection") or []:
        excluded.update(token.strip().lower() for token in connection_value.split(",") if token.strip())

    return Headers([(name, value) for name, value in headers.multi_items() if name.lower() not in excluded])


def parse_cache_control(value: Optional[str]) -> FrozenSet[str]:
    """
    Parse a Cache-Control header value into a set of normalized directives.

    Examples:
        >>> sorted(parse_cache_control("Public, MAX-AGE=60"))
        ['max-age=60', 'public']
        >>> parse_cache_control(None)
        frozenset()
    """
    if not value or not value.strip():
        return frozenset()
    return frozenset(token.strip().lower() for token in value.split(",") if token.strip())


def extract_ttl(directives: Iterable[str]) -> Optional[int]:
    """
    Return the ``max-age`` value in seconds, or None when absent or malformed.

    Examples:
        >>> extract_ttl(parse_cache_control("max-age=5"))
        5
        >>> extract_ttl(parse_cache_control("max-age=abc")) is None
        True
    """
    for directive in directives:
        if directive.startswith("max-age="):
            value = directive.split("=", 1)[1]
            return int(value) if _DIGITS.fullmatch(value) else None
    return None
