from __future__ import annotations

import re
import typing as tp
from email.utils import formatdate
from urllib.parse import urlsplit, urlunsplit


def pattern_to_regex(pattern: str) -> tp.Pattern[str]:
    """
    Convert a shell-style wildcard pattern into a compiled regular expression.

    ``*`` matches any run of characters (including none) and ``?`` matches exactly
    one character. Every other character is literal, and the expression is
    anchored at both ends.

    Examples:
        >>> bool(pattern_to_regex("user:*").match("user:1"))
        True
        >>> bool(pattern_to_regex("user:?").match("user:10"))
        False
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def match_keys(pattern: str, keys: tp.Iterable[str]) -> tp.Set[str]:
    regex = pattern_to_regex(pattern)
    return {key for key in keys if regex.match(key)}


def strip_query(url: str) -> str:
    scheme, netloc, path, _, _ = urlsplit(url)
    return urlunsplit((scheme, netloc, path, "", ""))


def human_readable_size(size_in_bytes: int) -> str:
    """
    Format a byte count using binary units.

    Examples:
        >>> human_readable_size(0)
        '0.0 B'
        >>> human_readable_size(1536)
        '1.5 KB'
    """
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_in_bytes)
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    return f"{round(size, 2)} {units[unit_index]}"


def generate_http_date() -> str:
    """
    Generate a Date header value for HTTP responses.
    Returns date in RFC 1123 format (required by HTTP/1.1).

    Example output: 'Sun, 26 Oct 2025 12:34:56 GMT'
    """
    return formatdate(timeval=None, localtime=False, usegmt=True)
