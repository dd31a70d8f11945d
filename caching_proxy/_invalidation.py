from __future__ import annotations

import re
import typing as tp
from urllib.parse import urlsplit, urlunsplit

from caching_proxy._models import MUTATING_METHODS
from caching_proxy._utils import strip_query

__all__ = ("DEFAULT_RESOURCE_ID_PATTERN", "InvalidationPlanner")

# A trailing path segment holding at least one digit, underscore or hyphen.
DEFAULT_RESOURCE_ID_PATTERN = re.compile(r"/[^/]*[0-9_-][^/]*/?$")


class InvalidationPlanner:
    """
    Decide which cached GET responses a mutating request makes stale.

    A ``POST`` may create a resource whose URL is unknown yet, so everything
    under the posted URL goes. ``PUT``, ``PATCH`` and ``DELETE`` drop the exact
    resource and, when the URL ends in something that looks like an identifier
    rather than a collection name, the owning collection as well.

    Args:
        resource_id_pattern: Regular expression searched in the URL path to
            recognise a trailing resource identifier. Defaults to
            ``DEFAULT_RESOURCE_ID_PATTERN``.
    """

    def __init__(self, resource_id_pattern: tp.Union[str, tp.Pattern[str], None] = None) -> None:
        if resource_id_pattern is None:
            self.resource_id_pattern = DEFAULT_RESOURCE_ID_PATTERN
        elif isinstance(resource_id_pattern, str):
            self.resource_id_pattern = re.compile(resource_id_pattern)
        else:
            self.resource_id_pattern = resource_id_pattern

    def plan(self, method: str, url: str) -> tp.List[str]:
        method = method.upper()
        if method not in MUTATING_METHODS:
            return []

        if method == "POST":
            return [f"GET:{strip_query(url)}*"]

        patterns = [f"GET:{url}"]
        if self.has_resource_id(url):
            patterns.append(f"GET:{self.collection_url(url)}*")
        return patterns

    def has_resource_id(self, url: str) -> bool:
        return self.resource_id_pattern.search(urlsplit(url).path) is not None

    @staticmethod
    def collection_url(url: str) -> str:
        scheme, netloc, path, _, _ = urlsplit(url)
        collection_path = path.rstrip("/").rsplit("/", 1)[0]
        return urlunsplit((scheme, netloc, collection_path, "", ""))
