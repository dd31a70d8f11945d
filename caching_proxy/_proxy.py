from __future__ import annotations

import json
import logging
import typing as tp
from urllib.parse import parse_qs

from caching_proxy._exceptions import StorageError
from caching_proxy._headers import Headers, extract_ttl, parse_cache_control, strip_hop_by_hop
from caching_proxy._invalidation import InvalidationPlanner
from caching_proxy._models import (
    CACHEABLE_METHODS,
    MUTATING_METHODS,
    SUPPORTED_METHODS,
    CacheEntry,
    CacheStatus,
    OriginRequest,
    Request,
    Response,
)
from caching_proxy._storages import BaseStorage
from caching_proxy._transports import HTTPXOriginClient, RequestSender

logger = logging.getLogger("caching_proxy.proxy")

__all__ = ("ADMIN_PREFIX", "CachingProxy", "cache_key")

ADMIN_PREFIX = "/__cache__/"
X_CACHE = "X-Cache"


def cache_key(method: str, url: str) -> str:
    return f"{method.upper()}:{url}"


def _tagged(response: Response, status: CacheStatus) -> Response:
    headers = response.headers.copy()
    headers[X_CACHE] = status
    return Response(status=response.status, headers=headers, body=response.body)


def _json_response(status: int, payload: tp.Mapping[str, tp.Any]) -> Response:
    return _tagged(
        Response(
            status=status,
            headers=Headers({"Content-Type": "application/json"}),
            body=json.dumps(payload, default=str).encode("utf-8"),
        ),
        "BYPASS",
    )


class CachingProxy:
    """
    A caching reverse proxy for a single origin.

    The proxy is independent of any web server: it works with the internal
    ``Request`` and ``Response`` models and delegates the origin round trip to
    ``request_sender``. Each response carries an ``X-Cache`` header describing
    what the cache did with it.

    Args:
        origin: Base URL of the origin server, e.g. ``http://localhost:8000``.
        storage: Storage backend for cached responses.
        request_sender: Callable that performs the origin round trip. Defaults
            to an ``HTTPXOriginClient``.
        resource_id_pattern: Regex recognising a trailing resource identifier,
            used to decide whether a write also invalidates its collection.
    """

    def __init__(
        self,
        origin: str,
        storage: BaseStorage,
        request_sender: RequestSender | None = None,
        resource_id_pattern: tp.Union[str, tp.Pattern[str], None] = None,
    ) -> None:
        self.origin = origin.rstrip("/")
        self.storage = storage
        self.send_request = request_sender if request_sender is not None else HTTPXOriginClient()
        self.planner = InvalidationPlanner(resource_id_pattern)

        self._admin_routes: tp.Dict[str, tp.Tuple[str, tp.Callable[[Request], Response]]] = {
            "stats": ("GET", self._admin_stats),
            "keys": ("GET", self._admin_keys),
            "clear": ("POST", self._admin_clear),
            "invalidate": ("POST", self._admin_invalidate),
        }

    def build_url(self, request: Request) -> str:
        url = f"{self.origin}{request.path}"
        if request.query:
            url += f"?{request.query}"
        return url

    def handle_request(self, request: Request) -> Response:
        if request.path.startswith(ADMIN_PREFIX):
            return self._handle_admin(request)

        method = request.method.upper()
        if method not in SUPPORTED_METHODS:
            logger.debug("Rejecting unsupported method %s", method)
            return _tagged(
                Response(status=405, headers=Headers({"Content-Type": "text/plain"}), body=b"Method Not Allowed"),
                "UNCACHEABLE",
            )

        url = self.build_url(request)
        key = cache_key(method, url)

        cached: CacheEntry | None = None
        if method in CACHEABLE_METHODS:
            cached = self._lookup(key)
            if cached is not None and "no-cache" not in parse_cache_control(cached.headers.get("Cache-Control")):
                logger.debug("Serving %s from cache", key)
                return _tagged(cached.to_response(), "HIT")

        origin_response = self.send_request(self._build_origin_request(method, url, request, cached))
        response = Response(
            status=origin_response.status,
            headers=strip_hop_by_hop(origin_response.headers),
            body=origin_response.body,
        )
        logger.debug("Origin answered %s for %s", response.status, key)

        if response.status == 304 and cached is not None:
            logger.debug("Cached response for %s revalidated", key)
            return _tagged(cached.to_response(), "REVALIDATED")

        directives = parse_cache_control(response.headers.get("Cache-Control"))

        if "no-store" in directives:
            logger.debug("Response for %s must not be stored", key)
            return _tagged(response, "NO-STORE")

        if "no-cache" in directives:
            logger.debug("Response for %s is marked no-cache, not storing", key)
            return _tagged(response, "BYPASS")

        if method in MUTATING_METHODS and response.status < 400:
            self._invalidate_related(method, url)

        if method in CACHEABLE_METHODS:
            if 200 <= response.status < 300:
                self._store(key, response, extract_ttl(directives))
                return _tagged(response, "MISS")
            return _tagged(response, "BYPASS")

        return _tagged(response, "UNCACHEABLE")

    def close(self) -> None:
        self.storage.close()
        close_sender = getattr(self.send_request, "close", None)
        if callable(close_sender):
            close_sender()

    def _build_origin_request(
        self, method: str, url: str, request: Request, cached: CacheEntry | None
    ) -> OriginRequest:
        headers = strip_hop_by_hop(request.headers, extra=("Host",))

        if cached is not None:
            etag = cached.headers.get("ETag")
            if etag:
                headers["If-None-Match"] = etag
            last_modified = cached.headers.get("Last-Modified")
            if last_modified:
                headers["If-Modified-Since"] = last_modified

        return OriginRequest(
            method=method,
            url=url,
            headers=headers,
            body=request.body if method in MUTATING_METHODS else None,
        )

    def _lookup(self, key: str) -> CacheEntry | None:
        try:
            return self.storage.get(key)
        except StorageError as exc:
            logger.warning("Cache lookup failed for %s, continuing without cache: %s", key, exc)
            return None

    def _store(self, key: str, response: Response, ttl: tp.Optional[int]) -> None:
        logger.debug("Storing response for %s (ttl=%s)", key, "default" if ttl is None else ttl)
        try:
            self.storage.set(key, CacheEntry.from_response(response), ttl)
        except StorageError as exc:
            logger.warning("Could not store response for %s: %s", key, exc)

    def _invalidate_related(self, method: str, url: str) -> None:
        exact_key = cache_key("GET", url)
        for pattern in self.planner.plan(method, url):
            try:
                # The resource's own key may hold literal "*" or "?" characters.
                if pattern == exact_key:
                    removed = 1 if self.storage.invalidate(exact_key) else 0
                else:
                    removed = len(self.storage.invalidate_pattern(pattern))
            except StorageError as exc:
                logger.warning("Could not invalidate %s: %s", pattern, exc)
                continue
            logger.debug("Invalidated %d entries matching %s", removed, pattern)

    def _handle_admin(self, request: Request) -> Response:
        endpoint = request.path[len(ADMIN_PREFIX) :]
        route = self._admin_routes.get(endpoint)

        if route is None:
            return _json_response(404, {"error": "Admin endpoint not found"})

        allowed_method, handler = route
        if request.method.upper() != allowed_method:
            response = _json_response(405, {"error": "Method Not Allowed"})
            response.headers["Allow"] = allowed_method
            return response

        try:
            return handler(request)
        except StorageError as exc:
            logger.warning("Admin endpoint %s failed: %s", endpoint, exc)
            return _json_response(200, {"error": f"Cache backend error: {exc}", "degraded": True})

    def _admin_stats(self, request: Request) -> Response:
        return _json_response(200, self.storage.stats())

    def _admin_keys(self, request: Request) -> Response:
        keys = self.storage.keys()
        return _json_response(200, {"keys": keys, "count": len(keys)})

    def _admin_clear(self, request: Request) -> Response:
        self.storage.clear()
        logger.info("Cache cleared through the admin endpoint")
        return _json_response(200, {"message": "Cache cleared successfully"})

    def _admin_invalidate(self, request: Request) -> Response:
        params = parse_qs(request.query)
        key = params.get("key", [None])[0]
        pattern = params.get("pattern", [None])[0]

        if key:
            invalidated = self.storage.invalidate(key)
            message = "Key invalidated successfully" if invalidated else "Key not found"
            return _json_response(200, {"message": message, "key": key, "invalidated": invalidated})

        if pattern:
            deleted_keys = sorted(self.storage.invalidate_pattern(pattern))
            return _json_response(
                200,
                {
                    "message": f"{len(deleted_keys)} keys invalidated",
                    "pattern": pattern,
                    "deleted_keys": deleted_keys,
                },
            )

        return _json_response(400, {"error": "Missing key or pattern parameter"})
