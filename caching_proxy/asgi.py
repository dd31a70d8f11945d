from __future__ import annotations

import logging
import typing as t

import anyio.to_thread

from caching_proxy._exceptions import OriginError
from caching_proxy._headers import Headers
from caching_proxy._models import Request, Response
from caching_proxy._proxy import CachingProxy, _json_response
from caching_proxy._utils import generate_http_date

logger = logging.getLogger("caching_proxy.asgi")

__all__ = ("CachingProxyApp",)


class _ASGIScope(t.TypedDict, total=False):
    """ASGI HTTP scope type."""

    type: str
    asgi: dict[str, str]
    http_version: str
    method: str
    scheme: str
    path: str
    raw_path: bytes | None
    query_string: bytes
    root_path: str
    headers: list[tuple[bytes, bytes]]
    server: tuple[str, int | None] | None
    client: tuple[str, int] | None
    state: dict[str, t.Any]
    extensions: dict[str, t.Any]


_Scope = _ASGIScope
_Receive = t.Callable[[], t.Awaitable[dict[str, t.Any]]]
_Send = t.Callable[[dict[str, t.Any]], t.Awaitable[None]]


class CachingProxyApp:
    """
    ASGI application that serves a ``CachingProxy``.

    The request body is read in full before the proxy runs, and the proxy
    itself runs in a worker thread because storages and the origin client are
    blocking. Origin failures are answered with ``502 Bad Gateway``.

    Args:
        proxy: The proxy that handles every HTTP request.

    Example:
        ```python
        import uvicorn
        from caching_proxy import CachingProxy, CachingProxyApp, InMemoryStorage

        proxy = CachingProxy("http://localhost:8000", InMemoryStorage())
        uvicorn.run(CachingProxyApp(proxy), port=3000)
        ```
    """

    def __init__(self, proxy: CachingProxy) -> None:
        self.proxy = proxy

        logger.info(
            "Initialized CachingProxyApp for origin=%s with storage=%s",
            proxy.origin,
            type(proxy.storage).__name__,
        )

    async def __call__(self, scope: _Scope, receive: _Receive, send: _Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
            return

        if scope["type"] != "http":
            logger.debug("Skipping non-HTTP request: type=%s", scope["type"])
            return

        request = await self._asgi_to_internal_request(scope, receive)
        logger.debug("Incoming HTTP request: method=%s path=%s", request.method, request.path)

        try:
            response = await anyio.to_thread.run_sync(self.proxy.handle_request, request)
        except OriginError as exc:
            response = _json_response(502, {"error": "Bad Gateway", "detail": str(exc)})

        logger.info(
            "Request processed: method=%s path=%s status=%d cache=%s",
            request.method,
            request.path,
            response.status,
            response.headers.get("X-Cache"),
        )

        await self._send_internal_response(response, send)

    async def _lifespan(self, receive: _Receive, send: _Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await anyio.to_thread.run_sync(self.proxy.close)
                logger.info("Caching proxy closed")
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _asgi_to_internal_request(self, scope: _Scope, receive: _Receive) -> Request:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.request":
                chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    break
            elif message["type"] == "http.disconnect":
                logger.debug("Client disconnected during request body streaming")
                break

        headers = Headers(
            [(key.decode("latin1"), value.decode("latin1")) for key, value in scope.get("headers", [])]
        )

        # "path" is percent-decoded; "raw_path" keeps %2F and %3F as the client sent them.
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin1").split("?", 1)[0] if raw_path else scope.get("path", "/")

        return Request(
            method=scope.get("method", "GET"),
            path=path,
            query=scope.get("query_string", b"").decode("latin1"),
            headers=headers,
            body=b"".join(chunks),
        )

    async def _send_internal_response(self, response: Response, send: _Send) -> None:
        headers = response.headers
        if "Date" not in headers:
            headers = headers.copy()
            headers["Date"] = generate_http_date()

        await send(
            {
                "type": "http.response.start",
                "status": response.status,
                "headers": [(key.encode("latin1"), value.encode("latin1")) for key, value in headers.multi_items()],
            }
        )
        await send({"type": "http.response.body", "body": response.body, "more_body": False})
