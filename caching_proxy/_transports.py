from __future__ import annotations

import logging
import typing as tp

import httpx

from caching_proxy._exceptions import OriginError
from caching_proxy._headers import Headers
from caching_proxy._models import OriginRequest, Response

logger = logging.getLogger("caching_proxy.transports")

__all__ = ("RequestSender", "HTTPXOriginClient")

RequestSender = tp.Callable[[OriginRequest], Response]

HEADERS_ENCODING = "iso-8859-1"

_CLIENT_DEFAULT_HEADERS =("Accept", "Accept-Encoding", "Connection", "User-Agent")


class HTTPXOriginClient:
    """
    Send origin requests through an ``httpx.Client``.

    Redirects are passed through to the caller instead of being followed, and
    the body is returned exactly as the origin sent it (no content decoding), so
    the ``Content-Encoding`` and ``Content-Length`` headers stay truthful.

    Args:
        client: The client to use. When omitted, one is created and owned by
            this object.
        timeout: Timeout in seconds applied to requests issued by an owned
            client. None disables timeouts.
    """

    def __init__(
        self,
        client: tp.Optional[httpx.Client] = None,
        timeout: tp.Optional[float] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def __call__(self, request: OriginRequest) -> Response:
        outbound = self._client.build_request(
            method=request.method,
            url=request.url,
            headers=[
                (key.encode(HEADERS_ENCODING), value.encode(HEADERS_ENCODING))
                for key, value in request.headers.multi_items()
            ],
            content=request.body,
        )
        # httpx adds these client defaults; the origin should only see what the client sent.
        for name in _CLIENT_DEFAULT_HEADERS:
            if name not in request.headers and name in outbound.headers:
                del outbound.headers[name]

        try:
            origin_response = self._client.send(outbound, stream=True, follow_redirects=False)
            try:
                body = b"".join(origin_response.iter_raw())
            finally:
                origin_response.close()
        except httpx.HTTPError as exc:
            logger.error("Origin request failed: method=%s url=%s error=%s", request.method, request.url, exc)
            raise OriginError(f"Error contacting origin {request.url}: {exc}") from exc

        # Header names keep the casing the origin used.
        encoding = origin_response.headers.encoding
        return Response(
            status=origin_response.status_code,
            headers=Headers([(key.decode(encoding), value.decode(encoding)) for key, value in origin_response.headers.raw]),
            body=body,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HTTPXOriginClient":
        return self

    def __exit__(self, *args: tp.Any) -> None:
        self.close()
