from __future__ import annotations

import typing as tp
from dataclasses import dataclass
from urllib.parse import urlsplit

from caching_proxy._exceptions import ConfigurationError
from caching_proxy._factory import SUPPORTED_BACKENDS
from caching_proxy._storages import DEFAULT_TTL

__all__ = ("ProxyConfig",)


@dataclass
class ProxyConfig:
    """
    Everything needed to run the proxy from the command line.

    ``port`` and ``ssl`` select the listeners: a plain HTTP one on ``port``,
    an HTTPS one on ``ssl_port``, or both.
    """

    origin: tp.Optional[str] = None
    host: str = "127.0.0.1"
    port: tp.Optional[int] = None
    ssl: bool = False
    ssl_port: int = 8443
    ssl_cert: str = "server.crt"
    ssl_key: str = "server.key"
    cache_backend: str = "memory"
    redis_url: tp.Optional[str] = None
    database_path: tp.Optional[str] = None
    default_ttl: int = DEFAULT_TTL
    origin_timeout: tp.Optional[float] = None
    resource_id_pattern: tp.Optional[str] = None

    def validate(self) -> None:
        """
        Check the settings needed to serve traffic.

        :raises ConfigurationError: when the origin is missing or not an http(s)
            URL, no listener is enabled, the backend is unknown or the default
            TTL is not positive.
        """
        if not self.origin:
            raise ConfigurationError("An origin URL is required")

        parts = urlsplit(self.origin)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(f"Invalid origin URL: {self.origin!r}")

        if self.port is None and not self.ssl:
            raise ConfigurationError("Either a port or SSL must be enabled")

        if self.cache_backend.lower() not in SUPPORTED_BACKENDS:
            raise ConfigurationError(f"Unsupported cache backend: {self.cache_backend!r}")

        if self.default_ttl <= 0:
            raise ConfigurationError("The default TTL must be a positive number of seconds")
