from __future__ import annotations

import logging
import typing as tp

import anyio
import click
import uvicorn

from caching_proxy._certificates import generate_self_signed, verify_certificate
from caching_proxy._config import ProxyConfig
from caching_proxy._exceptions import ConfigurationError, StorageError
from caching_proxy._factory import SUPPORTED_BACKENDS, create_storage
from caching_proxy._proxy import CachingProxy
from caching_proxy._storages import DEFAULT_DATABASE_PATH, DEFAULT_REDIS_URL, DEFAULT_TTL, BaseStorage
from caching_proxy._transports import HTTPXOriginClient
from caching_proxy.asgi import CachingProxyApp

logger = logging.getLogger("caching_proxy.cli")

__all__ = ("main",)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=getattr(logging, log_level.upper()),
    )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--port", type=int, help="Port for the plain HTTP listener.")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--origin", help="Origin server URL, e.g. http://localhost:8000.")
@click.option(
    "--cache-backend",
    type=click.Choice(SUPPORTED_BACKENDS, case_sensitive=False),
    default="memory",
    show_default=True,
    help="Where cached responses are kept.",
)
@click.option("--redis-url", envvar="REDIS_URL", default=DEFAULT_REDIS_URL, show_default=True)
@click.option("--database-path", envvar="CACHE_DATABASE_PATH", default=DEFAULT_DATABASE_PATH, show_default=True)
@click.option(
    "--default-ttl",
    type=int,
    default=DEFAULT_TTL,
    show_default=True,
    help="Lifetime in seconds of responses without max-age.",
)
@click.option("--origin-timeout", type=float, help="Timeout in seconds for origin requests.")
@click.option("--resource-id-pattern", help="Regex recognising a trailing resource identifier in a URL path.")
@click.option("--ssl", "ssl_enabled", is_flag=True, help="Enable the HTTPS listener.")
@click.option("--ssl-cert", default="server.crt", show_default=True, help="Path to the SSL certificate file.")
@click.option("--ssl-key", default="server.key", show_default=True, help="Path to the SSL private key file.")
@click.option("--ssl-port", type=int, default=8443, show_default=True, help="Port for the HTTPS listener.")
@click.option("--clear-cache", is_flag=True, help="Clear the cache and exit.")
@click.option("--invalidate-key", metavar="KEY", help="Invalidate one cache key and exit.")
@click.option("--invalidate-pattern", metavar="PATTERN", help="Invalidate keys matching PATTERN (* and ?) and exit.")
@click.option("--cache-stats", is_flag=True, help="Show cache statistics and exit.")
@click.option("--cache-keys", is_flag=True, help="List cache keys and exit.")
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default="INFO", show_default=True)
def main(
    port: tp.Optional[int],
    host: str,
    origin: tp.Optional[str],
    cache_backend: str,
    redis_url: str,
    database_path: str,
    default_ttl: int,
    origin_timeout: tp.Optional[float],
    resource_id_pattern: tp.Optional[str],
    ssl_enabled: bool,
    ssl_cert: str,
    ssl_key: str,
    ssl_port: int,
    clear_cache: bool,
    invalidate_key: tp.Optional[str],
    invalidate_pattern: tp.Optional[str],
    cache_stats: bool,
    cache_keys: bool,
    log_level: str,
) -> None:
    """Caching reverse proxy: forwards requests to an origin and caches the responses."""
    setup_logging(log_level)

    config = ProxyConfig(
        origin=origin,
        host=host,
        port=port,
        ssl=ssl_enabled,
        ssl_port=ssl_port,
        ssl_cert=ssl_cert,
        ssl_key=ssl_key,
        cache_backend=cache_backend,
        redis_url=redis_url,
        database_path=database_path,
        default_ttl=default_ttl,
        origin_timeout=origin_timeout,
        resource_id_pattern=resource_id_pattern,
    )

    if clear_cache or invalidate_key or invalidate_pattern or cache_stats or cache_keys:
        storage = _open_storage(config)
        try:
            if clear_cache:
                storage.clear()
                click.echo("Cache cleared")
            elif invalidate_key:
                if storage.invalidate(invalidate_key):
                    click.echo(f"Key '{invalidate_key}' invalidated")
                else:
                    click.echo(f"Key '{invalidate_key}' not found")
            elif invalidate_pattern:
                deleted_keys = sorted(storage.invalidate_pattern(invalidate_pattern))
                click.echo(f"{len(deleted_keys)} keys invalidated matching pattern '{invalidate_pattern}'")
                for key in deleted_keys:
                    click.echo(f"  - {key}")
            elif cache_stats:
                click.echo("Cache Statistics:")
                for name, value in storage.stats().items():
                    click.echo(f"  {name.replace('_', ' ').capitalize()}: {value}")
            else:
                keys = storage.keys()
                click.echo(f"Cache Keys ({len(keys)}):")
                for key in keys:
                    click.echo(f"  - {key}")
        except StorageError as exc:
            raise click.ClickException(str(exc)) from exc
        finally:
            storage.close()
        return

    try:
        config.validate()
    except ConfigurationError as exc:
        raise click.UsageError(str(exc)) from exc

    serve(config, log_level=log_level)


def _open_storage(config: ProxyConfig) -> BaseStorage:
    result = create_storage(
        config.cache_backend,
        redis_url=config.redis_url,
        database_path=config.database_path,
        default_ttl=config.default_ttl,
    )
    if result.fallback_used:
        click.echo(f"Warning: {result.error_message}. Using the memory cache instead.", err=True)
    return result.storage


def _ensure_certificate(config: ProxyConfig) -> tp.Tuple[str, str]:
    if not verify_certificate(config.ssl_cert, config.ssl_key):
        click.echo("SSL certificate not found or invalid. Generating self-signed certificate...")
        paths = generate_self_signed(cert_file=config.ssl_cert, key_file=config.ssl_key)
        return str(paths["cert"]), str(paths["key"])
    return config.ssl_cert, config.ssl_key


def serve(config: ProxyConfig, log_level: str = "INFO") -> None:
    """Run the HTTP and/or HTTPS listeners described by ``config`` until interrupted."""
    storage = _open_storage(config)
    proxy = CachingProxy(
        config.origin or "",
        storage,
        request_sender=HTTPXOriginClient(timeout=config.origin_timeout),
        resource_id_pattern=config.resource_id_pattern,
    )
    app = CachingProxyApp(proxy)

    server_options: tp.Dict[str, tp.Any] = {
        "host": config.host,
        "log_level": log_level.lower(),
        "lifespan": "off",
        "server_header": False,
        "date_header": False,
    }

    servers = []
    if config.port is not None:
        click.echo(f"Starting HTTP server on {config.host}:{config.port} -> {config.origin}")
        servers.append(uvicorn.Server(uvicorn.Config(app, port=config.port, **server_options)))

    if config.ssl:
        cert_file, key_file = _ensure_certificate(config)
        click.echo(f"Starting HTTPS server on {config.host}:{config.ssl_port} -> {config.origin}")
        click.echo(f"SSL Certificate: {cert_file}")
        click.echo(f"SSL Key: {key_file}")
        servers.append(
            uvicorn.Server(
                uvicorn.Config(
                    app,
                    port=config.ssl_port,
                    ssl_certfile=cert_file,
                    ssl_keyfile=key_file,
                    **server_options,
                )
            )
        )

    logger.info("Serving origin %s with the %s cache", config.origin, type(storage).__name__)
    try:
        anyio.run(_serve_all, servers)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        proxy.close()


async def _serve_all(servers: tp.List[uvicorn.Server]) -> None:
    async with anyio.create_task_group() as task_group:
        for server in servers:
            task_group.start_soon(server.serve)
