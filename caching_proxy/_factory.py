from __future__ import annotations

import importlib.util
import logging
import typing as tp
from dataclasses import dataclass

from caching_proxy._exceptions import BackendUnavailable, ConfigurationError
from caching_proxy._storages import DEFAULT_TTL, BaseStorage, InMemoryStorage, RedisStorage, SQLiteStorage

logger = logging.getLogger("caching_proxy.factory")

__all__ = (
    "SUPPORTED_BACKENDS",
    "StorageCreationResult",
    "create_storage",
    "available_backends",
    "backend_info",
)

SUPPORTED_BACKENDS = ("memory", "redis", "sqlite")

_MISSING_LIBRARY_HINTS = {
    "redis": "The redis library is not available. Install it with: pip install caching-proxy[redis]",
    "sqlite": "The sqlite3 module is not available in this Python build",
}


@dataclass
class StorageCreationResult:
    """
    Outcome of a backend selection.

    ``storage`` is always usable. When the requested backend could not be
    initialized, ``fallback_used`` is set, ``backend_used`` is ``"memory"`` and
    ``error_message`` explains why.
    """

    storage: BaseStorage
    backend_used: str
    error_message: tp.Optional[str] = None
    fallback_used: bool = False

    @property
    def success(self) -> bool:
        return self.error_message is None


def create_storage(
    backend: str = "memory",
    *,
    redis_url: tp.Optional[str] = None,
    database_path: tp.Optional[str] = None,
    default_ttl: tp.Union[int, float] = DEFAULT_TTL,
    redis_client: tp.Optional[tp.Any] = None,
    connection: tp.Optional[tp.Any] = None,
) -> StorageCreationResult:
    """
    Build the storage named by ``backend``.

    Args:
        backend: One of ``memory``, ``redis`` or ``sqlite`` (case-insensitive).
        redis_url: Connection URL for the redis backend.
        database_path: Database file for the sqlite backend.
        default_ttl: Lifetime in seconds for entries stored without an explicit ttl.
        redis_client: A ready redis client, mostly useful in tests.
        connection: A ready sqlite3 connection, mostly useful in tests.

    Raises:
        ConfigurationError: When ``backend`` is not a known backend name.
    """
    backend = backend.strip().lower()

    if backend not in SUPPORTED_BACKENDS:
        raise ConfigurationError(
            f"Unsupported cache backend: {backend!r}. Supported: {', '.join(SUPPORTED_BACKENDS)}"
        )

    try:
        storage: BaseStorage
        if backend == "memory":
            storage = InMemoryStorage(default_ttl=default_ttl)
        elif backend == "redis":
            storage = RedisStorage(redis_url=redis_url, default_ttl=default_ttl, client=redis_client)
        else:
            storage = SQLiteStorage(database_path=database_path, default_ttl=default_ttl, connection=connection)
    except ImportError as exc:
        error_message = _MISSING_LIBRARY_HINTS.get(backend, f"Required library not available: {exc}")
        return _fallback(backend, error_message, default_ttl)
    except BackendUnavailable as exc:
        return _fallback(backend, str(exc), default_ttl)
    except Exception as exc:
        return _fallback(backend, f"Error initializing {backend} cache: {exc}", default_ttl)

    logger.debug("Created %s cache backend", backend)
    return StorageCreationResult(storage=storage, backend_used=backend)


def _fallback(backend: str, error_message: str, default_ttl: tp.Union[int, float]) -> StorageCreationResult:
    logger.warning("%s. Falling back to memory cache instead of %s.", error_message, backend)
    return StorageCreationResult(
        storage=InMemoryStorage(default_ttl=default_ttl),
        backend_used="memory",
        error_message=error_message,
        fallback_used=True,
    )


def available_backends() -> tp.List[str]:
    """Names of the backends whose libraries can be imported in this environment."""
    backends = ["memory"]
    if importlib.util.find_spec("redis") is not None:
        backends.append("redis")
    if importlib.util.find_spec("sqlite3") is not None:
        backends.append("sqlite")
    return backends


def backend_info() -> tp.Dict[str, tp.Dict[str, tp.Any]]:
    return {
        "memory": {
            "description": "In-memory cache (default, fast but not persistent)",
            "persistent": False,
            "distributed": False,
            "dependencies": [],
        },
        "redis": {
            "description": "Redis-backed cache (persistent and distributed)",
            "persistent": True,
            "distributed": True,
            "dependencies": ["redis library", "Redis server"],
        },
        "sqlite": {
            "description": "SQLite-backed cache (persistent, single-node)",
            "persistent": True,
            "distributed": False,
            "dependencies": ["sqlite3 module"],
        },
    }
