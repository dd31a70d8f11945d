from __future__ import annotations

import abc
import contextlib
import logging
import os
import time
import typing as tp
from dataclasses import replace

try:
    import sqlite3
except ImportError:  # pragma: no cover
    sqlite3 = None  # type: ignore

try:
    import redis
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

from caching_proxy._exceptions import BackendUnavailable, MalformedCachedData, StorageError
from caching_proxy._models import CacheEntry
from caching_proxy._serializers import BaseSerializer, JSONSerializer
from caching_proxy._synchronization import Lock
from caching_proxy._utils import human_readable_size, match_keys

logger = logging.getLogger("caching_proxy.storages")

__all__ = (
    "DEFAULT_TTL",
    "BaseStorage",
    "InMemoryStorage",
    "SQLiteStorage",
    "RedisStorage",
)

DEFAULT_TTL = 300
DEFAULT_DATABASE_PATH = "cache.db"
DEFAULT_REDIS_URL = "redis://localhost:6379"
REDIS_KEY_PREFIX = "caching_proxy:"

TTL = tp.Union[int, float]


class BaseStorage(abc.ABC):
    """
    The contract every cache backend implements.

    Entries are addressed by their cache key. An entry is expired once its
    ``expires_at`` is strictly in the past; expired entries are never returned by
    ``get``, ``exists`` or ``keys``, but they still count towards ``size`` until a
    backend physically removes them.

    :param serializer: Serializer used by backends that persist entries, defaults to JSONSerializer
    :type serializer: tp.Optional[BaseSerializer], optional
    :param default_ttl: Lifetime in seconds for entries stored without an explicit ttl, defaults to 300
    :type default_ttl: tp.Union[int, float], optional
    """

    _backend_errors: tp.Tuple[tp.Type[BaseException], ...] = ()

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        default_ttl: TTL = DEFAULT_TTL,
    ) -> None:
        self._serializer = serializer or JSONSerializer()
        self.default_ttl = default_ttl

    @abc.abstractmethod
    def exists(self, key: str) -> bool:
        raise NotImplementedError()

    @abc.abstractmethod
    def get(self, key: str) -> tp.Optional[CacheEntry]:
        raise NotImplementedError()

    @abc.abstractmethod
    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[TTL] = None) -> None:
        raise NotImplementedError()

    @abc.abstractmethod
    def invalidate(self, key: str) -> bool:
        raise NotImplementedError()

    @abc.abstractmethod
    def invalidate_pattern(self, pattern: str) -> tp.Set[str]:
        raise NotImplementedError()

    @abc.abstractmethod
    def keys(self) -> tp.List[str]:
        raise NotImplementedError()

    @abc.abstractmethod
    def size(self) -> int:
        raise NotImplementedError()

    @abc.abstractmethod
    def clear(self) -> None:
        raise NotImplementedError()

    def stats(self) -> tp.Dict[str, tp.Any]:
        return {
            "backend": type(self).__name__,
            "total_keys": self.size(),
            "active_keys": len(self.keys()),
        }

    def close(self) -> None:
        return

    def _resolve_ttl(self, ttl: tp.Optional[TTL]) -> TTL:
        return self.default_ttl if ttl is None else ttl

    @contextlib.contextmanager
    def _guard(self) -> tp.Iterator[None]:
        try:
            yield
        except self._backend_errors as exc:
            raise StorageError(f"{type(self).__name__} operation failed: {exc}") from exc


class InMemoryStorage(BaseStorage):
    """
    A process-local storage.

    Entries live in a dictionary guarded by a lock. Expiry is lazy: stale entries
    stay in memory until they are overwritten, invalidated or cleared.

    :param default_ttl: Lifetime in seconds for entries stored without an explicit ttl, defaults to 300
    :type default_ttl: tp.Union[int, float], optional
    """

    def __init__(self, default_ttl: TTL = DEFAULT_TTL) -> None:
        super().__init__(default_ttl=default_ttl)

        self._store: tp.Dict[str, CacheEntry] = {}
        self._lock = Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and not entry.is_expired()

    def get(self, key: str) -> tp.Optional[CacheEntry]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired():
                return None
            return replace(entry, headers=entry.headers.copy())

    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[TTL] = None) -> None:
        expires_at = time.time() + self._resolve_ttl(ttl)
        with self._lock:
            self._store[key] = replace(entry, headers=entry.headers.copy(), expires_at=expires_at)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> tp.Set[str]:
        with self._lock:
            matched = match_keys(pattern, self._store)
            for key in matched:
                del self._store[key]
            return matched

    def keys(self) -> tp.List[str]:
        now = time.time()
        with self._lock:
            return [key for key, entry in self._store.items() if not entry.is_expired(now)]

    def size(self) -> int:
        with self._lock:
            return len(self._store)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def stats(self) -> tp.Dict[str, tp.Any]:
        with self._lock:
            stats = super().stats()
        stats["expired_keys"] = stats["total_keys"] - stats["active_keys"]
        return stats


class SQLiteStorage(BaseStorage):
    """
    A single-node persistent storage backed by sqlite3.

    :param database_path: Path of the database file, defaults to ``cache.db``
    :type database_path: tp.Optional[str], optional
    :param default_ttl: Lifetime in seconds for entries stored without an explicit ttl, defaults to 300
    :type default_ttl: tp.Union[int, float], optional
    :param connection: An already opened connection; takes precedence over ``database_path``
    :type connection: tp.Optional[sqlite3.Connection], optional
    :param serializer: Serializer for stored entries, defaults to JSONSerializer
    :type serializer: tp.Optional[BaseSerializer], optional
    """

    def __init__(
        self,
        database_path: tp.Optional[str] = None,
        default_ttl: TTL = DEFAULT_TTL,
        connection: tp.Optional["sqlite3.Connection"] = None,
        serializer: tp.Optional[BaseSerializer] = None,
    ) -> None:
        if sqlite3 is None:  # pragma: no cover
            raise BackendUnavailable(
                "SQLite support is not available in this Python build. "
                "Use the memory or redis backend instead."
            )
        super().__init__(serializer, default_ttl)

        self._backend_errors = (sqlite3.Error,)
        if database_path is None:
            database_path = ":memory:" if connection is not None else DEFAULT_DATABASE_PATH
        self.database_path = database_path
        self._lock = Lock()

        try:
            self._connection: tp.Optional[sqlite3.Connection] = connection or sqlite3.connect(
                self.database_path, check_same_thread=False
            )
            self._initialize_database()
        except sqlite3.Error as exc:
            raise BackendUnavailable(f"Cannot open SQLite database {self.database_path!r}: {exc}") from exc

        logger.info("Using SQLite cache database: %s", self.database_path)

    def _initialize_database(self) -> None:
        connection = self._ensure_connection()
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )
        connection.execute("CREATE INDEX IF NOT EXISTS idx_cache_expires_at ON cache_entries(expires_at)")
        connection.commit()

    def _ensure_connection(self) -> "sqlite3.Connection":
        if self._connection is None:
            raise StorageError("The SQLite storage has been closed.")
        return self._connection

    def exists(self, key: str) -> bool:
        with self._lock, self._guard():
            self._delete_expired()
            row = (
                self._ensure_connection()
                .execute(
                    "SELECT COUNT(*) FROM cache_entries WHERE key = ? AND (expires_at IS NULL OR expires_at >= ?)",
                    (key, time.time()),
                )
                .fetchone()
            )
            return bool(row[0])

    def get(self, key: str) -> tp.Optional[CacheEntry]:
        with self._lock, self._guard():
            self._delete_expired()
            row = (
                self._ensure_connection()
                .execute(
                    "SELECT value, expires_at FROM cache_entries "
                    "WHERE key = ? AND (expires_at IS NULL OR expires_at >= ?)",
                    (key, time.time()),
                )
                .fetchone()
            )
            if row is None:
                return None

            try:
                entry = self._serializer.loads(row[0])
            except MalformedCachedData as exc:
                logger.warning("Dropping corrupted cache entry %r: %s", key, exc)
                self._delete(key)
                return None
            return replace(entry, expires_at=row[1])

    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[TTL] = None) -> None:
        ttl = self._resolve_ttl(ttl)
        now = time.time()
        expires_at = now + ttl if ttl > 0 else None
        serialized_entry = self._serializer.dumps(entry)

        with self._lock, self._guard():
            connection = self._ensure_connection()
            connection.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, expires_at, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (key, serialized_entry, expires_at, now, now),
            )
            connection.commit()

    def invalidate(self, key: str) -> bool:
        with self._lock, self._guard():
            return self._delete(key)

    def invalidate_pattern(self, pattern: str) -> tp.Set[str]:
        with self._lock, self._guard():
            connection = self._ensure_connection()
            stored_keys = [row[0] for row in connection.execute("SELECT key FROM cache_entries")]
            matched = match_keys(pattern, stored_keys)
            if matched:
                connection.executemany("DELETE FROM cache_entries WHERE key = ?", [(key,) for key in matched])
                connection.commit()
            return matched

    def keys(self) -> tp.List[str]:
        with self._lock, self._guard():
            self._delete_expired()
            rows = self._ensure_connection().execute(
                "SELECT key FROM cache_entries WHERE expires_at IS NULL OR expires_at >= ?", (time.time(),)
            )
            return [row[0] for row in rows]

    def size(self) -> int:
        with self._lock, self._guard():
            return int(self._ensure_connection().execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0])

    def clear(self) -> None:
        with self._lock, self._guard():
            connection = self._ensure_connection()
            connection.execute("DELETE FROM cache_entries")
            connection.commit()

    def stats(self) -> tp.Dict[str, tp.Any]:
        with self._lock, self._guard():
            connection = self._ensure_connection()
            total_keys = connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
            active_keys = connection.execute(
                "SELECT COUNT(*) FROM cache_entries WHERE expires_at IS NULL OR expires_at >= ?", (time.time(),)
            ).fetchone()[0]

        file_size = os.path.getsize(self.database_path) if os.path.isfile(self.database_path) else 0
        return {
            "backend": type(self).__name__,
            "total_keys": total_keys,
            "active_keys": active_keys,
            "expired_keys": total_keys - active_keys,
            "database_path": self.database_path,
            "database_size_bytes": file_size,
            "database_size_human": human_readable_size(file_size),
        }

    def cleanup_expired(self) -> int:
        """
        Physically delete every expired row.

        :return: Number of removed rows
        :rtype: int
        """
        with self._lock, self._guard():
            return self._delete_expired()

    def optimize(self) -> None:
        """Reclaim free pages and refresh the query planner statistics."""
        with self._lock, self._guard():
            connection = self._ensure_connection()
            connection.execute("VACUUM")
            connection.execute("ANALYZE")

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _delete(self, key: str) -> bool:
        connection = self._ensure_connection()
        cursor = connection.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        connection.commit()
        return cursor.rowcount > 0

    def _delete_expired(self) -> int:
        connection = self._ensure_connection()
        cursor = connection.execute(
            "DELETE FROM cache_entries WHERE expires_at IS NOT NULL AND expires_at < ?", (time.time(),)
        )
        connection.commit()
        return cursor.rowcount


def _escape_glob(text: str) -> str:
    # Redis MATCH understands character classes and backslash escapes; only * and ? stay special.
    return "".join("\\" + char if char in "[]\\" else char for char in text)


class RedisStorage(BaseStorage):
    """
    A shared storage backed by a redis server.

    Entries live under ``key_prefix`` and expire through redis' native TTL, so
    expired entries never linger in ``size``.

    :param redis_url: Connection URL, defaults to ``redis://localhost:6379``
    :type redis_url: tp.Optional[str], optional
    :param default_ttl: Lifetime in seconds for entries stored without an explicit ttl, defaults to 300
    :type default_ttl: tp.Union[int, float], optional
    :param client: A client for redis; takes precedence over ``redis_url``
    :type client: tp.Optional["redis.Redis"], optional
    :param key_prefix: Namespace for the stored keys, defaults to ``caching_proxy:``
    :type key_prefix: str, optional
    :param serializer: Serializer for stored entries, defaults to JSONSerializer
    :type serializer: tp.Optional[BaseSerializer], optional
    """

    def __init__(
        self,
        redis_url: tp.Optional[str] = None,
        default_ttl: TTL = DEFAULT_TTL,
        client: tp.Optional["redis.Redis"] = None,
        key_prefix: str = REDIS_KEY_PREFIX,
        serializer: tp.Optional[BaseSerializer] = None,
    ) -> None:
        if redis is None:  # pragma: no cover
            raise BackendUnavailable(
                "The redis library is not installed. Install it with: pip install caching-proxy[redis]"
            )
        super().__init__(serializer, default_ttl)

        self._backend_errors = (redis.RedisError,)
        self.redis_url = redis_url or DEFAULT_REDIS_URL
        self.key_prefix = key_prefix
        self._closed = False

        try:
            self._client = client if client is not None else redis.Redis.from_url(self.redis_url)
            self._client.ping()
        except (redis.RedisError, ValueError) as exc:
            raise BackendUnavailable(f"Cannot connect to Redis at {self.redis_url}: {exc}") from exc

        logger.info("Connected to Redis at %s", self._connection_info())

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _strip(self, raw_key: tp.Union[bytes, str]) -> str:
        key = raw_key.decode("utf-8") if isinstance(raw_key, bytes) else raw_key
        return key[len(self.key_prefix) :]

    def _scan(self, pattern: str) -> tp.List[tp.Union[bytes, str]]:
        # SCAN may return a key more than once.
        return list(dict.fromkeys(self._client.scan_iter(match=_escape_glob(self.key_prefix) + pattern)))

    def exists(self, key: str) -> bool:
        with self._guard():
            return int(self._client.exists(self._key(key))) > 0

    def get(self, key: str) -> tp.Optional[CacheEntry]:
        with self._guard():
            pipeline = self._client.pipeline()
            pipeline.get(self._key(key))
            pipeline.pttl(self._key(key))
            raw_value, ttl_in_milliseconds = pipeline.execute()

            if raw_value is None:
                return None

            try:
                entry = self._serializer.loads(raw_value)
            except MalformedCachedData as exc:
                logger.warning("Dropping corrupted cache entry %r: %s", key, exc)
                self._client.delete(self._key(key))
                return None

        # -1: the key exists but has no expiration
        expires_at = time.time() + ttl_in_milliseconds / 1000 if ttl_in_milliseconds > 0 else None
        return replace(entry, expires_at=expires_at)

    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[TTL] = None) -> None:
        ttl = self._resolve_ttl(ttl)
        serialized_entry = self._serializer.dumps(entry)

        with self._guard():
            if ttl > 0:
                self._client.set(self._key(key), serialized_entry, px=int(ttl * 1000))
            else:
                self._client.set(self._key(key), serialized_entry)

    def invalidate(self, key: str) -> bool:
        with self._guard():
            return int(self._client.delete(self._key(key))) > 0

    def invalidate_pattern(self, pattern: str) -> tp.Set[str]:
        with self._guard():
            raw_keys = self._scan(_escape_glob(pattern))
            if not raw_keys:
                return set()
            self._client.delete(*raw_keys)
        return {self._strip(raw_key) for raw_key in raw_keys}

    def keys(self) -> tp.List[str]:
        with self._guard():
            return [self._strip(raw_key) for raw_key in self._scan("*")]

    def size(self) -> int:
        return len(self.keys())

    def clear(self) -> None:
        with self._guard():
            raw_keys = self._scan("*")
            if raw_keys:
                self._client.delete(*raw_keys)

    def stats(self) -> tp.Dict[str, tp.Any]:
        stats = super().stats()
        with self._guard():
            info = self._client.info()
        stats.update(
            {
                "redis_version": info.get("redis_version"),
                "used_memory": info.get("used_memory_human"),
                "connected_clients": info.get("connected_clients"),
                "total_commands_processed": info.get("total_commands_processed"),
                "keyspace_hits": info.get("keyspace_hits"),
                "keyspace_misses": info.get("keyspace_misses"),
            }
        )
        return stats

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._client.close()
        except redis.ConnectionError:  # pragma: no cover
            logger.debug("Redis connection was already closed")

    def _connection_info(self) -> str:
        pool = getattr(self._client, "connection_pool", None)
        kwargs = getattr(pool, "connection_kwargs", {}) or {}
        return f"{kwargs.get('host', 'unknown')}:{kwargs.get('port', 'unknown')}"
