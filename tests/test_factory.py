import sqlite3

import pytest

from caching_proxy import (
    ConfigurationError,
    InMemoryStorage,
    SQLiteStorage,
    available_backends,
    backend_info,
    create_storage,
)


def test_memory_backend():
    result = create_storage("memory", default_ttl=42)

    assert result.success
    assert result.backend_used == "memory"
    assert not result.fallback_used
    assert isinstance(result.storage, InMemoryStorage)
    assert result.storage.default_ttl == 42


def test_backend_name_is_normalized():
    result = create_storage("  SQLite ", connection=sqlite3.connect(":memory:"))

    assert result.backend_used == "sqlite"
    assert isinstance(result.storage, SQLiteStorage)


def test_unknown_backend_raises():
    with pytest.raises(ConfigurationError, match="Unsupported cache backend: 'memcached'"):
        create_storage("memcached")


def test_unreachable_redis_falls_back_to_memory(caplog: pytest.LogCaptureFixture):
    with caplog.at_level("WARNING", logger="caching_proxy"):
        result = create_storage("redis", redis_url="redis://localhost:1")

    assert not result.success
    assert result.fallback_used
    assert result.backend_used == "memory"
    assert isinstance(result.storage, InMemoryStorage)
    assert result.error_message is not None
    assert result.error_message.startswith("Cannot connect to Redis at redis://localhost:1")
    assert caplog.messages[-1].endswith("Falling back to memory cache instead of redis.")


def test_unopenable_sqlite_falls_back_to_memory(tmp_path):
    result = create_storage("sqlite", database_path=str(tmp_path / "missing-dir" / "cache.db"))

    assert result.fallback_used
    assert isinstance(result.storage, InMemoryStorage)


def test_available_backends():
    backends = available_backends()

    assert backends[0] == "memory"
    assert "sqlite" in backends


def test_backend_info():
    info = backend_info()

    assert sorted(info) == ["memory", "redis", "sqlite"]
    assert info["memory"]["persistent"] is False
    assert info["redis"]["distributed"] is True
