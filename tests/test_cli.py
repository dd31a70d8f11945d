import pytest
from click.testing import CliRunner

from caching_proxy import CacheEntry, Headers, ProxyConfig, SQLiteStorage
from caching_proxy import cli


@pytest.fixture
def database(tmp_path):
    path = str(tmp_path / "cache.db")
    storage = SQLiteStorage(database_path=path)
    entry = CacheEntry(status=200, headers=Headers({"Content-Type": "text/plain"}), body=b"hello")
    storage.set("GET:http://localhost:8000/users/1", entry, ttl=60)
    storage.set("GET:http://localhost:8000/users/2", entry, ttl=60)
    storage.set("GET:http://localhost:8000/posts/1", entry, ttl=60)
    storage.close()
    return path


def run(*args: str, **kwargs):
    return CliRunner().invoke(cli.main, list(args), **kwargs)


def remaining_keys(path: str):
    storage = SQLiteStorage(database_path=path)
    try:
        return sorted(storage.keys())
    finally:
        storage.close()


def test_clear_cache(database):
    result = run("--cache-backend", "sqlite", "--database-path", database, "--clear-cache")

    assert result.exit_code == 0
    assert result.output == "Cache cleared\n"
    assert remaining_keys(database) == []


def test_invalidate_key(database):
    result = run(
        "--cache-backend", "sqlite", "--database-path", database, "--invalidate-key", "GET:http://localhost:8000/users/1"
    )

    assert result.output == "Key 'GET:http://localhost:8000/users/1' invalidated\n"
    assert remaining_keys(database) == ["GET:http://localhost:8000/posts/1", "GET:http://localhost:8000/users/2"]


def test_invalidate_missing_key(database):
    result = run("--cache-backend", "sqlite", "--database-path", database, "--invalidate-key", "GET:nope")

    assert result.exit_code == 0
    assert result.output == "Key 'GET:nope' not found\n"


def test_invalidate_pattern(database):
    result = run(
        "--cache-backend", "sqlite", "--database-path", database, "--invalidate-pattern", "GET:*/users/*"
    )

    assert result.output.splitlines() == [
        "2 keys invalidated matching pattern 'GET:*/users/*'",
        "  - GET:http://localhost:8000/users/1",
        "  - GET:http://localhost:8000/users/2",
    ]


def test_cache_keys_reads_database_path_from_environment(database):
    result = run("--cache-backend", "sqlite", "--cache-keys", env={"CACHE_DATABASE_PATH": database})

    lines = result.output.splitlines()
    assert lines[0] == "Cache Keys (3):"
    assert sorted(lines[1:]) == [
        "  - GET:http://localhost:8000/posts/1",
        "  - GET:http://localhost:8000/users/1",
        "  - GET:http://localhost:8000/users/2",
    ]


def test_cache_stats(database):
    result = run("--cache-backend", "sqlite", "--database-path", database, "--cache-stats")

    lines = result.output.splitlines()
    assert lines[:5] == [
        "Cache Statistics:",
        "  Backend: SQLiteStorage",
        "  Total keys: 3",
        "  Active keys: 3",
        "  Expired keys: 0",
    ]
    assert f"  Database path: {database}" in lines


def test_unreachable_redis_falls_back_with_a_warning():
    result = run("--cache-backend", "redis", "--redis-url", "redis://localhost:1", "--cache-keys")

    assert result.exit_code == 0
    assert "Using the memory cache instead." in result.output
    assert "Cache Keys (0):" in result.output


def test_missing_origin_is_a_usage_error():
    result = run("--port", "3000")

    assert result.exit_code == 2
    assert "An origin URL is required" in result.output


def test_missing_listener_is_a_usage_error():
    result = run("--origin", "http://localhost:8000")

    assert result.exit_code == 2
    assert "Either a port or SSL must be enabled" in result.output


def test_invalid_origin_is_a_usage_error():
    result = run("--origin", "localhost:8000", "--port", "3000")

    assert result.exit_code == 2
    assert "Invalid origin URL" in result.output


def test_serve_receives_the_configuration(monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "serve", lambda config, log_level: calls.append((config, log_level)))

    result = run(
        "--port",
        "3000",
        "--origin",
        "http://localhost:8000",
        "--cache-backend",
        "SQLITE",
        "--default-ttl",
        "60",
        "--resource-id-pattern",
        "/[0-9]+/?$",
        "--ssl",
        "--log-level",
        "debug",
    )

    assert result.exit_code == 0, result.output
    [(config, log_level)] = calls
    assert log_level == "DEBUG"
    assert config.port == 3000
    assert config.ssl is True
    assert config.ssl_port == 8443
    assert config.cache_backend == "sqlite"
    assert config.default_ttl == 60
    assert config.resource_id_pattern == "/[0-9]+/?$"


def test_config_validation():
    ProxyConfig(origin="https://api.example.com", ssl=True).validate()
