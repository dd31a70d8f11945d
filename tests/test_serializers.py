import json
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from inline_snapshot import snapshot
from time_machine import travel

from caching_proxy import CacheEntry, Headers, JSONSerializer, MalformedCachedData


@travel(datetime(2024, 1, 1, 0, 0, 0, tzinfo=ZoneInfo("UTC")), tick=False)
def test_serializer_dumps():
    entry = CacheEntry(
        status=200,
        headers=Headers([("Content-Type", "application/json"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]),
        body=b'{"id": 1}',
    )

    assert json.loads(JSONSerializer().dumps(entry)) == snapshot(
        {
            "value": {
                "status": 200,
                "headers": [
                    ["Content-Type", "application/json"],
                    ["Set-Cookie", "a=1"],
                    ["Set-Cookie", "b=2"],
                ],
                "body": "eyJpZCI6IDF9",
            },
            "stored_at": 1704067200.0,
            "version": "1.0",
        }
    )


def test_serializer_loads():
    raw = json.dumps(
        {
            "value": {"status": 404, "headers": [["X-Test", "1"]], "body": "bm90IGZvdW5k"},
            "stored_at": 0,
            "version": "1.0",
        }
    )

    entry = JSONSerializer().loads(raw)

    assert entry.status == 404
    assert entry.headers == Headers({"X-Test": "1"})
    assert entry.body == b"not found"


def test_serializer_keeps_binary_bodies():
    serializer = JSONSerializer()
    body = bytes(range(256))

    entry = serializer.loads(serializer.dumps(CacheEntry(status=200, body=body)))

    assert entry.body == body


def test_serializer_accepts_unwrapped_entries():
    entry = JSONSerializer().loads('{"status": 204, "headers": [], "body": ""}')

    assert entry.status == 204
    assert entry.body == b""


@pytest.mark.parametrize(
    "data",
    [
        "not json",
        "[]",
        '{"value": {"status": 200, "headers": []}}',
        '{"value": {"status": 200, "headers": [], "body": "***"}}',
        '{"value": {"status": "ok", "headers": [], "body": ""}}',
    ],
)
def test_serializer_rejects_malformed_data(data):
    with pytest.raises(MalformedCachedData):
        JSONSerializer().loads(data)
