from datetime import datetime
from zoneinfo import ZoneInfo

from time_machine import travel

from caching_proxy._utils import generate_http_date, human_readable_size, match_keys, pattern_to_regex, strip_query


def test_pattern_to_regex():
    assert pattern_to_regex("GET:*").match("GET:http://localhost/users")
    assert pattern_to_regex("user:?").match("user:1")
    assert not pattern_to_regex("user:?").match("user:12")
    assert not pattern_to_regex("a.b").match("axb")
    assert pattern_to_regex("*").match("")


def test_match_keys():
    keys = ["GET:http://h/users", "GET:http://h/users/1", "HEAD:http://h/users"]

    assert match_keys("GET:http://h/users*", keys) == {"GET:http://h/users", "GET:http://h/users/1"}
    assert match_keys("GET:http://h/users", keys) == {"GET:http://h/users"}


def test_strip_query():
    assert strip_query("http://h/users?page=2#top") == "http://h/users"
    assert strip_query("http://h/users") == "http://h/users"


def test_human_readable_size():
    assert human_readable_size(0) == "0.0 B"
    assert human_readable_size(1536) == "1.5 KB"
    assert human_readable_size(5 * 1024 * 1024) == "5.0 MB"


@travel(datetime(2024, 1, 1, 0, 0, 0, tzinfo=ZoneInfo("UTC")), tick=False)
def test_generate_http_date():
    assert generate_http_date() == "Mon, 01 Jan 2024 00:00:00 GMT"
