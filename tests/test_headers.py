from caching_proxy import Headers, extract_ttl, parse_cache_control, strip_hop_by_hop


def test_headers_are_case_insensitive():
    headers = Headers({"Content-Type": "text/plain"})

    assert headers["content-type"] == "text/plain"
    assert "CONTENT-TYPE" in headers
    assert list(headers) == ["Content-Type"]


def test_repeated_fields_are_joined():
    headers = Headers([("Vary", "Accept"), ("vary", "Accept-Encoding")])

    assert headers["Vary"] == "Accept, Accept-Encoding"
    assert headers.get_list("VARY") == ["Accept", "Accept-Encoding"]
    assert headers.multi_items() == [("Vary", "Accept"), ("Vary", "Accept-Encoding")]


def test_setitem_replaces_all_values():
    headers = Headers([("X-Cache", "MISS"), ("x-cache", "HIT")])

    headers["X-Cache"] = "BYPASS"

    assert headers.multi_items() == [("X-Cache", "BYPASS")]


def test_headers_equality_ignores_case_and_order():
    assert Headers({"A": "1", "B": "2"}) == Headers([("b", "2"), ("a", "1")])
    assert Headers({"A": "1"}) != Headers({"A": "2"})


def test_strip_hop_by_hop():
    headers = Headers(
        {
            "Connection": "keep-alive",
            "Keep-Alive": "timeout=5",
            "Transfer-Encoding": "chunked",
            "upgrade": "websocket",
            "Proxy-Authorization": "Basic Zm9vOmJhcg==",
            "TE": "trailers",
            "Trailers": "Expires",
            "Proxy-Authenticate": "Basic",
            "Content-Type": "application/json",
            "Authorization": "Bearer token",
        }
    )

    stripped = strip_hop_by_hop(headers)

    assert stripped == Headers({"Content-Type": "application/json", "Authorization": "Bearer token"})
    assert "Connection" in headers


def test_strip_hop_by_hop_removes_fields_named_in_connection():
    headers = Headers({"Connection": "close, X-Trace", "X-Trace": "abc", "Accept": "*/*"})

    assert strip_hop_by_hop(headers) == Headers({"Accept": "*/*"})


def test_strip_hop_by_hop_extra_names():
    headers = Headers({"Host": "localhost:3000", "Accept": "*/*"})

    assert strip_hop_by_hop(headers, extra=("host",)) == Headers({"Accept": "*/*"})


def test_parse_cache_control():
    assert parse_cache_control(" Public , MAX-AGE=60,no-cache ") == {"public", "max-age=60", "no-cache"}
    assert parse_cache_control("") == frozenset()
    assert parse_cache_control(None) == frozenset()
    assert parse_cache_control(" , ,") == frozenset()


def test_extract_ttl():
    assert extract_ttl(parse_cache_control("public, max-age=5")) == 5
    assert extract_ttl(parse_cache_control("max-age=0")) == 0
    assert extract_ttl(parse_cache_control("max-age=abc")) is None
    assert extract_ttl(parse_cache_control("max-age=-1")) is None
    assert extract_ttl(parse_cache_control("no-cache")) is None
