from newsacquire.crawler import NetworkError
from newsacquire.crawler.cookies import CookieWarmer
from tests.helpers.fakes import FakeFetchClient, build_response


def test_warm_collects_cookies_from_origin(warmup_store):
    client = FakeFetchClient(
        {
            "https://www.example.co.uk/": build_response(
                200, "<html></html>", cookies={"sid": "1", "consent": "yes"}
            )
        }
    )
    warmer = CookieWarmer(client, warmup_store, timeout_ms=100)

    header = warmer.warm("https://www.example.co.uk/news/story?id=3")

    assert header == "sid=1; consent=yes"
    assert client.urls() == ["https://www.example.co.uk/"]
    sent = client.calls[0].headers
    assert "Cookie" not in sent
    assert sent["Accept-Language"].startswith("en-GB")
    assert warmup_store.get("example.co.uk").cookie_header == header


def test_warm_without_cookies_returns_none(warmup_store):
    client = FakeFetchClient({"https://example.com/": build_response(200, "<html></html>")})

    assert CookieWarmer(client, warmup_store).warm("https://example.com/a") is None
    assert warmup_store.get("example.com") is None


def test_warm_swallows_fetch_errors(warmup_store):
    client = FakeFetchClient({"https://example.com/": NetworkError("Connection reset")})

    assert CookieWarmer(client, warmup_store).warm("https://example.com/a") is None
