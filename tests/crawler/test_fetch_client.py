import pytest
import requests
from requests.cookies import cookiejar_from_dict
from requests.structures import CaseInsensitiveDict

from newsacquire.crawler import FetchTimeoutError, NetworkError, ValidationError
from newsacquire.crawler.fetch import FetchClient, is_fatal_network_message


class _FakeRequestsResponse:
    def __init__(
        self,
        status=200,
        chunks=(b"<html>hello</html>",),
        cookies=None,
        location=None,
        url="https://example.com/final",
    ):
        self.status_code = status
        self.url = url
        self.headers = CaseInsensitiveDict({"Server": "nginx"})
        if location:
            self.headers["Location"] = location
        self.cookies = cookiejar_from_dict(cookies or {})
        self.encoding = "utf-8"
        self.elapsed = None
        self._chunks = list(chunks)
        self.closed = False

    def iter_content(self, chunk_size=8192):
        yield from self._chunks

    def close(self):
        self.closed = True


def test_fetch_rejects_private_hosts_before_any_request(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(requests.Session, "request", fail)
    with pytest.raises(ValidationError):
        FetchClient().fetch("http://127.0.0.1/admin")


def test_fetch_returns_response_for_any_status(monkeypatch):
    captured = {}

    def fake_request(self, method, url, headers=None, timeout=None, stream=None, allow_redirects=None):
        captured.update(method=method, headers=headers, timeout=timeout, stream=stream)
        return _FakeRequestsResponse(status=403, cookies={"session": "abc"})

    monkeypatch.setattr(requests.Session, "request", fake_request)
    response = FetchClient().fetch(
        "https://example.com/page", headers={"User-Agent": "ua"}, timeout_ms=2500
    )

    assert response.status == 403
    assert not response.ok
    assert response.cookie_header() == "session=abc"
    assert response.text() == "<html>hello</html>"
    assert captured["timeout"] == 2.5
    assert captured["stream"] is True


def test_byte_range_sets_header_and_truncates_body(monkeypatch):
    captured = {}

    def fake_request(self, method, url, headers=None, **kwargs):
        captured["headers"] = headers
        return _FakeRequestsResponse(status=206, chunks=(b"a" * 10, b"b" * 10))

    monkeypatch.setattr(requests.Session, "request", fake_request)
    response = FetchClient().fetch("https://example.com/page", byte_range=15)

    assert captured["headers"]["Range"] == "bytes=0-14"
    assert response.text() == "a" * 10 + "b" * 5


def test_dns_failure_is_fatal_network_error(monkeypatch):
    def fake_request(self, *args, **kwargs):
        raise requests.exceptions.ConnectionError(
            "Failed to establish a new connection: [Errno -2] Name or service not known"
        )

    monkeypatch.setattr(requests.Session, "request", fake_request)
    with pytest.raises(NetworkError) as excinfo:
        FetchClient().fetch("https://no-such-host.example.com/")
    assert excinfo.value.fatal


def test_timeout_maps_to_fetch_timeout(monkeypatch):
    def fake_request(self, *args, **kwargs):
        raise requests.exceptions.ReadTimeout("read timed out")

    monkeypatch.setattr(requests.Session, "request", fake_request)
    with pytest.raises(FetchTimeoutError):
        FetchClient().fetch("https://example.com/slow", timeout_ms=10)


def test_sessions_are_reused_per_domain(monkeypatch):
    monkeypatch.setattr(
        requests.Session, "request", lambda self, *a, **k: _FakeRequestsResponse()
    )
    client = FetchClient()
    client.fetch("https://www.example.com/a")
    client.fetch("https://example.com/b")
    client.fetch("https://other.org/")
    assert sorted(client.domain_sessions) == ["example.com", "other.org"]
    client.close()
    assert client.domain_sessions == {}


def _scripted(monkeypatch, responses):
    calls = []
    queue = list(responses)

    def fake_request(self, method, url, headers=None, timeout=None, stream=None, allow_redirects=None):
        calls.append((method, url, dict(headers or {}), allow_redirects))
        return queue.pop(0)

    monkeypatch.setattr(requests.Session, "request", fake_request)
    return calls


def test_redirect_to_private_host_is_rejected(monkeypatch):
    hop = _FakeRequestsResponse(status=302, location="http://127.0.0.1/admin")
    calls = _scripted(monkeypatch, [hop])

    with pytest.raises(ValidationError):
        FetchClient().fetch("https://example.com/")

    assert len(calls) == 1
    assert calls[0][3] is False
    assert hop.closed


def test_cookies_set_on_redirect_hops_are_kept(monkeypatch):
    calls = _scripted(
        monkeypatch,
        [
            _FakeRequestsResponse(status=302, location="/home", cookies={"consent": "yes"}),
            _FakeRequestsResponse(url="https://example.com/home", cookies={"session": "abc"}),
        ],
    )

    response = FetchClient().fetch("https://example.com/")

    assert response.status == 200
    assert response.url == "https://example.com/home"
    assert response.cookies == {"consent": "yes", "session": "abc"}
    assert [url for _, url, _, _ in calls] == ["https://example.com/", "https://example.com/home"]


def test_cookie_header_not_forwarded_across_domains(monkeypatch):
    calls = _scripted(
        monkeypatch,
        [
            _FakeRequestsResponse(status=301, location="https://news.other.org/story"),
            _FakeRequestsResponse(url="https://news.other.org/story"),
        ],
    )

    FetchClient().fetch("https://example.com/story", headers={"Cookie": "a=1", "User-Agent": "ua"})

    assert calls[0][2]["Cookie"] == "a=1"
    assert "Cookie" not in calls[1][2]
    assert calls[1][2]["User-Agent"] == "ua"


def test_redirect_loop_is_bounded(monkeypatch):
    monkeypatch.setattr(
        requests.Session,
        "request",
        lambda self, *a, **k: _FakeRequestsResponse(status=302, location="/again"),
    )

    with pytest.raises(NetworkError, match="Too many redirects"):
        FetchClient().fetch("https://example.com/start")


@pytest.mark.parametrize(
    "message, fatal",
    [
        ("getaddrinfo failed", True),
        ("Connection refused", True),
        ("Connection reset by peer", False),
    ],
)
def test_fatal_network_message(message, fatal):
    assert is_fatal_network_message(message) is fatal
