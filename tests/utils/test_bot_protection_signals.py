"""Tests for bot-protection fingerprinting."""

import pytest

from newsacquire.utils.bot_protection import (
    CONTENT_PAGE,
    CONTENT_TEXT,
    CONTENT_XML,
    detect_blocking_server,
    detect_bot_protection,
    is_valid_content,
    is_waf_server,
    looks_like_challenge_page,
)

REAL_PAGE = "<html><head><title>Local news</title></head><body>" + "<p>Story text.</p>" * 60 + "</body></html>"


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"CF-RAY": "8a1"}, "cloudflare"),
        ({"X-DataDome": "protected"}, "datadome"),
        ({"X-Iinfo": "1-2-3"}, "incapsula"),
        ({"Server": "AkamaiGHost"}, "akamai"),
        ({"Via": "1.1 varnish, 1.1 Fastly"}, "fastly"),
        ({"Server": "nginx"}, "nginx"),
        ({}, None),
        (None, None),
    ],
)
def test_detect_blocking_server(headers, expected):
    assert detect_blocking_server(headers) == expected


def test_waf_servers():
    assert is_waf_server("Cloudflare")
    assert not is_waf_server("nginx")
    assert not is_waf_server(None)


@pytest.mark.parametrize(
    "body,status,expected",
    [
        ("<div id='px-captcha'></div>", 403, "perimeterx"),
        ("<script>window.ddjskey='x'</script>", 403, "datadome"),
        ("<html><title>Attention Required! | Cloudflare</title></html>", 403, "cloudflare"),
        ("<html><title>Access Denied</title></html>", 403, "bot_protection"),
        ("Forbidden", 403, "suspicious_short_response"),
        ("Forbidden", 404, None),
        (REAL_PAGE, 200, None),
        ("", 403, None),
    ],
)
def test_detect_bot_protection(body, status, expected):
    assert detect_bot_protection(body, status) == expected


def test_long_pages_only_checked_by_title():
    body = (
        "<html><head><title>Local news</title></head><body>"
        + "<p>Drivers saw access denied signs at the pier car park.</p>" * 120
        + "</body></html>"
    )
    assert len(body) > 5000
    assert not looks_like_challenge_page(body)
    assert looks_like_challenge_page(body.replace("Local news", "Security check"))


@pytest.mark.parametrize(
    "body,expected",
    [
        (REAL_PAGE, True),
        ("<?xml version='1.0'?><rss>" + "<item/>" * 100 + "</rss>", True),
        ('{"content_elements": [' + '"x",' * 200 + '"x"]}', True),
        ("<html>tiny</html>", False),
        ("plain text " * 100, False),
        ("<html><title>Verify you are human</title>" + "x" * 600, False),
        (None, False),
    ],
)
def test_is_valid_content(body, expected):
    assert is_valid_content(body) is expected


@pytest.mark.parametrize(
    "body,kind,expected",
    [
        ('<?xml version="1.0"?><urlset><url><loc>https://a.example/x</loc></url></urlset>', CONTENT_XML, True),
        ('<rss version="2.0"><channel><title>News</title></channel></rss>', CONTENT_XML, True),
        ("<html><title>Security check</title><rss></html>", CONTENT_XML, False),
        ("<html><body>No feed here</body></html>", CONTENT_XML, False),
        ("User-agent: *\nSitemap: https://example.com/s.xml", CONTENT_TEXT, True),
        ("User-agent: *\nDisallow: /admin", CONTENT_TEXT, True),
        ("<html><title>Access Denied</title></html>", CONTENT_TEXT, False),
        ("   ", CONTENT_TEXT, False),
        ("User-agent: *\nSitemap: https://example.com/s.xml", CONTENT_PAGE, False),
    ],
)
def test_is_valid_content_by_kind(body, kind, expected):
    assert is_valid_content(body, kind) is expected
