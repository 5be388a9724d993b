from datetime import timezone

import pytest

from newsacquire.crawler import ValidationError
from newsacquire.crawler.utils import (
    country_for_host,
    is_government_domain,
    is_public_url,
    normalize_domain,
    normalize_url,
    origin_of,
    parse_date,
    same_site,
    validate_public_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.Example.com/news/story/?utm_source=x&fbclid=abc#top",
        "http://example.com/news/story",
        "//example.com/news/story/",
        "https://example.com:443/news/story?ref=home",
        "https://example.com/search?q=brighton&page=2&utm_medium=social",
    ],
)
def test_normalize_url_is_idempotent(url):
    once = normalize_url(url)
    assert normalize_url(once) == once


def test_normalize_url_strips_protocol_www_tracking_and_slash():
    assert (
        normalize_url("https://www.example.com/news/story/?utm_source=x&id=7&gclid=1#frag")
        == "example.com/news/story?id=7"
    )


def test_normalize_url_keeps_non_default_port():
    assert normalize_url("http://example.com:8080/a/") == "example.com:8080/a"


def test_normalize_domain_handles_hosts_and_urls():
    assert normalize_domain("https://user:pw@WWW.Example.co.uk:8443/path") == "example.co.uk"
    assert normalize_domain("news.example.com") == "news.example.com"
    assert normalize_domain("") == ""


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost/admin",
        "http://127.0.0.1/",
        "http://10.1.2.3/feed",
        "http://192.168.0.10/",
        "http://172.16.5.4/",
        "http://169.254.169.254/latest/meta-data/",
        "http://[::1]/",
        "http://[::ffff:127.0.0.1]/",
        "http://2130706433/",
        "http://printer.local/",
        "ftp://example.com/file",
        "file:///etc/passwd",
        "javascript:alert(1)",
        "",
        None,
    ],
)
def test_validate_public_url_rejects_non_public_targets(url):
    with pytest.raises(ValidationError):
        validate_public_url(url)
    assert not is_public_url(url)


def test_validate_public_url_accepts_public_hosts():
    assert validate_public_url("https://example.co.uk/news") == "https://example.co.uk/news"
    assert is_public_url("http://8.8.8.8/")


def test_same_site_accepts_subdomains_only():
    assert same_site("https://news.example.com/a", "https://www.example.com/")
    assert not same_site("https://example.com.evil.org/a", "https://example.com/")


def test_origin_of_keeps_scheme_and_host():
    assert origin_of("https://www.example.com/a/b?c=1") == "https://www.example.com/"


def test_government_and_country_detection():
    assert is_government_domain("https://www.brighton-hove.gov.uk/news")
    assert is_government_domain("https://www.sussex.police.uk/")
    assert not is_government_domain("https://www.theargus.co.uk/")
    assert country_for_host("https://www.theargus.co.uk/") == "gb"
    assert country_for_host("https://example.com/") is None


def test_parse_date_returns_aware_utc():
    parsed = parse_date("Mon, 02 Jun 2025 09:30:00 BST")
    assert parsed.tzinfo is not None
    assert parsed.astimezone(timezone.utc).hour == 8
    assert parse_date("2025-06-01").tzinfo == timezone.utc
    assert parse_date("not a date") is None
    assert parse_date("") is None
