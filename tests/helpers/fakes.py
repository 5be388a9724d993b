"""Network-free stand-ins shared by the test suite."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Optional

from requests.structures import CaseInsensitiveDict

from newsacquire.config import Settings
from newsacquire.crawler import http_error_for_status
from newsacquire.crawler.fetch import BodyReader, FetchResponse

FIXED_NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)
FIXED_EPOCH = FIXED_NOW.timestamp()


def build_response(
    status: int = 200,
    body: str | bytes = "",
    url: str = "https://example.com/",
    headers: Optional[dict] = None,
    cookies: Optional[dict] = None,
) -> FetchResponse:
    raw = body.encode("utf-8") if isinstance(body, str) else body
    stream = SimpleNamespace(
        iter_content=lambda chunk_size=8192: iter([raw]),
        encoding="utf-8",
        close=lambda: None,
    )
    return FetchResponse(
        status=status,
        url=url,
        headers=CaseInsensitiveDict(headers or {}),
        cookies=dict(cookies or {}),
        body=BodyReader(stream),
    )


class FakeFetchClient:
    """Scripted single-attempt client.

    ``routes`` maps a URL (or ``(METHOD, url)``) to a response, an
    exception, a list of those consumed in order (the last one repeats),
    or a callable ``(url, method, headers, byte_range) -> response``.
    Unrouted URLs answer 404.
    """

    def __init__(self, routes: Optional[dict] = None):
        self.routes = dict(routes or {})
        self.calls: list[SimpleNamespace] = []

    def _next(self, key):
        scripted = self.routes[key]
        if isinstance(scripted, list):
            item = scripted[0]
            if len(scripted) > 1:
                scripted.pop(0)
            return item
        return scripted

    def fetch(self, url, method="GET", headers=None, timeout_ms=30000, byte_range=None):
        headers = dict(headers or {})
        self.calls.append(
            SimpleNamespace(url=url, method=method, headers=headers, byte_range=byte_range)
        )
        for key in ((method, url), url):
            if key in self.routes:
                scripted = self._next(key)
                break
        else:
            return build_response(404, "not found", url=url)

        if isinstance(scripted, BaseException):
            raise scripted
        if callable(scripted) and not isinstance(scripted, FetchResponse):
            return scripted(url, method, headers, byte_range)
        return scripted

    def urls(self, method: Optional[str] = None) -> list[str]:
        return [call.url for call in self.calls if method is None or call.method == method]

    def close(self) -> None:
        pass


class StubEngine:
    """Stands in for ``RetryEngine``: serves whole bodies by URL."""

    def __init__(self, pages: Optional[dict] = None, settings: Optional[Settings] = None):
        self.pages = dict(pages or {})
        self.settings = settings or Settings()
        self.fetch_client = FakeFetchClient()
        self.calls: list[SimpleNamespace] = []

    def fetch_resilient(self, url, policy=None, allow_alternate_routes=True, **kwargs):
        self.calls.append(
            SimpleNamespace(url=url, policy=policy, allow_alternate_routes=allow_alternate_routes)
        )
        page = self.pages.get(url)
        if page is None:
            raise http_error_for_status(404, url)
        if isinstance(page, BaseException):
            raise page
        return page

    def fetched(self) -> list[str]:
        return [call.url for call in self.calls]


DEFAULT_PARAGRAPH = (
    "Paragraph {index} of the report explains how residents in Brighton "
    "reacted to the proposal at the packed town hall meeting this week, "
    "with several speakers raising concerns about parking and deliveries."
)


def article_html(
    title: str = "Council approves new seafront cycle lane",
    paragraphs: Optional[list[str]] = None,
    published: Optional[str] = "2025-06-01T09:00:00Z",
    author: Optional[str] = "Jane Reporter",
) -> str:
    """A realistic single-article page the extractor handles."""
    if paragraphs is None:
        paragraphs = [DEFAULT_PARAGRAPH.format(index=index) for index in range(1, 8)]
    ld = {"@context": "https://schema.org", "@type": "NewsArticle", "headline": title}
    if published:
        ld["datePublished"] = published
    if author:
        ld["author"] = {"@type": "Person", "name": author}
    body = "".join(f"<p>{text}</p>" for text in paragraphs)
    return (
        "<!DOCTYPE html><html><head>"
        f"<title>{title} | Example News</title>"
        f'<script type="application/ld+json">{json.dumps(ld)}</script>'
        '</head><body><header><nav><a href="/">Home</a></nav></header>'
        f"<article><h1>{title}</h1>{body}</article>"
        "<footer>Copyright Example News</footer></body></html>"
    )


def padded_page(inner: str) -> str:
    """Wrap ``inner`` so the page clears the minimum content length."""
    filler = "<!-- " + ("layout " * 120) + "-->"
    return f"<html><head><title>Example</title>{filler}</head><body>{inner}</body></html>"
