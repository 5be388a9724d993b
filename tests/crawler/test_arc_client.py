import json
from urllib.parse import parse_qs, urlparse

import pytest

from newsacquire.crawler import ArcApiError, NetworkError
from newsacquire.crawler.arc_client import (
    ARC_ENDPOINT,
    ArcClient,
    PlatformApiStrategy,
    arc_article_to_data,
)
from newsacquire.crawler.profiles import DomainProfileResolver
from newsacquire.models.articles import SourceRecord
from tests.helpers.fakes import build_response

HOST = "www.theargus.co.uk"


def _story(slug, paragraphs=3, **extra):
    story = {
        "_id": f"ID-{slug}",
        "headlines": {"basic": slug.replace("-", " ").title()},
        "websites": {"theargus": {"website_url": f"/news/{slug}/"}},
        "publish_date": "2025-06-01T09:00:00Z",
        "credits": {"by": [{"name": "Jane Reporter"}, {"name": "Jane Reporter"}]},
        "promo_items": {"basic": {"url": "/resources/images/lead.jpg"}},
        "content_elements": [
            {"type": "text", "content": f"Paragraph {n} about the Brighton seafront."}
            for n in range(paragraphs)
        ],
    }
    story.update(extra)
    return story


class ArcFake:
    """Answers the section endpoint by ``section`` query parameter."""

    def __init__(self, sections):
        self.sections = sections
        self.requested = []

    def fetch(self, url, method="GET", headers=None, timeout_ms=None, byte_range=None):
        parsed = urlparse(url)
        assert parsed.path == ARC_ENDPOINT
        query = parse_qs(parsed.query)
        section = query["section"][0]
        self.requested.append(section)
        self.headers = headers
        answer = self.sections.get(section, (404, '{"error": "not found"}'))
        if isinstance(answer, Exception):
            raise answer
        status, body = answer
        return build_response(status, body, url=url)


def _payload(*stories):
    return 200, json.dumps({"content_elements": list(stories)})


def test_fetch_section_transforms_stories():
    fake = ArcFake({"/news": _payload(_story("pier-reopens"))})
    client = ArcClient(fake, HOST, "theargus")

    [article] = client.fetch_section("/news")

    assert article.url == "https://www.theargus.co.uk/news/pier-reopens/"
    assert article.title == "Pier Reopens"
    assert article.author == "Jane Reporter"
    assert article.image_url == "https://www.theargus.co.uk/resources/images/lead.jpg"
    assert article.body_text.count("\n\n") == 2
    assert fake.headers["x-arc-site"] == "theargus"


def test_section_url_clamps_page_size():
    url = ArcClient(None, HOST, "theargus").section_url("/news", size=500, offset=-3)
    query = parse_qs(urlparse(url).query)
    assert query["size"] == ["50"]
    assert query["from"] == ["0"]
    assert "websites.theargus.website_url" in query["included_fields"]


def test_premium_and_incomplete_stories_are_skipped():
    fake = ArcFake(
        {
            "/news": _payload(
                _story("free-story"),
                _story("paid-story", access={"premium": True}),
                _story("no-title", headlines={}),
                _story("empty-story", paragraphs=0),
                "not-a-dict",
            )
        }
    )

    articles = ArcClient(fake, HOST, "theargus").fetch_section("/news")

    assert [a.title for a in articles] == ["Free Story"]


def test_404_walks_fallback_sections_in_order():
    fake = ArcFake({"/": _payload(_story("front-page"))})
    client = ArcClient(fake, HOST, "theargus")

    articles, resolved = client.fetch_with_fallbacks("/local-news", fallbacks=["news", "/"])

    assert resolved == "/"
    assert fake.requested == ["/local-news", "local-news", "/news", "/"]
    assert articles[0].title == "Front Page"


def test_non_404_error_is_raised_immediately():
    fake = ArcFake({"/news": (500, "boom")})

    with pytest.raises(ArcApiError) as excinfo:
        ArcClient(fake, HOST, "theargus").fetch_with_fallbacks("/news", fallbacks=["sport"])

    assert excinfo.value.status == 500
    assert fake.requested == ["/news"]


def test_invalid_json_is_an_api_error():
    fake = ArcFake({"/news": (200, "<html>")})
    with pytest.raises(ArcApiError):
        ArcClient(fake, HOST, "theargus").fetch_section("/news")


def test_render_content_handles_element_types():
    client = ArcClient(None, HOST, "theargus")
    html, text = client.render_content(
        [
            {"type": "header", "level": 9, "content": "Background"},
            {"type": "list", "subtype": "ordered", "items": ["first", {"content": "<b>second</b>"}]},
            {"type": "quote", "content": "We are delighted"},
            {"type": "oembed", "embed_html": "<iframe src='x'></iframe>"},
            {"type": "image", "url": "/img.jpg", "caption": "Crowds <i>gather</i>"},
            {"type": "divider"},
        ]
    )

    assert "<h2>Background</h2>" in html
    assert "<ol><li>first</li><li><b>second</b></li></ol>" in html
    assert "<blockquote>We are delighted</blockquote>" in html
    assert "<iframe" in html
    assert 'src="https://www.theargus.co.uk/img.jpg"' in html
    assert text.split("\n\n") == ["Background", "first\nsecond", "We are delighted", "Crowds gather"]


def test_arc_article_to_data_metadata():
    article = ArcClient(None, HOST, "theargus").transform_story(_story("pier-reopens"), "/news")
    data = arc_article_to_data(article)

    assert data.import_metadata["extraction_method"] == "newsquest_arc"
    assert data.import_metadata["arc_story_id"] == "ID-pier-reopens"
    assert data.published_at == "2025-06-01T09:00:00Z"


def _platform(fake, **source_kwargs):
    profile = DomainProfileResolver().resolve(f"https://{HOST}/")
    source = SourceRecord(id="argus", feed_url=f"https://{HOST}/news/rss/", homepage_url=f"https://{HOST}/", **source_kwargs)
    return PlatformApiStrategy(fake, profile), source


def test_platform_strategy_applies_only_to_newsquest_profiles():
    strategy, _ = _platform(ArcFake({}))
    assert strategy.applies()
    assert not PlatformApiStrategy(None, DomainProfileResolver().resolve("https://example.com/")).applies()


def test_platform_strategy_uses_configured_section():
    fake = ArcFake({"/news/brighton": _payload(_story("pier-reopens"), _story("bus-lanes"))})
    strategy, source = _platform(fake, scraping_config={"section": "/news/brighton"})

    result = strategy.run(source)

    assert result.articles_found == 2
    assert len(result.articles) == 2
    assert result.source_updates["resolved_section"] == "/news/brighton"


def test_platform_strategy_reports_api_and_network_errors():
    strategy, source = _platform(ArcFake({"/": (503, "down")}))
    result = strategy.run(source)
    assert result.source_updates["arc_status"] == 503
    assert result.errors[0].startswith("Arc API error (status 503)")

    strategy, source = _platform(ArcFake({"/": NetworkError("Connection reset")}))
    result = strategy.run(source)
    assert result.errors == ["Arc API request failed: Connection reset"]
