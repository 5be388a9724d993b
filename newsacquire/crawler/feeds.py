"""Feed discovery strategy (RSS/Atom via feedparser)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from urllib.parse import urljoin

import feedparser

from . import AcquisitionError
from .patterns import fragment_text
from .strategy import ArticlePageLoader, StrategyResult
from .retry import RetryPolicy
from .utils import count_words, is_government_domain, is_public_url, normalize_url, to_iso
from ..models.articles import ArticleData
from ..utils.bot_protection import CONTENT_XML
from ..utils.content_scoring import calculate_quality_score

logger = logging.getLogger(__name__)

MAX_FEED_ITEMS = 50

COMMON_FEED_PATHS = (
    "/feed",
    "/rss",
    "/rss.xml",
    "/feed.xml",
    "/atom.xml",
    "/index.xml",
    "/news/rss",
    "/news/feed",
    "/feeds/all",
    "/rss/all",
)

GOVERNMENT_FEED_PATHS = (
    "/news.rss",
    "/government/announcements.atom",
    "/news/feed",
    "/search/news-and-communications.atom",
    "/feeds/news.rss",
    "/latest/feed",
)

TRUNCATION_MARKERS = ("[&#8230;]", "[…]", "[...]", "…", "...", "read more", "continue reading")

SHORT_DESCRIPTION_WORDS = 75
REEXTRACT_MIN_WORDS = 150
REEXTRACT_LENGTH_RATIO = 1.8

_FEED_LINK_RE = re.compile(
    r"<link\b(?=[^>]*\btype\s*=\s*[\"']application/(?:rss|atom)\+xml[\"'])[^>]*>", re.IGNORECASE
)
_HREF_RE = re.compile(r"\bhref\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)


@dataclass
class FeedItem:
    title: str
    link: str
    description: str
    author: Optional[str] = None
    published_at: Optional[str] = None


def _safe_struct_time_to_iso(value: Any) -> Optional[str]:
    """feedparser ``*_parsed`` struct_time (always UTC) to ISO-8601."""
    if not value:
        return None
    try:
        fields = list(value)[:6]
        if len(fields) < 6 or not all(isinstance(x, int) for x in fields):
            return None
        return datetime(*fields, tzinfo=timezone.utc).isoformat()
    except (TypeError, ValueError):
        return None


def _coerce_text(value: Any) -> str:
    if isinstance(value, list):
        return " ".join(str(part) for part in value if part).strip()
    return str(value or "").strip()


def _entry_description(entry: Mapping[str, Any]) -> str:
    content = entry.get("content")
    if isinstance(content, list) and content:
        first = content[0]
        value = first.get("value") if isinstance(first, Mapping) else None
        if value and str(value).strip():
            return str(value)
    return _coerce_text(entry.get("summary") or entry.get("description"))


def parse_feed_item(entry: Mapping[str, Any], feed_url: str) -> Optional[FeedItem]:
    """Normalize one feedparser entry.

    Returns ``None`` when title, link or description is missing.
    """
    title = fragment_text(_coerce_text(entry.get("title")))
    link = _coerce_text(entry.get("link"))
    if not title or not link:
        return None

    description = fragment_text(_entry_description(entry))
    if not description:
        return None

    link = urljoin(feed_url, link)
    if not is_public_url(link):
        return None

    published = _safe_struct_time_to_iso(
        entry.get("published_parsed") or entry.get("updated_parsed")
    ) or to_iso(entry.get("published") or entry.get("updated"))

    author = _coerce_text(entry.get("author")) or None
    return FeedItem(
        title=title,
        link=link,
        description=description,
        author=author,
        published_at=published,
    )


def parse_feed(content, feed_url: str) -> tuple[list[Optional[FeedItem]], int]:
    """Parse a feed body into at most ``MAX_FEED_ITEMS`` items.

    Returns ``(items, total_entries)``. An entry that cannot be used is a
    ``None`` slot; it never stops the entries after it.

    Raises:
        ValueError: the body is not a recognisable RSS/Atom feed.
    """
    if isinstance(content, str):
        # Bytes are always parsed as a document, never opened as a URL or path
        content = content.encode("utf-8")
    parsed = feedparser.parse(content)
    entries = parsed.get("entries") or []
    if not entries and not parsed.get("version"):
        reason = parsed.get("bozo_exception") or "no feed entries"
        raise ValueError(f"Not a valid feed: {reason}")

    items: list[Optional[FeedItem]] = []
    for entry in entries[:MAX_FEED_ITEMS]:
        try:
            items.append(parse_feed_item(entry, feed_url))
        except (TypeError, ValueError, AttributeError) as exc:
            logger.debug(f"RSS item parsing error in {feed_url}: {exc}")
            items.append(None)
    return items, len(entries)


def discover_feed_links(html: str, base_url: str) -> list[str]:
    """``<link type="application/rss+xml|atom+xml">`` targets on a page."""
    links: list[str] = []
    for tag in _FEED_LINK_RE.findall(html or ""):
        href = _HREF_RE.search(tag)
        if not href:
            continue
        url = urljoin(base_url, href.group(1).strip())
        if is_public_url(url) and url not in links:
            links.append(url)
    return links


def has_truncation_marker(text: str) -> bool:
    stripped = (text or "").strip().lower()
    return any(marker in stripped[-40:] for marker in TRUNCATION_MARKERS)


def needs_reextraction(description: str) -> bool:
    return count_words(description) < SHORT_DESCRIPTION_WORDS or has_truncation_marker(description)


def choose_body(description: str, extracted: str) -> tuple[str, bool]:
    """Pick between a feed description and re-extracted page text.

    Returns ``(body, used_extraction)``.
    """
    extracted_words = count_words(extracted)
    if not extracted_words:
        return description, False

    description_words = count_words(description)
    if (
        has_truncation_marker(description)
        or extracted_words >= description_words * REEXTRACT_LENGTH_RATIO
        or extracted_words >= REEXTRACT_MIN_WORDS
    ):
        return extracted, True
    return description, False


class FeedStrategy:
    name = "feed"

    def __init__(self, engine, loader: ArticlePageLoader, profile=None):
        self.engine = engine
        self.loader = loader
        self.profile = profile

    def candidate_feed_urls(self, source, homepage_html: Optional[str] = None) -> list[str]:
        base = source.base_url
        candidates = [source.feed_url]
        if homepage_html:
            candidates.extend(discover_feed_links(homepage_html, base))
        candidates.extend(urljoin(base, path) for path in COMMON_FEED_PATHS)
        if is_government_domain(base):
            candidates.extend(urljoin(base, path) for path in GOVERNMENT_FEED_PATHS)

        seen: set[str] = set()
        ordered = []
        for url in candidates:
            key = normalize_url(url)
            if url and key not in seen and is_public_url(url):
                seen.add(key)
                ordered.append(url)
        return ordered

    def run(self, source, homepage_html: Optional[str] = None) -> StrategyResult:
        result = StrategyResult(self.name)
        restricted = None

        for feed_url in self.candidate_feed_urls(source, homepage_html):
            configured = feed_url == source.feed_url
            try:
                if configured:
                    body = self.engine.fetch_resilient(
                        feed_url, profile=self.profile, content_kind=CONTENT_XML
                    )
                else:
                    if restricted is None:
                        restricted = RetryPolicy.from_settings(self.engine.settings).restricted()
                    body = self.engine.fetch_resilient(
                        feed_url,
                        policy=restricted,
                        allow_alternate_routes=False,
                        profile=self.profile,
                        content_kind=CONTENT_XML,
                    )
                items, total = parse_feed(body, feed_url)
            except (AcquisitionError, ValueError) as exc:
                if configured:
                    result.errors.append(f"Feed error ({feed_url}): {exc}")
                logger.debug(f"Feed candidate {feed_url} failed: {exc}")
                continue

            articles = self._articles_from_items(items, feed_url, configured, result.errors)
            result.articles_found = total
            if articles:
                result.articles = articles
                logger.info(f"📡 {len(articles)} articles from feed {feed_url}")
                if not configured:
                    result.source_updates["discovered_feed_url"] = feed_url
                return result

        if not result.errors:
            result.errors.append("No usable feed found")
        return result

    def _articles_from_items(self, items, feed_url: str, configured: bool, errors: list[str]):
        articles = []
        for item in items:
            if item is None:
                continue
            try:
                articles.append(self._article_for(item, feed_url, configured))
            except AcquisitionError as exc:
                errors.append(f"RSS item parsing error: {exc}")
        return articles

    def _article_for(self, item: FeedItem, feed_url: str, configured: bool) -> ArticleData:
        method = "rss_fallback" if configured else "enhanced_rss"
        article = None

        if needs_reextraction(item.description):
            try:
                extracted = self.loader.extract(item.link)
            except AcquisitionError as exc:
                logger.debug(f"Re-extraction failed for {item.link}: {exc}")
            else:
                _, used = choose_body(item.description, extracted.body)
                if used:
                    method = "rss_reextracted"
                    article = extracted.to_article(item.link)

        if article is None:
            article = ArticleData(
                title=item.title,
                body=item.description,
                source_url=item.link,
                content_quality_score=calculate_quality_score(
                    item.description, item.title, item.author, item.published_at
                ),
            )

        article.title = item.title or article.title
        article.author = item.author or article.author
        article.published_at = item.published_at or article.published_at
        article.import_metadata.update(
            {
                "extraction_method": method,
                "feed_url": feed_url,
                "rss_description": item.description[:1000],
            }
        )
        return article
