"""Sitemap discovery strategy.

Sitemaps are read with targeted regexes rather than an XML parser; news
sitemaps in the wild are frequently malformed (stray entities, missing
namespaces, truncated gzip output) and only ``loc`` and ``lastmod`` matter.
"""

from __future__ import annotations

import html
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urljoin

from . import AcquisitionError
from .retry import RetryPolicy
from .strategy import ArticlePageLoader, StrategyResult
from .utils import is_public_url, normalize_url, parse_date, same_site
from ..pipeline.url_filters import check_is_article
from ..utils.bot_protection import CONTENT_TEXT, CONTENT_XML

logger = logging.getLogger(__name__)

SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/news-sitemap.xml", "/sitemap-news.xml")
MAX_SITEMAPS_VISITED = 6
MAX_SITEMAP_QUEUE = 12
LASTMOD_MAX_AGE_DAYS = 30
MAX_ARTICLE_URLS = 20

SITEMAP_POLICY = RetryPolicy(max_retries=1, base_delay_ms=500, max_delay_ms=4000, exponential=False)

_SITEMAP_BLOCK_RE = re.compile(r"<(?:\w+:)?sitemap\b[^>]*>(.*?)</(?:\w+:)?sitemap\s*>", re.I | re.S)
_URL_BLOCK_RE = re.compile(r"<(?:\w+:)?url\b[^>]*>(.*?)</(?:\w+:)?url\s*>", re.I | re.S)
_LOC_RE = re.compile(r"<(?:\w+:)?loc\b[^>]*>(.*?)</(?:\w+:)?loc\s*>", re.I | re.S)
_LASTMOD_RE = re.compile(
    r"<(?:\w+:)?(?:lastmod|publication_date)\b[^>]*>(.*?)</(?:\w+:)?(?:lastmod|publication_date)\s*>",
    re.I | re.S,
)
_CDATA_RE = re.compile(r"^<!\[CDATA\[(.*)\]\]>$", re.S)
_ROBOTS_SITEMAP_RE = re.compile(r"^\s*sitemap\s*:\s*(\S+)", re.I | re.M)


@dataclass
class SitemapEntry:
    loc: str
    lastmod: Optional[datetime] = None


@dataclass
class ParsedSitemap:
    sitemaps: list[SitemapEntry] = field(default_factory=list)
    urls: list[SitemapEntry] = field(default_factory=list)


def _tag_text(pattern: re.Pattern, block: str) -> Optional[str]:
    match = pattern.search(block)
    if not match:
        return None
    value = match.group(1).strip()
    cdata = _CDATA_RE.match(value)
    if cdata:
        value = cdata.group(1).strip()
    return html.unescape(value) or None


def _entries(block_re: re.Pattern, xml: str) -> list[SitemapEntry]:
    entries = []
    for block in block_re.findall(xml):
        loc = _tag_text(_LOC_RE, block)
        if loc:
            entries.append(SitemapEntry(loc=loc, lastmod=parse_date(_tag_text(_LASTMOD_RE, block))))
    return entries


def parse_sitemap(xml: str) -> ParsedSitemap:
    """Split a sitemap body into nested sitemaps and page entries."""
    xml = xml or ""
    return ParsedSitemap(
        sitemaps=_entries(_SITEMAP_BLOCK_RE, xml),
        urls=_entries(_URL_BLOCK_RE, xml),
    )


def sitemaps_from_robots(robots_txt: str, base_url: str) -> list[str]:
    return [urljoin(base_url, value) for value in _ROBOTS_SITEMAP_RE.findall(robots_txt or "")]


def is_recent(lastmod: Optional[datetime], now: datetime, max_age_days: int = LASTMOD_MAX_AGE_DAYS) -> bool:
    """Entries without a lastmod are kept."""
    if lastmod is None:
        return True
    return now - lastmod <= timedelta(days=max_age_days)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SitemapStrategy:
    name = "sitemap"

    def __init__(
        self,
        engine,
        loader: ArticlePageLoader,
        profile=None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.engine = engine
        self.loader = loader
        self.profile = profile
        self.now = now

    def _fetch(self, url: str, content_kind: str = CONTENT_XML) -> str:
        return self.engine.fetch_resilient(
            url,
            policy=SITEMAP_POLICY,
            allow_alternate_routes=False,
            profile=self.profile,
            content_kind=content_kind,
        )

    def candidate_sitemaps(self, base_url: str) -> list[str]:
        candidates: list[str] = []
        try:
            robots = self._fetch(urljoin(base_url, "/robots.txt"), CONTENT_TEXT)
            candidates.extend(sitemaps_from_robots(robots, base_url))
        except AcquisitionError as exc:
            logger.debug(f"robots.txt unavailable for {base_url}: {exc}")
        candidates.extend(urljoin(base_url, path) for path in SITEMAP_PATHS)
        return candidates

    def _is_article(self, url: str) -> bool:
        article_patterns = self.profile.article_patterns if self.profile is not None else ()
        category_patterns = self.profile.category_patterns if self.profile is not None else ()
        return check_is_article(url, article_patterns, category_patterns)

    def discover_article_urls(self, base_url: str) -> tuple[list[str], list[str]]:
        """Breadth-first walk of the site's sitemaps.

        Returns ``(article_urls, errors)``; at most ``MAX_ARTICLE_URLS`` URLs.
        """
        errors: list[str] = []
        now = self.now()
        queue: deque[str] = deque()
        seen: set[str] = set()

        def enqueue(url: str) -> None:
            key = normalize_url(url)
            if key in seen or len(queue) >= MAX_SITEMAP_QUEUE or not is_public_url(url):
                return
            seen.add(key)
            queue.append(url)

        for candidate in self.candidate_sitemaps(base_url):
            enqueue(candidate)
        if not queue:
            return [], ["No sitemap candidates discovered"]

        article_urls: list[str] = []
        known: set[str] = set()
        visited = 0
        while queue and visited < MAX_SITEMAPS_VISITED and len(article_urls) < MAX_ARTICLE_URLS:
            sitemap_url = queue.popleft()
            visited += 1
            try:
                parsed = parse_sitemap(self._fetch(sitemap_url))
            except AcquisitionError as exc:
                errors.append(f"Sitemap error ({sitemap_url}): {exc}")
                continue

            for child in parsed.sitemaps:
                if is_recent(child.lastmod, now):
                    enqueue(urljoin(sitemap_url, child.loc))
                else:
                    logger.debug(f"Skipping stale sitemap {child.loc} (lastmod {child.lastmod})")

            for entry in parsed.urls:
                url = urljoin(sitemap_url, entry.loc)
                key = normalize_url(url)
                if key in known or not is_recent(entry.lastmod, now):
                    continue
                if not is_public_url(url) or not same_site(url, base_url) or not self._is_article(url):
                    continue
                known.add(key)
                article_urls.append(url)
                if len(article_urls) >= MAX_ARTICLE_URLS:
                    break

        logger.info(f"🗺️ {len(article_urls)} article URLs from {visited} sitemaps for {base_url}")
        if not article_urls and not errors:
            errors.append("No article URLs discovered via sitemaps")
        return article_urls, errors

    def run(self, source) -> StrategyResult:
        result = StrategyResult(self.name)
        urls, errors = self.discover_article_urls(source.base_url)
        result.errors.extend(errors)
        result.articles_found = len(urls)
        if urls:
            articles, extraction_errors = self.loader.load_many(
                urls, MAX_ARTICLE_URLS, discovery_method="sitemap"
            )
            result.articles = articles
            result.errors.extend(extraction_errors)
        return result
