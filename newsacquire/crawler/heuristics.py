"""Heuristic link discovery on a section or home page."""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Iterable, Optional

from . import AcquisitionError
from .patterns import iter_elements, strip_noise
from .strategy import ArticlePageLoader, StrategyResult
from .utils import is_public_url, normalize_url, resolve_url, same_site
from ..pipeline.url_filters import check_is_article

logger = logging.getLogger(__name__)

MAX_HEURISTIC_CANDIDATES = 20
MAX_CONTAINERS = 200

CONTAINER_KEYWORDS = ("article", "news", "post", "story", "entry")
ANCHOR_KEYWORDS = (
    "article-link",
    "news-link",
    "story-link",
    "post-title",
    "entry-title",
    "article-title",
    "headline",
    "story",
    "teaser",
    "card",
)

_HREF_RE = re.compile(r"\bhref\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
_ANCHOR_TAG_RE = re.compile(r"<a\b[^>]*>", re.IGNORECASE)
_HEADING_RE = re.compile(r"<(h[1-3])\b[^>]*>(.*?)</\1\s*>", re.IGNORECASE | re.DOTALL)


def _keyword_alternation(keywords: Iterable[str]) -> str:
    return "|".join(re.escape(keyword) for keyword in keywords)


def _container_opening(keywords: Iterable[str]) -> re.Pattern:
    # <article> always qualifies; <section>/<div> need an article-like class or id
    return re.compile(
        r"<(?P<tag>article|section|div)\b"
        r"(?:(?=[^>]*\b(?:class|id)\s*=\s*[\"'][^\"']*(?:" + _keyword_alternation(keywords) + r"))"
        r"|(?<=article))[^>]*>",
        re.IGNORECASE,
    )


def _keyword_anchor(keywords: Iterable[str]) -> re.Pattern:
    return re.compile(
        r"<a\b(?=[^>]*\b(?:class|id)\s*=\s*[\"'][^\"']*(?:" + _keyword_alternation(keywords) + r"))[^>]*>",
        re.IGNORECASE,
    )


def _hrefs(fragment: str) -> list[str]:
    found = []
    for tag in _ANCHOR_TAG_RE.findall(fragment):
        match = _HREF_RE.search(tag)
        if match:
            found.append(html_lib.unescape(match.group(1).strip()))
    return found


class HeuristicLinkFinder:
    """Unions container, heading and keyword-anchor links from a page."""

    def __init__(
        self,
        container_keywords: Iterable[str] = CONTAINER_KEYWORDS,
        anchor_keywords: Iterable[str] = ANCHOR_KEYWORDS,
        limit: int = MAX_HEURISTIC_CANDIDATES,
        article_patterns: Iterable[str] = (),
        category_patterns: Iterable[str] = (),
    ):
        self.container_pattern = _container_opening(container_keywords)
        self.anchor_pattern = _keyword_anchor(anchor_keywords)
        self.limit = limit
        self.article_patterns = tuple(article_patterns)
        self.category_patterns = tuple(category_patterns)

    def container_links(self, page: str) -> list[str]:
        links = []
        for count, (_, inner_start, inner_end, _) in enumerate(
            iter_elements(page, self.container_pattern)
        ):
            if count >= MAX_CONTAINERS:
                break
            links.extend(_hrefs(page[inner_start:inner_end]))
        return links

    @staticmethod
    def heading_links(page: str) -> list[str]:
        links = []
        for _, inner in _HEADING_RE.findall(page):
            links.extend(_hrefs(inner))
        return links

    def keyword_links(self, page: str) -> list[str]:
        links = []
        for tag in self.anchor_pattern.findall(page):
            match = _HREF_RE.search(tag)
            if match:
                links.append(html_lib.unescape(match.group(1).strip()))
        return links

    def find(self, page: str, base_url: str) -> list[str]:
        page = strip_noise(page)
        candidates: list[str] = []
        seen: set[str] = set()
        base_key = normalize_url(base_url)

        for href in self.container_links(page) + self.heading_links(page) + self.keyword_links(page):
            if not href or href.startswith("#"):
                continue
            url = resolve_url(href, base_url)
            key = normalize_url(url)
            if key in seen or key == base_key:
                continue
            if not is_public_url(url) or not same_site(url, base_url):
                continue
            if not check_is_article(url, self.article_patterns, self.category_patterns):
                continue
            seen.add(key)
            candidates.append(url)
            if len(candidates) >= self.limit:
                break
        return candidates


class HeuristicStrategy:
    name = "heuristic"

    def __init__(self, engine, loader: ArticlePageLoader, profile=None, finder: Optional[HeuristicLinkFinder] = None):
        self.engine = engine
        self.loader = loader
        self.profile = profile
        self.finder = finder or HeuristicLinkFinder(
            article_patterns=profile.article_patterns if profile is not None else (),
            category_patterns=profile.category_patterns if profile is not None else (),
        )

    def run(self, source, page_html: Optional[str] = None) -> StrategyResult:
        result = StrategyResult(self.name)
        base_url = source.base_url
        if page_html is None:
            try:
                page_html = self.engine.fetch_resilient(base_url, profile=self.profile)
            except AcquisitionError as exc:
                result.errors.append(str(exc))
                return result

        urls = self.finder.find(page_html, base_url)
        result.articles_found = len(urls)
        if not urls:
            result.errors.append("No candidate links discovered via heuristics")
            return result

        logger.info(f"🧭 {len(urls)} heuristic candidates on {base_url}")
        articles, errors = self.loader.load_many(
            urls, self.finder.limit, discovery_method="heuristic"
        )
        result.articles = articles
        result.errors.extend(errors)
        return result
