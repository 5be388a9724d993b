"""Turns one fetched HTML document into clean article fields."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .patterns import (
    DEFAULT_PATTERNS,
    ExtractionPatterns,
    SitePatterns,
    compile_selector,
    fragment_text,
    iter_elements,
    remove_elements,
    select_first,
    strip_noise,
)
from .utils import count_words, is_public_url, to_iso
from ..metadata.structured_data import extract_from_html
from ..models.articles import ArticleData
from ..utils.content_scoring import (
    SELECTOR_ACCEPT_SCORE,
    calculate_quality_score,
    score_content,
)

logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"<p\b[^>]*>(.*?)</p\s*>", re.IGNORECASE | re.DOTALL)
_TITLE_TAG_RE = re.compile(r"<title[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)
_TIME_DATETIME_RE = re.compile(r"<time\b[^>]*\bdatetime=[\"']([^\"']+)[\"']", re.IGNORECASE)
_BYLINE_PREFIX_RE = re.compile(r"^\s*(?:by|written by|words by)[:\s]+", re.IGNORECASE)


@dataclass
class ExtractedContent:
    title: str
    body: str
    author: Optional[str] = None
    published_at: Optional[str] = None
    word_count: int = 0
    content_quality_score: int = 0
    method: str = "none"
    description: Optional[str] = None
    image_url: Optional[str] = None
    canonical_url: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_body(self) -> bool:
        return bool(self.body.strip())

    def to_article(self, source_url: str, **import_metadata: Any) -> ArticleData:
        canonical = self.canonical_url if self.canonical_url and is_public_url(self.canonical_url) else None
        return ArticleData(
            title=self.title,
            body=self.body,
            source_url=source_url,
            author=self.author,
            published_at=self.published_at,
            canonical_url=canonical,
            word_count=self.word_count,
            content_quality_score=self.content_quality_score,
            image_url=self.image_url,
            import_metadata={"extraction_method": self.method, **import_metadata},
        )


class ContentExtractor:
    """Pattern-based article extraction.

    Structured data supplies title, author and date where present; the
    body comes from the best of the site's content selectors, falling
    back to paragraph aggregation when no selector scores well.
    """

    def __init__(self, patterns: Optional[ExtractionPatterns] = None):
        self.patterns = patterns or DEFAULT_PATTERNS

    def extract(self, html: str, url: str) -> ExtractedContent:
        html = html or ""
        site = self.patterns.for_domain(url)
        structured = extract_from_html(html, url)

        cleaned = strip_noise(html)
        content_html = self._remove_excluded(cleaned, site)

        body, method = self._extract_body(content_html, site)
        title = self._extract_title(cleaned, structured, site)
        author = self._extract_author(cleaned, structured, site)
        published_at = self._extract_date(cleaned, structured)

        word_count = count_words(body)
        quality = calculate_quality_score(body, title, author, published_at)
        logger.debug(
            f"📊 Extracted {word_count} words from {url} via {method} (quality {quality})"
        )

        return ExtractedContent(
            title=title,
            body=body,
            author=author,
            published_at=published_at,
            word_count=word_count,
            content_quality_score=quality,
            method=method,
            description=structured.get("description"),
            image_url=structured.get("image"),
            canonical_url=structured.get("canonical_url"),
            metadata={"structured_source": structured.get("source")},
        )

    def _remove_excluded(self, html: str, site: SitePatterns) -> str:
        for selector in site.exclude_selectors:
            try:
                html = remove_elements(html, selector)
            except ValueError:
                logger.warning(f"Skipping unsupported exclusion selector {selector!r}")
        return html

    def _extract_body(self, html: str, site: SitePatterns) -> tuple[str, str]:
        best_body, best_score, best_method = "", 0, "none"

        for selector in site.content_selectors:
            try:
                region = select_first(html, selector)
            except ValueError:
                logger.warning(f"Skipping unsupported content selector {selector!r}")
                continue
            if region is None:
                continue

            text = self._region_text(region)
            score = score_content(text)
            if score > best_score:
                best_body, best_score, best_method = text, score, f"selector:{selector}"

        if best_score < SELECTOR_ACCEPT_SCORE:
            paragraphs = self._aggregate_paragraphs(html)
            paragraph_score = score_content(paragraphs)
            if paragraph_score > best_score or (paragraphs and not best_body):
                best_body, best_score, best_method = paragraphs, paragraph_score, "paragraphs"

        return best_body, best_method

    def _region_text(self, region: str) -> str:
        paragraphs = self._paragraph_blocks(region, self.patterns.paragraph_fallback_min_chars)
        if paragraphs:
            return "\n\n".join(paragraphs)
        return fragment_text(region)

    def _paragraph_blocks(self, html: str, min_chars: int) -> list[str]:
        blocks = []
        for match in _PARAGRAPH_RE.finditer(html):
            text = fragment_text(match.group(1))
            if len(text) > min_chars and not self.patterns.is_boilerplate(text):
                blocks.append(text)
        return blocks

    def _aggregate_paragraphs(self, html: str) -> str:
        blocks = self._paragraph_blocks(html, self.patterns.paragraph_min_chars)
        if len(blocks) < 3:
            blocks = self._paragraph_blocks(html, self.patterns.paragraph_fallback_min_chars)
        return "\n\n".join(blocks)

    def _extract_title(self, html: str, structured: dict[str, Any], site: SitePatterns) -> str:
        if structured.get("title"):
            return fragment_text(structured["title"])

        for selector in site.title_selectors or self.patterns.default.title_selectors:
            try:
                region = select_first(html, selector)
            except ValueError:
                continue
            text = fragment_text(region)
            if text:
                return text

        match = _TITLE_TAG_RE.search(html)
        if match:
            return self.strip_title_suffix(fragment_text(match.group(1)))
        return ""

    def strip_title_suffix(self, title: str) -> str:
        """Cut the site-name suffix at the first separator."""
        cut = len(title)
        for separator in self.patterns.title_suffix_separators:
            index = title.find(separator)
            if 0 < index < cut:
                cut = index
        return title[:cut].strip()

    def _extract_author(
        self, html: str, structured: dict[str, Any], site: SitePatterns
    ) -> Optional[str]:
        candidate = structured.get("author")
        if not candidate:
            for selector in site.author_selectors or self.patterns.default.author_selectors:
                try:
                    region = select_first(html, selector)
                except ValueError:
                    continue
                candidate = fragment_text(region)
                if candidate:
                    break

        if not candidate:
            return None
        author = _BYLINE_PREFIX_RE.sub("", fragment_text(candidate)).strip(" ,|-")
        # Bylines longer than this are body text caught by a loose selector
        if not author or len(author) > 120:
            return None
        return author

    def _extract_date(self, html: str, structured: dict[str, Any]) -> Optional[str]:
        candidates = [structured.get("publish_date")]
        match = _TIME_DATETIME_RE.search(html)
        if match:
            candidates.append(match.group(1))

        for selector in self.patterns.date_selectors:
            opening = compile_selector(selector)[0]
            found = next(iter_elements(html, opening), None)
            if found is not None:
                _, inner_start, inner_end, _ = found
                candidates.append(fragment_text(html[inner_start:inner_end]))

        for candidate in candidates:
            iso = to_iso(candidate)
            if iso:
                return iso
        return None
