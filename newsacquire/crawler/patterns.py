"""Pattern tables and the small selector engine used for extraction.

Extraction deliberately does not build a DOM: real-world markup is too
inconsistent for strict parsing to pay off. Instead, simple CSS-like
selectors (``article``, ``.entry-content``, ``#story``, ``div.body``,
``[role="main"]`` and descendant chains of those) are compiled to regexes
that locate an element's opening tag, and the element's extent is found by
counting nested tags of the same name.

All tables live in ``ExtractionPatterns`` so new site layouts can be added
as configuration without touching control flow.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Iterator, Mapping, Optional

from bs4 import BeautifulSoup

from .utils import normalize_domain

MAX_REMOVALS_PER_SELECTOR = 200

_SCRIPT_STYLE_RE = re.compile(
    r"<(script|style|noscript|template|svg)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_SIMPLE_SELECTOR_RE = re.compile(
    r"^(?P<tag>[a-zA-Z][a-zA-Z0-9]*)?"
    r"(?:\.(?P<cls>[\w-]+))?"
    r"(?:#(?P<id>[\w-]+))?"
    r"(?:\[(?P<attr>[\w-]+)=[\"']?(?P<value>[^\"'\]]+)[\"']?\])?$"
)


@dataclass(frozen=True)
class SitePatterns:
    content_selectors: tuple[str, ...]
    exclude_selectors: tuple[str, ...] = ()
    title_selectors: tuple[str, ...] = ()
    author_selectors: tuple[str, ...] = ()


DEFAULT_SITE_PATTERNS = SitePatterns(
    content_selectors=(
        "article",
        '[role="main"] .entry-content',
        ".entry-content",
        ".post-content",
        ".article-content",
        ".article-body",
        ".story-body",
        '[itemprop="articleBody"]',
        ".content",
        "main .content",
        "main",
    ),
    exclude_selectors=(
        ".sidebar",
        ".widget",
        ".related",
        ".related-posts",
        ".comments",
        ".social",
        ".social-share",
        ".advertisement",
        ".ad-",
        ".newsletter",
        ".navigation",
        "nav",
        "footer",
        "header",
        "aside",
        "form",
        "figure",
    ),
    title_selectors=("h1", ".entry-title", ".post-title"),
    author_selectors=(".author-name", ".byline", ".author", '[rel="author"]'),
)

SITE_PATTERNS: dict[str, SitePatterns] = {
    "bournefree.co.uk": SitePatterns(
        content_selectors=(".entry-content", ".post-content", "article .content", ".article-body"),
        exclude_selectors=(
            ".sidebar",
            ".widget",
            ".related-posts",
            ".comments",
            ".social-share",
            ".advertisement",
            "nav",
            "footer",
            "header",
        ),
        title_selectors=(".entry-title", "h1.post-title", "article h1"),
        author_selectors=(".author-name", ".byline", ".post-author"),
    ),
    "eastbournereporter.co.uk": SitePatterns(
        content_selectors=(".entry-content", ".post-body", "article .content"),
        exclude_selectors=(".sidebar", ".widget-area", ".related-articles", ".comments-area"),
    ),
    "theargus.co.uk": SitePatterns(
        content_selectors=(".article-body", "#subscription-content", "article"),
        exclude_selectors=(".ad-", ".related", ".newsletter", "aside", "nav", "footer"),
        author_selectors=(".author-name", ".mar-article-author"),
    ),
}

BOILERPLATE_PHRASES = (
    "subscribe",
    "sign up",
    "newsletter",
    "cookie",
    "all rights reserved",
    "follow us",
    "share this",
    "share on",
    "advertisement",
    "read more",
    "click here",
    "privacy policy",
    "terms and conditions",
    "most read",
    "related articles",
    "comments",
    "menu",
)

DATE_SELECTORS = (".date", ".published", ".post-date", ".timestamp", ".article-date")

TITLE_SUFFIX_SEPARATORS = (" - ", " | ", " – ")


@dataclass(frozen=True)
class ExtractionPatterns:
    default: SitePatterns = DEFAULT_SITE_PATTERNS
    sites: Mapping[str, SitePatterns] = field(default_factory=lambda: dict(SITE_PATTERNS))
    boilerplate_phrases: tuple[str, ...] = BOILERPLATE_PHRASES
    date_selectors: tuple[str, ...] = DATE_SELECTORS
    title_suffix_separators: tuple[str, ...] = TITLE_SUFFIX_SEPARATORS
    paragraph_min_chars: int = 50
    paragraph_fallback_min_chars: int = 20
    boilerplate_max_chars: int = 200

    def for_domain(self, url_or_domain: str) -> SitePatterns:
        labels = normalize_domain(url_or_domain).split(".")
        for index in range(len(labels) - 1):
            site = self.sites.get(".".join(labels[index:]))
            if site is not None:
                return site
        return self.default

    def with_site(self, domain: str, patterns: SitePatterns) -> "ExtractionPatterns":
        sites = dict(self.sites)
        sites[normalize_domain(domain)] = patterns
        return replace(self, sites=sites)

    def is_boilerplate(self, text: str) -> bool:
        if len(text) > self.boilerplate_max_chars:
            return False
        lowered = text.lower()
        return any(phrase in lowered for phrase in self.boilerplate_phrases)


DEFAULT_PATTERNS = ExtractionPatterns()


def _class_token(name: str) -> str:
    # A trailing "-" means prefix match (".ad-" matches "ad-slot")
    if name.endswith("-"):
        return re.escape(name) + r"[\w-]*"
    return re.escape(name)


@lru_cache(maxsize=512)
def compile_selector(selector: str) -> tuple[re.Pattern, ...]:
    """Compile a selector into one opening-tag regex per descendant step.

    Each regex captures the tag name in group ``tag``.
    """
    steps = []
    for part in selector.split():
        match = _SIMPLE_SELECTOR_RE.match(part)
        if not match:
            raise ValueError(f"Unsupported selector: {selector!r}")

        tag = match.group("tag")
        pattern = r"<(?P<tag>" + (re.escape(tag) if tag else r"[a-zA-Z][a-zA-Z0-9]*") + r")\b"
        lookaheads = ""
        if match.group("cls"):
            lookaheads += (
                r"(?=[^>]*\bclass\s*=\s*[\"'](?:[^\"']*\s)?"
                + _class_token(match.group("cls"))
                + r"(?:\s[^\"']*)?[\"'])"
            )
        if match.group("id"):
            lookaheads += r"(?=[^>]*\bid\s*=\s*[\"']" + re.escape(match.group("id")) + r"[\"'])"
        if match.group("attr"):
            lookaheads += (
                r"(?=[^>]*\b"
                + re.escape(match.group("attr"))
                + r"\s*=\s*[\"']?"
                + re.escape(match.group("value"))
                + r"[\"'\s>])"
            )
        steps.append(re.compile(pattern + lookaheads + r"[^>]*>", re.IGNORECASE))
    return tuple(steps)


def _element_end(html: str, tag: str, start: int) -> tuple[int, int]:
    """(inner_end, outer_end) of the element whose opening tag ends at ``start``."""
    depth = 1
    tag_re = re.compile(r"<(/?)" + re.escape(tag) + r"\b[^>]*?(/?)>", re.IGNORECASE)
    for match in tag_re.finditer(html, start):
        if match.group(1):
            depth -= 1
            if depth == 0:
                return match.start(), match.end()
        elif not match.group(2):
            depth += 1
    return len(html), len(html)


def iter_elements(html: str, opening: re.Pattern) -> Iterator[tuple[int, int, int, int]]:
    """Yield ``(outer_start, inner_start, inner_end, outer_end)`` per match."""
    position = 0
    while True:
        match = opening.search(html, position)
        if not match:
            return
        inner_end, outer_end = _element_end(html, match.group("tag"), match.end())
        yield match.start(), match.end(), inner_end, outer_end
        position = match.end()


def select_first(html: str, selector: str) -> Optional[str]:
    """Inner HTML of the first element matching ``selector``."""
    region = html
    for opening in compile_selector(selector):
        found = next(iter_elements(region, opening), None)
        if found is None:
            return None
        _, inner_start, inner_end, _ = found
        region = region[inner_start:inner_end]
    return region


def remove_elements(html: str, selector: str) -> str:
    """Remove every element matching a simple (non-descendant) selector."""
    steps = compile_selector(selector)
    if len(steps) != 1:
        raise ValueError(f"Exclusion selectors must be simple: {selector!r}")
    opening = steps[0]

    for _ in range(MAX_REMOVALS_PER_SELECTOR):
        found = next(iter_elements(html, opening), None)
        if found is None:
            break
        outer_start, _, _, outer_end = found
        html = html[:outer_start] + " " + html[outer_end:]
    return html


def strip_noise(html: str) -> str:
    """Drop script/style blocks and comments."""
    return _COMMENT_RE.sub(" ", _SCRIPT_STYLE_RE.sub(" ", html or ""))


def fragment_text(fragment: Optional[str]) -> str:
    """Plain text of an isolated HTML fragment, whitespace collapsed."""
    if not fragment:
        return ""
    text = BeautifulSoup(fragment, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()

