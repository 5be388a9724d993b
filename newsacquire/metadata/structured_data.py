"""
Structured data extraction from HTML (JSON-LD, OpenGraph, meta tags).

Two entry points:

- ``extract_from_html`` pulls article metadata (title, author, publication
  date, description, lead image, canonical URL) for the page itself. These
  sources are more reliable than parsing article content directly.
- ``scan_article_candidates`` walks the JSON-LD blocks of an index page and
  surfaces the articles it lists (``ItemList``/``@graph`` containers and
  article-typed entries). The walk is bounded so pathological pages cannot
  cause unbounded work:

    * at most 10 JSON-LD blocks scanned
    * blocks over 100 KB skipped
    * at most 1000 parsed entries visited
    * at most 50 candidates surfaced
    * nesting depth at most 10
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from newsacquire.crawler import ValidationError
from newsacquire.crawler.utils import normalize_url, resolve_url
from newsacquire.models.articles import ArticleCandidate

logger = logging.getLogger(__name__)

MAX_JSONLD_BLOCKS = 10
MAX_BLOCK_BYTES = 100 * 1024
MAX_PARSED_ENTRIES = 1000
MAX_CANDIDATES = 50
MAX_DEPTH = 10

# JSON-LD script block pattern
_JSONLD_BLOCK_RE = re.compile(
    r'<script[^>]*type=["\']application/ld\+json["\'][^>]*>(.*?)</script>',
    re.DOTALL | re.IGNORECASE,
)


def _meta_patterns(names: str) -> tuple[re.Pattern, re.Pattern]:
    """Both attribute orderings of ``<meta property|name=... content=...>``."""
    return (
        re.compile(
            r'<meta\s+(?:property|name|itemprop)=["\'](?:' + names + r')["\']\s+'
            r'content=["\']([^"\']+)["\']',
            re.IGNORECASE,
        ),
        re.compile(
            r'<meta\s+content=["\']([^"\']+)["\']\s+'
            r'(?:property|name|itemprop)=["\'](?:' + names + r')["\']',
            re.IGNORECASE,
        ),
    )


_META_TITLE = _meta_patterns(r"og:title|twitter:title")
_META_AUTHOR = _meta_patterns(r"article:author|author|byl|parsely-author|sailthru\.author")
_META_PUBTIME = _meta_patterns(
    r"article:published_time|datePublished|pubdate|publish-date|parsely-pub-date|sailthru\.date"
)
_META_DESCRIPTION = _meta_patterns(r"og:description|description|twitter:description")
_META_IMAGE = _meta_patterns(r"og:image|twitter:image|og:image:url")

# Canonical URL pattern
_CANONICAL_LINK_RE = re.compile(
    r'<link\s+rel=["\']canonical["\']\s+href=["\']([^"\']+)["\']', re.IGNORECASE
)
_CANONICAL_LINK_ALT_RE = re.compile(
    r'<link\s+href=["\']([^"\']+)["\']\s+rel=["\']canonical["\']', re.IGNORECASE
)

# Article types to process in JSON-LD
ARTICLE_TYPES = frozenset(
    {
        "newsarticle",
        "article",
        "reportagenewsarticle",
        "analysisnewsarticle",
        "opinionnewsarticle",
        "backgroundnewsarticle",
        "webpage",
        "blogposting",
        "socialmediaposting",
        "liveblogposting",
    }
)

# Types that surface as candidates on index pages. WebPage is excluded:
# every page describes itself as one.
CANDIDATE_TYPES = ARTICLE_TYPES - {"webpage"}

CONTAINER_KEYS = ("@graph", "itemListElement", "mainEntity", "hasPart", "item", "about")


METADATA_FIELDS = ("title", "author", "publish_date", "description", "image")


def extract_from_html(html_text: str, url: str | None = None) -> dict[str, Any]:
    """Page-level article metadata: the fields in ``METADATA_FIELDS`` plus
    ``canonical_url`` and ``source``.

    JSON-LD wins over OpenGraph/meta tags field by field. ``source`` is
    ``json_ld`` when the headline or byline came from JSON-LD, ``meta_tags``
    when only meta tags contributed, else None. Relative image and
    canonical links are resolved against ``url``.
    """
    result: dict[str, Any] = dict.fromkeys((*METADATA_FIELDS, "canonical_url", "source"))
    if not html_text:
        return result

    layers = []
    if "application/ld+json" in html_text:
        layers.append(("json_ld", _jsonld_metadata(html_text)))
    layers.append(("meta_tags", _meta_tag_metadata(html_text)))

    for origin, found in layers:
        for key in METADATA_FIELDS:
            if not found.get(key) or result[key]:
                continue
            result[key] = found[key]
            if result["source"] is None and (origin == "meta_tags" or key in ("title", "author")):
                result["source"] = origin

    canonical = _CANONICAL_LINK_RE.search(html_text) or _CANONICAL_LINK_ALT_RE.search(html_text)
    if canonical:
        result["canonical_url"] = canonical.group(1).strip()

    if url:
        for key in ("image", "canonical_url"):
            if result[key]:
                result[key] = resolve_url(result[key], url)

    return result


def _item_types(item: dict) -> set[str]:
    item_type = item.get("@type", "")
    if isinstance(item_type, list):
        return {str(t).lower() for t in item_type if t}
    return {str(item_type).lower()} if item_type else set()


def _text(value: Any) -> str | None:
    return value.strip() or None if isinstance(value, str) else None


def _jsonld_items(html_text: str):
    """Top-level JSON-LD objects (``@graph`` unwrapped) within the block limits."""
    for index, match in enumerate(_JSONLD_BLOCK_RE.finditer(html_text)):
        if index >= MAX_JSONLD_BLOCKS:
            return
        raw = match.group(1).strip()
        if len(raw.encode("utf-8")) > MAX_BLOCK_BYTES:
            continue
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError, RecursionError):
            continue
        if isinstance(data, dict) and isinstance(data.get("@graph"), list):
            data = data["@graph"]
        for item in data if isinstance(data, list) else [data]:
            if isinstance(item, dict):
                yield item


def _jsonld_metadata(html_text: str) -> dict[str, Any]:
    found: dict[str, Any] = {}
    for item in _jsonld_items(html_text):
        types = _item_types(item)
        if types and not types & ARTICLE_TYPES:
            continue
        for key, value in (
            ("title", _text(item.get("headline") or item.get("name"))),
            ("author", _author_names(item.get("author"))),
            ("publish_date", _text(item.get("datePublished") or item.get("dateCreated"))),
            ("description", _text(item.get("description"))),
            ("image", _image_url(item.get("image"))),
        ):
            if value and not found.get(key):
                found[key] = value
        if found.get("title") and found.get("author") and found.get("publish_date"):
            break
    return found


def _author_names(author: Any) -> str | None:
    """Byline from a name, a Person object, or a list of either (deduplicated)."""
    names: list[str] = []
    for entry in author if isinstance(author, list) else [author]:
        name = _text(entry.get("name") if isinstance(entry, dict) else entry)
        if name and name not in names:
            names.append(name)
    return ", ".join(names) or None


def _image_url(image: Any) -> str | None:
    if isinstance(image, str):
        return image.strip() or None
    if isinstance(image, dict):
        return _text(image.get("url") or image.get("contentUrl"))
    if isinstance(image, list):
        for entry in image:
            found = _image_url(entry)
            if found:
                return found
    return None


def _meta_tag_metadata(html_text: str) -> dict[str, Any]:
    found: dict[str, Any] = {}
    for key, (forward, reverse) in zip(
        METADATA_FIELDS, (_META_TITLE, _META_AUTHOR, _META_PUBTIME, _META_DESCRIPTION, _META_IMAGE)
    ):
        match = forward.search(html_text) or reverse.search(html_text)
        if match:
            found[key] = match.group(1).strip()
    return found


@dataclass
class StructuredScanResult:
    candidates: list[ArticleCandidate] = field(default_factory=list)
    blocks_scanned: int = 0
    entries_visited: int = 0
    truncated: bool = False


@dataclass
class _ScanState:
    base_url: str
    result: StructuredScanResult = field(default_factory=StructuredScanResult)
    seen: set[str] = field(default_factory=set)
    done: bool = False


def scan_article_candidates(html_text: str, base_url: str) -> StructuredScanResult:
    """Collect article candidates listed in a page's JSON-LD.

    Never raises on malformed input; hitting a limit stops the walk and
    returns what was collected so far with ``truncated`` set.
    """
    state = _ScanState(base_url=base_url)
    if not html_text or "application/ld+json" not in html_text:
        return state.result

    for index, match in enumerate(_JSONLD_BLOCK_RE.finditer(html_text)):
        if index >= MAX_JSONLD_BLOCKS:
            state.result.truncated = True
            logger.debug(f"Structured data scan on {base_url}: block limit reached")
            break

        raw = match.group(1).strip()
        if len(raw.encode("utf-8")) > MAX_BLOCK_BYTES:
            logger.debug(f"Skipping oversized JSON-LD block on {base_url} ({len(raw)} chars)")
            continue
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError, RecursionError):
            continue

        state.result.blocks_scanned += 1
        _walk(data, 0, state)
        if state.done:
            break

    if state.result.truncated:
        logger.info(
            f"Structured data scan on {base_url} stopped at a limit: "
            f"{len(state.result.candidates)} candidates, "
            f"{state.result.entries_visited} entries"
        )
    return state.result


def _walk(node: Any, depth: int, state: _ScanState) -> None:
    if state.done:
        return
    if depth > MAX_DEPTH:
        state.result.truncated = True
        return

    if isinstance(node, list):
        for item in node:
            _walk(item, depth + 1, state)
            if state.done:
                return
        return

    if not isinstance(node, dict):
        return

    if state.result.entries_visited >= MAX_PARSED_ENTRIES:
        state.result.truncated = True
        state.done = True
        return
    state.result.entries_visited += 1

    types = _item_types(node)
    if types & CANDIDATE_TYPES or ("listitem" in types and not isinstance(node.get("item"), dict)):
        _add_candidate(node, state)
        if state.done:
            return

    for key in CONTAINER_KEYS:
        child = node.get(key)
        if isinstance(child, (dict, list)):
            _walk(child, depth + 1, state)
            if state.done:
                return


def _candidate_url(node: dict) -> str | None:
    for value in (node.get("url"), node.get("item"), node.get("mainEntityOfPage"), node.get("@id")):
        if isinstance(value, dict):
            value = value.get("@id") or value.get("url")
        if isinstance(value, str) and value.strip() and not value.startswith("#"):
            return value.strip()
    return None


def _keywords(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(part).strip() for part in value if isinstance(part, (str, int)) and str(part).strip()]
    return []


def _add_candidate(node: dict, state: _ScanState) -> None:
    raw_url = _candidate_url(node)
    if not raw_url:
        return

    url = resolve_url(raw_url, state.base_url)
    key = normalize_url(url)
    if key in state.seen:
        return

    headline = node.get("headline") or node.get("name")
    date_published = node.get("datePublished") or node.get("dateCreated")
    try:
        candidate = ArticleCandidate(
            url=url,
            headline=headline.strip() if isinstance(headline, str) else None,
            date_published=date_published if isinstance(date_published, str) else None,
            image=_image_url(node.get("image") or node.get("thumbnailUrl")),
            keywords=_keywords(node.get("keywords")),
        )
    except ValidationError:
        logger.debug(f"Dropping structured-data candidate with disallowed URL: {url}")
        return

    state.seen.add(key)
    state.result.candidates.append(candidate.capped())
    if len(state.result.candidates) >= MAX_CANDIDATES:
        state.result.truncated = True
        state.done = True
