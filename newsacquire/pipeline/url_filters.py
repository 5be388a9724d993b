import logging
import re
from functools import lru_cache
from typing import Iterable, Optional

from storysniffer import StorySniffer

logger = logging.getLogger(__name__)

# Paths that are never articles, matched against a "/"-terminated lowercase URL
# so "/feed/" does not also match "/feeding-poultry".
NON_ARTICLE_SEGMENTS = (
    "/search/",
    "/author/",
    "/authors/",
    "/rss/",
    "/feed/",
    "/feeds/",
    "/sitemap/",
    "/contact/",
    "/about/",
    "/privacy/",
    "/advertise/",
    "/advert/",
    "/category/",
    "/tag/",
    "/tags/",
    "/archive/",
    "/wp-admin/",
    "/wp-login",
    "/login/",
    "/subscribe/",
    "/video/",
    "/videos/",
    "/watch/",
    "/audio/",
    "/listen/",
    "/podcast/",
    "/podcasts/",
)

EXCLUDE_URL_PATTERNS = (
    re.compile(r"\.(?:jpe?g|png|gif|svg|webp|pdf|css|js|json|xml|mp3|mp4|zip|ico)(?:[?#].*)?/$"),
    re.compile(r"/page/\d+/"),
    re.compile(r"^(?:javascript|mailto|tel):"),
    re.compile(r"/rss(?:\.xml)?/$"),
    re.compile(r"/(?:index|default)\.\w+/$"),
)

ARTICLE_URL_PATTERNS = (
    re.compile(r"/\d{4}/\d{1,2}/\d{1,2}/"),
    re.compile(r"/\d{4}-\d{1,2}-\d{1,2}/"),
    re.compile(r"/stories?/[^/]+"),
    re.compile(r"/news/[^/]+"),
    re.compile(r"/articles?/[^/]+"),
    re.compile(r"/content/[^/]+"),
    re.compile(r"/posts?/[^/]+"),
    re.compile(r"/blog/[^/]+"),
    re.compile(r"-\d{5,}/"),
    # numeric content id as a whole path segment
    re.compile(r"/\d{5,}/"),
    # long hyphenated slug: five or more words
    re.compile(r"/[a-z0-9]+(?:-[a-z0-9]+){4,}/"),
)


@lru_cache(maxsize=1)
def _sniffer() -> StorySniffer:
    return StorySniffer()


def _normalized(url: Optional[str]) -> str:
    url_lower = (url or "").strip().lower()
    if "#" in url_lower and not url_lower.startswith("#"):
        url_lower = url_lower.split("#", 1)[0]
    if not url_lower.endswith("/"):
        url_lower += "/"
    return url_lower


def is_excluded_url(url: Optional[str]) -> bool:
    """True for fragments, scripts, media and listing pages."""
    if not url or url.strip().startswith("#"):
        return True
    url_lower = _normalized(url)
    if any(segment in url_lower for segment in NON_ARTICLE_SEGMENTS):
        return True
    return any(pattern.search(url_lower) for pattern in EXCLUDE_URL_PATTERNS)


def matches_any(url: str, patterns: Iterable[str]) -> bool:
    """Whether ``url`` matches one of the configured regex strings."""
    for pattern in patterns:
        try:
            if re.search(pattern, url, re.IGNORECASE):
                return True
        except re.error:
            logger.warning(f"Ignoring invalid URL pattern {pattern!r}")
    return False


def check_is_article(
    url: Optional[str],
    article_patterns: Iterable[str] = (),
    category_patterns: Iterable[str] = (),
    use_sniffer: bool = True,
) -> bool:
    """Conservative article detection from URL path structure.

    Profile ``category_patterns`` veto a URL and ``article_patterns``
    accept it before the built-in tables are consulted; StorySniffer is
    the last resort.
    """
    if not url or is_excluded_url(url):
        return False
    if matches_any(url, category_patterns):
        return False
    if matches_any(url, article_patterns):
        return True

    url_lower = _normalized(url)
    if any(pattern.search(url_lower) for pattern in ARTICLE_URL_PATTERNS):
        return True

    if not use_sniffer:
        return False
    try:
        return bool(_sniffer().guess(url))
    except Exception as exc:  # storysniffer raises assorted parsing errors
        logger.debug(f"StorySniffer could not classify {url}: {exc}")
        return False
