"""Bot-protection fingerprints for responses and response bodies.

Used by the prober to name the blocking edge/WAF and by the retry engine to
decide when stealth headers are worth trying and whether a 2xx body is a
challenge page rather than real content.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

# Indicator lists per vendor, checked against lowercased body text.
BODY_INDICATORS: dict[str, tuple[str, ...]] = {
    "perimeterx": (
        "window._pxappid",
        "px-captcha",
        "captcha.px-cloud.net",
        "humansecurity.com",
        "_pxhd",
    ),
    "datadome": (
        "datadome",
        "window.ddjskey",
        "geo.captcha-delivery.com",
    ),
    "akamai": (
        "_abck",
        "ak_bmsc",
        "akamai reference",
        "errors.edgesuite.net",
    ),
    "incapsula": (
        "incapsula",
        "visid_incap",
        "incap_ses",
        "_incapsula_resource",
    ),
    "cloudflare": (
        "cloudflare ray id",
        "checking your browser",
        "attention required! | cloudflare",
        "cf-browser-verification",
        "cf_chl_opt",
    ),
}

# Server / via header fragments naming an edge or WAF.
SERVER_SIGNATURES: dict[str, tuple[str, ...]] = {
    "cloudflare": ("cloudflare",),
    "akamai": ("akamai", "akamaighost", "akamainetstorage"),
    "fastly": ("fastly",),
    "incapsula": ("incapsula", "imperva"),
    "datadome": ("datadome",),
    "varnish": ("varnish",),
    "cloudfront": ("cloudfront", "amazons3"),
    "sucuri": ("sucuri",),
}

WAF_SERVERS = frozenset(
    {"cloudflare", "akamai", "fastly", "incapsula", "datadome", "cloudfront", "sucuri"}
)

# Phrases that mark a 2xx body as a hard block / challenge page.
HARD_BLOCK_PHRASES = (
    "captcha challenge",
    "complete the captcha",
    "solve the captcha",
    "access denied",
    "security check",
    "verify you are human",
    "please verify you are a human",
    "are you a robot",
    "cloudflare ray id",
    "enable javascript and cookies",
    "request unsuccessful. incapsula",
)

CONTENT_MARKERS = ("<html", "<rss", "<feed", "<urlset", "<sitemapindex", "<?xml", "{")
XML_MARKERS = ("<?xml", "<rss", "<feed", "<urlset", "<sitemapindex", "<rdf:rdf")

# Validation modes for is_valid_content.
CONTENT_PAGE = "page"
CONTENT_XML = "xml"
CONTENT_TEXT = "text"

MIN_CONTENT_LENGTH = 500
# Long pages can mention these phrases in passing; only short bodies or the
# <title> are checked.
CHALLENGE_PAGE_MAX_LENGTH = 5000

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def detect_blocking_server(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    """Name the edge/WAF vendor from response headers, if recognisable."""
    if not headers:
        return None

    lowered = {str(k).lower(): str(v).lower() for k, v in headers.items()}
    if "cf-ray" in lowered or "cf-mitigated" in lowered:
        return "cloudflare"
    if "x-datadome" in lowered:
        return "datadome"
    if "x-iinfo" in lowered:
        return "incapsula"

    haystack = " ".join(
        lowered.get(name, "") for name in ("server", "via", "x-served-by", "x-cdn")
    )
    for vendor, signatures in SERVER_SIGNATURES.items():
        if any(sig in haystack for sig in signatures):
            return vendor

    return lowered.get("server") or None


def detect_bot_protection(text: Optional[str], status: Optional[int] = None) -> Optional[str]:
    """Identify a challenge page from its body.

    Returns the vendor name, ``bot_protection`` for generic challenges,
    ``suspicious_short_response`` for tiny 403/503 bodies, or None.
    """
    if not text:
        return None

    text_lower = text.lower()
    for vendor, indicators in BODY_INDICATORS.items():
        if any(indicator in text_lower for indicator in indicators):
            return vendor

    if looks_like_challenge_page(text_lower):
        return "bot_protection"

    if len(text) < MIN_CONTENT_LENGTH and status in (403, 503):
        return "suspicious_short_response"

    return None


def is_waf_server(server: Optional[str]) -> bool:
    return (server or "").lower() in WAF_SERVERS


def is_valid_content(body: Optional[str], kind: str = CONTENT_PAGE) -> bool:
    """True when a 2xx body looks like real content of the given ``kind``.

    ``page`` bodies (HTML or API JSON) must clear the length floor and carry
    a markup marker. ``xml`` bodies (feeds, sitemaps) only need an XML
    marker. ``text`` bodies (robots.txt) only need to be non-empty. A
    challenge page never passes.
    """
    if not body:
        return False

    stripped = body.strip()
    if not stripped:
        return False

    lowered = stripped.lower()
    if kind == CONTENT_TEXT:
        return not ("<html" in lowered and looks_like_challenge_page(lowered))

    if looks_like_challenge_page(lowered):
        return False
    if kind == CONTENT_XML:
        return any(marker in lowered for marker in XML_MARKERS)

    if len(stripped) <= MIN_CONTENT_LENGTH:
        return False
    return any(marker in lowered for marker in CONTENT_MARKERS)


def looks_like_challenge_page(text: str) -> bool:
    lowered = text.lower()
    title_match = _TITLE_RE.search(lowered)
    title = title_match.group(1) if title_match else ""
    if any(phrase in title for phrase in HARD_BLOCK_PHRASES):
        return True
    if len(lowered) > CHALLENGE_PAGE_MAX_LENGTH:
        return False
    return any(phrase in lowered for phrase in HARD_BLOCK_PHRASES)
