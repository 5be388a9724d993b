"""Request identities: user-agent/header bundles and their adjustments.

Identities are immutable. Each retry attempt picks one by index and derives
a new identity for regional headers, stealth mode, cookies and forwarded-IP
injection instead of mutating a shared header dict.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from .utils import country_for_host, normalize_domain

USER_AGENT_POOL = (
    # Chrome on Windows
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    ),
    # Chrome on macOS
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/130.0.0.0 Safari/537.36"
    ),
    # Firefox on Windows
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:132.0) "
        "Gecko/20100101 Firefox/132.0"
    ),
    # Safari on macOS
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/18.0 Safari/605.1.15"
    ),
    # Edge on Windows
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0"
    ),
)

ACCEPT_HEADER_POOL = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
)

ACCEPT_ENCODING_POOL = (
    "gzip, deflate, br",
    "gzip, deflate",
)

REGIONAL_LANGUAGES = {
    "gb": "en-GB,en;q=0.9",
    "ie": "en-IE,en-GB;q=0.9,en;q=0.8",
    "au": "en-AU,en;q=0.9",
    "ca": "en-CA,en;q=0.9,fr-CA;q=0.7",
    "nz": "en-NZ,en;q=0.9",
}
DEFAULT_LANGUAGE = "en-US,en;q=0.9"

# Headers that fingerprint automation or tracking preferences.
STEALTH_STRIPPED_HEADERS = (
    "DNT",
    "Sec-Fetch-User",
    "Upgrade-Insecure-Requests",
    "Cache-Control",
    "Referer",
)

# Small per-country pools of residential-looking addresses.
FORWARDED_IP_POOLS = {
    "gb": ("81.2.69.142", "86.13.47.201", "92.40.183.16", "109.144.22.87"),
    "ie": ("86.40.12.77", "89.101.54.230", "78.16.201.9"),
    "us": ("73.162.44.19", "98.207.13.61", "24.5.188.240"),
}


@dataclass(frozen=True)
class FetchIdentity:
    """One bundle of user agent, headers and optional cookie/forwarded IP."""

    user_agent: str
    headers: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    cookie_header: Optional[str] = None
    forwarded_ip: Optional[str] = None

    def as_headers(self) -> dict[str, str]:
        rendered = {"User-Agent": self.user_agent}
        rendered.update(dict(self.headers))
        if self.cookie_header:
            rendered["Cookie"] = self.cookie_header
        if self.forwarded_ip:
            rendered["X-Forwarded-For"] = self.forwarded_ip
            rendered["X-Real-IP"] = self.forwarded_ip
        return rendered

    def with_headers(self, updates: Mapping[str, str]) -> "FetchIdentity":
        merged = dict(self.headers)
        merged.update(updates)
        return replace(self, headers=tuple(merged.items()))

    def without_headers(self, names) -> "FetchIdentity":
        drop = {name.lower() for name in names}
        kept = tuple((k, v) for k, v in self.headers if k.lower() not in drop)
        return replace(self, headers=kept)

    def with_cookie(self, cookie_header: Optional[str]) -> "FetchIdentity":
        return replace(self, cookie_header=cookie_header or None)

    def with_forwarded_ip(self, ip: Optional[str]) -> "FetchIdentity":
        return replace(self, forwarded_ip=ip or None)


def _base_headers(index: int) -> tuple[tuple[str, str], ...]:
    headers = {
        "Accept": ACCEPT_HEADER_POOL[index % len(ACCEPT_HEADER_POOL)],
        "Accept-Language": DEFAULT_LANGUAGE,
        "Accept-Encoding": ACCEPT_ENCODING_POOL[index % len(ACCEPT_ENCODING_POOL)],
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Cache-Control": "max-age=0",
    }
    # Not every browser sends DNT
    if index % 3 != 2:
        headers["DNT"] = "1"
    return tuple(headers.items())


IDENTITY_POOL: tuple[FetchIdentity, ...] = tuple(
    FetchIdentity(user_agent=ua, headers=_base_headers(i))
    for i, ua in enumerate(USER_AGENT_POOL)
)


def identity_for_attempt(
    attempt: int, pool: tuple[FetchIdentity, ...] = IDENTITY_POOL
) -> FetchIdentity:
    """Rotate through the pool by attempt index."""
    return pool[attempt % len(pool)]


def apply_regional_headers(identity: FetchIdentity, url: str) -> FetchIdentity:
    country = country_for_host(url)
    language = REGIONAL_LANGUAGES.get(country or "", DEFAULT_LANGUAGE)
    return identity.with_headers({"Accept-Language": language})


def apply_stealth(identity: FetchIdentity) -> FetchIdentity:
    return identity.without_headers(STEALTH_STRIPPED_HEADERS)


def sample_forwarded_ip(
    country: Optional[str], rng: Optional[random.Random] = None
) -> Optional[str]:
    pool = FORWARDED_IP_POOLS.get(country or "")
    if not pool:
        return None
    return (rng or random).choice(pool)


def is_uk_or_ireland(url: str) -> bool:
    return country_for_host(url) in ("gb", "ie")


def generate_referer(url: str) -> str:
    """Referer pointing at the site's own homepage."""
    return f"https://{normalize_domain(url)}/"
