"""URL, host and date helpers shared across the acquisition core.

These helpers are deliberately small and side-effect free. Host validation
never performs DNS lookups; it rejects literal private addresses and
well-known local hostnames so that untrusted links scraped from pages can
never steer the fetcher at internal infrastructure.
"""

from __future__ import annotations

import ipaddress
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlsplit

from dateutil import tz
from dateutil.parser import ParserError
from dateutil.parser import parse as _dateutil_parse

from . import ValidationError

_SCHEME_RE = re.compile(r"^(?:https?:)?//", re.IGNORECASE)

TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "gclid",
        "dclid",
        "msclkid",
        "mc_cid",
        "mc_eid",
        "_ga",
        "_gl",
        "ocid",
        "cmpid",
        "ito",
        "ref",
        "ref_src",
        "igshid",
    }
)

LOCAL_HOSTNAMES = ("localhost", "localhost.localdomain", "ip6-localhost")
LOCAL_SUFFIXES = (".localhost", ".local", ".internal", ".lan", ".home.arpa")

GOVERNMENT_PATTERNS = (
    ".gov.uk",
    ".gov.",
    ".police.uk",
    ".nhs.uk",
    ".council.",
    "council.gov",
    "gov.scot",
    "gov.wales",
)

# Country code used for regional headers and forwarded-IP pools.
TLD_COUNTRIES = {
    "uk": "gb",
    "ie": "ie",
    "au": "au",
    "ca": "ca",
    "nz": "nz",
    "scot": "gb",
    "wales": "gb",
    "cymru": "gb",
}

_TZINFOS = {
    "BST": tz.gettz("Europe/London"),
    "GMT": tz.gettz("Europe/London"),
    "IST": tz.gettz("Europe/Dublin"),
    "CST": tz.gettz("America/Chicago"),
    "CDT": tz.gettz("America/Chicago"),
    "EST": tz.gettz("America/New_York"),
    "EDT": tz.gettz("America/New_York"),
    "MST": tz.gettz("America/Denver"),
    "MDT": tz.gettz("America/Denver"),
    "PST": tz.gettz("America/Los_Angeles"),
    "PDT": tz.gettz("America/Los_Angeles"),
}


def normalize_domain(value: str | None) -> str:
    """Lowercase host with credentials, port and a leading ``www.`` removed.

    Accepts either a bare host or a full URL.
    """
    if not value:
        return ""

    host = value.strip()
    if "//" in host:
        host = urlparse(host if not host.startswith("//") else f"http:{host}").netloc
    host = host.split("@").pop()
    host = host.split("/")[0]
    if host.startswith("["):
        host = host.split("]")[0] + "]"
    else:
        host = host.split(":")[0]
    host = host.lower().rstrip(".")

    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_url(url: str | None) -> str:
    """Canonical form used for deduplication.

    Protocol, ``www.``, fragments, tracking parameters and trailing slashes
    are removed. Applying the function twice yields the same value.
    """
    if not url:
        return ""

    value = _SCHEME_RE.sub("", url.strip())
    parts = urlsplit(f"//{value}")

    host = normalize_domain(parts.netloc)
    try:
        port = parts.port
    except ValueError:
        port = None
    if port and port not in (80, 443):
        host = f"{host}:{port}"

    kept = [
        (key, val)
        for key, val in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in TRACKING_PARAMS
    ]
    query = urlencode(kept)
    path = parts.path.rstrip("/")

    return f"{host}{path}" + (f"?{query}" if query else "")


def _literal_ip(host: str):
    candidate = host.strip("[]")
    try:
        if candidate.isdigit():
            return ipaddress.ip_address(int(candidate))
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def validate_public_url(url: str | None) -> str:
    """Return ``url`` unchanged if it targets a public http(s) host.

    Raises:
        ValidationError: for malformed URLs, non-http(s) schemes, local
            hostnames and loopback, private (RFC1918), link-local, reserved
            or multicast addresses.
    """
    if not url or not isinstance(url, str):
        raise ValidationError("URL is empty")

    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError as exc:
        raise ValidationError(f"Malformed URL {url!r}: {exc}") from exc

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValidationError(f"Unsupported scheme in {url!r}")
    if not hostname:
        raise ValidationError(f"URL has no host: {url!r}")

    host = hostname.lower().rstrip(".")
    if host in LOCAL_HOSTNAMES or host.endswith(LOCAL_SUFFIXES):
        raise ValidationError(f"Local host not allowed: {host}")

    address = _literal_ip(host)
    if address is not None:
        mapped = getattr(address, "ipv4_mapped", None)
        if mapped is not None:
            address = mapped
        if (
            address.is_private
            or address.is_loopback
            or address.is_link_local
            or address.is_reserved
            or address.is_multicast
            or address.is_unspecified
        ):
            raise ValidationError(f"Non-public address not allowed: {host}")

    return url


def is_public_url(url: str | None) -> bool:
    try:
        validate_public_url(url)
    except ValidationError:
        return False
    return True


def origin_of(url: str) -> str:
    """Scheme and host of ``url`` with a trailing slash."""
    parsed = urlparse(url)
    scheme = parsed.scheme or "https"
    return f"{scheme}://{parsed.netloc}/"


def resolve_url(href: str, base_url: str) -> str:
    return urljoin(base_url, href.strip())


def same_site(url: str, base_url: str) -> bool:
    host = normalize_domain(url)
    base = normalize_domain(base_url)
    return bool(host) and (host == base or host.endswith("." + base))


def is_government_domain(url_or_host: str | None) -> bool:
    host = normalize_domain(url_or_host)
    if not host:
        return False
    padded = f".{host}."
    return host.endswith(".gov") or any(p in padded for p in GOVERNMENT_PATTERNS)


def country_for_host(url_or_host: str | None) -> Optional[str]:
    """Two-letter country code implied by the host's TLD, if any."""
    host = normalize_domain(url_or_host)
    if not host or "." not in host:
        return None
    return TLD_COUNTRIES.get(host.rsplit(".", 1)[-1])


def parse_date(value) -> Optional[datetime]:
    """Parse a loose date string into an aware UTC datetime.

    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = _dateutil_parse(text, tzinfos=_TZINFOS)
        except (ParserError, ValueError, OverflowError, TypeError):
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value) -> Optional[str]:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def count_words(text: str | None) -> int:
    if not text:
        return 0
    return len(text.split())
