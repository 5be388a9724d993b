"""Cookie warm-up: one GET to a domain's root to collect session cookies."""

from __future__ import annotations

import logging
from typing import Optional

from . import AcquisitionError
from .identity import IDENTITY_POOL, FetchIdentity, apply_regional_headers
from .utils import origin_of

logger = logging.getLogger(__name__)

DEFAULT_WARMUP_TIMEOUT_MS = 10000


class CookieWarmer:
    """Best-effort cookie collection cached in the warm-up store."""

    def __init__(self, fetch_client, warmup_store, timeout_ms: int = DEFAULT_WARMUP_TIMEOUT_MS):
        self.fetch_client = fetch_client
        self.warmup_store = warmup_store
        self.timeout_ms = timeout_ms

    def warm(self, url: str, identity: Optional[FetchIdentity] = None) -> Optional[str]:
        """GET the bare origin of ``url`` and return a joined Cookie header.

        Failures are logged and swallowed into ``None``; the caller simply
        proceeds without a cookie.
        """
        origin = origin_of(url)
        identity = apply_regional_headers(identity or IDENTITY_POOL[0], origin)

        try:
            response = self.fetch_client.fetch(
                origin,
                method="GET",
                headers=identity.with_cookie(None).as_headers(),
                timeout_ms=self.timeout_ms,
            )
        except AcquisitionError as exc:
            logger.info(f"🍪 Cookie warm-up failed for {origin}: {exc}")
            return None

        try:
            cookie_header = response.cookie_header()
        finally:
            response.close()

        if not cookie_header:
            logger.info(f"🍪 Cookie warm-up for {origin} returned no cookies ({response.status})")
            return None

        self.warmup_store.record_cookie(origin, cookie_header)
        logger.info(f"🍪 Cookie warm-up for {origin} collected {len(response.cookies)} cookies")
        return cookie_header
