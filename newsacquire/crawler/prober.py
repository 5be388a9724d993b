"""Cheap accessibility probe run before committing to full extraction.

The probe walks a small state machine::

    HEAD ok                               -> ok
    HEAD 401/403/405/406/429              -> head-blocked
        ranged GET ok                     -> head-blocked (accessible)
        cookie warm-up + expanded GET ok  -> cookie-required / partial-get-blocked
        full GET ok                       -> cookie-required / partial-get-blocked
        everything failed                 -> full-block
    network exception (proxy/DNS/...)     -> network-block

Every outcome is written back to the domain's warm-up hint.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from . import BLOCKING_STATUSES, AcquisitionError, NetworkError, ValidationError
from .cookies import CookieWarmer
from .fetch import FetchResponse
from .identity import FetchIdentity, apply_regional_headers, identity_for_attempt
from .utils import validate_public_url
from .warmup import AccessibilityDiagnosis
from ..utils.bot_protection import detect_blocking_server, looks_like_challenge_page
from ..utils.telemetry import EVENT_DIAGNOSIS

logger = logging.getLogger(__name__)

PROBE_RANGE_BYTES = 2048
EXPANDED_RANGE_BYTES = 16384
DEFAULT_PROBE_TIMEOUT_MS = 15000

NETWORK_BLOCK_SIGNATURES = (
    "proxy",
    "tunnel",
    "connect",
    "dns",
    "name resolution",
    "failed to resolve",
    "getaddrinfo",
    "enotfound",
)


@dataclass
class ProbeResult:
    accessible: bool
    diagnosis: AccessibilityDiagnosis
    status_code: Optional[int] = None
    blocking_server: Optional[str] = None
    response_time_ms: float = 0.0
    error: Optional[str] = None
    cookie_obtained: bool = False

    def to_dict(self) -> dict:
        return {
            "accessible": self.accessible,
            "diagnosis": self.diagnosis.value,
            "status_code": self.status_code,
            "blocking_server": self.blocking_server,
            "response_time_ms": round(self.response_time_ms, 1),
            "error": self.error,
            "cookie_obtained": self.cookie_obtained,
        }


def classify_network_exception(exc: Exception) -> AccessibilityDiagnosis:
    message = str(exc).lower()
    if isinstance(exc, NetworkError) and any(sig in message for sig in NETWORK_BLOCK_SIGNATURES):
        return AccessibilityDiagnosis.NETWORK_BLOCK
    return AccessibilityDiagnosis.FULL_BLOCK


class AccessibilityProber:
    """Diagnoses whether and how a URL can be fetched."""

    def __init__(
        self,
        fetch_client,
        warmup_store,
        cookie_warmer: Optional[CookieWarmer] = None,
        timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
        recorder=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetch_client = fetch_client
        self.warmup_store = warmup_store
        self.cookie_warmer = cookie_warmer or CookieWarmer(fetch_client, warmup_store)
        self.timeout_ms = timeout_ms
        self.recorder = recorder
        self.clock = clock

    def probe(
        self,
        url: str,
        bypass_head: bool = False,
        domain_hint: Optional[str] = None,
    ) -> ProbeResult:
        """Probe ``url``.

        Args:
            url: Page to probe.
            bypass_head: Skip HEAD and start with a small ranged GET (for
                platforms that reject HEAD outright).
            domain_hint: Domain whose warm-up hint should be consulted and
                updated, when it differs from the URL's own host.

        Raises:
            ValidationError: the URL is malformed or not public.
        """
        validate_public_url(url)
        started = self.clock()
        hint_key = domain_hint or url
        hint = self.warmup_store.get(hint_key)

        identity = apply_regional_headers(identity_for_attempt(0), url)
        if hint and hint.cookie_header:
            identity = identity.with_cookie(hint.cookie_header)

        try:
            result = self._run(url, identity, bypass_head)
        except ValidationError:
            raise
        except AcquisitionError as exc:
            result = ProbeResult(
                accessible=False,
                diagnosis=classify_network_exception(exc),
                error=str(exc),
            )

        result.response_time_ms = (self.clock() - started) * 1000
        self._write_back(hint_key, result)
        logger.info(
            f"🔎 Probe {url}: {result.diagnosis.value} "
            f"(accessible={result.accessible}, status={result.status_code})"
        )
        return result

    def _run(self, url: str, identity: FetchIdentity, bypass_head: bool) -> ProbeResult:
        if bypass_head:
            response = self._get(url, identity, PROBE_RANGE_BYTES)
            server = detect_blocking_server(response.headers)
            if self._get_succeeded(response):
                return ProbeResult(True, AccessibilityDiagnosis.OK, response.status, server)
            return self._escalate(url, identity, response.status, server)

        response = self.fetch_client.fetch(
            url, method="HEAD", headers=identity.as_headers(), timeout_ms=self.timeout_ms
        )
        response.close()
        server = detect_blocking_server(response.headers)

        if 200 <= response.status < 400:
            return ProbeResult(True, AccessibilityDiagnosis.OK, response.status, server)

        if response.status not in BLOCKING_STATUSES:
            return ProbeResult(
                False,
                AccessibilityDiagnosis.UNKNOWN,
                response.status,
                server,
                error=f"HEAD returned {response.status}",
            )

        logger.info(f"🚧 HEAD blocked for {url} ({response.status}); trying ranged GET")
        ranged = self._get(url, identity, PROBE_RANGE_BYTES)
        if self._get_succeeded(ranged):
            return ProbeResult(
                True,
                AccessibilityDiagnosis.HEAD_BLOCKED,
                ranged.status,
                server or detect_blocking_server(ranged.headers),
            )

        return self._escalate(url, identity, ranged.status, server)

    def _escalate(
        self,
        url: str,
        identity: FetchIdentity,
        status: Optional[int],
        server: Optional[str],
    ) -> ProbeResult:
        cookie = self.cookie_warmer.warm(url, identity)
        warmed = identity.with_cookie(cookie) if cookie else identity

        response = self._get(url, warmed, EXPANDED_RANGE_BYTES)
        if not self._get_succeeded(response):
            response = self._get(url, warmed, None)

        server = server or detect_blocking_server(response.headers)
        if self._get_succeeded(response):
            diagnosis = (
                AccessibilityDiagnosis.COOKIE_REQUIRED
                if cookie
                else AccessibilityDiagnosis.PARTIAL_GET_BLOCKED
            )
            return ProbeResult(
                True, diagnosis, response.status, server, cookie_obtained=bool(cookie)
            )

        return ProbeResult(
            False,
            AccessibilityDiagnosis.FULL_BLOCK,
            response.status or status,
            server,
            error=f"All probe fallbacks failed (last status {response.status})",
            cookie_obtained=bool(cookie),
        )

    def _get(self, url: str, identity: FetchIdentity, byte_range: Optional[int]) -> FetchResponse:
        return self.fetch_client.fetch(
            url,
            method="GET",
            headers=identity.as_headers(),
            timeout_ms=self.timeout_ms,
            byte_range=byte_range,
        )

    @staticmethod
    def _get_succeeded(response: FetchResponse) -> bool:
        if response.status not in (200, 206):
            response.close()
            return False
        return not looks_like_challenge_page(response.text())

    def _write_back(self, key: str, result: ProbeResult) -> None:
        self.warmup_store.record_attempt(
            key,
            result.status_code,
            diagnosis=result.diagnosis,
            reason="probe",
            server=result.blocking_server,
            details=result.error,
        )
        if self.recorder is not None:
            self.recorder.record(
                EVENT_DIAGNOSIS,
                result.diagnosis.value,
                result.accessible,
                url=key,
                status=result.status_code,
                server=result.blocking_server,
            )
