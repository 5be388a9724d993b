"""Adaptive retry engine.

``RetryEngine.fetch_resilient`` wraps single ``FetchClient`` attempts with
jittered backoff, identity rotation, regional and stealth headers, cookie
warm-up on 403, ranged-GET fallbacks and finally alternate routes. Every
outcome is fed back into the warm-up store so later jobs start from what
worked.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from . import (
    BLOCKING_STATUSES,
    AcquisitionError,
    BlockedError,
    FetchTimeoutError,
    HttpError,
    InvalidContentError,
    NetworkError,
    ValidationError,
    http_error_for_status,
)
from .alternate_routes import AlternateRouteRunner
from .cookies import CookieWarmer
from .fetch import FetchResponse
from .identity import (
    FetchIdentity,
    apply_regional_headers,
    apply_stealth,
    generate_referer,
    identity_for_attempt,
    is_uk_or_ireland,
    sample_forwarded_ip,
)
from .utils import country_for_host, is_government_domain, normalize_domain, validate_public_url
from .warmup import AccessibilityDiagnosis, WarmupHint
from ..config import Settings, get_settings
from ..utils.bot_protection import (
    CONTENT_PAGE,
    detect_blocking_server,
    is_valid_content,
    is_waf_server,
)
from ..utils.telemetry import EVENT_DIAGNOSIS

logger = logging.getLogger(__name__)

RANGED_FALLBACK_BYTES = 8192
MAX_JITTER_MS = 1000.0
GOVERNMENT_DELAY_FLOOR_MS = 3000.0
FAIL_FAST_STATUSES = frozenset({503, 504})
STEALTH_TRIGGER_STATUSES = frozenset({403, 429})


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    exponential: bool = True

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValidationError(f"max_retries must be >= 0, got {self.max_retries}")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_retries=max(0, settings.max_retries),
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
        )

    def restricted(self, max_retries: int = 1) -> "RetryPolicy":
        return replace(self, max_retries=min(self.max_retries, max_retries))

    def calculate_delay(
        self,
        attempt: int,
        url: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> float:
        """Milliseconds to wait before the attempt after ``attempt``.

        Government and public-sector hosts get twice the delay with a
        3 second floor.
        """
        if self.exponential:
            delay = min(self.base_delay_ms * (2 ** max(0, attempt)), self.max_delay_ms)
        else:
            delay = self.base_delay_ms
        delay += (rng or random).uniform(0, MAX_JITTER_MS)

        if url and is_government_domain(url):
            delay = max(delay * 2, GOVERNMENT_DELAY_FLOOR_MS)
        return float(delay)


class RetryEngine:
    """Resilient fetching on top of a single-attempt ``FetchClient``."""

    def __init__(
        self,
        fetch_client,
        warmup_store,
        cookie_warmer: Optional[CookieWarmer] = None,
        route_runner: Optional[AlternateRouteRunner] = None,
        settings: Optional[Settings] = None,
        recorder=None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.fetch_client = fetch_client
        self.warmup_store = warmup_store
        self.settings = settings or get_settings()
        self.cookie_warmer = cookie_warmer or CookieWarmer(
            fetch_client, warmup_store, timeout_ms=self.settings.warmup_timeout_ms
        )
        self.route_runner = route_runner or AlternateRouteRunner(warmup_store, recorder)
        self.recorder = recorder
        self.sleep = sleep
        self.rng = rng or random.Random()

    def fetch_resilient(
        self,
        url: str,
        policy: Optional[RetryPolicy] = None,
        allow_alternate_routes: bool = True,
        cookie_header: Optional[str] = None,
        alternates_attempted: bool = False,
        profile=None,
        timeout_ms: Optional[int] = None,
        content_kind: str = CONTENT_PAGE,
    ) -> str:
        """Fetch ``url`` and return its body, escalating as needed.

        Args:
            url: Page or feed to fetch.
            policy: Retry policy; defaults to the configured one.
            allow_alternate_routes: Try AMP/mobile/RSS rewrites once every
                attempt has failed.
            cookie_header: Cookie to send; takes precedence over the
                domain's stored warm-up cookie.
            alternates_attempted: Set by the alternate-route runner so a
                rewritten URL never spawns further rewrites.
            profile: Resolved ``DomainProfile`` (timeouts, route hints).
            timeout_ms: Explicit per-request timeout override.
            content_kind: Validation mode for 2xx bodies: ``page``,
                ``xml`` (feeds, sitemaps) or ``text`` (robots.txt).

        A domain's remembered alternate route is tried before the
        canonical URL; the canonical attempts only run if it fails.

        Raises:
            ValidationError: the URL is not an allowed public http(s) URL.
            AcquisitionError: the last failure once everything is exhausted.
        """
        validate_public_url(url)
        policy = policy or RetryPolicy.from_settings(self.settings)
        timeout = self._timeout_for(url, profile, timeout_ms)

        use_routes = allow_alternate_routes and not alternates_attempted
        remembered = self.route_runner.remembered_route(url, profile) if use_routes else None
        if remembered is not None:
            logger.info(f"🔀 Trying remembered {remembered.strategy} route first for {url}")
            body = self.route_runner.try_routes(
                self,
                url,
                policy=policy,
                profile=profile,
                cookie_header=cookie_header,
                content_kind=content_kind,
                routes=[remembered],
            )
            if body is not None:
                return body

        last_error: Optional[AcquisitionError] = None
        previous_status: Optional[int] = None
        was_blocked = False

        for attempt in range(policy.max_retries + 1):
            hint = self.warmup_store.get(url)
            identity = self._identity_for(url, attempt, hint, cookie_header)

            if attempt > 0:
                delay_ms = policy.calculate_delay(attempt - 1, url, self.rng)
                logger.debug(f"Retry {attempt}/{policy.max_retries} for {url} in {delay_ms:.0f}ms")
                self.sleep(delay_ms / 1000.0)

            try:
                body, diagnosis = self._attempt(url, identity, timeout, content_kind)
            except ValidationError:
                raise
            except NetworkError as exc:
                last_error = exc
                previous_status = None
                self._record_failure(url, None, exc, identity)
                if exc.fatal:
                    logger.warning(f"💀 Fatal network error for {url}, not retrying: {exc}")
                    raise
                continue
            except HttpError as exc:
                last_error = exc
                was_blocked = was_blocked or isinstance(exc, BlockedError)
                self._record_failure(url, exc.status, exc, identity)
                if exc.status in FAIL_FAST_STATUSES and previous_status in FAIL_FAST_STATUSES:
                    logger.warning(f"⛔ Repeated {exc.status} from {url}; failing fast")
                    break
                previous_status = exc.status
                continue
            except (InvalidContentError, FetchTimeoutError) as exc:
                last_error = exc
                previous_status = None
                self._record_failure(url, None, exc, identity)
                continue

            if was_blocked and identity.forwarded_ip and diagnosis is None:
                diagnosis = AccessibilityDiagnosis.RESIDENTIAL_REQUIRED
            self._record_success(url, diagnosis, identity)
            if attempt:
                logger.info(f"✅ Fetched {url} on attempt {attempt + 1}")
            return body

        if use_routes:
            body = self.route_runner.try_routes(
                self,
                url,
                policy=policy,
                profile=profile,
                cookie_header=cookie_header,
                content_kind=content_kind,
                exclude={remembered.url} if remembered is not None else (),
            )
            if body is not None:
                return body

        if last_error is None:
            last_error = AcquisitionError(f"All attempts failed for {url}")
        logger.warning(f"❌ Giving up on {url}: {last_error}")
        raise last_error

    def _timeout_for(self, url: str, profile, timeout_ms: Optional[int]) -> int:
        if timeout_ms:
            return timeout_ms
        if is_government_domain(url):
            return self.settings.gov_timeout_ms
        profile_timeout = getattr(getattr(profile, "accessibility", None), "timeout", None)
        if profile_timeout:
            return profile_timeout
        return self.settings.timeout_ms

    def _identity_for(
        self,
        url: str,
        attempt: int,
        hint: Optional[WarmupHint],
        cookie_header: Optional[str],
    ) -> FetchIdentity:
        identity = apply_regional_headers(identity_for_attempt(attempt), url)

        if attempt >= 1:
            if self._wants_stealth(url, hint):
                identity = apply_stealth(identity)
            else:
                identity = identity.with_headers({"Referer": generate_referer(url)})

            if self._wants_forwarded_ip(url, hint):
                country = country_for_host(url)
                if not country and hint and hint.residential_ip_hint:
                    country = hint.residential_ip_hint.country
                identity = identity.with_forwarded_ip(
                    sample_forwarded_ip(country or "us", self.rng)
                )

        cookie = cookie_header or (hint.cookie_header if hint else None)
        return identity.with_cookie(cookie)

    @staticmethod
    def _wants_stealth(url: str, hint: Optional[WarmupHint]) -> bool:
        if normalize_domain(url).endswith(".co.uk"):
            return True
        if hint is None:
            return False
        if hint.last_status in STEALTH_TRIGGER_STATUSES:
            return True
        return bool(hint.block_profile and is_waf_server(hint.block_profile.server))

    @staticmethod
    def _wants_forwarded_ip(url: str, hint: Optional[WarmupHint]) -> bool:
        if is_uk_or_ireland(url):
            return True
        if hint is None:
            return False
        return (
            hint.diagnosis == AccessibilityDiagnosis.RESIDENTIAL_REQUIRED
            or hint.residential_ip_hint is not None
        )

    def _attempt(
        self,
        url: str,
        identity: FetchIdentity,
        timeout_ms: int,
        content_kind: str = CONTENT_PAGE,
    ) -> tuple[str, Optional[AccessibilityDiagnosis]]:
        """One attempt including its in-attempt fallbacks.

        Returns the body and, when a fallback was needed, the diagnosis
        that describes what worked.
        """
        response = self._get(url, identity, timeout_ms)

        if response.status in BLOCKING_STATUSES:
            response.close()
            server = detect_blocking_server(response.headers)
            self.warmup_store.record_attempt(
                url,
                response.status,
                diagnosis=AccessibilityDiagnosis.FULL_BLOCK,
                reason="retry",
                server=server,
            )
            logger.info(f"🚧 {url} answered {response.status} (server={server})")

            if response.status == 403:
                cookie = self.cookie_warmer.warm(url, identity)
                if cookie:
                    identity = identity.with_cookie(cookie)
                    body = self._accepted_body(self._get(url, identity, timeout_ms), content_kind)
                    if body is not None:
                        return body, AccessibilityDiagnosis.COOKIE_REQUIRED

            body = self._accepted_body(
                self._get(url, identity, timeout_ms, byte_range=RANGED_FALLBACK_BYTES),
                content_kind,
            )
            if body is not None:
                return body, AccessibilityDiagnosis.PARTIAL_GET_BLOCKED
            raise http_error_for_status(response.status, url)

        if not response.ok:
            response.close()
            raise http_error_for_status(response.status, url)

        body = response.text()
        if is_valid_content(body, content_kind):
            return body, None

        logger.info(f"⚠️ {url} returned {response.status} but content failed validation")
        ranged = self._accepted_body(
            self._get(url, identity, timeout_ms, byte_range=RANGED_FALLBACK_BYTES),
            content_kind,
        )
        if ranged is not None:
            return ranged, AccessibilityDiagnosis.PARTIAL_GET_BLOCKED
        raise InvalidContentError(f"Content validation failed for {url}")

    def _get(
        self,
        url: str,
        identity: FetchIdentity,
        timeout_ms: int,
        byte_range: Optional[int] = None,
    ) -> FetchResponse:
        return self.fetch_client.fetch(
            url,
            method="GET",
            headers=identity.as_headers(),
            timeout_ms=timeout_ms,
            byte_range=byte_range,
        )

    @staticmethod
    def _accepted_body(response: FetchResponse, content_kind: str = CONTENT_PAGE) -> Optional[str]:
        if not response.ok:
            response.close()
            return None
        body = response.text()
        return body if is_valid_content(body, content_kind) else None

    def _record_success(
        self,
        url: str,
        diagnosis: Optional[AccessibilityDiagnosis],
        identity: FetchIdentity,
    ) -> None:
        self.warmup_store.record_attempt(url, 200, diagnosis=diagnosis, reason="retry")
        if identity.forwarded_ip:
            self.warmup_store.record_residential_attempt(
                url, identity.forwarded_ip, country_for_host(url), succeeded=True
            )
        if self.recorder is not None:
            self.recorder.record(
                EVENT_DIAGNOSIS,
                (diagnosis or AccessibilityDiagnosis.OK).value,
                True,
                url=url,
            )

    def _record_failure(
        self,
        url: str,
        status: Optional[int],
        exc: Exception,
        identity: FetchIdentity,
    ) -> None:
        if isinstance(exc, NetworkError):
            self.warmup_store.record_attempt(
                url,
                None,
                diagnosis=AccessibilityDiagnosis.NETWORK_BLOCK,
                reason="retry",
                details=str(exc),
            )
        elif status is not None and status not in BLOCKING_STATUSES:
            self.warmup_store.record_attempt(url, status, reason="retry", details=str(exc))
        if identity.forwarded_ip:
            self.warmup_store.record_residential_attempt(
                url, identity.forwarded_ip, country_for_host(url), succeeded=False
            )
        logger.debug(f"Attempt failed for {url}: {exc}")
        if self.recorder is not None:
            self.recorder.record(
                EVENT_DIAGNOSIS,
                type(exc).__name__,
                False,
                url=url,
                status=status,
            )
