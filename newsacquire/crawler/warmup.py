"""Per-domain warm-up hints learned from previous fetch attempts.

A hint records what worked (or what blocked us) for a domain: cookies from
a warm-up request, the last diagnosis, a working alternate route and
residential-IP results. Hints are advisory. They age but never expire, and
a recorded alternate route survives later failures; only a newer success
replaces it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .utils import normalize_domain

logger = logging.getLogger(__name__)

FRESH_SECONDS = 24 * 3600
STALE_SECONDS = 30 * 24 * 3600
MIN_CONFIDENCE = 0.1


class AccessibilityDiagnosis(str, Enum):
    """Why a domain was (in)accessible."""

    OK = "ok"
    HEAD_BLOCKED = "head-blocked"
    PARTIAL_GET_BLOCKED = "partial-get-blocked"
    COOKIE_REQUIRED = "cookie-required"
    ALTERNATE_ROUTE = "alternate-route"
    RESIDENTIAL_REQUIRED = "residential-required"
    FULL_BLOCK = "full-block"
    NETWORK_BLOCK = "network-block"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BlockProfile:
    diagnosis: AccessibilityDiagnosis
    server: Optional[str] = None
    details: Optional[str] = None


@dataclass(frozen=True)
class AlternateRouteRecord:
    strategy: str
    last_success: float
    url: Optional[str] = None


@dataclass(frozen=True)
class ResidentialIpHint:
    sample_ip: str
    last_tried: float
    country: Optional[str] = None
    last_success: Optional[float] = None


@dataclass(frozen=True)
class WarmupHint:
    last_updated: float
    reason: str = ""
    cookie_header: Optional[str] = None
    last_status: Optional[int] = None
    block_profile: Optional[BlockProfile] = None
    alternate_route: Optional[AlternateRouteRecord] = None
    residential_ip_hint: Optional[ResidentialIpHint] = None

    def age_seconds(self, now: Optional[float] = None) -> float:
        return max(0.0, (now if now is not None else time.time()) - self.last_updated)

    def confidence(self, now: Optional[float] = None) -> float:
        """1.0 while fresh, decaying linearly to a floor; never zero."""
        age = self.age_seconds(now)
        if age <= FRESH_SECONDS:
            return 1.0
        if age >= STALE_SECONDS:
            return MIN_CONFIDENCE
        span = STALE_SECONDS - FRESH_SECONDS
        return max(MIN_CONFIDENCE, 1.0 - (age - FRESH_SECONDS) / span * (1.0 - MIN_CONFIDENCE))

    @property
    def diagnosis(self) -> Optional[AccessibilityDiagnosis]:
        return self.block_profile.diagnosis if self.block_profile else None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.block_profile is not None:
            data["block_profile"]["diagnosis"] = self.block_profile.diagnosis.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WarmupHint":
        block = data.get("block_profile")
        route = data.get("alternate_route")
        residential = data.get("residential_ip_hint")
        return cls(
            last_updated=float(data.get("last_updated") or 0.0),
            reason=data.get("reason") or "",
            cookie_header=data.get("cookie_header"),
            last_status=data.get("last_status"),
            block_profile=(
                BlockProfile(
                    diagnosis=_coerce_diagnosis(block.get("diagnosis")),
                    server=block.get("server"),
                    details=block.get("details"),
                )
                if block
                else None
            ),
            alternate_route=AlternateRouteRecord(**route) if route else None,
            residential_ip_hint=ResidentialIpHint(**residential) if residential else None,
        )


def _coerce_diagnosis(value: Any) -> AccessibilityDiagnosis:
    try:
        return AccessibilityDiagnosis(value)
    except ValueError:
        return AccessibilityDiagnosis.UNKNOWN


def merge_hints(existing: Optional[WarmupHint], incoming: WarmupHint) -> WarmupHint:
    """Combine a stored hint with a newer observation.

    Fields the newer observation leaves empty keep their stored values. In
    particular an attempt that did not produce an alternate route (a
    failure) never clears the stored one.
    """
    if existing is None:
        return incoming

    return WarmupHint(
        last_updated=max(existing.last_updated, incoming.last_updated),
        reason=incoming.reason or existing.reason,
        cookie_header=incoming.cookie_header or existing.cookie_header,
        last_status=(
            incoming.last_status if incoming.last_status is not None else existing.last_status
        ),
        block_profile=incoming.block_profile or existing.block_profile,
        alternate_route=incoming.alternate_route or existing.alternate_route,
        residential_ip_hint=incoming.residential_ip_hint or existing.residential_ip_hint,
    )


class WarmupStore:
    """Base store. Subclasses provide ``_load``/``_save``; writes are
    last-write-wins with no cross-task locking."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def _load(self, domain: str) -> Optional[WarmupHint]:
        raise NotImplementedError

    def _save(self, domain: str, hint: WarmupHint) -> None:
        raise NotImplementedError

    def get(self, url_or_domain: str) -> Optional[WarmupHint]:
        domain = normalize_domain(url_or_domain)
        if not domain:
            return None
        return self._load(domain)

    def merge(self, url_or_domain: str, observation: WarmupHint) -> WarmupHint:
        domain = normalize_domain(url_or_domain)
        merged = merge_hints(self._load(domain), observation)
        self._save(domain, merged)
        return merged

    def record_attempt(
        self,
        url_or_domain: str,
        status: Optional[int],
        diagnosis: Optional[AccessibilityDiagnosis] = None,
        reason: str = "",
        server: Optional[str] = None,
        details: Optional[str] = None,
    ) -> WarmupHint:
        block = BlockProfile(diagnosis, server, details) if diagnosis else None
        return self.merge(
            url_or_domain,
            WarmupHint(
                last_updated=self.clock(),
                reason=reason,
                last_status=status,
                block_profile=block,
            ),
        )

    def record_cookie(self, url_or_domain: str, cookie_header: str) -> WarmupHint:
        return self.merge(
            url_or_domain,
            WarmupHint(
                last_updated=self.clock(),
                reason="cookie-warmup",
                cookie_header=cookie_header,
            ),
        )

    def record_alternate_route(
        self, url_or_domain: str, strategy: str, url: Optional[str] = None
    ) -> WarmupHint:
        now = self.clock()
        return self.merge(
            url_or_domain,
            WarmupHint(
                last_updated=now,
                reason="alternate-route",
                block_profile=BlockProfile(AccessibilityDiagnosis.ALTERNATE_ROUTE),
                alternate_route=AlternateRouteRecord(strategy, now, url),
            ),
        )

    def record_residential_attempt(
        self,
        url_or_domain: str,
        sample_ip: str,
        country: Optional[str],
        succeeded: bool,
    ) -> WarmupHint:
        now = self.clock()
        previous = self.get(url_or_domain)
        last_success = now if succeeded else None
        if last_success is None and previous and previous.residential_ip_hint:
            last_success = previous.residential_ip_hint.last_success
        return self.merge(
            url_or_domain,
            WarmupHint(
                last_updated=now,
                reason="residential-ip",
                residential_ip_hint=ResidentialIpHint(
                    sample_ip=sample_ip,
                    last_tried=now,
                    country=country,
                    last_success=last_success,
                ),
            ),
        )


class InMemoryWarmupStore(WarmupStore):
    """Process-lifetime dict-backed store."""

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._hints: dict[str, WarmupHint] = {}

    def _load(self, domain: str) -> Optional[WarmupHint]:
        return self._hints.get(domain)

    def _save(self, domain: str, hint: WarmupHint) -> None:
        self._hints[domain] = hint

    def __len__(self) -> int:
        return len(self._hints)

    def domains(self) -> list[str]:
        return sorted(self._hints)


class SqlWarmupStore(WarmupStore):
    """Warm-up hints persisted through SQLAlchemy so later jobs reuse them."""

    def __init__(self, session_factory, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.session_factory = session_factory

    def _load(self, domain: str) -> Optional[WarmupHint]:
        from ..models import DomainWarmupRecord

        with self.session_factory() as session:
            record = session.get(DomainWarmupRecord, domain)
            if record is None or not record.hint:
                return None
            return WarmupHint.from_dict(record.hint)

    def _save(self, domain: str, hint: WarmupHint) -> None:
        from ..models import DomainWarmupRecord

        with self.session_factory() as session:
            record = session.get(DomainWarmupRecord, domain)
            if record is None:
                record = DomainWarmupRecord(domain=domain)
                session.add(record)
            record.hint = hint.to_dict()
            record.updated_at_epoch = hint.last_updated
            session.commit()

