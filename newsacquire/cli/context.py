"""Shared CLI plumbing: logging setup and wiring of the acquisition core."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Optional

from newsacquire.config import Settings, get_settings
from newsacquire.crawler.circuit_breaker import CircuitBreaker
from newsacquire.crawler.cookies import CookieWarmer
from newsacquire.crawler.discovery import DiscoveryOrchestrator
from newsacquire.crawler.extractor import ContentExtractor
from newsacquire.crawler.fetch import FetchClient
from newsacquire.crawler.prober import AccessibilityProber
from newsacquire.crawler.profiles import DomainProfileResolver
from newsacquire.crawler.retry import RetryEngine
from newsacquire.models import create_stores
from newsacquire.pipeline.qualification import DEFAULT_SNIPPET_ALLOWLIST, QualificationGate
from newsacquire.utils.telemetry import EventRecorder


def setup_logging(level: str = "INFO") -> None:
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


@dataclass
class Runtime:
    settings: Settings
    fetch_client: FetchClient
    warmup_store: object
    recorder: EventRecorder
    engine: RetryEngine
    prober: AccessibilityProber
    extractor: ContentExtractor
    orchestrator: DiscoveryOrchestrator

    def close(self) -> None:
        self.fetch_client.close()


def build_runtime(settings: Optional[Settings] = None) -> Runtime:
    settings = settings or get_settings()
    fetch_client = FetchClient()
    warmup_store, circuit_store = create_stores(settings.database_url)
    recorder = EventRecorder()
    warmer = CookieWarmer(fetch_client, warmup_store, timeout_ms=settings.warmup_timeout_ms)
    engine = RetryEngine(
        fetch_client, warmup_store, cookie_warmer=warmer, settings=settings, recorder=recorder
    )
    resolver = (
        DomainProfileResolver.from_yaml(settings.profiles_path)
        if settings.profiles_path
        else DomainProfileResolver()
    )
    extractor = ContentExtractor()
    orchestrator = DiscoveryOrchestrator(
        engine,
        fetch_client=fetch_client,
        resolver=resolver,
        gate=QualificationGate(
            allowlist=DEFAULT_SNIPPET_ALLOWLIST + tuple(settings.snippet_allowlist),
            recorder=recorder,
        ),
        extractor=extractor,
        breaker=CircuitBreaker(circuit_store),
        recorder=recorder,
    )
    prober = AccessibilityProber(
        fetch_client, warmup_store, cookie_warmer=warmer, recorder=recorder
    )
    return Runtime(
        settings=settings,
        fetch_client=fetch_client,
        warmup_store=warmup_store,
        recorder=recorder,
        engine=engine,
        prober=prober,
        extractor=extractor,
        orchestrator=orchestrator,
    )
