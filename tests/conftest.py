"""Pytest-wide fixtures for newsacquire tests.

Nothing here touches the network: single attempts go through
``FakeFetchClient`` and whole resilient fetches through ``StubEngine``.
"""

from __future__ import annotations

import os
from datetime import datetime
from types import SimpleNamespace
from typing import Callable

import pytest

from newsacquire.config import Settings, reset_settings
from newsacquire.crawler.fetch import FetchResponse
from newsacquire.crawler.warmup import InMemoryWarmupStore
from newsacquire.pipeline import url_filters
from newsacquire.utils.telemetry import EventRecorder
from tests.helpers.fakes import FIXED_EPOCH, FIXED_NOW, FakeFetchClient, build_response


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Fresh process settings per test, unaffected by the caller's env."""
    for key in list(os.environ):
        if key.startswith("NEWSACQUIRE_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def make_response() -> Callable[..., FetchResponse]:
    return build_response


@pytest.fixture
def fake_client() -> FakeFetchClient:
    return FakeFetchClient()


@pytest.fixture
def settings() -> Settings:
    return Settings(max_retries=2, base_delay_ms=1, max_delay_ms=5, warmup_timeout_ms=100)


@pytest.fixture
def warmup_store() -> InMemoryWarmupStore:
    return InMemoryWarmupStore(clock=lambda: FIXED_EPOCH)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder(log_events=False)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def no_sleep(sleeps) -> Callable[[float], None]:
    return sleeps.append


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def sniffer_verdicts(monkeypatch) -> dict[str, bool]:
    """Replace StorySniffer with a lookup table; unknown URLs are not articles."""
    verdicts: dict[str, bool] = {}
    fake = SimpleNamespace(guess=lambda url: verdicts.get(url, False))
    monkeypatch.setattr(url_filters, "_sniffer", lambda: fake)
    return verdicts
