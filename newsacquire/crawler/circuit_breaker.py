"""Per-URL circuit breaker that temporarily skips persistently failing sources."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_seconds: float = 300.0
    min_requests: int = 3


@dataclass(frozen=True)
class CircuitMetrics:
    state: CircuitState = CircuitState.CLOSED
    total_requests: int = 0
    failure_count: int = 0
    success_count: int = 0
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None
    last_success_at: Optional[float] = None
    opened_at: Optional[float] = None

    @property
    def failure_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return round(self.failure_count / self.total_requests * 100, 2)


class InMemoryCircuitStateStore:
    def __init__(self):
        self._metrics: dict[str, CircuitMetrics] = {}

    def load(self, url: str) -> Optional[CircuitMetrics]:
        return self._metrics.get(url)

    def save(self, url: str, metrics: CircuitMetrics) -> None:
        self._metrics[url] = metrics


class SqlCircuitStateStore:
    """Circuit metrics persisted through SQLAlchemy."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def load(self, url: str) -> Optional[CircuitMetrics]:
        from ..models import CircuitBreakerRecord

        with self.session_factory() as session:
            record = session.get(CircuitBreakerRecord, url)
            if record is None:
                return None
            return CircuitMetrics(
                state=CircuitState(record.state),
                total_requests=record.total_requests or 0,
                failure_count=record.failure_count or 0,
                success_count=record.success_count or 0,
                consecutive_failures=record.consecutive_failures or 0,
                last_failure_at=record.last_failure_at,
                last_success_at=record.last_success_at,
                opened_at=record.opened_at,
            )

    def save(self, url: str, metrics: CircuitMetrics) -> None:
        from ..models import CircuitBreakerRecord

        with self.session_factory() as session:
            record = session.get(CircuitBreakerRecord, url)
            if record is None:
                record = CircuitBreakerRecord(url=url)
                session.add(record)
            record.state = metrics.state.value
            record.total_requests = metrics.total_requests
            record.failure_count = metrics.failure_count
            record.success_count = metrics.success_count
            record.consecutive_failures = metrics.consecutive_failures
            record.last_failure_at = metrics.last_failure_at
            record.last_success_at = metrics.last_success_at
            record.opened_at = metrics.opened_at
            session.commit()


class CircuitBreaker:
    """Closed -> open after repeated failures; half-open after recovery time.

    State is read and written through an injected store; concurrent updates
    are last-write-wins.
    """

    def __init__(
        self,
        store=None,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryCircuitStateStore()
        self.config = config or CircuitBreakerConfig()
        self.clock = clock

    def metrics(self, url: str) -> CircuitMetrics:
        return self.store.load(url) or CircuitMetrics()

    def can_execute(self, url: str) -> bool:
        """Whether a request for ``url`` may proceed.

        An open circuit whose recovery time has passed moves to half-open
        and lets one trial through.
        """
        metrics = self.metrics(url)
        if metrics.state != CircuitState.OPEN:
            return True

        since_failure = self.clock() - (metrics.last_failure_at or 0.0)
        if since_failure >= self.config.recovery_seconds:
            self.store.save(url, replace(metrics, state=CircuitState.HALF_OPEN))
            logger.info(f"🔄 Circuit breaker {url}: transitioning to HALF_OPEN")
            return True
        return False

    def seconds_until_retry(self, url: str) -> float:
        metrics = self.metrics(url)
        if metrics.state != CircuitState.OPEN:
            return 0.0
        elapsed = self.clock() - (metrics.last_failure_at or 0.0)
        return max(0.0, self.config.recovery_seconds - elapsed)

    def record_success(self, url: str) -> CircuitMetrics:
        now = self.clock()
        metrics = self.metrics(url)
        updated = replace(
            metrics,
            state=CircuitState.CLOSED,
            total_requests=metrics.total_requests + 1,
            success_count=metrics.success_count + 1,
            consecutive_failures=0,
            last_success_at=now,
            opened_at=None,
        )
        if metrics.state == CircuitState.HALF_OPEN:
            logger.info(f"🟢 Circuit breaker {url}: recovered to CLOSED")
        self.store.save(url, updated)
        return updated

    def record_failure(self, url: str) -> CircuitMetrics:
        now = self.clock()
        metrics = self.metrics(url)
        updated = replace(
            metrics,
            total_requests=metrics.total_requests + 1,
            failure_count=metrics.failure_count + 1,
            consecutive_failures=metrics.consecutive_failures + 1,
            last_failure_at=now,
        )

        if metrics.state == CircuitState.HALF_OPEN:
            updated = replace(updated, state=CircuitState.OPEN, opened_at=now)
            logger.warning(f"🔴 Circuit breaker {url}: failed in HALF_OPEN, back to OPEN")
        elif (
            updated.total_requests >= self.config.min_requests
            and updated.consecutive_failures >= self.config.failure_threshold
        ):
            updated = replace(updated, state=CircuitState.OPEN, opened_at=now)
            logger.warning(
                f"🔴 Circuit breaker {url}: TRIPPED after "
                f"{updated.consecutive_failures} consecutive failures"
            )

        self.store.save(url, updated)
        return updated

    def reset(self, url: str) -> None:
        self.store.save(url, CircuitMetrics())

    def health_score(self, url: str) -> float:
        """0-100 from success rate, recency of the last success and state."""
        metrics = self.metrics(url)
        if metrics.total_requests == 0:
            return 100.0

        success_rate = metrics.success_count / metrics.total_requests * 100
        since_success = self.clock() - (metrics.last_success_at or 0.0)
        if since_success < 3600:
            recency = 1.0
        elif since_success < 86400:
            recency = 0.8
        else:
            recency = 0.5

        penalty = {
            CircuitState.OPEN: 50,
            CircuitState.HALF_OPEN: 20,
            CircuitState.CLOSED: 0,
        }[metrics.state]
        return max(0.0, min(100.0, success_rate * recency - penalty))
