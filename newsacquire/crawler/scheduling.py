"""Batch scheduling of discovery across a topic's sources.

Decides which sources are due based on their declared cadence and last
scrape time, then runs discovery for them in fixed-size concurrent groups
under a job-wide time budget and a per-source timeout.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol, Sequence

from ..config import Settings, get_settings
from ..models.articles import ArticleData, JobInput, ScrapingResult, SourceRecord
from ..utils.telemetry import EVENT_SOURCE

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY_HOURS = 24.0
BUDGET_CUTOFF_RATIO = 0.8
TIMEOUT_ERROR = "Processing timeout"
SKIPPED_ERROR = "Skipped: job time budget nearly exhausted"

_NUMERIC_HOURS_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:h|hr|hrs|hours?)?\s*$")


def parse_frequency_to_hours(freq: str | float | int | None) -> float:
    """Convert a cadence (hours, or a word like 'daily') to hours between runs.

    Ambiguous input falls back to a daily cadence.
    """
    if freq is None or freq == "":
        return DEFAULT_FREQUENCY_HOURS
    if isinstance(freq, (int, float)):
        return float(freq) if freq > 0 else DEFAULT_FREQUENCY_HOURS

    f = str(freq).lower()
    numeric = _NUMERIC_HOURS_RE.match(f)
    if numeric:
        hours = float(numeric.group(1))
        return hours if hours > 0 else DEFAULT_FREQUENCY_HOURS
    if "hour" in f:
        return 1.0
    if "daily" in f or f == "day" or "broadcast" in f:
        # Daily outlets publish throughout the day
        return 6.0
    # bi-weekly before the generic weekly match
    if "bi-week" in f or "biweekly" in f or "every 2" in f:
        return 14 * 24.0
    if "weekly" in f or "week" in f:
        return 3.5 * 24
    if "monthly" in f or "month" in f:
        return 30 * 24.0
    return DEFAULT_FREQUENCY_HOURS


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def should_scrape_source(
    source: SourceRecord, force_rescrape: bool = False, now: datetime | None = None
) -> bool:
    """Whether ``source`` is due: forced, never scraped, or its cadence elapsed."""
    if force_rescrape or source.last_scraped_at is None:
        return True

    now = _aware(now or datetime.now(timezone.utc))
    cadence = source.scrape_frequency_hours
    if not cadence:
        cadence = parse_frequency_to_hours((source.metadata or {}).get("frequency"))
    return now - _aware(source.last_scraped_at) >= timedelta(hours=cadence)


@dataclass(frozen=True)
class StoreCounts:
    articles_stored: int = 0
    rejected_low_relevance: int = 0
    rejected_low_quality: int = 0
    rejected_competing: int = 0
    duplicates_skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "articles_stored": self.articles_stored,
            "rejected_low_relevance": self.rejected_low_relevance,
            "rejected_low_quality": self.rejected_low_quality,
            "rejected_competing": self.rejected_competing,
            "duplicates_skipped": self.duplicates_skipped,
        }


class ArticleStore(Protocol):
    """Persistence collaborator; it owns dedup and permanent suppression."""

    def store_articles(
        self, articles: Sequence[ArticleData], topic_id: str, max_age_days: int
    ) -> StoreCounts: ...


@dataclass
class SourceOutcome:
    source_id: str
    success: bool
    articles_found: int = 0
    articles_scraped: int = 0
    articles_qualified: int = 0
    errors: list[str] = field(default_factory=list)
    method: Optional[str] = None
    skipped: bool = False
    store_counts: Optional[StoreCounts] = None
    source_updates: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @classmethod
    def failed(cls, source_id: str, error: str, **kwargs) -> "SourceOutcome":
        return cls(source_id=source_id, success=False, errors=[error], **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "success": self.success,
            "skipped": self.skipped,
            "method": self.method,
            "articles_found": self.articles_found,
            "articles_scraped": self.articles_scraped,
            "articles_qualified": self.articles_qualified,
            "errors": list(self.errors),
            "store_counts": self.store_counts.to_dict() if self.store_counts else None,
            "source_updates": dict(self.source_updates),
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class JobReport:
    topic_id: str
    outcomes: list[SourceOutcome] = field(default_factory=list)
    not_due: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> list[SourceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.success]

    @property
    def skipped(self) -> list[SourceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.skipped]

    @property
    def partial_success(self) -> bool:
        return bool(self.succeeded)

    @property
    def totals(self) -> dict[str, int]:
        totals = {
            "sources_processed": sum(1 for o in self.outcomes if not o.skipped),
            "sources_succeeded": len(self.succeeded),
            "sources_skipped": len(self.skipped),
            "articles_found": sum(o.articles_found for o in self.outcomes),
            "articles_scraped": sum(o.articles_scraped for o in self.outcomes),
            "articles_qualified": sum(o.articles_qualified for o in self.outcomes),
        }
        for key in StoreCounts.__dataclass_fields__:
            totals[key] = sum(
                getattr(o.store_counts, key) for o in self.outcomes if o.store_counts is not None
            )
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "partial_success": self.partial_success,
            "totals": self.totals,
            "not_due": list(self.not_due),
            "duration_ms": round(self.duration_ms, 1),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchScheduler:
    """Runs discovery for many sources in bounded concurrent groups."""

    def __init__(
        self,
        orchestrator,
        settings: Optional[Settings] = None,
        store: Optional[ArticleStore] = None,
        recorder=None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self.store = store
        self.recorder = recorder
        self.clock = clock
        self.now = now

    def select_sources(self, sources: Sequence[SourceRecord], job: JobInput) -> tuple[list, list]:
        """Split into ``(due, not_due)`` honouring ``source_ids`` and ``max_sources``."""
        now = self.now()
        wanted = set(job.source_ids) if job.source_ids else None
        due, not_due = [], []
        for source in sources:
            if wanted is not None and source.id not in wanted:
                continue
            if should_scrape_source(source, job.force_rescrape, now):
                due.append(source)
            else:
                not_due.append(source)
        if job.max_sources is not None:
            due = due[: max(job.max_sources, 0)]
        return due, not_due

    def run(self, sources: Sequence[SourceRecord], topic, job: Optional[JobInput] = None, tenant_id=None) -> JobReport:
        job = job or JobInput(topic_id=topic.id)
        started = self.clock()
        due, not_due = self.select_sources(sources, job)
        report = JobReport(topic_id=topic.id, not_due=[source.id for source in not_due])

        batch_size = max(1, job.batch_size or self.settings.batch_size)
        timeout_ms = (
            self.settings.fast_source_timeout_ms if job.fast_mode else self.settings.source_timeout_ms
        )
        budget_s = self.settings.job_budget_ms / 1000.0
        logger.info(
            f"🚀 Job for topic {topic.id}: {len(due)} due sources "
            f"({len(not_due)} not due), batches of {batch_size}"
        )

        for index in range(0, len(due), batch_size):
            group = due[index : index + batch_size]
            elapsed = self.clock() - started
            if elapsed >= BUDGET_CUTOFF_RATIO * budget_s:
                remaining = due[index:]
                logger.warning(
                    f"⏱️ {elapsed:.1f}s of {budget_s:.0f}s budget used; "
                    f"skipping {len(remaining)} sources"
                )
                report.outcomes.extend(
                    SourceOutcome.failed(source.id, SKIPPED_ERROR, skipped=True) for source in remaining
                )
                break
            report.outcomes.extend(self._run_group(group, topic, job, tenant_id, timeout_ms / 1000.0))

        report.duration_ms = (self.clock() - started) * 1000
        totals = report.totals
        logger.info(
            f"🏁 Topic {topic.id}: {totals['sources_succeeded']}/{totals['sources_processed']} "
            f"sources succeeded, {totals['articles_qualified']} articles qualified"
        )
        return report

    def _run_group(self, group, topic, job: JobInput, tenant_id, timeout_s: float) -> list[SourceOutcome]:
        """Discover concurrently; store and record on the calling thread.

        A worker that overruns its timeout is abandoned. Its result is
        never stored or recorded, even if discovery finishes later.
        """
        max_age = job.max_age_days or topic.max_age_days or self.settings.max_age_days
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(group), thread_name_prefix="discovery"
        )
        try:
            group_started = self.clock()
            futures = [
                (
                    source,
                    executor.submit(
                        self.orchestrator.discover,
                        source,
                        topic,
                        tenant_id=tenant_id,
                        max_age_days=max_age,
                    ),
                )
                for source in group
            ]
            outcomes = []
            for source, future in futures:
                wait = max(0.0, group_started + timeout_s - self.clock())
                try:
                    result: ScrapingResult = future.result(timeout=wait)
                except concurrent.futures.TimeoutError:
                    future.cancel()
                    logger.warning(f"⏰ {source.id} exceeded {timeout_s:.0f}s; result discarded")
                    outcome = SourceOutcome.failed(
                        source.id, TIMEOUT_ERROR, duration_ms=timeout_s * 1000
                    )
                except Exception as exc:
                    logger.error(f"Discovery crashed for source {source.id}", exc_info=exc)
                    outcome = SourceOutcome.failed(source.id, f"Unexpected error: {exc}")
                    outcome.duration_ms = (self.clock() - group_started) * 1000
                else:
                    outcome = self._complete_source(source, topic, result, max_age)
                    outcome.duration_ms = (self.clock() - group_started) * 1000
                self._record(source, outcome)
                outcomes.append(outcome)
            return outcomes
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _complete_source(self, source: SourceRecord, topic, result: ScrapingResult, max_age: int) -> SourceOutcome:
        outcome = SourceOutcome(
            source_id=source.id,
            success=result.success,
            articles_found=result.articles_found,
            articles_scraped=result.articles_scraped,
            articles_qualified=len(result.articles),
            errors=list(result.errors),
            method=result.method,
            source_updates=dict(result.source_updates),
        )

        if result.success and self.store is not None:
            try:
                outcome.store_counts = self.store.store_articles(
                    list(result.articles), topic.id, max_age
                )
            except Exception as exc:
                logger.exception(f"Storing articles failed for source {source.id}")
                outcome.errors.append(f"Store error: {exc}")

        outcome.source_updates.update(
            {
                "last_scraped_at": self.now().isoformat(),
                "last_scrape_success": result.success,
                "last_articles_found": result.articles_found,
            }
        )
        return outcome

    def _record(self, source: SourceRecord, outcome: SourceOutcome) -> None:
        if self.recorder is None:
            return
        self.recorder.record(
            EVENT_SOURCE,
            outcome.method or "none",
            outcome.success,
            url=source.feed_url,
            source_id=source.id,
            articles_qualified=outcome.articles_qualified,
            errors=outcome.errors[:5],
        )
