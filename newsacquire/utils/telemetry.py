"""Structured event recording for acquisition outcomes.

The core emits events (diagnoses, strategy outcomes, qualification
rejections); it does not own their storage. ``EventRecorder`` logs each
event as JSON and keeps them in memory so callers can forward them to
whatever sink they use.
"""

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

EVENT_DIAGNOSIS = "diagnosis"
EVENT_STRATEGY = "strategy"
EVENT_QUALIFICATION = "qualification"
EVENT_SOURCE = "source"


@dataclass
class ScrapeEvent:
    kind: str
    name: str
    success: bool
    url: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class EventRecorder:
    """Collects ``ScrapeEvent`` records and logs them as JSON payloads."""

    def __init__(self, log_events: bool = True):
        self.log_events = log_events
        self.events: list[ScrapeEvent] = []
        self._lock = threading.Lock()

    def record(
        self,
        kind: str,
        name: str,
        success: bool,
        url: Optional[str] = None,
        **detail: Any,
    ) -> ScrapeEvent:
        event = ScrapeEvent(kind=kind, name=name, success=success, url=url, detail=detail)
        with self._lock:
            self.events.append(event)
        if self.log_events:
            logger.info("event %s", json.dumps(asdict(event), default=str))
        return event

    def of_kind(self, kind: str) -> list[ScrapeEvent]:
        with self._lock:
            return [event for event in self.events if event.kind == kind]

    def summary(self) -> dict[str, dict[str, int]]:
        """Counts of successes and failures per ``kind:name``."""
        counts: dict[str, dict[str, int]] = {}
        with self._lock:
            for event in self.events:
                key = f"{event.kind}:{event.name}"
                bucket = counts.setdefault(key, {"success": 0, "failure": 0})
                bucket["success" if event.success else "failure"] += 1
        return counts
