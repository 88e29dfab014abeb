"""
Monitoring - Metrics.

============================================================
RESPONSIBILITY
============================================================
Counts what happens to every frame of the pipeline.

- Frames received from the feed
- Dispatch outcomes per path (event bus / durable log)
- Durable log publish successes and failures
- Durable log commits and withheld offsets

============================================================
DESIGN PRINCIPLES
============================================================
- Counters only, cumulative since process start
- Thread-safe: incremented from worker threads
- Observable: callbacks fire on every increment
- An observer failure never affects the pipeline

============================================================
STANDARD COUNTERS
============================================================
- frames_received
- bus_published / bus_handler_errors
- dispatch_persisted / dispatch_ignored / dispatch_failed
- log_published / log_publish_failed
- log_committed / log_withheld / log_commit_failed

============================================================
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from data_ingestion.types import DispatchOutcome


logger = logging.getLogger("monitoring.metrics")


FRAMES_RECEIVED = "frames_received"
BUS_PUBLISHED = "bus_published"
BUS_HANDLER_ERRORS = "bus_handler_errors"
DISPATCH_PERSISTED = "dispatch_persisted"
DISPATCH_IGNORED = "dispatch_ignored"
DISPATCH_FAILED = "dispatch_failed"
LOG_PUBLISHED = "log_published"
LOG_PUBLISH_FAILED = "log_publish_failed"
LOG_COMMITTED = "log_committed"
LOG_WITHHELD = "log_withheld"
LOG_COMMIT_FAILED = "log_commit_failed"

STANDARD_COUNTERS = (
    FRAMES_RECEIVED,
    BUS_PUBLISHED,
    BUS_HANDLER_ERRORS,
    DISPATCH_PERSISTED,
    DISPATCH_IGNORED,
    DISPATCH_FAILED,
    LOG_PUBLISHED,
    LOG_PUBLISH_FAILED,
    LOG_COMMITTED,
    LOG_WITHHELD,
    LOG_COMMIT_FAILED,
)


CounterObserver = Callable[[str, int], None]
"""Called with (counter name, new value) after each increment."""


@dataclass
class MetricsSnapshot:
    """Point-in-time copy of every counter."""
    counters: Dict[str, int]
    started_at: datetime
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, name: str) -> int:
        return self.counters.get(name, 0)

    def to_dict(self) -> dict:
        return {
            "counters": dict(self.counters),
            "started_at": self.started_at.isoformat(),
            "taken_at": self.taken_at.isoformat(),
        }


class PipelineMetrics:
    """Thread-safe named counters with observers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in STANDARD_COUNTERS}
        self._observers: List[CounterObserver] = []
        self._started_at = datetime.now(timezone.utc)

    def add_observer(self, observer: CounterObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def increment(self, name: str, amount: int = 1) -> int:
        with self._lock:
            value = self._counters.get(name, 0) + amount
            self._counters[name] = value
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(name, value)
            except Exception as e:
                logger.warning(f"Metrics observer failed for {name}: {e}")

        return value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def record_outcome(self, outcome: "DispatchOutcome", path: Optional[str] = None) -> None:
        """Count a dispatch outcome overall and, if given, per path."""
        name = f"dispatch_{outcome.status.value}"
        self.increment(name)
        if path:
            self.increment(f"{path}.{name}")

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                counters=dict(self._counters),
                started_at=self._started_at,
            )
