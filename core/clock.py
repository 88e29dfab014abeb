"""
Core Module - Pipeline Clock.

============================================================
RESPONSIBILITY
============================================================
Provides the time source used by the ingestion pipeline.

- Stamps received frames with wall-clock milliseconds
- Supplies the observed-at instant for classified tickers
- Supplies the created-at default for persisted rows
- Supplies the publish-time value for log partition keys

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only
- Injected explicitly, never read from a global
- Mockable for deterministic tests
- Thread-safe

============================================================
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the pipeline clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    def millis(self) -> int:
        """Get current Unix time in milliseconds."""
        return int(self.now().timestamp() * 1000)


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def millis(self) -> int:
        return time.time_ns() // 1_000_000


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Time only moves when the test moves it.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        self._time = _ensure_utc(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            self._time = _ensure_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (milliseconds, minutes, ...)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
]
