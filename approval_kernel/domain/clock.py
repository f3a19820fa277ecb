"""
Injectable time source.

Engines and services never read the wall clock themselves.  Decision
timestamps, escalation stamps, supersession times and approval dates all
come from the Clock handed to the service, so tests can pin and step time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Repeated ``now()`` calls return the same instant, so several writes in
    one decision share a timestamp.  ``advance()`` steps forward, which is
    how tests give successive decisions distinct, ordered times.
    """

    def __init__(self, start: datetime = DEFAULT_EPOCH):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new instant."""
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._current += timedelta(seconds=seconds)
        return self._current
