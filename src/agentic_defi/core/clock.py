"""Clock abstraction.

Session expiry, days-remaining and the timestamps written to execution
records and usage logs all read time through an :class:`IClock`, so
tests can pin and step time with :class:`SimClock`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...


class WallClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimClock:
    """Fixed clock that moves only through :meth:`advance`."""

    def __init__(self, start: datetime | None = None) -> None:
        self._time = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def advance(self, delta: timedelta) -> datetime:
        if delta < timedelta(0):
            raise ValueError(f"SimClock cannot move backwards by {delta}")
        self._time += delta
        return self._time
