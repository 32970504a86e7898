"""
Clock -- injectable source of "now".

Responsibility:
    Services, the sweeper and the lifecycle engine take a Clock in their
    constructor instead of calling ``datetime.now()``.  Transition
    timestamps and overdue checks are therefore reproducible in tests.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place the wall clock is read.

Invariants enforced:
    - ``now()`` is always timezone-aware UTC; job timestamps are compared
      against it, and the database layer rejects naive datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at noon UTC on 2024-01-01 unless given a start time.  Escalation
    timeouts are expressed in hours, hence ``advance_hours``.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_EPOCH
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int | timedelta = 1) -> datetime:
        """Move forward and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current

    def advance_hours(self, hours: float) -> datetime:
        return self.advance(timedelta(hours=hours))
