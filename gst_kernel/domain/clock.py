"""
Clock -- injectable time source.

Services never call ``datetime.now()`` or ``date.today()``.  Lock, unlock,
cancellation, filing and amendment timestamps, and the default filing date,
all come from the Clock handed to LedgerCore, so tests can pin them.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, time, timedelta


class Clock(ABC):
    """Source of timezone-aware "now"; ``today()`` is its UTC date."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(UTC).date()


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock frozen at a given instant until moved explicitly.

    Naive datetimes are taken as UTC.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = _aware(fixed_time or datetime(2026, 1, 1, 12, 0, tzinfo=UTC))

    @classmethod
    def on(cls, day: date, at: time = time(12, 0)) -> "DeterministicClock":
        """Clock pinned to ``at`` (UTC) on ``day``."""
        return cls(datetime.combine(day, at, tzinfo=UTC))

    def now(self) -> datetime:
        return self._now

    def set_time(self, moment: datetime) -> None:
        self._now = _aware(moment)

    def advance(self, seconds: float = 1, days: int = 0) -> datetime:
        """Move forward and return the new time."""
        self._now += timedelta(days=days, seconds=seconds)
        return self._now


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment
