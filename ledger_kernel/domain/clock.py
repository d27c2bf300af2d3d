"""
Clock -- injectable time source.

Services never call ``datetime.now()`` directly; they receive a Clock so
void dates, layer receipt times and audit timestamps are reproducible in
tests.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta


class Clock(ABC):
    """Abstract clock.  ``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()`` or ``set_time()``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = time

    def advance(self, seconds: int = 1, days: int = 0) -> datetime:
        self._time = self._time + timedelta(days=days, seconds=seconds)
        return self._time
