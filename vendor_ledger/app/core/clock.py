"""
Injectable clock.

Services never call ``datetime.now()`` directly: ``created_at`` stamps and
recurrence due-date evaluation both read the clock they were given, so tests
can pin time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called; ``tick()`` advances by one second.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        if self._fixed_time.tzinfo is None:
            self._fixed_time = self._fixed_time.replace(tzinfo=timezone.utc)
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            time = time.replace(tzinfo=timezone.utc)
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        self._advance_seconds += seconds

    def tick(self) -> datetime:
        self.advance(1)
        return self.now()


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency; overridden with a DeterministicClock in tests."""
    return system_clock
