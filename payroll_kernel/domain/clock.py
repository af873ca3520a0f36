"""
Clock -- injectable time source for payroll services.

Services stamp ``finalized_at``, ``locked_at``, ``posted_at`` and
``superseded_at`` from a Clock instead of calling ``datetime.now()``.
Calculation engines never see a clock: the month, the reference date and
the employment dates arrive as arguments.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the timestamps written onto periods and runs."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and replays.

    ``now()`` keeps returning the same instant until the test moves it with
    ``advance()`` or ``set_time()``, so a re-finalize stamps the same
    ``finalized_at`` as the original run.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = start or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time
