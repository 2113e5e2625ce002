"""
Clocks for the governance engine

Every deadline, cooldown and sweep asks a clock for "now". Production uses the
system clock; tests hold a manual one and step it past a voting window.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Anything that can tell the engine the current UTC instant"""

    def now(self) -> datetime: ...


class RealTimeProvider:
    """Wall clock, always timezone-aware UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TestTimeProvider:
    """
    Manual clock for tests

    Time only moves when a test moves it, so "one second before the deadline"
    is an exact instant rather than a race.
    """

    __test__ = False  # keeps pytest from collecting it

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2000, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta

    def advance_seconds(self, seconds: int) -> None:
        self.advance(timedelta(seconds=seconds))

    def advance_hours(self, hours: int) -> None:
        self.advance(timedelta(hours=hours))
