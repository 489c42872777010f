"""
Clock abstraction

Core handlers never read the wall clock: every operation receives `now`
from its caller and compares it against stored absolute deadlines. The
providers here are how the gateway fills in `now` when the caller omits it.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    def now(self) -> datetime:
        """Current time, timezone-aware UTC"""
        ...


class RealTimeProvider:
    """System clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TestTimeProvider:
    """
    Frozen clock for tests

    Starts at a fixed instant and only moves when told to, so deadline
    checks (auction end, group buy deadline, payment terms) are reproducible.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, initial_time: datetime | None = None) -> None:
        self._now = parse_datetime(initial_time) or datetime(
            2025, 1, 1, tzinfo=timezone.utc
        )

    def now(self) -> datetime:
        return self._now

    def set_time(self, dt: datetime | str) -> None:
        self._now = parse_datetime(dt)

    def advance(self, delta: timedelta) -> None:
        self._now += delta

    def advance_seconds(self, seconds: int) -> None:
        self.advance(timedelta(seconds=seconds))

    def advance_minutes(self, minutes: int) -> None:
        self.advance(timedelta(minutes=minutes))

    def advance_days(self, days: int) -> None:
        self.advance(timedelta(days=days))


def parse_datetime(value: datetime | str | None) -> datetime | None:
    """
    Normalize a stored timestamp

    Projections keep timestamps as ISO strings (they come out of JSON
    payloads). Naive values are treated as UTC.
    """
    if value is None:
        return None
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
