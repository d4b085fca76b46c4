"""Injectable clock so services never call datetime.now() directly"""

from datetime import date, datetime, timedelta, timezone


class Clock:
    """Source of the current time"""

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Deterministic clock for tests and replays.

    Each call to now() advances by `step` so records created back to back
    still get strictly increasing timestamps.
    """

    def __init__(self, start: datetime, step: timedelta = timedelta(microseconds=1)):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._current = start
        self._step = step

    def now(self) -> datetime:
        current = self._current
        self._current = current + self._step
        return current

    def today(self) -> date:
        return self._current.date()
