"""
Clock Tool
Injectable time source so jobs and services can be driven at fixed instants
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are taken as UTC already"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SystemClock:
    """Wall clock"""

    def now(self) -> datetime:
        return utcnow()


class FixedClock:
    """
    Clock pinned to a given instant.

    Used by tests and by operators replaying a tick for a specific time.
    """

    def __init__(self, now: Optional[datetime] = None):
        self._now = now or utcnow()

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward, e.g. advance(minutes=5)"""
        self._now = self._now + timedelta(**kwargs)
        return self._now


system_clock = SystemClock()
