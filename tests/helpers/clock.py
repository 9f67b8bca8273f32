"""Controllable clock for service tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from keyholder_tracker.core.clock import Clock

DEFAULT_START = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock(Clock):
    """Returns a fixed instant until moved with ``advance`` or ``set``."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or DEFAULT_START

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, when: datetime) -> None:
        self.current = when
