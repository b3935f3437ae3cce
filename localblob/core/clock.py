"""Clock helpers so time-dependent state can be tested with an injected 'now'."""

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to.
    
    Used by tests and by callers that replay a recorded timeline.
    """
    
    def __init__(self, start: datetime = None):
        self._now = start or utc_now()
    
    def __call__(self) -> datetime:
        return self._now
    
    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        """Move the clock forward and return the new time."""
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now
    
    def set(self, value: datetime) -> None:
        self._now = value
