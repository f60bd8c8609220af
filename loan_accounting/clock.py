"""
Clock abstraction so overdue evaluation can be pinned to a date in tests.
"""

from datetime import date, datetime, time, timezone


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
    """Clock frozen at a given date, advanced manually"""
    
    def __init__(self, current: date):
        self.current = current
    
    def now(self) -> datetime:
        return datetime.combine(self.current, time.min, tzinfo=timezone.utc)
    
    def today(self) -> date:
        return self.current
    
    def set(self, current: date) -> None:
        self.current = current
