"""
Clock Module

Time source injected into the managers so timestamps can be controlled in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta, date


class Clock(ABC):
    """Supplies the current time"""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware UTC datetime"""
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; advance it explicitly"""

    def __init__(self, current: datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (days=..., hours=...)"""
        self._current = self._current + timedelta(**kwargs)
        return self._current
