"""
Business Calendar

All scheduling arithmetic happens in one fixed business timezone so a
pickup never shifts to a neighbouring calendar day across the UTC boundary.
The wall clock is injectable for deterministic tests.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo


DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


def day_name(day: int) -> str:
    """Display name for a Sunday-based day index."""
    if not 0 <= day <= 6:
        return "Unknown"
    return DAY_NAMES[day]


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _system_now() -> datetime:
    return datetime.now(timezone.utc)


class BusinessClock:
    """
    Clock bound to the shop's timezone.

    Args:
        tz_name: IANA timezone name (e.g. "America/Los_Angeles")
        now_provider: Callable returning the current aware instant
    """

    def __init__(
        self,
        tz_name: str = "America/Los_Angeles",
        now_provider: Optional[Callable[[], datetime]] = None,
    ):
        self._tz = ZoneInfo(tz_name)
        self._now_provider = now_provider or _system_now

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        """Current instant expressed in the business timezone."""
        current = self._now_provider()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self._tz)

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        """Business-local calendar date."""
        return self.now().date()

    @staticmethod
    def add_days(day: date, days: int) -> date:
        return day + timedelta(days=days)

    @staticmethod
    def day_of_week(day: date) -> int:
        """Day index with Sunday = 0 ... Saturday = 6."""
        # date.weekday() is Monday = 0
        return (day.weekday() + 1) % 7

    def combine(self, day: date, clock_time: str) -> datetime:
        """Aware instant for a business-local date and an "HH:MM" time."""
        hours, minutes = (int(part) for part in clock_time.split(":", 1))
        return datetime.combine(day, time(hours, minutes), tzinfo=self._tz)
