"""
Date helpers shared by the parser, reconciliation and manual edits.

Every stored instant is a naive UTC datetime. Calendar-day comparisons
(adjacency, split bounds, changeover, drift) are made in the configured
CALENDAR_TIMEZONE so a late-evening UTC checkout is not mistaken for the
next day locally.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import settings


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Union[datetime, date]) -> datetime:
    """
    Normalize a date or datetime to a naive UTC datetime.

    - date (all-day) -> UTC midnight of that date
    - aware datetime -> converted to UTC
    - floating datetime -> read as UTC
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


def _calendar_zone() -> ZoneInfo:
    try:
        return ZoneInfo(settings.calendar_timezone)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def is_date_only(value: datetime) -> bool:
    """All-day values are stored at exactly UTC midnight"""
    return value.time() == time.min


def calendar_day(value: datetime) -> date:
    """
    Calendar day of a stored (naive UTC) instant in the calendar timezone.
    UTC-midnight values are all-day dates and keep their own day, so a
    zone west of UTC does not pull them onto the previous day.
    """
    if is_date_only(value):
        return value.date()
    aware = value.replace(tzinfo=timezone.utc)
    return aware.astimezone(_calendar_zone()).date()


def day_start(day: date) -> datetime:
    """Start of a calendar day in the calendar timezone, as naive UTC"""
    local = datetime.combine(day, time.min).replace(tzinfo=_calendar_zone())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def day_end(day: date) -> datetime:
    """Last instant of a calendar day in the calendar timezone, as naive UTC"""
    return day_start(day + timedelta(days=1)) - timedelta(microseconds=1)


def today() -> date:
    return datetime.now(_calendar_zone()).date()


@dataclass(frozen=True)
class DateWindow:
    """
    Inclusive window of instants used to scope a sync or a listing.

    A booking belongs to the window when it overlaps it:
    start <= window.end and end >= window.start.
    """
    start: datetime
    end: datetime

    @classmethod
    def from_days(cls, first_day: date, last_day: date) -> "DateWindow":
        return cls(start=day_start(first_day), end=day_end(last_day))

    @classmethod
    def days_ahead(cls, days: int, first_day: Optional[date] = None) -> "DateWindow":
        first_day = first_day or today()
        return cls.from_days(first_day, first_day + timedelta(days=days))

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start <= self.end and end >= self.start

    def to_dict(self) -> dict:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


def parse_date_param(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD (or full ISO datetime) query value"""
    if not value:
        return None
    value = value.strip()
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def month_bounds(day: date, months_ahead: int = 0) -> tuple:
    """First and last day of the month `months_ahead` after `day`'s month"""
    month_index = day.month - 1 + months_ahead
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    first = date(year, month, 1)
    if month == 12:
        next_first = date(year + 1, 1, 1)
    else:
        next_first = date(year, month + 1, 1)
    return first, next_first - timedelta(days=1)
