"""Condo-zone time helpers.

Persisted instants are UTC-naive. Every calendar-day or time-of-day decision
goes through :func:`to_local` so that UTC instants and condo wall-clock
values are never compared directly.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc(dt: datetime) -> datetime:
    """Aware UTC instant. Naive values are read as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def elapsed(start: datetime, end: datetime) -> timedelta:
    # Same-zone aware subtraction is wall-clock; go through UTC for real time.
    return to_utc(end) - to_utc(start)


def to_local(dt: datetime, tz: ZoneInfo) -> datetime:
    """Convert an instant to the condo zone. Naive values are read as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def local_day(dt: datetime, tz: ZoneInfo) -> date:
    return to_local(dt, tz).date()


def local_time_of_day(dt: datetime, tz: ZoneInfo) -> time:
    return to_local(dt, tz).time()


def at_local(day: date, time_of_day: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time_of_day, tzinfo=tz)


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return the aware [start, end) instants of a condo-local calendar day."""
    return at_local(day, time.min, tz), at_local(day + timedelta(days=1), time.min, tz)


def iter_days(start: date, end: date) -> Iterator[date]:
    day = start
    while day < end:
        yield day
        day += timedelta(days=1)


def minutes_of(time_of_day: time) -> int:
    return time_of_day.hour * 60 + time_of_day.minute


def clock(minutes: int) -> time:
    return time(hour=minutes // 60, minute=minutes % 60)
