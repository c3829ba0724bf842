from datetime import date, time
from typing import Iterable, Iterator

from ..models import AmenityRule
from ..utils.time import clock, minutes_of

DEFAULT_SLOT_MINUTES = 60
DEFAULT_MAX_LEAD_TIME_DAYS = 365


def day_of_week(day: date) -> int:
    """Weekday number with Sunday = 0 .. Saturday = 6."""
    return day.isoweekday() % 7


def resolve_rule(rules: Iterable[AmenityRule], day: date) -> AmenityRule | None:
    """Return the rule for `day`, or None when the amenity is closed.

    Should several rules share a weekday, the last one in input order wins.
    """
    dow = day_of_week(day)
    resolved: AmenityRule | None = None
    for rule in rules:
        if rule.day_of_week == dow:
            resolved = rule
    return resolved


def slot_minutes(rule: AmenityRule) -> int:
    return rule.slot_duration_minutes or DEFAULT_SLOT_MINUTES


def min_lead_hours(rule: AmenityRule) -> int:
    return rule.min_lead_time_hours or 0


def max_lead_days(rule: AmenityRule) -> int:
    if rule.max_lead_time_days is None:
        return DEFAULT_MAX_LEAD_TIME_DAYS
    return rule.max_lead_time_days


def per_user_day_limit(rule: AmenityRule) -> int:
    return rule.reservations_per_user_day or 0


def generate_slots(rule: AmenityRule) -> Iterator[tuple[time, time]]:
    """Yield contiguous (start, end) times of day between open and close.

    A trailing remainder shorter than one slot is never offered.
    """
    step = slot_minutes(rule)
    close = minutes_of(rule.close_time)
    current = minutes_of(rule.open_time)
    while current + step <= close:
        yield clock(current), clock(current + step)
        current += step
