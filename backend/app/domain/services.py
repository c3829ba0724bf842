from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo

from ..models import Amenity, AmenityRule, Reservation, ReservationStatus
from ..utils.time import at_local, elapsed, iter_days, local_day, to_local, to_utc, to_utc_naive
from .errors import (
    AmenityNotReservableError,
    DailyLimitError,
    InvalidRangeError,
    LeadTimeViolation,
    NoRuleForDayError,
    OutsideHoursError,
    SlotFullError,
    ValidationError,
)
from .rules import (
    DEFAULT_SLOT_MINUTES,
    generate_slots,
    max_lead_days,
    min_lead_hours,
    per_user_day_limit,
    resolve_rule,
)


@dataclass(frozen=True)
class ReservationCandidate:
    condo_id: int
    amenity_id: int
    user_id: int
    start_time: datetime
    end_time: datetime | None = None
    duration_minutes: int | None = None


@dataclass(frozen=True)
class BookingWindow:
    rule: AmenityRule
    day: date
    start_time: datetime
    end_time: datetime


@dataclass
class AvailabilityResult:
    availability: dict[date, list[time]] = field(default_factory=dict)
    user_limit_by_date: dict[date, bool] = field(default_factory=dict)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection, compared as UTC instants."""
    return to_utc(a_start) < to_utc(b_end) and to_utc(b_start) < to_utc(a_end)


def is_active(reservation: Reservation) -> bool:
    return reservation.status != ReservationStatus.CANCELLED


def count_overlapping(
    reservations: Iterable[Reservation],
    start: datetime,
    end: datetime,
) -> int:
    return sum(
        1
        for r in reservations
        if is_active(r) and overlaps(start, end, r.start_time, r.end_time)
    )


def count_user_on_day(
    reservations: Iterable[Reservation],
    user_id: int,
    day: date,
    *,
    tz: ZoneInfo,
) -> int:
    return sum(
        1
        for r in reservations
        if is_active(r) and r.user_id == user_id and local_day(r.start_time, tz) == day
    )


def within_lead_time(rule: AmenityRule, slot_start: datetime, now: datetime, *, tz: ZoneInfo) -> bool:
    """Minimum lead in whole elapsed hours, maximum lead in condo calendar days."""
    now = to_local(now, tz)
    elapsed_hours = elapsed(now, slot_start) // timedelta(hours=1)
    ahead_days = (local_day(slot_start, tz) - now.date()).days
    return elapsed_hours >= min_lead_hours(rule) and ahead_days <= max_lead_days(rule)


def _group_by_day(reservations: Iterable[Reservation], tz: ZoneInfo) -> dict[date, list[Reservation]]:
    grouped: dict[date, list[Reservation]] = defaultdict(list)
    for r in reservations:
        if not is_active(r):
            continue
        first, last = local_day(r.start_time, tz), local_day(r.end_time, tz)
        for day in iter_days(first, last + timedelta(days=1)):
            grouped[day].append(r)
    return grouped


def compute_availability(
    amenity: Amenity,
    rules: Sequence[AmenityRule],
    reservations: Iterable[Reservation],
    range_start: date,
    range_end: date,
    now: datetime,
    *,
    tz: ZoneInfo,
    user_id: int | None = None,
) -> AvailabilityResult:
    """
    Build the bookable slot grid for every condo-local date in [range_start, range_end).
    Dates without a rule or without a surviving slot are omitted. The per-user
    daily-limit flag is advisory and never removes slots.
    """
    result = AvailabilityResult()
    if not amenity.is_reservable:
        return result

    now = to_local(now, tz)
    by_day = _group_by_day(reservations, tz)
    for day in iter_days(range_start, range_end):
        rule = resolve_rule(rules, day)
        if rule is None:
            continue
        day_reservations = by_day.get(day, [])

        slots: list[time] = []
        for slot_start_tod, slot_end_tod in generate_slots(rule):
            slot_start = at_local(day, slot_start_tod, tz)
            slot_end = at_local(day, slot_end_tod, tz)
            if not within_lead_time(rule, slot_start, now, tz=tz):
                continue
            if count_overlapping(day_reservations, slot_start, slot_end) >= amenity.max_capacity:
                continue
            slots.append(slot_start_tod)
        if slots:
            result.availability[day] = slots

        limit = per_user_day_limit(rule)
        if user_id is not None and limit > 0:
            if count_user_on_day(day_reservations, user_id, day, tz=tz) >= limit:
                result.user_limit_by_date[day] = True
    return result


def _check_candidate(amenity: Amenity, candidate: ReservationCandidate) -> None:
    if candidate.amenity_id != amenity.id or candidate.condo_id != amenity.condo_id:
        raise ValidationError("candidate does not belong to this amenity")
    if candidate.start_time.tzinfo is None:
        raise ValidationError("start_time must be timezone-aware")
    if candidate.end_time is not None and candidate.end_time.tzinfo is None:
        raise ValidationError("end_time must be timezone-aware")
    if candidate.duration_minutes is not None and candidate.duration_minutes <= 0:
        raise ValidationError("reservation_duration_minutes must be positive")


def _resolve_end_time(rule: AmenityRule, candidate: ReservationCandidate, start: datetime, tz: ZoneInfo) -> datetime:
    if candidate.end_time is not None:
        return to_local(candidate.end_time, tz)
    # The rule's slot width beats the requested duration.
    minutes = rule.slot_duration_minutes or candidate.duration_minutes or DEFAULT_SLOT_MINUTES
    return to_local(to_utc(start) + timedelta(minutes=minutes), tz)


def _within_hours(rule: AmenityRule, start: datetime, end: datetime) -> bool:
    if start.date() != end.date():
        return False
    return rule.open_time <= start.time() and end.time() <= rule.close_time


def plan_booking(
    amenity: Amenity,
    rules: Sequence[AmenityRule],
    candidate: ReservationCandidate,
    now: datetime,
    *,
    tz: ZoneInfo,
) -> BookingWindow:
    """
    Checks that need no reservation data, in order: reservable, rule for the
    day, end time, range, opening hours, lead time. Raises on the first failure.
    """
    _check_candidate(amenity, candidate)
    if not amenity.is_reservable:
        raise AmenityNotReservableError("amenity is not reservable")

    start = to_local(candidate.start_time, tz)
    day = start.date()
    rule = resolve_rule(rules, day)
    if rule is None:
        raise NoRuleForDayError(f"no rule for {day.isoformat()}")

    end = _resolve_end_time(rule, candidate, start, tz)
    if elapsed(start, end) <= timedelta(0):
        raise InvalidRangeError("end_time must be after start_time")
    if not _within_hours(rule, start, end):
        raise OutsideHoursError("time outside opening hours")
    if not within_lead_time(rule, start, now, tz=tz):
        raise LeadTimeViolation("does not meet lead-time constraints")
    return BookingWindow(rule=rule, day=day, start_time=start, end_time=end)


def check_admission(
    amenity: Amenity,
    window: BookingWindow,
    same_day_reservations: Sequence[Reservation],
    *,
    user_id: int,
    tz: ZoneInfo,
) -> None:
    if count_overlapping(same_day_reservations, window.start_time, window.end_time) >= amenity.max_capacity:
        raise SlotFullError("slot is full")
    limit = per_user_day_limit(window.rule)
    if limit > 0 and count_user_on_day(same_day_reservations, user_id, window.day, tz=tz) >= limit:
        raise DailyLimitError("daily reservation limit reached")


def build_reservation(
    amenity: Amenity,
    candidate: ReservationCandidate,
    window: BookingWindow,
    *,
    created_at: datetime,
) -> Reservation:
    status = ReservationStatus.PENDING if amenity.requires_payment else ReservationStatus.CONFIRMED
    stamp = to_utc_naive(created_at)
    return Reservation(
        condo_id=candidate.condo_id,
        amenity_id=candidate.amenity_id,
        user_id=candidate.user_id,
        start_time=to_utc_naive(window.start_time),
        end_time=to_utc_naive(window.end_time),
        reservation_duration_minutes=elapsed(window.start_time, window.end_time) // timedelta(minutes=1),
        status=status,
        created_at=stamp,
        updated_at=stamp,
    )


def book(
    amenity: Amenity,
    rules: Sequence[AmenityRule],
    same_day_reservations: Sequence[Reservation],
    candidate: ReservationCandidate,
    now: datetime,
    *,
    tz: ZoneInfo,
) -> Reservation:
    """
    Pure admission: validates the candidate against rules, capacity and quota
    and returns the unsaved Reservation. Raises a domain error otherwise.
    """
    now = to_local(now, tz)
    window = plan_booking(amenity, rules, candidate, now, tz=tz)
    check_admission(amenity, window, same_day_reservations, user_id=candidate.user_id, tz=tz)
    return build_reservation(amenity, candidate, window, created_at=now)
