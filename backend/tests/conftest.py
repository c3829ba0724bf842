import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

import pytest
from app.config import get_settings
from app.models import Amenity, AmenityRule, Reservation, ReservationStatus
from app.utils.time import to_local

CONDO_TZ_NAME = "America/Argentina/Buenos_Aires"  # UTC-3, no DST
CONDO_TZ = ZoneInfo(CONDO_TZ_NAME)


@pytest.fixture(autouse=True)
def _settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterable[None]:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    monkeypatch.setenv("CONDO_TIMEZONE", CONDO_TZ_NAME)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _utc_naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def build_amenity(**overrides: Any) -> Amenity:
    now = datetime(2030, 1, 1)
    values: dict[str, Any] = dict(
        id=1,
        condo_id=1,
        name="Gym",
        max_capacity=1,
        is_reservable=True,
        requires_payment=False,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return Amenity(**values)


def build_rule(**overrides: Any) -> AmenityRule:
    values: dict[str, Any] = dict(
        amenity_id=1,
        condo_id=1,
        day_of_week=1,
        open_time=time(9, 0),
        close_time=time(12, 0),
        slot_duration_minutes=60,
        min_lead_time_hours=0,
        max_lead_time_days=7,
        reservations_per_user_day=0,
    )
    values.update(overrides)
    return AmenityRule(**values)


def build_reservation(start: datetime, end: datetime, **overrides: Any) -> Reservation:
    """`start`/`end` are aware; stored UTC-naive like the database does."""
    values: dict[str, Any] = dict(
        condo_id=1,
        amenity_id=1,
        user_id=500,
        start_time=_utc_naive(start),
        end_time=_utc_naive(end),
        reservation_duration_minutes=int((end - start).total_seconds() // 60),
        status=ReservationStatus.CONFIRMED,
        created_at=_utc_naive(start),
        updated_at=_utc_naive(start),
    )
    values.update(overrides)
    return Reservation(**values)


def local(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=CONDO_TZ)


class InMemoryReservationRepository:
    """Fake store. Every call yields to the loop so unguarded races surface.

    With `snapshot_reads`, a plain read only sees rows that existed when the
    calling task first loaded the amenity, like a REPEATABLE READ snapshot;
    locking reads always see the latest rows.
    """

    def __init__(
        self,
        *,
        amenities: Iterable[Amenity] = (),
        rules: Iterable[AmenityRule] = (),
        reservations: Iterable[Reservation] = (),
        snapshot_reads: bool = False,
    ) -> None:
        self.amenities = {a.id: a for a in amenities}
        self.rules = list(rules)
        self.reservations = list(reservations)
        self.inserted: list[Reservation] = []
        self.locked_days: list[tuple[int, date]] = []
        self.list_calls: list[tuple[datetime, datetime]] = []
        self.locking_reads: list[tuple[datetime, datetime]] = []
        self.snapshot_reads = snapshot_reads
        self._snapshots: dict[Optional[asyncio.Task[Any]], list[Reservation]] = {}
        self._locks: defaultdict[tuple[int, date], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_amenity(self, condo_id: int, amenity_id: int) -> Optional[Amenity]:
        self._snapshots.setdefault(asyncio.current_task(), list(self.reservations))
        await asyncio.sleep(0)
        amenity = self.amenities.get(amenity_id)
        return amenity if amenity is not None and amenity.condo_id == condo_id else None

    async def list_rules(self, condo_id: int, amenity_id: int) -> list[AmenityRule]:
        await asyncio.sleep(0)
        return [r for r in self.rules if r.condo_id == condo_id and r.amenity_id == amenity_id]

    async def list_reservations(
        self,
        condo_id: int,
        amenity_id: int,
        start: datetime,
        end: datetime,
        exclude_statuses: Iterable[ReservationStatus] = (ReservationStatus.CANCELLED,),
        *,
        for_update: bool = False,
    ) -> list[Reservation]:
        await asyncio.sleep(0)
        self.list_calls.append((start, end))
        if for_update:
            self.locking_reads.append((start, end))
        visible = self.reservations
        if self.snapshot_reads and not for_update:
            visible = self._snapshots.get(asyncio.current_task(), self.reservations)
        excluded = set(exclude_statuses)
        return [
            r
            for r in visible
            if r.condo_id == condo_id
            and r.amenity_id == amenity_id
            and r.status not in excluded
            and to_local(r.start_time, CONDO_TZ) < end
            and start < to_local(r.end_time, CONDO_TZ)
        ]

    @asynccontextmanager
    async def lock_day(self, condo_id: int, amenity_id: int, day: date) -> AsyncIterator[None]:
        self.locked_days.append((amenity_id, day))
        async with self._locks[(amenity_id, day)]:
            yield

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        await asyncio.sleep(0)
        reservation.id = len(self.reservations) + 1
        self.reservations.append(reservation)
        self.inserted.append(reservation)
        return reservation

    async def list_by_user(
        self,
        condo_id: int,
        user_id: int,
        *,
        amenity_id: Optional[int] = None,
        status: Optional[ReservationStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Reservation]:
        rows = [r for r in self.reservations if r.condo_id == condo_id and r.user_id == user_id]
        if amenity_id is not None:
            rows = [r for r in rows if r.amenity_id == amenity_id]
        if status is not None:
            rows = [r for r in rows if r.status == status]
        if start is not None:
            rows = [r for r in rows if to_local(r.start_time, CONDO_TZ) >= start]
        if end is not None:
            rows = [r for r in rows if to_local(r.start_time, CONDO_TZ) < end]
        return sorted(rows, key=lambda r: r.start_time)

    async def get_for_user(self, condo_id: int, reservation_id: int, user_id: int) -> Optional[Reservation]:
        for r in self.reservations:
            if r.id == reservation_id and r.condo_id == condo_id and r.user_id == user_id:
                return r
        return None


@pytest.fixture
def tz() -> ZoneInfo:
    return CONDO_TZ


@pytest.fixture
def make_amenity() -> Callable[..., Amenity]:
    return build_amenity


@pytest.fixture
def make_rule() -> Callable[..., AmenityRule]:
    return build_rule


@pytest.fixture
def make_reservation() -> Callable[..., Reservation]:
    return build_reservation


@pytest.fixture
def at() -> Callable[..., datetime]:
    return local


@pytest.fixture
def make_repo() -> Callable[..., InMemoryReservationRepository]:
    return InMemoryReservationRepository
