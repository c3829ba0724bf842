import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from ..domain.errors import ConflictError, DomainError, NotFoundError, SlotFullError
from ..domain.repositories import ReservationRepository
from ..domain.services import ReservationCandidate, book, plan_booking
from ..models import Reservation, ReservationStatus
from ..utils.time import day_bounds

logger = logging.getLogger(__name__)


class ReservationValidator:
    def __init__(self, repo: ReservationRepository, *, tz: ZoneInfo) -> None:
        self.repo = repo
        self.tz = tz

    async def book(self, candidate: ReservationCandidate, *, now: datetime | None = None) -> Reservation:
        """
        Validate and insert one reservation. Capacity and quota are re-checked
        while holding the amenity-day lock, so concurrent bookers cannot both
        take the last seat. Must run inside the caller's transaction.
        """
        now = now or datetime.now(timezone.utc)
        try:
            return await self._book(candidate, now)
        except DomainError as exc:
            logger.debug(
                "booking rejected: %s (amenity_id=%s user_id=%s start=%s)",
                type(exc).__name__,
                candidate.amenity_id,
                candidate.user_id,
                candidate.start_time.isoformat(),
            )
            raise

    async def _book(self, candidate: ReservationCandidate, now: datetime) -> Reservation:
        amenity = await self.repo.get_amenity(candidate.condo_id, candidate.amenity_id)
        if amenity is None:
            raise NotFoundError("amenity not found")
        rules = await self.repo.list_rules(candidate.condo_id, candidate.amenity_id)

        # Reject what needs no reservation data before taking the lock.
        window = plan_booking(amenity, rules, candidate, now, tz=self.tz)

        day_start, day_end = day_bounds(window.day, self.tz)
        async with self.repo.lock_day(candidate.condo_id, candidate.amenity_id, window.day):
            # Locking read: a plain SELECT would reuse the snapshot taken before
            # the lock and miss bookings committed while we waited.
            same_day = await self.repo.list_reservations(
                candidate.condo_id, candidate.amenity_id, day_start, day_end, for_update=True
            )
            reservation = book(amenity, rules, same_day, candidate, now, tz=self.tz)
            try:
                return await self.repo.insert_reservation(reservation)
            except ConflictError as exc:
                raise SlotFullError("slot is full") from exc


async def list_user_reservations(
    repo: ReservationRepository,
    *,
    condo_id: int,
    user_id: int,
    amenity_id: int | None = None,
    status: ReservationStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Reservation]:
    if start is not None and end is not None and start >= end:
        raise ValueError("start must be earlier than end")
    return await repo.list_by_user(
        condo_id,
        user_id,
        amenity_id=amenity_id,
        status=status,
        start=start,
        end=end,
    )


async def get_user_reservation(
    repo: ReservationRepository,
    *,
    condo_id: int,
    reservation_id: int,
    user_id: int,
) -> Reservation | None:
    return await repo.get_for_user(condo_id, reservation_id, user_id)
