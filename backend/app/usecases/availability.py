from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from ..domain.errors import NotFoundError, ValidationError
from ..domain.repositories import ReservationRepository
from ..domain.services import AvailabilityResult, compute_availability
from ..utils.time import day_bounds


class AvailabilityCalculator:
    """Loads an amenity's rules and reservations and builds its slot grid."""

    def __init__(self, repo: ReservationRepository, *, tz: ZoneInfo) -> None:
        self.repo = repo
        self.tz = tz

    async def compute(
        self,
        *,
        condo_id: int,
        amenity_id: int,
        start_date: date,
        end_date: date,
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> AvailabilityResult:
        if end_date <= start_date:
            raise ValidationError("range end must be after range start")

        amenity = await self.repo.get_amenity(condo_id, amenity_id)
        if amenity is None:
            raise NotFoundError("amenity not found")
        if not amenity.is_reservable:
            return AvailabilityResult()

        rules = await self.repo.list_rules(condo_id, amenity_id)
        range_start, _ = day_bounds(start_date, self.tz)
        range_end, _ = day_bounds(end_date, self.tz)
        reservations = await self.repo.list_reservations(condo_id, amenity_id, range_start, range_end)
        return compute_availability(
            amenity,
            rules,
            reservations,
            start_date,
            end_date,
            now or datetime.now(timezone.utc),
            tz=self.tz,
            user_id=user_id,
        )
