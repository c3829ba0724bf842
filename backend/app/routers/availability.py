import asyncio
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_session
from ..domain.errors import NotFoundError, PersistenceError, ValidationError
from ..infrastructure.repositories import SqlAlchemyReservationRepository
from ..schemas import AvailabilityRead
from ..usecases.availability import AvailabilityCalculator
from ..utils.time import local_day

router = APIRouter(prefix="/condos", tags=["availability"])

_ONE_DAY = timedelta(days=1)


def _resolve_range(
    *,
    start: Optional[date],
    days: int,
    from_: Optional[datetime],
    to: Optional[datetime],
    tz: ZoneInfo,
    now: datetime,
) -> tuple[date, date]:
    """Turn either `start`+`days` or a `from`/`to` instant pair into condo-local [start, end) dates."""
    if from_ is None and to is None:
        start_date = start or local_day(now, tz)
        return start_date, start_date + timedelta(days=days)
    if from_ is None or to is None:
        raise ValueError("from and to must be given together")
    if from_.tzinfo is None or to.tzinfo is None:
        raise ValueError("from/to must have timezone")
    if from_ >= to:
        raise ValueError("from must be earlier than to")
    span = to - from_
    day_count = span // _ONE_DAY + (1 if span % _ONE_DAY else 0)
    start_date = local_day(from_, tz)
    return start_date, start_date + timedelta(days=day_count)


@router.get("/{condo_id}/amenities/{amenity_id}/availability", response_model=AvailabilityRead)
async def get_availability(
    condo_id: int = Path(..., ge=1),
    amenity_id: int = Path(..., ge=1),
    start: Optional[date] = Query(default=None, description="Condo-local first date (YYYY-MM-DD)"),
    days: Optional[int] = Query(default=None, ge=1, le=366),
    from_: Optional[datetime] = Query(default=None, alias="from", description="ISO 8601 instant with offset"),
    to: Optional[datetime] = Query(default=None, description="ISO 8601 instant with offset"),
    user_id: Optional[int] = Query(default=None, ge=1),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityRead:
    settings = get_settings()
    tz = settings.condo_tz
    now = datetime.now(tz)
    try:
        start_date, end_date = _resolve_range(
            start=start,
            days=days or settings.availability_default_days,
            from_=from_,
            to=to,
            tz=tz,
            now=now,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    calculator = AvailabilityCalculator(SqlAlchemyReservationRepository(session), tz=tz)
    try:
        async with asyncio.timeout(settings.request_timeout_seconds):
            # One transaction so rules and reservations come from the same snapshot.
            async with session.begin():
                result = await calculator.compute(
                    condo_id=condo_id,
                    amenity_id=amenity_id,
                    start_date=start_date,
                    end_date=end_date,
                    user_id=user_id,
                    now=now,
                )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="amenity not found")
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except (PersistenceError, TimeoutError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to load availability")

    return AvailabilityRead.from_result(result)
