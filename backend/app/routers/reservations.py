import asyncio
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_user_id, get_session
from ..domain.errors import DailyLimitError, DomainError, NotFoundError, PersistenceError, SlotFullError
from ..domain.services import ReservationCandidate
from ..infrastructure.repositories import SqlAlchemyReservationRepository
from ..models import ReservationStatus
from ..schemas import ReservationCreate, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="", tags=["reservations"])


def _http_error(exc: DomainError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (SlotFullError, DailyLimitError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ReservationRead:
    if payload.start_time.tzinfo is None or (payload.end_time is not None and payload.end_time.tzinfo is None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_time/end_time must have timezone")

    settings = get_settings()
    candidate = ReservationCandidate(
        condo_id=payload.condo_id,
        amenity_id=payload.amenity_id,
        user_id=user_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        duration_minutes=payload.reservation_duration_minutes,
    )
    validator = reservation_usecase.ReservationValidator(
        SqlAlchemyReservationRepository(session), tz=settings.condo_tz
    )
    try:
        async with asyncio.timeout(settings.request_timeout_seconds):
            async with session.begin():
                reservation = await validator.book(candidate)
                # Inside the transaction: no reservation without its audit line.
                emit_audit_log(
                    action="reservation.created",
                    condo_id=reservation.condo_id,
                    amenity_id=reservation.amenity_id,
                    user_id=reservation.user_id,
                    reservation_id=reservation.id,
                    start_time=reservation.start_time,
                    end_time=reservation.end_time,
                    status=reservation.status,
                )
    except DomainError as exc:
        try:
            emit_audit_log(
                action="reservation.rejected",
                condo_id=candidate.condo_id,
                amenity_id=candidate.amenity_id,
                user_id=candidate.user_id,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                reason=type(exc).__name__,
            )
        except RuntimeError:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
        raise _http_error(exc) from exc
    except (PersistenceError, TimeoutError, RuntimeError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to create reservation")

    return ReservationRead.from_db(reservation=reservation, tz=settings.condo_tz)


@router.get("/condos/{condo_id}/me/reservations", response_model=List[ReservationRead])
async def list_my_reservations(
    condo_id: int = Path(..., ge=1),
    amenity_id: Optional[int] = Query(default=None, ge=1),
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[ReservationRead]:
    if (from_ is not None and from_.tzinfo is None) or (to is not None and to.tzinfo is None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="from/to must have timezone")
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        rows = await reservation_usecase.list_user_reservations(
            res_repo,
            condo_id=condo_id,
            user_id=user_id,
            amenity_id=amenity_id,
            status=status_filter,
            start=from_,
            end=to,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to load reservations")
    tz = get_settings().condo_tz
    return [ReservationRead.from_db(reservation=r, tz=tz) for r in rows]


@router.get("/condos/{condo_id}/me/reservations/{reservation_id}", response_model=ReservationRead)
async def get_my_reservation(
    condo_id: int = Path(..., ge=1),
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        reservation = await reservation_usecase.get_user_reservation(
            res_repo, condo_id=condo_id, reservation_id=reservation_id, user_id=user_id
        )
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to load reservation")
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    return ReservationRead.from_db(reservation=reservation, tz=get_settings().condo_tz)
