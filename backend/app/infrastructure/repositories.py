from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Iterable, List, Optional

from sqlalchemy import Result, Select, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import ConflictError, PersistenceError
from ..domain.repositories import ReservationRepository
from ..models import Amenity, AmenityDayLock, AmenityRule, Reservation, ReservationStatus
from ..utils.time import to_utc_naive


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _execute(self, stmt: Select[Any]) -> Result[Any]:
        try:
            return await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError("database query failed") from exc

    async def get_amenity(self, condo_id: int, amenity_id: int) -> Amenity | None:
        stmt = select(Amenity).where(Amenity.id == amenity_id, Amenity.condo_id == condo_id)
        return (await self._execute(stmt)).scalar_one_or_none()

    async def list_rules(self, condo_id: int, amenity_id: int) -> List[AmenityRule]:
        # Insertion order: the resolver lets the last rule for a weekday win.
        stmt = (
            select(AmenityRule)
            .where(AmenityRule.amenity_id == amenity_id, AmenityRule.condo_id == condo_id)
            .order_by(AmenityRule.id)
        )
        return list((await self._execute(stmt)).scalars().all())

    async def list_reservations(
        self,
        condo_id: int,
        amenity_id: int,
        start: datetime,
        end: datetime,
        exclude_statuses: Iterable[ReservationStatus] = (ReservationStatus.CANCELLED,),
        *,
        for_update: bool = False,
    ) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.condo_id == condo_id,
                Reservation.amenity_id == amenity_id,
                Reservation.start_time < to_utc_naive(end),
                Reservation.end_time > to_utc_naive(start),
            )
            .order_by(Reservation.start_time)
        )
        excluded = list(exclude_statuses)
        if excluded:
            stmt = stmt.where(Reservation.status.not_in(excluded))
        if for_update:
            stmt = stmt.with_for_update()
        return list((await self._execute(stmt)).scalars().all())

    @asynccontextmanager
    async def lock_day(self, condo_id: int, amenity_id: int, day: date) -> AsyncIterator[None]:
        """Row-lock (amenity_id, day) until the surrounding transaction ends."""
        try:
            async with self.session.begin_nested():
                await self.session.execute(
                    insert(AmenityDayLock).values(amenity_id=amenity_id, day=day, condo_id=condo_id)
                )
        except IntegrityError:
            pass  # row already created by an earlier booking of this day
        except SQLAlchemyError as exc:
            raise PersistenceError("failed to create booking lock") from exc

        await self._execute(
            select(AmenityDayLock)
            .where(AmenityDayLock.amenity_id == amenity_id, AmenityDayLock.day == day)
            .with_for_update()
        )
        yield

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("reservation rejected by the store") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError("failed to insert reservation") from exc
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
    ) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.condo_id == condo_id, Reservation.user_id == user_id)
        if amenity_id is not None:
            stmt = stmt.where(Reservation.amenity_id == amenity_id)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        if start is not None:
            stmt = stmt.where(Reservation.start_time >= to_utc_naive(start))
        if end is not None:
            stmt = stmt.where(Reservation.start_time < to_utc_naive(end))
        rows = await self._execute(stmt.order_by(Reservation.start_time))
        return list(rows.scalars().all())

    async def get_for_user(self, condo_id: int, reservation_id: int, user_id: int) -> Optional[Reservation]:
        stmt = select(Reservation).where(
            Reservation.id == reservation_id,
            Reservation.condo_id == condo_id,
            Reservation.user_id == user_id,
        )
        return (await self._execute(stmt)).scalar_one_or_none()
