from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Iterable, Protocol

from ..models import Amenity, AmenityRule, Reservation, ReservationStatus


class ReservationRepository(Protocol):
    async def get_amenity(self, condo_id: int, amenity_id: int) -> Amenity | None: ...

    async def list_rules(self, condo_id: int, amenity_id: int) -> list[AmenityRule]: ...

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
        """Reservations overlapping [start, end).

        With `for_update` this is a locking read that also sees rows committed
        after the transaction's snapshot was taken.
        """
        ...

    def lock_day(self, condo_id: int, amenity_id: int, day: date) -> AbstractAsyncContextManager[None]: ...

    async def insert_reservation(self, reservation: Reservation) -> Reservation: ...

    async def list_by_user(
        self,
        condo_id: int,
        user_id: int,
        *,
        amenity_id: int | None = None,
        status: ReservationStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Reservation]: ...

    async def get_for_user(self, condo_id: int, reservation_id: int, user_id: int) -> Reservation | None: ...
