from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .domain.services import AvailabilityResult
from .models import Reservation, ReservationStatus
from .utils.time import to_local


class AvailabilityRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    availability: dict[str, list[str]]
    user_limit_by_date: dict[str, bool] = Field(default_factory=dict, alias="userLimitByDate")

    @classmethod
    def from_result(cls, result: AvailabilityResult) -> "AvailabilityRead":
        return cls(
            availability={
                day.isoformat(): [slot.strftime("%H:%M") for slot in slots]
                for day, slots in sorted(result.availability.items())
            },
            user_limit_by_date={day.isoformat(): flag for day, flag in sorted(result.user_limit_by_date.items())},
        )


class ReservationCreate(BaseModel):
    condo_id: int = Field(ge=1)
    amenity_id: int = Field(ge=1)
    start_time: datetime
    end_time: Optional[datetime] = None
    reservation_duration_minutes: Optional[int] = Field(default=None, ge=1)


class ReservationRead(BaseModel):
    reservation_id: int
    condo_id: int
    amenity_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    reservation_duration_minutes: int
    status: ReservationStatus

    @field_serializer("start_time", "end_time")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, reservation: Reservation, tz: ZoneInfo) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            condo_id=reservation.condo_id,
            amenity_id=reservation.amenity_id,
            user_id=reservation.user_id,
            start_time=to_local(reservation.start_time, tz),
            end_time=to_local(reservation.end_time, tz),
            reservation_duration_minutes=reservation.reservation_duration_minutes,
            status=reservation.status,
        )
