from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum
from typing import Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import BigInteger, Boolean, Date, DateTime, Integer, SmallInteger, String, Time


class Base(DeclarativeBase):
    pass


# BIGINT ids do not autoincrement on SQLite, which the repository tests run on.
IdType = BigInteger().with_variant(Integer, "sqlite")


class ReservationStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Amenity(Base):
    __tablename__ = "amenities"
    __table_args__ = (
        CheckConstraint("max_capacity >= 1", name="chk_amenities_capacity"),
        Index("idx_amenities_condo", "condo_id"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    condo_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_reservable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class AmenityRule(Base):
    """Weekly opening template for one amenity on one weekday (0 = Sunday)."""

    __tablename__ = "amenity_rules"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="chk_rules_dow"),
        CheckConstraint("open_time < close_time", name="chk_rules_hours"),
        CheckConstraint(
            "slot_duration_minutes IS NULL OR slot_duration_minutes > 0",
            name="chk_rules_slot_duration",
        ),
        CheckConstraint("min_lead_time_hours >= 0", name="chk_rules_min_lead"),
        CheckConstraint(
            "max_lead_time_days IS NULL OR max_lead_time_days >= 0",
            name="chk_rules_max_lead",
        ),
        CheckConstraint("reservations_per_user_day >= 0", name="chk_rules_per_user_day"),
        Index("idx_rules_amenity_dow", "amenity_id", "day_of_week"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    amenity_id: Mapped[int] = mapped_column(ForeignKey("amenities.id"), nullable=False)
    condo_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    open_time: Mapped[time] = mapped_column(Time, nullable=False)
    close_time: Mapped[time] = mapped_column(Time, nullable=False)
    slot_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_lead_time_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_lead_time_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reservations_per_user_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_res_time"),
        Index("idx_res_amenity_start", "amenity_id", "start_time"),
        Index("idx_res_user", "condo_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    condo_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amenity_id: Mapped[int] = mapped_column(ForeignKey("amenities.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    reservation_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(
            ReservationStatus,
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class AmenityDayLock(Base):
    """One lockable row per amenity and condo-local day, serializing bookings."""

    __tablename__ = "amenity_day_locks"

    amenity_id: Mapped[int] = mapped_column(ForeignKey("amenities.id"), primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    condo_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
