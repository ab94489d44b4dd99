"""
Schedule models - recurring shifts, time off and per-date overrides.

Day-of-week numbering follows the business calendar: 0 = Sunday ... 6 = Saturday.
"""
from datetime import date as date_type, datetime, time, timezone
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Date,
    DateTime,
    Time,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.lib.db import Base


def business_day_of_week(day: date_type) -> int:
    """Map a date to 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


class ShiftTemplate(Base):
    """
    Recurring weekly working window. Several templates per staff per day
    are allowed (split shifts); overlapping windows are merged.
    """
    __tablename__ = "shift_templates"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    staff_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="shift_day_of_week_range"),
        CheckConstraint("start_time < end_time", name="shift_start_before_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<ShiftTemplate(staff_id={self.staff_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )


class TimeOffPeriod(Base):
    """
    Date range (end inclusive) during which the staff member has no
    availability at all, whatever the shifts or overrides say.
    """
    __tablename__ = "time_off_periods"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    staff_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    end_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    all_day: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="time_off_start_before_end"),
    )

    def covers(self, day: date_type) -> bool:
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return f"<TimeOffPeriod(staff_id={self.staff_id}, {self.start_date}..{self.end_date})>"


class AvailabilityOverride(Base):
    """
    One-off replacement of a staff member's working hours for a single date.
    At most one override exists per (staff_id, date).
    """
    __tablename__ = "availability_overrides"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    staff_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        UniqueConstraint("staff_id", "date", name="uq_availability_override_staff_date"),
        CheckConstraint(
            "start_time IS NULL OR end_time IS NULL OR start_time < end_time",
            name="override_start_before_end",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityOverride(staff_id={self.staff_id}, date={self.date}, "
            f"available={self.is_available})>"
        )
