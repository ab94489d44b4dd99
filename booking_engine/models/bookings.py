"""
Booking model - client reservations of a service, optionally with a staff member.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    DDL,
    String,
    Numeric,
    Integer,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    CheckConstraint,
    Index,
    Uuid,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.lib.db import Base


class BookingStatus(str, enum.Enum):
    """Booking status state machine: pending → confirmed → completed, or cancelled."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class Actor(str, enum.Enum):
    """Who performed a mutation."""
    BUSINESS = "business"
    CUSTOMER = "customer"
    SYSTEM = "system"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


_ACTIVE_SQL = "status IN ('pending', 'confirmed')"

_actor_type = SQLEnum(Actor, name="booking_actor", values_callable=_enum_values)


class Booking(Base):
    """
    Booking entity.

    start_time/end_time are wall-clock times in the business timezone.
    end_time = start_time + service duration, fixed at creation and only
    recomputed by a reschedule, which may happen at most once.
    Rows are never deleted; cancellation is a status change.
    """
    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    service_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("services.id"),
        nullable=False,
        index=True,
    )
    staff_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("staff.id"),
        nullable=True,
        index=True,
    )

    # Client identity
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    client_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Timing
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # Payment
    amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )

    source: Mapped[str] = mapped_column(String(50), nullable=False, default="online")
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Explicit mutation tracking
    reschedule_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by: Mapped[Actor] = mapped_column(
        _actor_type,
        nullable=False,
        default=Actor.CUSTOMER,
    )
    cancelled_by: Mapped[Optional[Actor]] = mapped_column(
        _actor_type,
        nullable=True,
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="booking_start_before_end"),
        CheckConstraint("reschedule_count BETWEEN 0 AND 1", name="booking_reschedule_once"),
        # At most one active booking per client per service
        Index(
            "uq_bookings_active_client_service",
            "service_id",
            "client_email",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
        Index("ix_bookings_staff_start", "staff_id", "start_time"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap with [start, end)."""
        return self.start_time < end and start < self.end_time

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, start={self.start_time})>"


# No two active bookings of one staff member may overlap. Postgres only;
# other backends rely on the store's serialized re-check.
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        "CREATE EXTENSION IF NOT EXISTS btree_gist; "
        "ALTER TABLE bookings ADD CONSTRAINT bookings_no_staff_overlap "
        "EXCLUDE USING gist (staff_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
        f"WHERE (staff_id IS NOT NULL AND {_ACTIVE_SQL})"
    ).execute_if(dialect="postgresql"),
)
