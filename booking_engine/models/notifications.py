"""
Notification model - persisted notification intents (outbox rows).

The engine only records what should be communicated; a background job
delivers pending rows through the configured providers.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    JSON,
    String,
    Integer,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.lib.db import Base


class IntentKind(str, enum.Enum):
    """What happened."""
    NEW_BOOKING = "new_booking"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_RESCHEDULED = "booking_rescheduled"
    BOOKING_COMPLETED = "booking_completed"
    NEW_REVIEW = "new_review"
    BOOKING_REMINDER = "booking_reminder"


class Audience(str, enum.Enum):
    """Party an intent is addressed to."""
    BUSINESS = "business"
    CUSTOMER = "customer"


class DeliveryStatus(str, enum.Enum):
    """Notification delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


_json_type = JSON().with_variant(JSONB(), "postgresql")


class Notification(Base):
    """
    Notification entity - one intent for one or more audiences.

    acknowledged_at replaces client-side "dismissed" sets; rows past
    expires_at are hidden from listings and purged by a daily job.
    """
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    booking_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id"),
        nullable=True,
        index=True,
    )

    kind: Mapped[IntentKind] = mapped_column(
        SQLEnum(IntentKind, name="intent_kind", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    audiences: Mapped[List[str]] = mapped_column(_json_type, nullable=False, default=list)
    payload: Mapped[Dict[str, Any]] = mapped_column(_json_type, nullable=False, default=dict)

    # Delivery tracking
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, name="notification_delivery_status", values_callable=_enum_values),
        nullable=False,
        default=DeliveryStatus.PENDING,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    # "channel:audience" keys already reached; retries skip them
    delivered_to: Mapped[List[str]] = mapped_column(_json_type, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, kind={self.kind}, status={self.delivery_status})>"
