"""
Staff model - team members who perform services.
"""
from datetime import datetime, timezone
from uuid import uuid4, UUID

from sqlalchemy import String, Boolean, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.lib.db import Base


class Staff(Base):
    """
    Staff entity. Only active staff participate in availability computation;
    deactivating a member never cancels their future bookings.
    """
    __tablename__ = "staff"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Staff(id={self.id}, name={self.full_name}, active={self.is_active})>"
