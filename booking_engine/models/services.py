"""
Service model - available services that can be booked.
"""
from uuid import uuid4
from typing import Optional
from uuid import UUID

from sqlalchemy import String, Numeric, Integer, Boolean, CheckConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.lib.db import Base


class Service(Base):
    """
    Service entity - bookable services.

    duration_minutes drives slot granularity. An inactive service is not
    offered for new bookings; existing bookings that reference it stay valid.
    """
    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Pricing and duration
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Display colour on the business calendar
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="service_positive_duration"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name={self.name}, duration={self.duration_minutes})>"
