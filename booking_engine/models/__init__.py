"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from booking_engine.models.staff import Staff
from booking_engine.models.services import Service
from booking_engine.models.schedules import ShiftTemplate, TimeOffPeriod, AvailabilityOverride
from booking_engine.models.bookings import Booking
from booking_engine.models.notifications import Notification
from booking_engine.models.reviews import Review

__all__ = [
    "Staff",
    "Service",
    "ShiftTemplate",
    "TimeOffPeriod",
    "AvailabilityOverride",
    "Booking",
    "Notification",
    "Review",
]
