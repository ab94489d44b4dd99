"""
ScheduleStore interface.

Every adapter exposes the same operations. Method names carry their
semantics for the bounded wrapper: ``get_``/``list_``/``find_`` are
idempotent reads, everything else mutates.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from booking_engine.models.bookings import Actor, Booking, BookingStatus
from booking_engine.models.notifications import DeliveryStatus, IntentKind, Notification
from booking_engine.models.reviews import Review
from booking_engine.models.schedules import AvailabilityOverride, ShiftTemplate, TimeOffPeriod
from booking_engine.models.services import Service
from booking_engine.models.staff import Staff


READ_PREFIXES = ("get_", "list_", "find_")


def is_read_operation(name: str) -> bool:
    return name.startswith(READ_PREFIXES)


class ScheduleStore(ABC):
    """
    Persistent rows behind the engine.

    Conflict guarantees live here, not in the callers:
    - insert_booking rejects an overlapping active booking of the same
      staff member (SlotTakenError) and a second active booking for the
      same (service, client email) (DuplicateActiveBookingError).
    - update_booking_status / update_booking_time are conditional writes
      that fail with ConcurrentUpdateError when the row changed since it
      was read.
    """

    # ===== Staff =====

    @abstractmethod
    def get_staff(self, staff_id: UUID) -> Optional[Staff]:
        pass

    @abstractmethod
    def list_staff(self, active_only: bool = False) -> List[Staff]:
        pass

    @abstractmethod
    def add_staff(self, staff: Staff) -> Staff:
        pass

    @abstractmethod
    def update_staff(self, staff_id: UUID, changes: Dict[str, Any]) -> Optional[Staff]:
        pass

    # ===== Services =====

    @abstractmethod
    def get_service(self, service_id: UUID) -> Optional[Service]:
        pass

    @abstractmethod
    def list_services(self, active_only: bool = False) -> List[Service]:
        pass

    @abstractmethod
    def add_service(self, service: Service) -> Service:
        pass

    @abstractmethod
    def update_service(self, service_id: UUID, changes: Dict[str, Any]) -> Optional[Service]:
        pass

    # ===== Shift templates =====

    @abstractmethod
    def list_shifts(self, staff_id: UUID) -> List[ShiftTemplate]:
        """All shift templates of a staff member, active or not."""

    @abstractmethod
    def add_shift(self, shift: ShiftTemplate) -> ShiftTemplate:
        pass

    @abstractmethod
    def delete_shift(self, shift_id: UUID) -> bool:
        pass

    # ===== Time off =====

    @abstractmethod
    def list_time_off(
        self,
        staff_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[TimeOffPeriod]:
        """Periods intersecting [start, end] (both inclusive, either open)."""

    @abstractmethod
    def add_time_off(self, period: TimeOffPeriod) -> TimeOffPeriod:
        pass

    @abstractmethod
    def delete_time_off(self, period_id: UUID) -> bool:
        pass

    # ===== Overrides =====

    @abstractmethod
    def get_override(self, staff_id: UUID, day: date) -> Optional[AvailabilityOverride]:
        pass

    @abstractmethod
    def list_overrides(
        self,
        staff_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AvailabilityOverride]:
        pass

    @abstractmethod
    def set_override(self, override: AvailabilityOverride) -> AvailabilityOverride:
        """Create or replace the single override of (staff_id, date)."""

    @abstractmethod
    def delete_override(self, override_id: UUID) -> bool:
        pass

    # ===== Bookings =====

    @abstractmethod
    def get_booking(self, booking_id: UUID) -> Optional[Booking]:
        pass

    @abstractmethod
    def list_bookings(
        self,
        staff_id: Optional[UUID] = None,
        client_email: Optional[str] = None,
        service_id: Optional[UUID] = None,
        statuses: Optional[Iterable[BookingStatus]] = None,
        overlapping: Optional[tuple] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
    ) -> List[Booking]:
        """
        Bookings matching every given filter, ordered by start_time.

        overlapping is a (start, end) pair; a booking matches when its
        [start_time, end_time) interval intersects it. start_from/start_to
        bound start_time as [start_from, start_to).
        """

    @abstractmethod
    def insert_booking(self, booking: Booking) -> Booking:
        pass

    @abstractmethod
    def update_booking_status(
        self,
        booking_id: UUID,
        status: BookingStatus,
        expected_status: BookingStatus,
        updated_by: Actor,
        cancelled_by: Optional[Actor] = None,
    ) -> Booking:
        pass

    @abstractmethod
    def update_booking_time(
        self,
        booking_id: UUID,
        start_time: datetime,
        end_time: datetime,
        expected_reschedule_count: int,
        updated_by: Actor,
    ) -> Booking:
        """
        Move a pending booking, incrementing reschedule_count in the same write.

        Raises AlreadyRescheduledError when reschedule_count no longer
        matches, ConcurrentUpdateError when the booking left pending, and
        SlotTakenError when the new interval overlaps another active booking.
        """

    # ===== Notifications =====

    @abstractmethod
    def add_notification(self, notification: Notification) -> Notification:
        pass

    @abstractmethod
    def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        pass

    @abstractmethod
    def list_notifications(
        self,
        audience: Optional[str] = None,
        delivery_status: Optional[DeliveryStatus] = None,
        include_acknowledged: bool = True,
        active_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        """
        Notifications ordered by created_at.

        active_at hides rows that expired at or before that instant;
        max_attempts keeps rows with fewer delivery attempts.
        """

    @abstractmethod
    def find_notifications(self, booking_id: UUID, kind: Optional[IntentKind] = None) -> List[Notification]:
        pass

    @abstractmethod
    def update_notification(self, notification_id: UUID, changes: Dict[str, Any]) -> Optional[Notification]:
        pass

    @abstractmethod
    def purge_expired_notifications(self, now: datetime) -> int:
        pass

    # ===== Reviews =====

    @abstractmethod
    def add_review(self, review: Review) -> Review:
        """Raises ReviewAlreadySubmittedError when the booking already has one."""

    @abstractmethod
    def get_review_for_booking(self, booking_id: UUID) -> Optional[Review]:
        pass
