"""
In-process ScheduleStore.

Used for development (STORE_BACKEND=memory) and tests. A single lock makes
every operation atomic, so the booking constraints hold under concurrent
request threads exactly as the SQL constraints do.
"""
import copy
import threading
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import inspect

from booking_engine.lib.errors import (
    AlreadyRescheduledError,
    ConcurrentUpdateError,
    DuplicateActiveBookingError,
    NotFoundException,
    ReviewAlreadySubmittedError,
    SlotTakenError,
)
from booking_engine.lib.logging import get_logger
from booking_engine.models.bookings import ACTIVE_STATUSES, Actor, Booking, BookingStatus
from booking_engine.models.notifications import DeliveryStatus, IntentKind, Notification
from booking_engine.models.reviews import Review
from booking_engine.models.schedules import AvailabilityOverride, ShiftTemplate, TimeOffPeriod
from booking_engine.models.services import Service
from booking_engine.models.staff import Staff
from booking_engine.store.base import ScheduleStore


logger = get_logger(__name__)


def _apply_defaults(obj):
    """Fill unset columns from their Python-side defaults, as a flush would."""
    for column in obj.__table__.columns:
        if getattr(obj, column.key, None) is None and column.default is not None:
            default = column.default
            value = default.arg(None) if default.is_callable else default.arg
            setattr(obj, column.key, value)
    return obj


def _clone(obj):
    """Detached copy so callers never share mutable state with the store."""
    cls = type(obj)
    values = {
        attr.key: copy.deepcopy(getattr(obj, attr.key))
        for attr in inspect(cls).column_attrs
    }
    return cls(**values)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryScheduleStore(ScheduleStore):
    """Dict-backed store; all rows are copied on the way in and out."""

    def __init__(self):
        self._lock = threading.RLock()
        self._staff: Dict[UUID, Staff] = {}
        self._services: Dict[UUID, Service] = {}
        self._shifts: Dict[UUID, ShiftTemplate] = {}
        self._time_off: Dict[UUID, TimeOffPeriod] = {}
        self._overrides: Dict[UUID, AvailabilityOverride] = {}
        self._bookings: Dict[UUID, Booking] = {}
        self._notifications: Dict[UUID, Notification] = {}
        self._reviews: Dict[UUID, Review] = {}

    def _put(self, table: Dict[UUID, Any], obj):
        stored = _apply_defaults(_clone(obj))
        with self._lock:
            table[stored.id] = stored
        return _clone(stored)

    def _get(self, table: Dict[UUID, Any], key: UUID):
        with self._lock:
            obj = table.get(key)
            return _clone(obj) if obj is not None else None

    def _update(self, table: Dict[UUID, Any], key: UUID, changes: Dict[str, Any]):
        with self._lock:
            obj = table.get(key)
            if obj is None:
                return None
            for field, value in changes.items():
                setattr(obj, field, value)
            return _clone(obj)

    def _delete(self, table: Dict[UUID, Any], key: UUID) -> bool:
        with self._lock:
            return table.pop(key, None) is not None

    # ===== Staff =====

    def get_staff(self, staff_id: UUID) -> Optional[Staff]:
        return self._get(self._staff, staff_id)

    def list_staff(self, active_only: bool = False) -> List[Staff]:
        with self._lock:
            rows = [s for s in self._staff.values() if s.is_active or not active_only]
            return [_clone(s) for s in sorted(rows, key=lambda s: s.full_name)]

    def add_staff(self, staff: Staff) -> Staff:
        return self._put(self._staff, staff)

    def update_staff(self, staff_id: UUID, changes: Dict[str, Any]) -> Optional[Staff]:
        return self._update(self._staff, staff_id, changes)

    # ===== Services =====

    def get_service(self, service_id: UUID) -> Optional[Service]:
        return self._get(self._services, service_id)

    def list_services(self, active_only: bool = False) -> List[Service]:
        with self._lock:
            rows = [s for s in self._services.values() if s.is_active or not active_only]
            return [_clone(s) for s in sorted(rows, key=lambda s: s.name)]

    def add_service(self, service: Service) -> Service:
        return self._put(self._services, service)

    def update_service(self, service_id: UUID, changes: Dict[str, Any]) -> Optional[Service]:
        return self._update(self._services, service_id, changes)

    # ===== Shift templates =====

    def list_shifts(self, staff_id: UUID) -> List[ShiftTemplate]:
        with self._lock:
            rows = [s for s in self._shifts.values() if s.staff_id == staff_id]
            rows.sort(key=lambda s: (s.day_of_week, s.start_time))
            return [_clone(s) for s in rows]

    def add_shift(self, shift: ShiftTemplate) -> ShiftTemplate:
        return self._put(self._shifts, shift)

    def delete_shift(self, shift_id: UUID) -> bool:
        return self._delete(self._shifts, shift_id)

    # ===== Time off =====

    def list_time_off(
        self,
        staff_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[TimeOffPeriod]:
        with self._lock:
            rows = [
                p for p in self._time_off.values()
                if p.staff_id == staff_id
                and (end is None or p.start_date <= end)
                and (start is None or p.end_date >= start)
            ]
            rows.sort(key=lambda p: p.start_date)
            return [_clone(p) for p in rows]

    def add_time_off(self, period: TimeOffPeriod) -> TimeOffPeriod:
        return self._put(self._time_off, period)

    def delete_time_off(self, period_id: UUID) -> bool:
        return self._delete(self._time_off, period_id)

    # ===== Overrides =====

    def get_override(self, staff_id: UUID, day: date) -> Optional[AvailabilityOverride]:
        with self._lock:
            for override in self._overrides.values():
                if override.staff_id == staff_id and override.date == day:
                    return _clone(override)
        return None

    def list_overrides(
        self,
        staff_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AvailabilityOverride]:
        with self._lock:
            rows = [
                o for o in self._overrides.values()
                if o.staff_id == staff_id
                and (start is None or o.date >= start)
                and (end is None or o.date <= end)
            ]
            rows.sort(key=lambda o: o.date)
            return [_clone(o) for o in rows]

    def set_override(self, override: AvailabilityOverride) -> AvailabilityOverride:
        with self._lock:
            existing = next(
                (
                    o for o in self._overrides.values()
                    if o.staff_id == override.staff_id and o.date == override.date
                ),
                None,
            )
            if existing is not None:
                existing.start_time = override.start_time
                existing.end_time = override.end_time
                existing.is_available = override.is_available
                return _clone(existing)
            return self._put(self._overrides, override)

    def delete_override(self, override_id: UUID) -> bool:
        return self._delete(self._overrides, override_id)

    # ===== Bookings =====

    def get_booking(self, booking_id: UUID) -> Optional[Booking]:
        return self._get(self._bookings, booking_id)

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
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = []
            for booking in self._bookings.values():
                if staff_id is not None and booking.staff_id != staff_id:
                    continue
                if client_email is not None and booking.client_email != client_email.lower():
                    continue
                if service_id is not None and booking.service_id != service_id:
                    continue
                if wanted is not None and booking.status not in wanted:
                    continue
                if overlapping is not None and not booking.overlaps(*overlapping):
                    continue
                if start_from is not None and booking.start_time < start_from:
                    continue
                if start_to is not None and booking.start_time >= start_to:
                    continue
                rows.append(booking)
            rows.sort(key=lambda b: b.start_time)
            return [_clone(b) for b in rows]

    def _find_overlap(self, staff_id, start, end, exclude_id=None) -> Optional[Booking]:
        if staff_id is None:
            return None
        for other in self._bookings.values():
            if (
                other.id != exclude_id
                and other.staff_id == staff_id
                and other.status in ACTIVE_STATUSES
                and other.overlaps(start, end)
            ):
                return other
        return None

    def _find_duplicate(self, service_id, client_email, exclude_id=None) -> Optional[Booking]:
        for other in self._bookings.values():
            if (
                other.id != exclude_id
                and other.service_id == service_id
                and other.client_email == client_email
                and other.status in ACTIVE_STATUSES
            ):
                return other
        return None

    def insert_booking(self, booking: Booking) -> Booking:
        with self._lock:
            duplicate = self._find_duplicate(booking.service_id, booking.client_email)
            if duplicate is not None:
                raise DuplicateActiveBookingError(_clone(duplicate))
            taken = self._find_overlap(booking.staff_id, booking.start_time, booking.end_time)
            if taken is not None:
                raise SlotTakenError(_clone(taken))
            return self._put(self._bookings, booking)

    def update_booking_status(
        self,
        booking_id: UUID,
        status: BookingStatus,
        expected_status: BookingStatus,
        updated_by: Actor,
        cancelled_by: Optional[Actor] = None,
    ) -> Booking:
        with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None:
                raise NotFoundException("Booking", str(booking_id))
            if booking.status != expected_status:
                raise ConcurrentUpdateError(booking_id)
            now = _utcnow()
            booking.status = status
            booking.updated_by = updated_by
            booking.updated_at = now
            if status == BookingStatus.CANCELLED:
                booking.cancelled_by = cancelled_by
                booking.cancelled_at = now
            return _clone(booking)

    def update_booking_time(
        self,
        booking_id: UUID,
        start_time: datetime,
        end_time: datetime,
        expected_reschedule_count: int,
        updated_by: Actor,
    ) -> Booking:
        with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None:
                raise NotFoundException("Booking", str(booking_id))
            if booking.reschedule_count != expected_reschedule_count:
                raise AlreadyRescheduledError(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise ConcurrentUpdateError(booking_id)
            taken = self._find_overlap(booking.staff_id, start_time, end_time, exclude_id=booking_id)
            if taken is not None:
                raise SlotTakenError(_clone(taken))
            booking.start_time = start_time
            booking.end_time = end_time
            booking.reschedule_count += 1
            booking.status = BookingStatus.PENDING
            booking.updated_by = updated_by
            booking.updated_at = _utcnow()
            return _clone(booking)

    # ===== Notifications =====

    def add_notification(self, notification: Notification) -> Notification:
        return self._put(self._notifications, notification)

    def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        return self._get(self._notifications, notification_id)

    def list_notifications(
        self,
        audience: Optional[str] = None,
        delivery_status: Optional[DeliveryStatus] = None,
        include_acknowledged: bool = True,
        active_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        with self._lock:
            rows = [
                n for n in self._notifications.values()
                if (audience is None or audience in n.audiences)
                and (delivery_status is None or n.delivery_status == delivery_status)
                and (include_acknowledged or n.acknowledged_at is None)
                and (active_at is None or n.expires_at > active_at)
                and (max_attempts is None or n.attempts < max_attempts)
            ]
            rows.sort(key=lambda n: n.created_at)
            if limit is not None:
                rows = rows[:limit]
            return [_clone(n) for n in rows]

    def find_notifications(self, booking_id: UUID, kind: Optional[IntentKind] = None) -> List[Notification]:
        with self._lock:
            rows = [
                n for n in self._notifications.values()
                if n.booking_id == booking_id and (kind is None or n.kind == kind)
            ]
            rows.sort(key=lambda n: n.created_at)
            return [_clone(n) for n in rows]

    def update_notification(self, notification_id: UUID, changes: Dict[str, Any]) -> Optional[Notification]:
        return self._update(self._notifications, notification_id, changes)

    def purge_expired_notifications(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, n in self._notifications.items() if n.expires_at <= now]
            for key in expired:
                del self._notifications[key]
        return len(expired)

    # ===== Reviews =====

    def add_review(self, review: Review) -> Review:
        with self._lock:
            if any(r.booking_id == review.booking_id for r in self._reviews.values()):
                raise ReviewAlreadySubmittedError(review.booking_id)
            return self._put(self._reviews, review)

    def get_review_for_booking(self, booking_id: UUID) -> Optional[Review]:
        with self._lock:
            for review in self._reviews.values():
                if review.booking_id == booking_id:
                    return _clone(review)
        return None
