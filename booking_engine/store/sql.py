"""
SQLAlchemy-backed ScheduleStore.

Each call runs in its own short-lived session so a call abandoned by the
bounded wrapper never shares a session with the next request. Booking
inserts and time updates run SERIALIZABLE on PostgreSQL and re-check
overlap and duplicates right before writing; the exclusion constraint
and partial unique index are the final guarantee.
"""
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from booking_engine.lib.db import get_session_factory, session_scope
from booking_engine.lib.errors import (
    AlreadyRescheduledError,
    ConcurrentUpdateError,
    DuplicateActiveBookingError,
    NotFoundException,
    ReviewAlreadySubmittedError,
    SlotTakenError,
    StoreUnavailableError,
    WriteOutcomeUnknownError,
)
from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.models.bookings import ACTIVE_STATUSES, Actor, Booking, BookingStatus
from booking_engine.models.notifications import DeliveryStatus, IntentKind, Notification
from booking_engine.models.reviews import Review
from booking_engine.models.schedules import AvailabilityOverride, ShiftTemplate, TimeOffPeriod
from booking_engine.models.services import Service
from booking_engine.models.staff import Staff
from booking_engine.store.base import ScheduleStore, is_read_operation


logger = get_logger(__name__)

SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
OVERLAP_CONSTRAINT = "bookings_no_staff_overlap"
DUPLICATE_INDEX = "uq_bookings_active_client_service"
REVIEW_UNIQUE_COLUMN = "reviews.booking_id"


def _is_serialization_failure(exc: BaseException) -> bool:
    """True for aborted transactions whose outcome is known (nothing written)."""
    if not isinstance(exc, OperationalError):
        return False
    return getattr(exc.orig, "pgcode", None) in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlScheduleStore(ScheduleStore):
    """Relational store over any SQLAlchemy engine (PostgreSQL in production)."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, serialization_attempts: int = 3):
        self._factory = session_factory or get_session_factory()
        self._serialization_attempts = serialization_attempts

    # ===== Unit-of-work helpers =====

    @contextmanager
    def _session(self, operation: str, isolation_level: Optional[str] = None, subject=None):
        """Session for one call, with driver errors mapped to store errors."""
        try:
            with session_scope(self._factory, isolation_level=isolation_level) as db:
                yield db
        except IntegrityError as exc:
            raise self._map_integrity_error(operation, exc, subject) from exc
        except OperationalError as exc:
            if _is_serialization_failure(exc):
                raise
            log_with_context(
                logger, "warning", "Schedule store operation failed",
                operation=operation, error=str(exc.orig),
            )
            if is_read_operation(operation):
                raise StoreUnavailableError(operation) from exc
            raise WriteOutcomeUnknownError(operation, reason="store_error") from exc

    def _serializable(self, operation: str, work: Callable[[Session], Any]) -> Any:
        """
        Run work in a SERIALIZABLE transaction, retrying serialization failures.

        An aborted serializable transaction wrote nothing, so retrying it is safe.
        """
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._serialization_attempts),
                wait=wait_exponential(multiplier=0.05, max=1),
                retry=retry_if_exception(_is_serialization_failure),
                reraise=True,
            ):
                with attempt:
                    with self._session(operation, isolation_level="SERIALIZABLE") as db:
                        result = work(db)
        except OperationalError as exc:
            raise StoreUnavailableError(operation, "Schedule store is busy; nothing was written") from exc
        return result

    def _map_integrity_error(self, operation: str, exc: IntegrityError, subject=None) -> Exception:
        text = str(exc.orig)
        constraint = getattr(getattr(exc.orig, "diag", None), "constraint_name", None) or ""
        if OVERLAP_CONSTRAINT in constraint or OVERLAP_CONSTRAINT in text:
            return SlotTakenError()
        if DUPLICATE_INDEX in constraint or DUPLICATE_INDEX in text or "bookings.client_email" in text:
            return DuplicateActiveBookingError()
        if REVIEW_UNIQUE_COLUMN in text or "reviews_booking_id" in constraint:
            return ReviewAlreadySubmittedError(subject)
        log_with_context(logger, "error", "Unexpected integrity error", operation=operation, error=text)
        return WriteOutcomeUnknownError(operation, reason="integrity_error")

    def _read_one(self, operation: str, model, key):
        with self._session(operation) as db:
            return db.get(model, key)

    def _read_all(self, operation: str, stmt) -> list:
        with self._session(operation) as db:
            return list(db.scalars(stmt).all())

    def _add(self, operation: str, obj):
        with self._session(operation) as db:
            db.add(obj)
            db.flush()
            return obj

    def _update(self, operation: str, model, key, changes: Dict[str, Any]):
        with self._session(operation) as db:
            obj = db.get(model, key)
            if obj is None:
                return None
            for field, value in changes.items():
                setattr(obj, field, value)
            db.flush()
            return obj

    def _delete(self, operation: str, model, key) -> bool:
        with self._session(operation) as db:
            result = db.execute(delete(model).where(model.id == key))
            return result.rowcount > 0

    # ===== Staff =====

    def get_staff(self, staff_id: UUID) -> Optional[Staff]:
        return self._read_one("get_staff", Staff, staff_id)

    def list_staff(self, active_only: bool = False) -> List[Staff]:
        stmt = select(Staff).order_by(Staff.full_name)
        if active_only:
            stmt = stmt.where(Staff.is_active.is_(True))
        return self._read_all("list_staff", stmt)

    def add_staff(self, staff: Staff) -> Staff:
        return self._add("add_staff", staff)

    def update_staff(self, staff_id: UUID, changes: Dict[str, Any]) -> Optional[Staff]:
        return self._update("update_staff", Staff, staff_id, changes)

    # ===== Services =====

    def get_service(self, service_id: UUID) -> Optional[Service]:
        return self._read_one("get_service", Service, service_id)

    def list_services(self, active_only: bool = False) -> List[Service]:
        stmt = select(Service).order_by(Service.name)
        if active_only:
            stmt = stmt.where(Service.is_active.is_(True))
        return self._read_all("list_services", stmt)

    def add_service(self, service: Service) -> Service:
        return self._add("add_service", service)

    def update_service(self, service_id: UUID, changes: Dict[str, Any]) -> Optional[Service]:
        return self._update("update_service", Service, service_id, changes)

    # ===== Shift templates =====

    def list_shifts(self, staff_id: UUID) -> List[ShiftTemplate]:
        stmt = (
            select(ShiftTemplate)
            .where(ShiftTemplate.staff_id == staff_id)
            .order_by(ShiftTemplate.day_of_week, ShiftTemplate.start_time)
        )
        return self._read_all("list_shifts", stmt)

    def add_shift(self, shift: ShiftTemplate) -> ShiftTemplate:
        return self._add("add_shift", shift)

    def delete_shift(self, shift_id: UUID) -> bool:
        return self._delete("delete_shift", ShiftTemplate, shift_id)

    # ===== Time off =====

    def list_time_off(
        self,
        staff_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[TimeOffPeriod]:
        stmt = select(TimeOffPeriod).where(TimeOffPeriod.staff_id == staff_id)
        if end is not None:
            stmt = stmt.where(TimeOffPeriod.start_date <= end)
        if start is not None:
            stmt = stmt.where(TimeOffPeriod.end_date >= start)
        return self._read_all("list_time_off", stmt.order_by(TimeOffPeriod.start_date))

    def add_time_off(self, period: TimeOffPeriod) -> TimeOffPeriod:
        return self._add("add_time_off", period)

    def delete_time_off(self, period_id: UUID) -> bool:
        return self._delete("delete_time_off", TimeOffPeriod, period_id)

    # ===== Overrides =====

    def get_override(self, staff_id: UUID, day: date) -> Optional[AvailabilityOverride]:
        stmt = select(AvailabilityOverride).where(
            AvailabilityOverride.staff_id == staff_id,
            AvailabilityOverride.date == day,
        )
        with self._session("get_override") as db:
            return db.scalars(stmt).first()

    def list_overrides(
        self,
        staff_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AvailabilityOverride]:
        stmt = select(AvailabilityOverride).where(AvailabilityOverride.staff_id == staff_id)
        if start is not None:
            stmt = stmt.where(AvailabilityOverride.date >= start)
        if end is not None:
            stmt = stmt.where(AvailabilityOverride.date <= end)
        return self._read_all("list_overrides", stmt.order_by(AvailabilityOverride.date))

    def set_override(self, override: AvailabilityOverride) -> AvailabilityOverride:
        with self._session("set_override") as db:
            existing = db.scalars(
                select(AvailabilityOverride)
                .where(
                    AvailabilityOverride.staff_id == override.staff_id,
                    AvailabilityOverride.date == override.date,
                )
                .with_for_update()
            ).first()
            if existing is None:
                db.add(override)
                db.flush()
                return override
            existing.start_time = override.start_time
            existing.end_time = override.end_time
            existing.is_available = override.is_available
            db.flush()
            return existing

    def delete_override(self, override_id: UUID) -> bool:
        return self._delete("delete_override", AvailabilityOverride, override_id)

    # ===== Bookings =====

    def get_booking(self, booking_id: UUID) -> Optional[Booking]:
        return self._read_one("get_booking", Booking, booking_id)

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
        conditions = []
        if staff_id is not None:
            conditions.append(Booking.staff_id == staff_id)
        if client_email is not None:
            conditions.append(Booking.client_email == client_email.lower())
        if service_id is not None:
            conditions.append(Booking.service_id == service_id)
        if statuses is not None:
            conditions.append(Booking.status.in_(list(statuses)))
        if overlapping is not None:
            start, end = overlapping
            conditions.append(and_(Booking.start_time < end, Booking.end_time > start))
        if start_from is not None:
            conditions.append(Booking.start_time >= start_from)
        if start_to is not None:
            conditions.append(Booking.start_time < start_to)
        stmt = select(Booking).where(*conditions).order_by(Booking.start_time)
        return self._read_all("list_bookings", stmt)

    @staticmethod
    def _find_overlap(db: Session, staff_id, start, end, exclude_id=None) -> Optional[Booking]:
        if staff_id is None:
            return None
        stmt = select(Booking).where(
            Booking.staff_id == staff_id,
            Booking.status.in_(list(ACTIVE_STATUSES)),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Booking.id != exclude_id)
        return db.scalars(stmt.limit(1)).first()

    @staticmethod
    def _find_duplicate(db: Session, service_id, client_email) -> Optional[Booking]:
        stmt = select(Booking).where(
            Booking.service_id == service_id,
            Booking.client_email == client_email,
            Booking.status.in_(list(ACTIVE_STATUSES)),
        )
        return db.scalars(stmt.limit(1)).first()

    def insert_booking(self, booking: Booking) -> Booking:
        def work(db: Session) -> Booking:
            duplicate = self._find_duplicate(db, booking.service_id, booking.client_email)
            if duplicate is not None:
                raise DuplicateActiveBookingError(duplicate)
            taken = self._find_overlap(db, booking.staff_id, booking.start_time, booking.end_time)
            if taken is not None:
                raise SlotTakenError(taken)
            db.add(booking)
            db.flush()
            return booking

        return self._serializable("insert_booking", work)

    def update_booking_status(
        self,
        booking_id: UUID,
        status: BookingStatus,
        expected_status: BookingStatus,
        updated_by: Actor,
        cancelled_by: Optional[Actor] = None,
    ) -> Booking:
        now = _utcnow()
        values: Dict[str, Any] = {"status": status, "updated_by": updated_by, "updated_at": now}
        if status == BookingStatus.CANCELLED:
            values.update(cancelled_by=cancelled_by, cancelled_at=now)

        with self._session("update_booking_status") as db:
            result = db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == expected_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if db.get(Booking, booking_id) is None:
                    raise NotFoundException("Booking", str(booking_id))
                raise ConcurrentUpdateError(booking_id)
            return db.get(Booking, booking_id, populate_existing=True)

    def update_booking_time(
        self,
        booking_id: UUID,
        start_time: datetime,
        end_time: datetime,
        expected_reschedule_count: int,
        updated_by: Actor,
    ) -> Booking:
        def work(db: Session) -> Booking:
            current = db.get(Booking, booking_id)
            if current is None:
                raise NotFoundException("Booking", str(booking_id))
            taken = self._find_overlap(db, current.staff_id, start_time, end_time, exclude_id=booking_id)
            if taken is not None:
                raise SlotTakenError(taken)
            result = db.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.reschedule_count == expected_reschedule_count,
                    Booking.status == BookingStatus.PENDING,
                )
                .values(
                    start_time=start_time,
                    end_time=end_time,
                    reschedule_count=Booking.reschedule_count + 1,
                    status=BookingStatus.PENDING,
                    updated_by=updated_by,
                    updated_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                latest = db.get(Booking, booking_id, populate_existing=True)
                if latest.reschedule_count != expected_reschedule_count:
                    raise AlreadyRescheduledError(booking_id)
                raise ConcurrentUpdateError(booking_id)
            return db.get(Booking, booking_id, populate_existing=True)

        return self._serializable("update_booking_time", work)

    # ===== Notifications =====

    def add_notification(self, notification: Notification) -> Notification:
        return self._add("add_notification", notification)

    def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        return self._read_one("get_notification", Notification, notification_id)

    def list_notifications(
        self,
        audience: Optional[str] = None,
        delivery_status: Optional[DeliveryStatus] = None,
        include_acknowledged: bool = True,
        active_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        stmt = select(Notification).order_by(Notification.created_at)
        if delivery_status is not None:
            stmt = stmt.where(Notification.delivery_status == delivery_status)
        if not include_acknowledged:
            stmt = stmt.where(Notification.acknowledged_at.is_(None))
        if active_at is not None:
            stmt = stmt.where(Notification.expires_at > active_at)
        if max_attempts is not None:
            stmt = stmt.where(Notification.attempts < max_attempts)
        rows = self._read_all("list_notifications", stmt)
        # audiences is a JSON array; filtered here to stay portable across backends
        if audience is not None:
            rows = [row for row in rows if audience in row.audiences]
        if limit is not None:
            rows = rows[:limit]
        return rows

    def find_notifications(self, booking_id: UUID, kind: Optional[IntentKind] = None) -> List[Notification]:
        stmt = select(Notification).where(Notification.booking_id == booking_id)
        if kind is not None:
            stmt = stmt.where(Notification.kind == kind)
        return self._read_all("find_notifications", stmt.order_by(Notification.created_at))

    def update_notification(self, notification_id: UUID, changes: Dict[str, Any]) -> Optional[Notification]:
        return self._update("update_notification", Notification, notification_id, changes)

    def purge_expired_notifications(self, now: datetime) -> int:
        with self._session("purge_expired_notifications") as db:
            result = db.execute(delete(Notification).where(Notification.expires_at <= now))
            return result.rowcount

    # ===== Reviews =====

    def add_review(self, review: Review) -> Review:
        with self._session("add_review", subject=review.booking_id) as db:
            existing = db.scalars(select(Review).where(Review.booking_id == review.booking_id)).first()
            if existing is not None:
                raise ReviewAlreadySubmittedError(review.booking_id)
            db.add(review)
            db.flush()
            return review

    def get_review_for_booking(self, booking_id: UUID) -> Optional[Review]:
        with self._session("get_review_for_booking") as db:
            return db.scalars(select(Review).where(Review.booking_id == booking_id)).first()
