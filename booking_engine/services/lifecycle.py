"""
Booking lifecycle - creation, status transitions and the one-time reschedule.

State machine:
    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled
    cancelled, completed: terminal

Every mutation is a single conditional write in the store, stamped with
the acting party. Notification intents are recorded after the write
succeeds; a failure to record one never undoes or blocks the mutation.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional
from uuid import UUID, uuid4

from booking_engine.lib.errors import (
    AlreadyRescheduledError,
    ConflictException,
    ForbiddenException,
    InvalidTransitionError,
    NotFoundException,
    ServiceInactiveError,
    SlotUnavailableError,
    ValidationException,
)
from booking_engine.lib.logging import booking_context, get_logger, log_with_context
from booking_engine.lib.metrics import get_metrics_collector
from booking_engine.lib.settings import Settings, settings as default_settings
from booking_engine.models.bookings import (
    Actor,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from booking_engine.models.notifications import Audience, IntentKind
from booking_engine.services.availability import AvailabilityCalculator
from booking_engine.services.conflict_guard import ConflictGuard
from booking_engine.services.notification_service import NotificationDispatcher, booking_payload


logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Action(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"


ACTION_TARGETS: Dict[Action, BookingStatus] = {
    Action.CONFIRM: BookingStatus.CONFIRMED,
    Action.CANCEL: BookingStatus.CANCELLED,
    Action.COMPLETE: BookingStatus.COMPLETED,
}

ALLOWED_TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

# Customers may cancel; confirming and completing belong to the business
CUSTOMER_ACTIONS = frozenset({Action.CANCEL})


@dataclass(frozen=True)
class ClientIdentity:
    name: str
    email: str
    phone: Optional[str] = None


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationException("Invalid booking request", errors={"client_email": "malformed email address"})
    return normalized


class BookingLifecycle:
    """
    Orchestrates booking mutations.

    Flow for create: validate -> ConflictGuard -> availability re-check ->
    store.insert_booking (authoritative) -> new_booking intent.
    """

    def __init__(
        self,
        store,
        guard: ConflictGuard,
        calculator: AvailabilityCalculator,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.guard = guard
        self.calculator = calculator
        self.dispatcher = dispatcher
        self.settings = settings or default_settings
        self.clock = clock
        self.metrics = get_metrics_collector()

    # ===== Create =====

    def create(
        self,
        service_id: UUID,
        client: ClientIdentity,
        start: datetime,
        staff_id: Optional[UUID] = None,
        source: str = "online",
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Reserve a slot; the new booking is pending.

        Raises ValidationException, NotFoundException, ServiceInactiveError,
        DuplicateActiveBookingError, SlotTakenError or SlotUnavailableError.
        """
        with booking_context(operation="create", service_id=service_id, staff_id=staff_id):
            return self._create(service_id, client, start, staff_id, source, notes)

    def _create(
        self,
        service_id: UUID,
        client: ClientIdentity,
        start: datetime,
        staff_id: Optional[UUID],
        source: str,
        notes: Optional[str],
    ) -> Booking:
        email = normalize_email(client.email)
        if not (client.name or "").strip():
            raise ValidationException("Invalid booking request", errors={"client_name": "required"})
        if not isinstance(start, datetime) or start.tzinfo is not None:
            raise ValidationException(
                "Invalid booking request",
                errors={"start_time": "must be a business-local date and time without offset"},
            )

        service = self.store.get_service(service_id)
        if service is None:
            raise NotFoundException("Service", str(service_id))
        if not service.is_active:
            raise ServiceInactiveError(service_id)

        if staff_id is not None:
            staff = self.store.get_staff(staff_id)
            if staff is None:
                raise NotFoundException("Staff", str(staff_id))
            if not staff.is_active:
                raise SlotUnavailableError(start, staff_id)

        end = start + timedelta(minutes=service.duration_minutes)

        try:
            self.guard.ensure_clear(service.id, email, staff_id, start, end)
            if staff_id is not None and not self.calculator.is_slot_open(staff_id, start, service.duration_minutes):
                self._raise_closed_slot(service.id, email, staff_id, start, end)

            now = self.clock()
            booking = self.store.insert_booking(
                Booking(
                    id=uuid4(),
                    service_id=service.id,
                    staff_id=staff_id,
                    client_name=client.name.strip(),
                    client_email=email,
                    client_phone=client.phone,
                    start_time=start,
                    end_time=end,
                    status=BookingStatus.PENDING,
                    amount=service.price,
                    payment_status=PaymentStatus.UNPAID,
                    source=source,
                    notes=notes,
                    reschedule_count=0,
                    updated_by=Actor.CUSTOMER,
                    created_at=now,
                    updated_at=now,
                )
            )
        except ConflictException as exc:
            self.metrics.increment_conflicts(exc.code, "create")
            raise

        self.metrics.increment_bookings_created(source)
        log_with_context(
            logger, "info", "Booking created",
            booking_id=str(booking.id), service_id=str(service.id),
            staff_id=str(staff_id) if staff_id else None, start_time=start.isoformat(),
        )
        self._emit(IntentKind.NEW_BOOKING, [Audience.BUSINESS], booking, service.name)
        return booking

    # ===== Transitions =====

    def transition(self, booking_id: UUID, action: Action, actor: Actor = Actor.BUSINESS) -> Booking:
        """
        Apply confirm / cancel / complete.

        Raises InvalidTransitionError for an illegal edge (including any edge
        out of a terminal state), ForbiddenException when a customer tries a
        business-only action, ConcurrentUpdateError when the status changed
        since it was read.
        """
        with booking_context(booking_id=booking_id, operation=getattr(action, "value", action)):
            return self._transition(booking_id, action, actor)

    def _transition(self, booking_id: UUID, action: Action, actor: Actor) -> Booking:
        action = Action(action)
        actor = Actor(actor)
        target = ACTION_TARGETS[action]

        if actor == Actor.CUSTOMER and action not in CUSTOMER_ACTIONS:
            raise ForbiddenException(f"Customers cannot {action.value} a booking")

        booking = self._load(booking_id)
        if target not in ALLOWED_TRANSITIONS[booking.status]:
            self.metrics.increment_conflicts(InvalidTransitionError.code, action.value)
            raise InvalidTransitionError(booking.id, booking.status, target.value)
        service_name = self._service_name(booking.service_id)

        try:
            updated = self.store.update_booking_status(
                booking.id,
                status=target,
                expected_status=booking.status,
                updated_by=actor,
                cancelled_by=actor if target == BookingStatus.CANCELLED else None,
            )
        except ConflictException as exc:
            self.metrics.increment_conflicts(exc.code, action.value)
            raise

        self.metrics.increment_transitions(target.value, actor.value)
        log_with_context(
            logger, "info", "Booking status changed",
            booking_id=str(updated.id), from_status=booking.status.value,
            to_status=target.value, actor=actor.value,
        )

        if target == BookingStatus.CONFIRMED:
            self._emit(IntentKind.BOOKING_CONFIRMED, [Audience.CUSTOMER], updated, service_name)
        elif target == BookingStatus.CANCELLED:
            self._emit(
                IntentKind.BOOKING_CANCELLED,
                [Audience.BUSINESS, Audience.CUSTOMER],
                updated,
                service_name,
                cancelled_by=actor.value,
            )
        elif target == BookingStatus.COMPLETED:
            self._emit(
                IntentKind.BOOKING_COMPLETED,
                [Audience.CUSTOMER],
                updated,
                service_name,
                review_url=self.review_url(updated.id),
            )
        return updated

    # ===== Reschedule =====

    def reschedule(self, booking_id: UUID, new_start: datetime, actor: Actor = Actor.CUSTOMER) -> Booking:
        """
        Move a pending booking to a new start, at most once per booking.

        Raises InvalidTransitionError when the booking is not pending,
        AlreadyRescheduledError on a second attempt, SlotTakenError or
        SlotUnavailableError when the new interval is not free.
        """
        with booking_context(booking_id=booking_id, operation="reschedule"):
            return self._reschedule(booking_id, new_start, actor)

    def _reschedule(self, booking_id: UUID, new_start: datetime, actor: Actor) -> Booking:
        actor = Actor(actor)
        if not isinstance(new_start, datetime) or new_start.tzinfo is not None:
            raise ValidationException(
                "Invalid reschedule request",
                errors={"new_start": "must be a business-local date and time without offset"},
            )

        booking = self._load(booking_id)
        try:
            if booking.status != BookingStatus.PENDING:
                raise InvalidTransitionError(booking.id, booking.status, "rescheduled")
            if booking.reschedule_count >= 1:
                raise AlreadyRescheduledError(booking.id)

            service = self.store.get_service(booking.service_id)
            if service is None:
                raise NotFoundException("Service", str(booking.service_id))
            new_end = new_start + timedelta(minutes=service.duration_minutes)

            self.guard.ensure_clear(
                booking.service_id, booking.client_email, booking.staff_id,
                new_start, new_end, exclude_booking_id=booking.id,
            )
            if booking.staff_id is not None and not self.calculator.is_slot_open(
                booking.staff_id, new_start, service.duration_minutes, exclude_booking_id=booking.id,
            ):
                self._raise_closed_slot(
                    booking.service_id, booking.client_email, booking.staff_id,
                    new_start, new_end, exclude_booking_id=booking.id,
                )

            updated = self.store.update_booking_time(
                booking.id,
                start_time=new_start,
                end_time=new_end,
                expected_reschedule_count=booking.reschedule_count,
                updated_by=actor,
            )
        except ConflictException as exc:
            self.metrics.increment_conflicts(exc.code, "reschedule")
            raise

        self.metrics.increment_reschedules()
        log_with_context(
            logger, "info", "Booking rescheduled",
            booking_id=str(updated.id), previous_start=booking.start_time.isoformat(),
            new_start=new_start.isoformat(), actor=actor.value,
        )
        self._emit(
            IntentKind.BOOKING_RESCHEDULED,
            [Audience.BUSINESS],
            updated,
            service.name,
            new_start=new_start.isoformat(),
            previous_start=booking.start_time.isoformat(),
        )
        return updated

    # ===== Helpers =====

    def get(self, booking_id: UUID) -> Booking:
        return self._load(booking_id)

    def review_url(self, booking_id: UUID) -> str:
        return self.settings.review_url_template.format(
            base_url=self.settings.app_base_url.rstrip("/"),
            booking_id=booking_id,
        )

    def _load(self, booking_id: UUID) -> Booking:
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    def _raise_closed_slot(
        self,
        service_id: UUID,
        client_email: str,
        staff_id: UUID,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[UUID] = None,
    ) -> None:
        """
        Explain why an offered slot is no longer open.

        A booking committed after the first guard check is reported as the
        conflict it is (slot taken or duplicate); only a slot closed by the
        schedule itself is reported as unavailable.
        """
        self.guard.ensure_clear(
            service_id, client_email, staff_id, start, end, exclude_booking_id=exclude_booking_id,
        )
        raise SlotUnavailableError(start, staff_id)

    def _service_name(self, service_id: UUID) -> Optional[str]:
        service = self.store.get_service(service_id)
        return service.name if service is not None else None

    def _emit(self, kind: IntentKind, audiences, booking: Booking, service_name: Optional[str], **extra) -> None:
        payload = booking_payload(booking, service_name)
        payload.update(extra)
        self.dispatcher.emit(kind, audiences, payload, booking_id=booking.id)
