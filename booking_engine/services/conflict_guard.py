"""
Conflict guard - advisory pre-flight checks for a prospective booking.

The store enforces the same rules atomically on write; this check exists
to report the conflicting booking before any write is attempted.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from booking_engine.lib.errors import DuplicateActiveBookingError, SlotTakenError
from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.models.bookings import ACTIVE_STATUSES, Booking


logger = get_logger(__name__)


class ConflictKind(str, Enum):
    OK = "ok"
    DUPLICATE_ACTIVE_BOOKING = "duplicate_active_booking"
    SLOT_TAKEN = "slot_taken"


@dataclass(frozen=True)
class ConflictOutcome:
    """Result of a guard check; conflicting carries the blocking booking."""

    kind: ConflictKind
    conflicting: Optional[Booking] = None

    @property
    def ok(self) -> bool:
        return self.kind == ConflictKind.OK

    def raise_for_conflict(self) -> None:
        if self.kind == ConflictKind.DUPLICATE_ACTIVE_BOOKING:
            raise DuplicateActiveBookingError(self.conflicting)
        if self.kind == ConflictKind.SLOT_TAKEN:
            raise SlotTakenError(self.conflicting)


CLEAR = ConflictOutcome(ConflictKind.OK)


class ConflictGuard:
    def __init__(self, store):
        self.store = store

    def check(
        self,
        service_id: UUID,
        client_email: str,
        staff_id: Optional[UUID],
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[UUID] = None,
    ) -> ConflictOutcome:
        """
        Duplicate check first, then staff overlap.

        exclude_booking_id skips the booking being moved by a reschedule.
        """
        duplicates = [
            b for b in self.store.list_bookings(
                service_id=service_id,
                client_email=client_email,
                statuses=ACTIVE_STATUSES,
            )
            if b.id != exclude_booking_id
        ]
        if duplicates:
            outcome = ConflictOutcome(ConflictKind.DUPLICATE_ACTIVE_BOOKING, duplicates[0])
            self._log(outcome, service_id, staff_id)
            return outcome

        if staff_id is not None:
            overlapping = [
                b for b in self.store.list_bookings(
                    staff_id=staff_id,
                    statuses=ACTIVE_STATUSES,
                    overlapping=(start, end),
                )
                if b.id != exclude_booking_id
            ]
            if overlapping:
                outcome = ConflictOutcome(ConflictKind.SLOT_TAKEN, overlapping[0])
                self._log(outcome, service_id, staff_id)
                return outcome

        return CLEAR

    def ensure_clear(self, *args, **kwargs) -> None:
        self.check(*args, **kwargs).raise_for_conflict()

    @staticmethod
    def _log(outcome: ConflictOutcome, service_id, staff_id) -> None:
        log_with_context(
            logger, "warning", "Booking conflict detected",
            kind=outcome.kind.value,
            conflicting_booking_id=str(outcome.conflicting.id),
            service_id=str(service_id),
            staff_id=str(staff_id) if staff_id else None,
        )
