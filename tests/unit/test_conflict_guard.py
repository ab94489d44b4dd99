"""
Tests for the conflict guard pre-flight checks.
"""
from uuid import uuid4

import pytest

from booking_engine.lib.errors import DuplicateActiveBookingError, SlotTakenError
from booking_engine.models.bookings import Actor, Booking, BookingStatus
from booking_engine.services.conflict_guard import CLEAR, ConflictKind

from conftest import at


def make_booking(store, staff, service, start, end, email="alice@example.com", status=BookingStatus.PENDING):
    return store.insert_booking(
        Booking(
            id=uuid4(),
            service_id=service.id,
            staff_id=staff.id if staff else None,
            client_name="Alice",
            client_email=email,
            start_time=start,
            end_time=end,
            status=status,
            updated_by=Actor.CUSTOMER,
        )
    )


@pytest.mark.unit
def test_clear_when_nothing_booked(guard, staff, service):
    outcome = guard.check(service.id, "alice@example.com", staff.id, at(10), at(11))

    assert outcome is CLEAR
    assert outcome.ok


@pytest.mark.unit
def test_duplicate_active_booking_detected(guard, store, staff, service):
    existing = make_booking(store, staff, service, at(9), at(10))

    outcome = guard.check(service.id, "alice@example.com", staff.id, at(14), at(15))

    assert outcome.kind == ConflictKind.DUPLICATE_ACTIVE_BOOKING
    assert outcome.conflicting.id == existing.id
    with pytest.raises(DuplicateActiveBookingError) as exc_info:
        outcome.raise_for_conflict()
    assert exc_info.value.details["booking_id"] == str(existing.id)


@pytest.mark.unit
def test_duplicate_checked_before_overlap(guard, store, staff, service):
    make_booking(store, staff, service, at(10), at(11))

    outcome = guard.check(service.id, "alice@example.com", staff.id, at(10), at(11))

    assert outcome.kind == ConflictKind.DUPLICATE_ACTIVE_BOOKING


@pytest.mark.unit
def test_overlap_with_other_client_is_slot_taken(guard, store, staff, service):
    make_booking(store, staff, service, at(10), at(11, 30), email="bob@example.com")

    outcome = guard.check(service.id, "alice@example.com", staff.id, at(11), at(12))

    assert outcome.kind == ConflictKind.SLOT_TAKEN
    with pytest.raises(SlotTakenError):
        guard.ensure_clear(service.id, "alice@example.com", staff.id, at(11), at(12))


@pytest.mark.unit
def test_back_to_back_bookings_do_not_overlap(guard, store, staff, service):
    make_booking(store, staff, service, at(10), at(11), email="bob@example.com")

    assert guard.check(service.id, "alice@example.com", staff.id, at(11), at(12)).ok


@pytest.mark.unit
@pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.COMPLETED])
def test_terminal_bookings_never_conflict(guard, store, staff, service, status):
    make_booking(store, staff, service, at(10), at(11), status=status)

    assert guard.check(service.id, "alice@example.com", staff.id, at(10), at(11)).ok


@pytest.mark.unit
def test_without_staff_only_duplicates_are_checked(guard, store, staff, service):
    make_booking(store, staff, service, at(10), at(11), email="bob@example.com")

    assert guard.check(service.id, "alice@example.com", None, at(10), at(11)).ok


@pytest.mark.unit
def test_excluded_booking_is_ignored(guard, store, staff, service):
    existing = make_booking(store, staff, service, at(10), at(11))

    outcome = guard.check(
        service.id, "alice@example.com", staff.id, at(10, 30), at(11, 30),
        exclude_booking_id=existing.id,
    )

    assert outcome.ok
