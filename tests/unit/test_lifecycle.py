"""
Tests for booking creation, status transitions and the one-time reschedule.
"""
import threading
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from booking_engine.lib.errors import (
    AlreadyRescheduledError,
    ConcurrentUpdateError,
    ConflictException,
    DuplicateActiveBookingError,
    ForbiddenException,
    InvalidTransitionError,
    NotFoundException,
    ServiceInactiveError,
    SlotTakenError,
    SlotUnavailableError,
    ValidationException,
)
from booking_engine.lib.metrics import get_metrics_collector
from booking_engine.models.bookings import Actor, BookingStatus
from booking_engine.models.notifications import IntentKind
from booking_engine.services.lifecycle import Action, ClientIdentity

from conftest import at


def intents(store, booking_id):
    return [n.kind for n in store.find_notifications(booking_id)]


# ===== Create =====

@pytest.mark.unit
def test_create_returns_pending_booking(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    assert booking.status == BookingStatus.PENDING
    assert booking.start_time == at(10)
    assert booking.end_time == at(11)
    assert booking.client_email == "alice@example.com"
    assert booking.reschedule_count == 0
    assert booking.updated_by == Actor.CUSTOMER
    assert float(booking.amount) == 40
    assert store.get_booking(booking.id).status == BookingStatus.PENDING


@pytest.mark.unit
def test_create_records_new_booking_intent(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    notifications = store.find_notifications(booking.id)
    assert [n.kind for n in notifications] == [IntentKind.NEW_BOOKING]
    assert notifications[0].audiences == ["business"]
    assert notifications[0].payload["service_name"] == "Haircut"
    assert notifications[0].payload["start_time"] == "2030-01-15T10:00:00"


@pytest.mark.unit
def test_email_is_normalized(lifecycle, staff, service):
    booking = lifecycle.create(
        service.id, ClientIdentity(name="Alice", email="  Alice@Example.COM "), at(10), staff_id=staff.id,
    )

    assert booking.client_email == "alice@example.com"


@pytest.mark.unit
@pytest.mark.parametrize("email", ["", "not-an-email", "a@b", "two words@example.com"])
def test_malformed_email_rejected(lifecycle, staff, service, email):
    with pytest.raises(ValidationException):
        lifecycle.create(service.id, ClientIdentity(name="Alice", email=email), at(10), staff_id=staff.id)


@pytest.mark.unit
def test_blank_name_rejected(lifecycle, staff, service):
    with pytest.raises(ValidationException):
        lifecycle.create(service.id, ClientIdentity(name="  ", email="a@example.com"), at(10), staff_id=staff.id)


@pytest.mark.unit
def test_offset_aware_start_rejected(lifecycle, staff, service, alice):
    with pytest.raises(ValidationException):
        lifecycle.create(service.id, alice, datetime(2030, 1, 15, 10, tzinfo=timezone.utc), staff_id=staff.id)


@pytest.mark.unit
def test_unknown_service_raises_not_found(lifecycle, staff, alice):
    with pytest.raises(NotFoundException):
        lifecycle.create(uuid4(), alice, at(10), staff_id=staff.id)


@pytest.mark.unit
def test_inactive_service_not_bookable(lifecycle, store, staff, service, alice):
    store.update_service(service.id, {"is_active": False})

    with pytest.raises(ServiceInactiveError):
        lifecycle.create(service.id, alice, at(10), staff_id=staff.id)


@pytest.mark.unit
def test_inactive_staff_not_bookable(lifecycle, store, staff, service, alice):
    store.update_staff(staff.id, {"is_active": False})

    with pytest.raises(SlotUnavailableError):
        lifecycle.create(service.id, alice, at(10), staff_id=staff.id)


@pytest.mark.unit
def test_start_outside_offered_slots_rejected(lifecycle, staff, service, alice):
    with pytest.raises(SlotUnavailableError):
        lifecycle.create(service.id, alice, at(10, 15), staff_id=staff.id)

    with pytest.raises(SlotUnavailableError):
        lifecycle.create(service.id, alice, at(20), staff_id=staff.id)


@pytest.mark.unit
def test_booking_without_staff_skips_availability(lifecycle, service, alice):
    booking = lifecycle.create(service.id, alice, at(20))

    assert booking.staff_id is None
    assert booking.status == BookingStatus.PENDING


@pytest.mark.unit
def test_duplicate_rejected_until_cancelled(lifecycle, store, staff, service, alice):
    first = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(DuplicateActiveBookingError):
        lifecycle.create(service.id, alice, at(14), staff_id=staff.id)

    lifecycle.transition(first.id, Action.CANCEL, actor=Actor.CUSTOMER)
    second = lifecycle.create(service.id, alice, at(14), staff_id=staff.id)

    assert second.status == BookingStatus.PENDING
    active = store.list_bookings(client_email="alice@example.com", statuses=[BookingStatus.PENDING, BookingStatus.CONFIRMED])
    assert [b.id for b in active] == [second.id]


@pytest.mark.unit
def test_duplicate_allowed_after_completion(lifecycle, staff, service, alice):
    first = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(first.id, Action.CONFIRM)
    lifecycle.transition(first.id, Action.COMPLETE)

    assert lifecycle.create(service.id, alice, at(14), staff_id=staff.id).status == BookingStatus.PENDING


@pytest.mark.unit
def test_overlapping_booking_rejected(lifecycle, staff, service, alice, bob):
    lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(SlotTakenError):
        lifecycle.create(service.id, bob, at(10), staff_id=staff.id)

    metrics = get_metrics_collector()
    assert metrics.get_counter_value(
        "booking_conflicts_total", {"kind": "slot_taken", "operation": "create"}
    ) == 1


@pytest.mark.unit
def test_concurrent_creates_for_same_slot_admit_exactly_one(lifecycle, staff, service):
    """Racing requests for one slot: one wins, every other gets SlotTakenError."""
    racers = 8
    barrier = threading.Barrier(racers)
    results = []
    lock = threading.Lock()

    def book(index):
        client = ClientIdentity(name=f"Client {index}", email=f"client{index}@example.com")
        barrier.wait()
        try:
            booking = lifecycle.create(service.id, client, at(10), staff_id=staff.id)
            outcome = booking
        except ConflictException as exc:
            outcome = exc
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=book, args=(i,)) for i in range(racers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == racers - 1
    assert all(type(e) is SlotTakenError for e in losers)
    assert {e.details["booking_id"] for e in losers} == {str(winners[0].id)}


def commit_competitor_after_first_check(monkeypatch, guard, book_competitor):
    """Make a competing booking commit right after the first guard check passes."""
    original = guard.ensure_clear
    competitor = []

    def ensure_clear(*args, **kwargs):
        original(*args, **kwargs)
        if not competitor:
            competitor.append(None)
            competitor[0] = book_competitor()

    monkeypatch.setattr(guard, "ensure_clear", ensure_clear)
    return competitor


@pytest.mark.unit
def test_create_losing_race_after_guard_check_gets_slot_taken(
    lifecycle, guard, store, staff, service, alice, bob, monkeypatch
):
    competitor = commit_competitor_after_first_check(
        monkeypatch, guard, lambda: lifecycle.create(service.id, bob, at(10), staff_id=staff.id)
    )

    with pytest.raises(SlotTakenError) as exc_info:
        lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    assert exc_info.value.details["booking_id"] == str(competitor[0].id)
    assert [b.client_email for b in store.list_bookings(staff_id=staff.id)] == ["bob@example.com"]
    assert get_metrics_collector().get_counter_value(
        "booking_conflicts_total", {"kind": "slot_taken", "operation": "create"}
    ) == 1


@pytest.mark.unit
def test_reschedule_losing_race_after_guard_check_gets_slot_taken(
    lifecycle, guard, staff, service, alice, bob, monkeypatch
):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    competitor = commit_competitor_after_first_check(
        monkeypatch, guard, lambda: lifecycle.create(service.id, bob, at(14), staff_id=staff.id)
    )

    with pytest.raises(SlotTakenError) as exc_info:
        lifecycle.reschedule(booking.id, at(14))

    assert exc_info.value.details["booking_id"] == str(competitor[0].id)
    moved = lifecycle.get(booking.id)
    assert moved.start_time == at(10)
    assert moved.reschedule_count == 0


# ===== Transitions =====

@pytest.mark.unit
def test_full_lifecycle_emits_three_intents_in_order(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    confirmed = lifecycle.transition(booking.id, Action.CONFIRM)
    completed = lifecycle.transition(booking.id, Action.COMPLETE)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert completed.status == BookingStatus.COMPLETED
    assert completed.reschedule_count == 0
    assert intents(store, booking.id) == [
        IntentKind.NEW_BOOKING,
        IntentKind.BOOKING_CONFIRMED,
        IntentKind.BOOKING_COMPLETED,
    ]


@pytest.mark.unit
def test_completed_intent_carries_review_url(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CONFIRM)
    lifecycle.transition(booking.id, Action.COMPLETE)

    completed = store.find_notifications(booking.id, IntentKind.BOOKING_COMPLETED)[0]
    assert completed.audiences == ["customer"]
    assert completed.payload["review_url"].endswith(f"review={booking.id}")


@pytest.mark.unit
def test_cancel_records_actor_and_notifies_both_parties(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    cancelled = lifecycle.transition(booking.id, Action.CANCEL, actor=Actor.CUSTOMER)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_by == Actor.CUSTOMER
    assert cancelled.updated_by == Actor.CUSTOMER
    assert cancelled.cancelled_at is not None
    intent = store.find_notifications(booking.id, IntentKind.BOOKING_CANCELLED)[0]
    assert intent.audiences == ["business", "customer"]
    assert intent.payload["cancelled_by"] == "customer"


@pytest.mark.unit
def test_cancelled_booking_is_terminal(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CANCEL)

    for action in Action:
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(booking.id, action)


@pytest.mark.unit
def test_completed_booking_is_terminal(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CONFIRM)
    lifecycle.transition(booking.id, Action.COMPLETE)

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(booking.id, Action.CANCEL)


@pytest.mark.unit
def test_cannot_complete_pending_booking(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(InvalidTransitionError) as exc_info:
        lifecycle.transition(booking.id, Action.COMPLETE)

    assert exc_info.value.details["current_status"] == "pending"


@pytest.mark.unit
@pytest.mark.parametrize("action", [Action.CONFIRM, Action.COMPLETE])
def test_customer_may_only_cancel(lifecycle, staff, service, alice, action):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(ForbiddenException):
        lifecycle.transition(booking.id, action, actor=Actor.CUSTOMER)


@pytest.mark.unit
def test_transition_of_unknown_booking(lifecycle):
    with pytest.raises(NotFoundException):
        lifecycle.transition(uuid4(), Action.CONFIRM)


@pytest.mark.unit
def test_stale_status_write_is_a_concurrent_update(store, staff, service, alice, lifecycle):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    store.update_booking_status(
        booking.id, BookingStatus.CONFIRMED, expected_status=BookingStatus.PENDING, updated_by=Actor.BUSINESS,
    )

    with pytest.raises(ConcurrentUpdateError):
        store.update_booking_status(
            booking.id, BookingStatus.CANCELLED, expected_status=BookingStatus.PENDING, updated_by=Actor.BUSINESS,
        )


@pytest.mark.unit
def test_cancelling_frees_the_slot(lifecycle, calculator, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    assert "10:00" not in calculator.compute_slots(staff.id, booking.start_time.date(), 60)

    lifecycle.transition(booking.id, Action.CANCEL)

    assert "10:00" in calculator.compute_slots(staff.id, booking.start_time.date(), 60)


# ===== Reschedule =====

@pytest.mark.unit
def test_reschedule_moves_pending_booking_once(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    moved = lifecycle.reschedule(booking.id, at(14))

    assert moved.start_time == at(14)
    assert moved.end_time == at(15)
    assert moved.status == BookingStatus.PENDING
    assert moved.reschedule_count == 1
    assert moved.updated_by == Actor.CUSTOMER
    intent = store.find_notifications(booking.id, IntentKind.BOOKING_RESCHEDULED)[0]
    assert intent.payload["previous_start"] == "2030-01-15T10:00:00"
    assert intent.payload["new_start"] == "2030-01-15T14:00:00"

    with pytest.raises(AlreadyRescheduledError):
        lifecycle.reschedule(booking.id, at(16))


@pytest.mark.unit
def test_reschedule_ignores_own_interval(lifecycle, staff, service, alice):
    """The booking being moved never blocks its own new interval."""
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    moved = lifecycle.reschedule(booking.id, at(10))

    assert moved.start_time == at(10)
    assert moved.reschedule_count == 1


@pytest.mark.unit
def test_reschedule_onto_taken_slot_rejected(lifecycle, staff, service, alice, bob):
    lifecycle.create(service.id, bob, at(14), staff_id=staff.id)
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(SlotTakenError):
        lifecycle.reschedule(booking.id, at(14))

    assert lifecycle.get(booking.id).reschedule_count == 0


@pytest.mark.unit
def test_reschedule_requires_pending(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CONFIRM)

    with pytest.raises(InvalidTransitionError):
        lifecycle.reschedule(booking.id, at(14))


@pytest.mark.unit
def test_reschedule_rejects_offset_aware_start(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(ValidationException):
        lifecycle.reschedule(booking.id, datetime(2030, 1, 15, 14, tzinfo=timezone.utc))


@pytest.mark.unit
def test_store_rejects_second_reschedule_even_without_precheck(lifecycle, store, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.reschedule(booking.id, at(14))

    with pytest.raises(AlreadyRescheduledError):
        store.update_booking_time(
            booking.id, at(15), at(16), expected_reschedule_count=0, updated_by=Actor.CUSTOMER,
        )


@pytest.mark.unit
def test_metrics_track_creates_and_transitions(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CONFIRM)

    metrics = get_metrics_collector()
    assert metrics.get_counter_value("bookings_created_total", {"source": "online"}) == 1
    assert metrics.get_counter_value(
        "booking_transitions_total", {"to_status": "confirmed", "actor": "business"}
    ) == 1
