"""
Tests for appointment reminders and booking reviews.
"""
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from booking_engine.lib.errors import (
    ConflictException,
    NotFoundException,
    ReviewAlreadySubmittedError,
    ValidationException,
)
from booking_engine.models.notifications import IntentKind
from booking_engine.services.lifecycle import Action
from booking_engine.services.reminders import ReminderService

from conftest import at


def reminder_types(store, booking_id):
    return sorted(
        n.payload["reminder_type"]
        for n in store.find_notifications(booking_id, IntentKind.BOOKING_REMINDER)
    )


# ===== Reminders =====

@pytest.mark.unit
def test_day_reminder_for_tomorrows_bookings(lifecycle, store, dispatcher, settings, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    evening_before = datetime(2030, 1, 14, 18, 0, tzinfo=timezone.utc)
    reminders = ReminderService(store, dispatcher, settings=settings, clock=lambda: evening_before)

    assert reminders.sweep() == {"day": 1, "hour": 0}
    assert reminder_types(store, booking.id) == ["day"]
    intent = store.find_notifications(booking.id, IntentKind.BOOKING_REMINDER)[0]
    assert intent.audiences == ["business"]


@pytest.mark.unit
def test_hour_reminder_inside_window(lifecycle, store, dispatcher, settings, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    just_before = datetime(2030, 1, 15, 8, 57, tzinfo=timezone.utc)
    reminders = ReminderService(store, dispatcher, settings=settings, clock=lambda: just_before)

    assert reminders.sweep() == {"day": 0, "hour": 1}
    assert reminder_types(store, booking.id) == ["hour"]


@pytest.mark.unit
def test_reminders_are_recorded_once(lifecycle, store, dispatcher, settings, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    evening_before = datetime(2030, 1, 14, 18, 0, tzinfo=timezone.utc)
    reminders = ReminderService(store, dispatcher, settings=settings, clock=lambda: evening_before)

    reminders.sweep()
    assert reminders.sweep() == {"day": 0, "hour": 0}
    assert reminder_types(store, booking.id) == ["day"]


@pytest.mark.unit
def test_cancelled_bookings_get_no_reminder(lifecycle, store, dispatcher, settings, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CANCEL)
    evening_before = datetime(2030, 1, 14, 18, 0, tzinfo=timezone.utc)
    reminders = ReminderService(store, dispatcher, settings=settings, clock=lambda: evening_before)

    assert reminders.sweep() == {"day": 0, "hour": 0}


@pytest.mark.unit
def test_reminders_can_be_disabled(lifecycle, store, dispatcher, settings, staff, service, alice):
    lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    settings.reminders_enabled = False
    evening_before = datetime(2030, 1, 14, 18, 0, tzinfo=timezone.utc)
    reminders = ReminderService(store, dispatcher, settings=settings, clock=lambda: evening_before)

    assert reminders.sweep() == {"day": 0, "hour": 0}


# ===== Reviews =====

@pytest.fixture
def completed_booking(lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)
    lifecycle.transition(booking.id, Action.CONFIRM)
    return lifecycle.transition(booking.id, Action.COMPLETE)


@pytest.mark.unit
def test_review_completed_booking(review_service, store, completed_booking):
    review = review_service.submit(completed_booking.id, 5, "  Great cut!  ")

    assert review.rating == 5
    assert review.comment == "Great cut!"
    assert store.get_review_for_booking(completed_booking.id).id == review.id
    intent = store.find_notifications(completed_booking.id, IntentKind.NEW_REVIEW)[0]
    assert intent.audiences == ["business"]
    assert intent.payload["rating"] == 5


@pytest.mark.unit
def test_only_one_review_per_booking(review_service, completed_booking):
    review_service.submit(completed_booking.id, 4)

    with pytest.raises(ReviewAlreadySubmittedError):
        review_service.submit(completed_booking.id, 5)


@pytest.mark.unit
@pytest.mark.parametrize("rating", [0, 6, -1, True, 4.5])
def test_rating_must_be_one_to_five(review_service, completed_booking, rating):
    with pytest.raises(ValidationException):
        review_service.submit(completed_booking.id, rating)


@pytest.mark.unit
def test_pending_booking_cannot_be_reviewed(review_service, lifecycle, staff, service, alice):
    booking = lifecycle.create(service.id, alice, at(10), staff_id=staff.id)

    with pytest.raises(ConflictException):
        review_service.submit(booking.id, 5)


@pytest.mark.unit
def test_review_unknown_booking(review_service):
    with pytest.raises(NotFoundException):
        review_service.submit(uuid4(), 5)
