"""
Shared fixtures: an in-memory schedule with one staff member working
Tuesdays 09:00-17:00, a 60 minute service and a fixed clock.
"""
import os

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("BUSINESS_NOTIFICATION_EMAIL", "owner@example.com")

from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from booking_engine.api.app import app
from booking_engine.api.dependencies import get_store
from booking_engine.lib.metrics import reset_metrics
from booking_engine.lib.settings import Settings
from booking_engine.models.schedules import ShiftTemplate
from booking_engine.models.services import Service
from booking_engine.models.staff import Staff
from booking_engine.services.availability import AvailabilityCalculator
from booking_engine.services.conflict_guard import ConflictGuard
from booking_engine.services.lifecycle import BookingLifecycle, ClientIdentity
from booking_engine.services.notification_service import Channel, NotificationDispatcher, NotificationProvider
from booking_engine.services.reminders import ReminderService
from booking_engine.services.reviews import ReviewService
from booking_engine.store.bounded import BoundedScheduleStore
from booking_engine.store.memory import InMemoryScheduleStore


# A Tuesday (day_of_week 2), well after the fixed clock below
BOOKING_DAY = date(2030, 1, 15)
NOW = datetime(2030, 1, 10, 12, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: date = BOOKING_DAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


class RecordingProvider(NotificationProvider):
    """Keeps every message instead of sending it."""

    def __init__(self, channel: Channel = Channel.EMAIL, succeed: bool = True):
        self._channel = channel
        self.succeed = succeed
        self.sent = []

    @property
    def channel(self) -> Channel:
        return self._channel

    def send(self, to: str, subject: str, message: str) -> bool:
        self.sent.append({"to": to, "subject": subject, "message": message})
        return self.succeed


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        store_backend="memory",
        business_timezone="UTC",
        business_notification_email="owner@example.com",
        notification_channel="console",
        sms_provider="none",
        notification_max_attempts=3,
        notification_ttl_days=30,
        scheduler_enabled=False,
        reminders_enabled=True,
    )


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store():
    return InMemoryScheduleStore()


@pytest.fixture
def staff(store):
    return store.add_staff(Staff(id=uuid4(), full_name="Alex Stylist", is_active=True))


@pytest.fixture
def service(store):
    return store.add_service(
        Service(id=uuid4(), name="Haircut", price=40, duration_minutes=60, is_active=True)
    )


@pytest.fixture
def shift(store, staff):
    return store.add_shift(
        ShiftTemplate(
            id=uuid4(),
            staff_id=staff.id,
            day_of_week=2,
            start_time=time(9, 0),
            end_time=time(17, 0),
            active=True,
        )
    )


@pytest.fixture
def email_provider():
    return RecordingProvider(Channel.EMAIL)


@pytest.fixture
def calculator(store, settings, clock):
    return AvailabilityCalculator(store, settings=settings, clock=clock)


@pytest.fixture
def guard(store):
    return ConflictGuard(store)


@pytest.fixture
def dispatcher(store, settings, clock, email_provider):
    return NotificationDispatcher(store, settings=settings, email_provider=email_provider, clock=clock)


@pytest.fixture
def lifecycle(store, guard, calculator, dispatcher, settings, clock, shift, service):
    return BookingLifecycle(store, guard, calculator, dispatcher, settings=settings, clock=clock)


@pytest.fixture
def reminders(store, dispatcher, settings, clock):
    return ReminderService(store, dispatcher, settings=settings, clock=clock)


@pytest.fixture
def review_service(store, dispatcher, clock):
    return ReviewService(store, dispatcher, clock=clock)


@pytest.fixture
def alice():
    return ClientIdentity(name="Alice Doe", email="alice@example.com", phone="+15550100")


@pytest.fixture
def bob():
    return ClientIdentity(name="Bob Roe", email="bob@example.com")


@pytest.fixture
def api_store():
    bounded = BoundedScheduleStore(InMemoryScheduleStore(), timeout_seconds=5, retry_wait_seconds=0)
    yield bounded
    bounded.shutdown()


@pytest.fixture
def client(api_store):
    """Test client for the FastAPI app backed by a fresh in-memory store."""
    app.dependency_overrides[get_store] = lambda: api_store
    yield TestClient(app)
    app.dependency_overrides.clear()
