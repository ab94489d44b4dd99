"""
Appointment reminders.

A periodic sweep records booking_reminder intents for the business:
- "day": active bookings starting tomorrow (business-local calendar day)
- "hour": active bookings starting 60 to 65 minutes from now

Each (booking, reminder type) is recorded at most once.
"""
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.lib.settings import Settings, settings as default_settings
from booking_engine.models.bookings import ACTIVE_STATUSES
from booking_engine.models.notifications import Audience, IntentKind
from booking_engine.services.notification_service import NotificationDispatcher, booking_payload


logger = get_logger(__name__)

HOUR_LEAD = timedelta(hours=1)
HOUR_WINDOW = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderService:
    def __init__(
        self,
        store,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or default_settings
        self.clock = clock

    def sweep(self) -> Dict[str, int]:
        """Record due reminders; returns how many of each type were recorded."""
        if not self.settings.reminders_enabled:
            return {"day": 0, "hour": 0}

        now = self.clock().astimezone(ZoneInfo(self.settings.business_timezone)).replace(tzinfo=None)
        tomorrow = datetime.combine(now.date() + timedelta(days=1), time.min)
        hour_from = now + HOUR_LEAD

        counts = {
            "day": self._remind("day", tomorrow, tomorrow + timedelta(days=1)),
            "hour": self._remind("hour", hour_from, hour_from + HOUR_WINDOW + timedelta(microseconds=1)),
        }
        if any(counts.values()):
            log_with_context(logger, "info", "Reminders recorded", **counts)
        return counts

    def _remind(self, reminder_type: str, start_from: datetime, start_to: datetime) -> int:
        bookings = self.store.list_bookings(
            statuses=ACTIVE_STATUSES,
            start_from=start_from,
            start_to=start_to,
        )
        service_names: Dict = {}
        recorded = 0
        for booking in bookings:
            existing = self.store.find_notifications(booking.id, IntentKind.BOOKING_REMINDER)
            if any(n.payload.get("reminder_type") == reminder_type for n in existing):
                continue

            if booking.service_id not in service_names:
                service = self.store.get_service(booking.service_id)
                service_names[booking.service_id] = service.name if service else None

            payload = booking_payload(booking, service_names[booking.service_id])
            payload["reminder_type"] = reminder_type
            if self.dispatcher.emit(IntentKind.BOOKING_REMINDER, [Audience.BUSINESS], payload, booking_id=booking.id):
                recorded += 1
        return recorded
