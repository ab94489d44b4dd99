"""
Availability calculator - turns shift templates, time off and overrides into
bookable start times for one staff member and one day.

Priority of rules for a date:
1. Time off covering the date blocks the whole day.
2. An override for the date replaces the shift templates entirely.
3. Otherwise the active shift templates for the weekday are merged.

Candidates are generated at the service-duration stride inside each
working window and dropped when they overlap an active booking.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from booking_engine.lib.errors import NotFoundException, ValidationException
from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.lib.settings import Settings, settings as default_settings
from booking_engine.models.bookings import ACTIVE_STATUSES
from booking_engine.models.schedules import business_day_of_week


logger = get_logger(__name__)

Window = Tuple[datetime, datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_slot(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def merge_windows(windows: List[Window]) -> List[Window]:
    """Union of windows; overlapping or touching windows become one."""
    merged: List[Window] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            last_start, last_end = merged[-1]
            merged[-1] = (last_start, max(last_end, end))
        else:
            merged.append((start, end))
    return merged


def week_start(day: date) -> date:
    """Sunday on or before the given day."""
    return day - timedelta(days=business_day_of_week(day))


class AvailabilityCalculator:
    """
    Read-only slot computation against the schedule store.

    Store failures propagate as errors; an empty list always means the
    staff member has no open slot that day.
    """

    def __init__(
        self,
        store,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock

    def compute_slots(
        self,
        staff_id: UUID,
        day: date,
        duration_minutes: int,
        exclude_booking_id: Optional[UUID] = None,
    ) -> List[str]:
        """
        Bookable start times ("HH:MM", business-local) for staff_id on day.

        exclude_booking_id ignores one booking's interval, so a booking can
        be moved into a window overlapping its current time.
        """
        self._validate(day, duration_minutes)

        staff = self.store.get_staff(staff_id)
        if staff is None:
            raise NotFoundException("Staff", str(staff_id))
        if not staff.is_active:
            return []

        return [format_slot(start) for start in self._open_starts(staff_id, day, duration_minutes, exclude_booking_id)]

    def compute_week(self, staff_id: UUID, day: date, duration_minutes: int) -> Dict[date, List[str]]:
        """Slots for every day of the Sunday-started week containing day."""
        first = week_start(day)
        return {
            first + timedelta(days=offset): self.compute_slots(staff_id, first + timedelta(days=offset), duration_minutes)
            for offset in range(7)
        }

    def is_slot_open(
        self,
        staff_id: UUID,
        start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[UUID] = None,
    ) -> bool:
        """Whether start is currently offered, re-read from the store."""
        if start.second or start.microsecond:
            return False
        slots = self.compute_slots(staff_id, start.date(), duration_minutes, exclude_booking_id)
        return format_slot(start) in slots

    def working_windows(self, staff_id: UUID, day: date) -> List[Window]:
        """Working windows of the day after time off and overrides are applied."""
        if self.store.list_time_off(staff_id, day, day):
            return []

        override = self.store.get_override(staff_id, day)
        if override is not None:
            return self._override_windows(override, day)

        weekday = business_day_of_week(day)
        windows = [
            (datetime.combine(day, shift.start_time), datetime.combine(day, shift.end_time))
            for shift in self.store.list_shifts(staff_id)
            if shift.active and shift.day_of_week == weekday and shift.start_time < shift.end_time
        ]
        return merge_windows(windows)

    def _override_windows(self, override, day: date) -> List[Window]:
        if not override.is_available:
            return []

        start, end = override.start_time, override.end_time
        if start is None or end is None:
            start = start or self.settings.default_window_start
            end = end or self.settings.default_window_end
        if start is None or end is None or start >= end:
            log_with_context(
                logger, "warning", "Available override without a usable window; treating day as closed",
                staff_id=str(override.staff_id), date=day.isoformat(),
            )
            return []
        return [(datetime.combine(day, start), datetime.combine(day, end))]

    def _open_starts(
        self,
        staff_id: UUID,
        day: date,
        duration_minutes: int,
        exclude_booking_id: Optional[UUID],
    ) -> List[datetime]:
        windows = self.working_windows(staff_id, day)
        if not windows:
            return []

        step = timedelta(minutes=duration_minutes)
        candidates: List[datetime] = []
        for window_start, window_end in windows:
            current = window_start
            while current + step <= window_end:
                candidates.append(current)
                current += step

        day_start = datetime.combine(day, time.min)
        bookings = [
            b for b in self.store.list_bookings(
                staff_id=staff_id,
                statuses=ACTIVE_STATUSES,
                overlapping=(day_start, day_start + timedelta(days=1)),
            )
            if b.id != exclude_booking_id
        ]

        now_local = self._now_local()
        open_starts = [
            start for start in candidates
            if not any(b.overlaps(start, start + step) for b in bookings)
            and self._within_policy(start, now_local)
        ]
        return sorted(open_starts)

    def _within_policy(self, start: datetime, now_local: datetime) -> bool:
        lead = self.settings.min_lead_minutes
        if lead is not None and start < now_local + timedelta(minutes=lead):
            return False
        horizon = self.settings.max_horizon_days
        if horizon is not None and start.date() > now_local.date() + timedelta(days=horizon):
            return False
        return True

    def _now_local(self) -> datetime:
        """Current wall-clock time in the business timezone, naive like booking times."""
        zone = ZoneInfo(self.settings.business_timezone)
        return self.clock().astimezone(zone).replace(tzinfo=None)

    @staticmethod
    def _validate(day, duration_minutes) -> None:
        errors = {}
        if not isinstance(day, date) or isinstance(day, datetime):
            errors["date"] = "must be a calendar date"
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
            errors["duration_minutes"] = "must be a positive number of minutes"
        if errors:
            raise ValidationException("Invalid availability query", errors=errors)
