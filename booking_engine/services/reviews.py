"""
Review service - one rating per completed booking.
"""
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from booking_engine.lib.errors import ConflictException, NotFoundException, ValidationException
from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.models.bookings import BookingStatus
from booking_engine.models.notifications import Audience, IntentKind
from booking_engine.models.reviews import Review
from booking_engine.services.notification_service import NotificationDispatcher, booking_payload


logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewService:
    def __init__(
        self,
        store,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    def submit(self, booking_id: UUID, rating: int, comment: Optional[str] = None) -> Review:
        """
        Record the client's review of a completed booking.

        Raises ValidationException for a rating outside 1-5, ConflictException
        when the booking is not completed, ReviewAlreadySubmittedError when a
        review exists.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationException("Invalid review", errors={"rating": "must be between 1 and 5"})

        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundException("Booking", str(booking_id))
        if booking.status != BookingStatus.COMPLETED:
            raise ConflictException(
                "Only completed appointments can be reviewed",
                details={"booking_id": str(booking_id), "status": booking.status.value},
            )

        service = self.store.get_service(booking.service_id)
        comment = (comment or "").strip() or None
        review = self.store.add_review(
            Review(
                id=uuid4(),
                booking_id=booking.id,
                rating=rating,
                comment=comment,
                created_at=self.clock(),
            )
        )
        log_with_context(logger, "info", "Review submitted", booking_id=str(booking.id), rating=rating)

        payload = booking_payload(booking, service.name if service else None)
        payload.update(rating=rating, comment=comment)
        self.dispatcher.emit(IntentKind.NEW_REVIEW, [Audience.BUSINESS], payload, booking_id=booking.id)
        return review
