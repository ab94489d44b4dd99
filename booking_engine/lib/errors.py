"""
Application exceptions.

Every error the engine raises is an AppException carrying an HTTP status,
a stable machine-readable code and a details dict, so the API layer can
render it without knowing the concrete type.
"""
from typing import Optional, Dict, Any

from fastapi import status


class AppException(Exception):
    """Base application exception."""

    code = "internal_error"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if code:
            self.code = code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "resource_id": resource_id},
        )


class ForbiddenException(AppException):
    """Forbidden access exception."""

    code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class BadRequestException(AppException):
    """Bad request exception."""

    code = "bad_request"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class ValidationException(AppException):
    """Input rejected before touching the store."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": errors or {}},
        )


class ConflictException(AppException):
    """Business-rule conflict; never retried by the engine."""

    code = "conflict"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details or {},
        )


def _booking_details(booking) -> Dict[str, Any]:
    return {
        "booking_id": str(booking.id),
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": getattr(booking.status, "value", booking.status),
    }


class DuplicateActiveBookingError(ConflictException):
    """The client already holds an active booking for this service."""

    code = "duplicate_active_booking"

    def __init__(self, booking=None):
        super().__init__(
            "You already have an active booking for this service. "
            "Cancel the existing booking first to book again.",
            details=_booking_details(booking) if booking is not None else {},
        )


class SlotTakenError(ConflictException):
    """Another active booking overlaps the requested interval."""

    code = "slot_taken"

    def __init__(self, booking=None):
        super().__init__(
            "The requested time overlaps an existing booking",
            details=_booking_details(booking) if booking is not None else {},
        )


class SlotUnavailableError(ConflictException):
    """The requested start is not an offered slot for the staff member."""

    code = "slot_unavailable"

    def __init__(self, start_time, staff_id=None):
        super().__init__(
            f"{start_time:%Y-%m-%d %H:%M} is not an available slot",
            details={
                "start_time": start_time.isoformat(),
                "staff_id": str(staff_id) if staff_id else None,
            },
        )


class ServiceInactiveError(ConflictException):
    """Inactive services are not offered for new bookings."""

    code = "service_inactive"

    def __init__(self, service_id):
        super().__init__(
            "This service is currently not accepting new bookings",
            details={"service_id": str(service_id)},
        )


class AlreadyRescheduledError(ConflictException):
    code = "already_rescheduled"

    def __init__(self, booking_id):
        super().__init__(
            "This appointment has already been rescheduled once. "
            "Please contact the business directly for further changes.",
            details={"booking_id": str(booking_id)},
        )


class InvalidTransitionError(ConflictException):
    code = "invalid_transition"

    def __init__(self, booking_id, current_status, requested):
        current = getattr(current_status, "value", current_status)
        super().__init__(
            f"Cannot move booking from '{current}' to '{requested}'",
            details={
                "booking_id": str(booking_id),
                "current_status": current,
                "requested": requested,
            },
        )


class ConcurrentUpdateError(ConflictException):
    """The booking changed between read and conditional write."""

    code = "concurrent_update"

    def __init__(self, booking_id):
        super().__init__(
            "The booking was modified concurrently; reload it and try again",
            details={"booking_id": str(booking_id)},
        )


class ReviewAlreadySubmittedError(ConflictException):
    code = "review_already_submitted"

    def __init__(self, booking_id):
        super().__init__(
            "You have already submitted a review for this appointment",
            details={"booking_id": str(booking_id)},
        )


class StoreUnavailableError(AppException):
    """Transient store failure on an idempotent read; safe to retry."""

    code = "store_unavailable"

    def __init__(self, operation: str, message: str = "Schedule store is unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "retryable": True},
        )


class StoreTimeoutError(StoreUnavailableError):
    code = "store_timeout"

    def __init__(self, operation: str, timeout: float):
        super().__init__(operation, f"Schedule store did not answer within {timeout:g}s")
        self.details["timeout_seconds"] = timeout


class WriteOutcomeUnknownError(AppException):
    """A mutating call failed mid-flight; re-read current state before any retry."""

    code = "write_outcome_unknown"

    def __init__(self, operation: str, reason: str = "timeout"):
        super().__init__(
            message="The outcome of the update is unknown; re-check the booking before retrying",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "reason": reason, "retryable": False},
        )
