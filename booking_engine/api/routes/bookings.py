"""
Booking API routes.

Times in requests and responses are business-local wall-clock values
without a UTC offset, e.g. "2030-01-15T10:30:00".
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from booking_engine.api.dependencies import get_lifecycle, get_review_service, get_store
from booking_engine.lib.logging import get_logger
from booking_engine.models.bookings import Actor, Booking, BookingStatus, PaymentStatus
from booking_engine.services.lifecycle import Action, BookingLifecycle, ClientIdentity
from booking_engine.services.reviews import ReviewService


logger = get_logger(__name__)


# Pydantic schemas
class BookingCreate(BaseModel):
    service_id: UUID
    staff_id: Optional[UUID] = Field(None, description="Omit for bookings without a staff member")
    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: str = Field(..., max_length=320)
    client_phone: Optional[str] = Field(None, max_length=32)
    start_time: datetime = Field(..., description="Business-local start, no offset")
    source: str = Field("online", max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class BookingResponse(BaseModel):
    id: UUID
    service_id: UUID
    staff_id: Optional[UUID] = None
    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    amount: float
    payment_status: PaymentStatus
    source: str
    notes: Optional[str] = None
    reschedule_count: int
    updated_by: Actor
    cancelled_by: Optional[Actor] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    service_inactive: bool = Field(False, description="The booked service has since been deactivated")

    model_config = {"from_attributes": True}


class TransitionRequest(BaseModel):
    action: Action
    actor: Actor = Actor.BUSINESS


class RescheduleRequest(BaseModel):
    new_start: datetime = Field(..., description="Business-local start, no offset")
    actor: Actor = Actor.CUSTOMER


class ReviewCreate(BaseModel):
    rating: int = Field(..., description="1 to 5")
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewResponse(BaseModel):
    id: UUID
    booking_id: UUID
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


def to_response(store, booking: Booking) -> BookingResponse:
    response = BookingResponse.model_validate(booking)
    service = store.get_service(booking.service_id)
    response.service_inactive = service is None or not service.is_active
    return response


# Router
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    staff_id: Optional[UUID] = Query(None),
    client_email: Optional[str] = Query(None),
    service_id: Optional[UUID] = Query(None),
    status_filter: Optional[List[BookingStatus]] = Query(None, alias="status"),
    start_from: Optional[datetime] = Query(None, description="Bookings starting at or after"),
    start_to: Optional[datetime] = Query(None, description="Bookings starting before"),
    store=Depends(get_store),
) -> List[BookingResponse]:
    bookings = store.list_bookings(
        staff_id=staff_id,
        client_email=client_email.strip().lower() if client_email else None,
        service_id=service_id,
        statuses=status_filter,
        start_from=start_from,
        start_to=start_to,
    )
    return [to_response(store, b) for b in bookings]


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    store=Depends(get_store),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """
    Create a pending booking.

    409 with code duplicate_active_booking or slot_taken when the request
    conflicts with an active booking; 409 slot_unavailable when the staff
    member does not work at that time.
    """
    booking = lifecycle.create(
        service_id=payload.service_id,
        client=ClientIdentity(
            name=payload.client_name,
            email=payload.client_email,
            phone=payload.client_phone,
        ),
        start=payload.start_time,
        staff_id=payload.staff_id,
        source=payload.source,
        notes=payload.notes,
    )
    return to_response(store, booking)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: UUID,
    store=Depends(get_store),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    return to_response(store, lifecycle.get(booking_id))


@router.post("/{booking_id}/transition", response_model=BookingResponse)
def transition_booking(
    booking_id: UUID,
    payload: TransitionRequest,
    store=Depends(get_store),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """
    Confirm, cancel or complete a booking.

    Cancelled and completed bookings are terminal.
    """
    booking = lifecycle.transition(booking_id, payload.action, actor=payload.actor)
    return to_response(store, booking)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
def reschedule_booking(
    booking_id: UUID,
    payload: RescheduleRequest,
    store=Depends(get_store),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """
    Move a pending booking once. The booking stays pending.
    """
    booking = lifecycle.reschedule(booking_id, payload.new_start, actor=payload.actor)
    return to_response(store, booking)


@router.post("/{booking_id}/review", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def submit_review(
    booking_id: UUID,
    payload: ReviewCreate,
    reviews: ReviewService = Depends(get_review_service),
) -> ReviewResponse:
    review = reviews.submit(booking_id, payload.rating, payload.comment)
    return ReviewResponse.model_validate(review)
