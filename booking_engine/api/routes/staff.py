"""
Staff and availability API routes.
"""
from datetime import date as date_type, datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from booking_engine.api.dependencies import get_calculator, get_store
from booking_engine.lib.errors import NotFoundException, ValidationException
from booking_engine.models.staff import Staff
from booking_engine.services.availability import AvailabilityCalculator, week_start


# Pydantic schemas
class StaffResponse(BaseModel):
    id: UUID
    full_name: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class StaffCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    is_active: bool = True


class StaffUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    is_active: Optional[bool] = Field(None, description="false deactivates; future bookings are kept")


class AvailabilityResponse(BaseModel):
    staff_id: UUID
    date: date_type
    duration_minutes: int
    slots: List[str] = Field(..., description="Bookable start times, HH:MM business-local")


class DayAvailability(BaseModel):
    date: date_type
    slots: List[str]


class WeekAvailabilityResponse(BaseModel):
    staff_id: UUID
    week_start: date_type
    duration_minutes: int
    days: List[DayAvailability]


# Router
router = APIRouter(prefix="/staff", tags=["staff"])


@router.get("", response_model=List[StaffResponse])
def list_staff(
    active_only: bool = Query(False, description="Show only active team members"),
    store=Depends(get_store),
) -> List[StaffResponse]:
    return [StaffResponse.model_validate(s) for s in store.list_staff(active_only=active_only)]


@router.post("", response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
def create_staff(payload: StaffCreate, store=Depends(get_store)) -> StaffResponse:
    staff = store.add_staff(
        Staff(
            id=uuid4(),
            full_name=payload.full_name.strip(),
            is_active=payload.is_active,
            created_at=datetime.now(timezone.utc),
        )
    )
    return StaffResponse.model_validate(staff)


@router.patch("/{staff_id}", response_model=StaffResponse)
def update_staff(staff_id: UUID, payload: StaffUpdate, store=Depends(get_store)) -> StaffResponse:
    """
    Rename or (de)activate a team member.

    Deactivation removes the member from availability; their existing
    bookings are not cancelled.
    """
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        raise ValidationException("Nothing to update", errors={"body": "no fields given"})
    staff = store.update_staff(staff_id, changes)
    if staff is None:
        raise NotFoundException("Staff", str(staff_id))
    return StaffResponse.model_validate(staff)


def _resolve_duration(store, duration_minutes: Optional[int], service_id: Optional[UUID]) -> int:
    if duration_minutes is not None:
        return duration_minutes
    if service_id is not None:
        service = store.get_service(service_id)
        if service is None:
            raise NotFoundException("Service", str(service_id))
        return service.duration_minutes
    raise ValidationException(
        "Invalid availability query",
        errors={"duration_minutes": "give duration_minutes or service_id"},
    )


@router.get("/{staff_id}/availability", response_model=AvailabilityResponse)
def get_availability(
    staff_id: UUID,
    date: date_type = Query(..., description="Calendar date, YYYY-MM-DD"),
    duration_minutes: Optional[int] = Query(None, description="Slot length in minutes"),
    service_id: Optional[UUID] = Query(None, description="Use this service's duration"),
    store=Depends(get_store),
    calculator: AvailabilityCalculator = Depends(get_calculator),
) -> AvailabilityResponse:
    """
    Bookable start times for one staff member on one date.

    A store failure is returned as a 503 error, never as an empty list.
    """
    duration = _resolve_duration(store, duration_minutes, service_id)
    slots = calculator.compute_slots(staff_id, date, duration)
    return AvailabilityResponse(staff_id=staff_id, date=date, duration_minutes=duration, slots=slots)


@router.get("/{staff_id}/availability/week", response_model=WeekAvailabilityResponse)
def get_week_availability(
    staff_id: UUID,
    date: date_type = Query(..., description="Any date inside the week (weeks start on Sunday)"),
    duration_minutes: Optional[int] = Query(None, description="Slot length in minutes"),
    service_id: Optional[UUID] = Query(None, description="Use this service's duration"),
    store=Depends(get_store),
    calculator: AvailabilityCalculator = Depends(get_calculator),
) -> WeekAvailabilityResponse:
    duration = _resolve_duration(store, duration_minutes, service_id)
    week = calculator.compute_week(staff_id, date, duration)
    return WeekAvailabilityResponse(
        staff_id=staff_id,
        week_start=week_start(date),
        duration_minutes=duration,
        days=[DayAvailability(date=day, slots=slots) for day, slots in sorted(week.items())],
    )
