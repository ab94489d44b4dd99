"""
Schedule administration routes - shift templates, time off and overrides.
"""
from datetime import date as date_type, datetime, time, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from booking_engine.api.dependencies import get_store
from booking_engine.lib.errors import NotFoundException, ValidationException
from booking_engine.models.schedules import AvailabilityOverride, ShiftTemplate, TimeOffPeriod


# Pydantic schemas
class ShiftResponse(BaseModel):
    id: UUID
    staff_id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    active: bool

    model_config = {"from_attributes": True}


class ShiftCreate(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    end_time: time
    active: bool = True


class TimeOffResponse(BaseModel):
    id: UUID
    staff_id: UUID
    start_date: date_type
    end_date: date_type
    all_day: bool
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class TimeOffCreate(BaseModel):
    start_date: date_type
    end_date: date_type = Field(..., description="Inclusive")
    all_day: bool = True
    reason: Optional[str] = Field(None, max_length=500)


class OverrideResponse(BaseModel):
    id: UUID
    staff_id: UUID
    date: date_type
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_available: bool

    model_config = {"from_attributes": True}


class OverrideUpsert(BaseModel):
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None


# Router
router = APIRouter(tags=["schedules"])


def _require_staff(store, staff_id: UUID) -> None:
    if store.get_staff(staff_id) is None:
        raise NotFoundException("Staff", str(staff_id))


# ===== Shift templates =====

@router.get("/staff/{staff_id}/shifts", response_model=List[ShiftResponse])
def list_shifts(staff_id: UUID, store=Depends(get_store)) -> List[ShiftResponse]:
    _require_staff(store, staff_id)
    return [ShiftResponse.model_validate(s) for s in store.list_shifts(staff_id)]


@router.post("/staff/{staff_id}/shifts", response_model=ShiftResponse, status_code=status.HTTP_201_CREATED)
def create_shift(staff_id: UUID, payload: ShiftCreate, store=Depends(get_store)) -> ShiftResponse:
    """
    Add a recurring weekly window. Several windows per day are allowed;
    overlapping ones are merged when slots are computed.
    """
    if payload.start_time >= payload.end_time:
        raise ValidationException("Invalid shift", errors={"end_time": "must be after start_time"})
    _require_staff(store, staff_id)
    shift = store.add_shift(ShiftTemplate(id=uuid4(), staff_id=staff_id, **payload.model_dump()))
    return ShiftResponse.model_validate(shift)


@router.delete("/shifts/{shift_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_shift(shift_id: UUID, store=Depends(get_store)) -> Response:
    if not store.delete_shift(shift_id):
        raise NotFoundException("Shift", str(shift_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== Time off =====

@router.get("/staff/{staff_id}/time-off", response_model=List[TimeOffResponse])
def list_time_off(
    staff_id: UUID,
    start: Optional[date_type] = Query(None, description="Only periods ending on or after this date"),
    end: Optional[date_type] = Query(None, description="Only periods starting on or before this date"),
    store=Depends(get_store),
) -> List[TimeOffResponse]:
    _require_staff(store, staff_id)
    return [TimeOffResponse.model_validate(p) for p in store.list_time_off(staff_id, start, end)]


@router.post("/staff/{staff_id}/time-off", response_model=TimeOffResponse, status_code=status.HTTP_201_CREATED)
def create_time_off(staff_id: UUID, payload: TimeOffCreate, store=Depends(get_store)) -> TimeOffResponse:
    """
    Block whole days. Time off wins over shifts and overrides.
    """
    if payload.start_date > payload.end_date:
        raise ValidationException("Invalid time off", errors={"end_date": "must not be before start_date"})
    _require_staff(store, staff_id)
    period = store.add_time_off(
        TimeOffPeriod(
            id=uuid4(),
            staff_id=staff_id,
            created_at=datetime.now(timezone.utc),
            **payload.model_dump(),
        )
    )
    return TimeOffResponse.model_validate(period)


@router.delete("/time-off/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_time_off(period_id: UUID, store=Depends(get_store)) -> Response:
    if not store.delete_time_off(period_id):
        raise NotFoundException("Time off", str(period_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== Overrides =====

@router.get("/staff/{staff_id}/overrides", response_model=List[OverrideResponse])
def list_overrides(
    staff_id: UUID,
    start: Optional[date_type] = Query(None),
    end: Optional[date_type] = Query(None),
    store=Depends(get_store),
) -> List[OverrideResponse]:
    _require_staff(store, staff_id)
    return [OverrideResponse.model_validate(o) for o in store.list_overrides(staff_id, start, end)]


@router.put("/staff/{staff_id}/overrides/{day}", response_model=OverrideResponse)
def set_override(staff_id: UUID, day: date_type, payload: OverrideUpsert, store=Depends(get_store)) -> OverrideResponse:
    """
    Create or replace the override for one date.

    An available override without times uses the configured default
    working window; without one the day stays closed.
    """
    if payload.start_time and payload.end_time and payload.start_time >= payload.end_time:
        raise ValidationException("Invalid override", errors={"end_time": "must be after start_time"})
    _require_staff(store, staff_id)
    override = store.set_override(
        AvailabilityOverride(id=uuid4(), staff_id=staff_id, date=day, **payload.model_dump())
    )
    return OverrideResponse.model_validate(override)


@router.delete("/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_override(override_id: UUID, store=Depends(get_store)) -> Response:
    if not store.delete_override(override_id):
        raise NotFoundException("Override", str(override_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
