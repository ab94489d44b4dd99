"""
Services API routes.
"""
from typing import List, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from booking_engine.api.dependencies import get_store
from booking_engine.lib.errors import NotFoundException, ValidationException
from booking_engine.models.services import Service


# Pydantic schemas
class ServiceResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    price: float
    duration_minutes: int
    color: Optional[str] = None
    is_active: bool = True

    model_config = {"from_attributes": True}


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    price: float = Field(0, ge=0)
    duration_minutes: int = Field(..., gt=0, description="Slot length and booking duration")
    color: Optional[str] = Field(None, max_length=20)
    is_active: bool = True


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    duration_minutes: Optional[int] = Field(None, gt=0)
    color: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None


NULLABLE_FIELDS = {"description", "color"}


# Router
router = APIRouter(prefix="/services", tags=["services"])


@router.get("", response_model=List[ServiceResponse])
def list_services(
    active_only: bool = Query(False, description="Show only services accepting bookings"),
    store=Depends(get_store),
) -> List[ServiceResponse]:
    """
    List the service catalogue, ordered by name.
    """
    return [ServiceResponse.model_validate(s) for s in store.list_services(active_only=active_only)]


@router.post("", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(payload: ServiceCreate, store=Depends(get_store)) -> ServiceResponse:
    service = store.add_service(Service(id=uuid4(), **payload.model_dump()))
    return ServiceResponse.model_validate(service)


@router.patch("/{service_id}", response_model=ServiceResponse)
def update_service(service_id: UUID, payload: ServiceUpdate, store=Depends(get_store)) -> ServiceResponse:
    """
    Update a service. Deactivating stops new bookings only; existing
    bookings stay valid and are flagged service_inactive.
    """
    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }
    if not changes:
        raise ValidationException("Nothing to update", errors={"body": "no fields given"})
    service = store.update_service(service_id, changes)
    if service is None:
        raise NotFoundException("Service", str(service_id))
    return ServiceResponse.model_validate(service)
