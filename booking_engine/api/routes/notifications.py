"""
Notification inbox routes.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from booking_engine.api.dependencies import get_dispatcher
from booking_engine.models.notifications import Audience, DeliveryStatus, IntentKind
from booking_engine.services.notification_service import NotificationDispatcher


class NotificationResponse(BaseModel):
    id: UUID
    booking_id: Optional[UUID] = None
    kind: IntentKind
    audiences: List[str]
    payload: Dict[str, Any]
    delivery_status: DeliveryStatus
    attempts: int
    delivered_to: List[str] = []
    created_at: datetime
    sent_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    expires_at: datetime

    model_config = {"from_attributes": True}


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    audience: Audience = Query(..., description="business or customer"),
    include_acknowledged: bool = Query(False),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> List[NotificationResponse]:
    """
    Unexpired notifications for one audience, oldest first.
    """
    return [
        NotificationResponse.model_validate(n)
        for n in dispatcher.list_for(audience, include_acknowledged=include_acknowledged)
    ]


@router.post("/{notification_id}/acknowledge", response_model=NotificationResponse)
def acknowledge_notification(
    notification_id: UUID,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotificationResponse:
    return NotificationResponse.model_validate(dispatcher.acknowledge(notification_id))
