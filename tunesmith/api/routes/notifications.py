"""
Tunesmith Notification API Routes
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query

from ..dependencies import ServiceContainer, get_current_user_id, get_services
from ...database.schemas import NotificationResponse

router = APIRouter()


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Recent notifications for the caller, newest first"""
    return [
        NotificationResponse(
            id=notification.id,
            kind=notification.kind,
            title=notification.title,
            message=notification.message,
            level=notification.level,
            task_id=notification.task_id,
            data=notification.data,
            created_at=notification.created_at
        )
        for notification in services.notifier.recent(user_id, limit)
    ]
