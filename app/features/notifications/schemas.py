from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from app.features.notifications.models import NotificationType


class NotificationResponse(BaseModel):
    id: str
    actor_id: str
    type: NotificationType
    title: str
    message: str
    related_permission: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int
