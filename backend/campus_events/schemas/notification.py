"""Pydantic schemas for Notifications."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class NotificationOut(BaseModel):
    notification_id: str
    recipient_id: Optional[str] = None
    recipient_role: Optional[str] = None
    kind: str
    title: str
    message: str
    event_id: Optional[str] = None
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}
