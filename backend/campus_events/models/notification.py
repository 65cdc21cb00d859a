"""Notification ORM model — in-app notices written after lifecycle events."""
import uuid
import enum
from sqlalchemy import Column, Boolean, String, Text, DateTime, Enum as SAEnum
from sqlalchemy.sql import func
from campus_events.database import Base


class NotificationKind(str, enum.Enum):
    new_event = "new_event"
    event_approved = "event_approved"
    changes_requested = "changes_requested"
    event_cancelled = "event_cancelled"
    registration_confirmed = "registration_confirmed"


class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_id = Column(String(36), nullable=True, index=True)
    recipient_role = Column(String(20), nullable=True)  # broadcast to a role, e.g. admins
    kind = Column(SAEnum(NotificationKind), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    event_id = Column(String(36), nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
