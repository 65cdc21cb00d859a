"""EventTransition ORM model — append-only ledger of status changes."""
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from campus_events.database import Base
from campus_events.models.event import EventStatus


class TransitionAction(str, enum.Enum):
    submit = "submit"
    approve = "approve"
    request_changes = "request_changes"
    publish = "publish"
    close = "close"
    cancel = "cancel"


class EventTransition(Base):
    __tablename__ = "event_transitions"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), ForeignKey("events.event_id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(SAEnum(TransitionAction), nullable=False)
    from_status = Column(SAEnum(EventStatus), nullable=False)
    to_status = Column(SAEnum(EventStatus), nullable=False)
    actor_id = Column(String(36), nullable=True)  # None for scheduled activation
    note = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)  # event version after the change
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="transitions")
