"""Event ORM model and its approval state machine."""
import uuid
import enum
from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, Integer, JSON, String, Text, Time, Index,
    Enum as SAEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from campus_events.database import Base


class EventStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    approved = "approved"
    changes_requested = "changes-requested"
    live = "live"
    closed = "closed"
    cancelled = "cancelled"


class EventCategory(str, enum.Enum):
    technical = "Technical"
    cultural = "Cultural"
    sports = "Sports"
    workshop = "Workshop"
    seminar = "Seminar"
    other = "Other"


# Legal successors of every status.  closed and cancelled are terminal.
TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.draft: frozenset({EventStatus.pending, EventStatus.cancelled}),
    EventStatus.pending: frozenset({EventStatus.approved, EventStatus.changes_requested, EventStatus.cancelled}),
    EventStatus.changes_requested: frozenset({EventStatus.pending, EventStatus.cancelled}),
    EventStatus.approved: frozenset({EventStatus.live, EventStatus.cancelled}),
    EventStatus.live: frozenset({EventStatus.closed, EventStatus.cancelled}),
    EventStatus.closed: frozenset(),
    EventStatus.cancelled: frozenset(),
}

missing = set(EventStatus) - set(TRANSITIONS)
if missing:
    raise RuntimeError(f"Transition table does not cover statuses: {sorted(s.value for s in missing)}")
del missing

EDITABLE_STATUSES = frozenset({EventStatus.draft, EventStatus.changes_requested})
OPEN_STATUSES = frozenset({EventStatus.approved, EventStatus.live})


def can_transition(current: EventStatus, target: EventStatus) -> bool:
    return target in TRANSITIONS[current]


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organizer_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(SAEnum(EventCategory), nullable=False, default=EventCategory.other)
    venue = Column(String(255), nullable=True)
    date = Column(Date, nullable=True)  # campus-local
    time = Column(Time, nullable=True)  # campus-local start
    end_time = Column(Time, nullable=True)  # campus-local, same day
    capacity = Column(Integer, nullable=False)
    confirmed_count = Column(Integer, nullable=False, default=0)
    rulebook_ref = Column(String(500), nullable=True)  # document-storage attachment id
    resources = Column(JSON, nullable=True, default=list)
    tags = Column(JSON, nullable=True, default=list)

    status = Column(SAEnum(EventStatus), nullable=False, default=EventStatus.draft)
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(String(36), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(36), nullable=True)
    cancel_reason = Column(String(500), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transitions = relationship(
        "EventTransition",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventTransition.sequence",
    )

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_events_capacity_positive"),
        CheckConstraint("confirmed_count >= 0", name="ck_events_confirmed_non_negative"),
        CheckConstraint("confirmed_count <= capacity", name="ck_events_confirmed_lte_capacity"),
        Index("ix_events_status_date", "status", "date"),
    )

    @property
    def is_full(self) -> bool:
        return self.confirmed_count >= self.capacity
