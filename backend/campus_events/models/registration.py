"""Registration ORM model."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, text, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from campus_events.database import Base


class RegistrationStatus(str, enum.Enum):
    confirmed = "confirmed"
    cancelled = "cancelled"


class Registration(Base):
    __tablename__ = "registrations"

    registration_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False, index=True)
    student_id = Column(String(36), nullable=False, index=True)
    registration_number = Column(String(32), nullable=False, unique=True)
    status = Column(SAEnum(RegistrationStatus), nullable=False, default=RegistrationStatus.confirmed)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    event = relationship("Event")
    credential = relationship("Credential", back_populates="registration", uselist=False)

    __table_args__ = (
        # At most one confirmed registration per (event, student)
        Index(
            "uq_registrations_event_student_confirmed",
            "event_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
    )
