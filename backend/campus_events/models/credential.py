"""Credential ORM model — check-in token bound to one registration."""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from campus_events.database import Base


class Credential(Base):
    __tablename__ = "credentials"

    credential_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    registration_id = Column(String(36), ForeignKey("registrations.registration_id"), nullable=False, unique=True)
    token = Column(String(128), nullable=False, unique=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)  # set once at check-in
    voided_at = Column(DateTime(timezone=True), nullable=True)  # set when the registration is cancelled

    registration = relationship("Registration", back_populates="credential")

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    @property
    def is_void(self) -> bool:
        return self.voided_at is not None
