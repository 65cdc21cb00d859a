"""Pydantic schemas for Registrations and Credentials."""
from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class CredentialOut(BaseModel):
    credential_id: str
    token: str
    issued_at: datetime
    consumed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RegistrationOut(BaseModel):
    registration_id: str
    event_id: str
    student_id: str
    registration_number: str
    status: str
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    credential: Optional[CredentialOut] = None

    model_config = {"from_attributes": True}


class RegistrationCancelOut(BaseModel):
    registration: RegistrationOut
    cancelled_now: bool  # False when the registration was already cancelled


class RosterOut(BaseModel):
    event_id: str
    capacity: int
    total: int
    attended: int
    registrations: list[RegistrationOut]


class CheckInRequest(BaseModel):
    token: str


class CheckInOut(BaseModel):
    credential_id: str
    registration_id: str
    registration_number: str
    event_id: str
    event_title: str
    student_id: str
    consumed_at: datetime

    model_config = {"from_attributes": True}
