"""Pydantic schemas for Events."""
from __future__ import annotations
import datetime as dt
from typing import Optional
from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    title: str
    capacity: int = Field(..., ge=1)
    description: Optional[str] = None
    category: str = "Other"
    venue: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    rulebook_ref: Optional[str] = None
    resources: list[str] = []
    tags: list[str] = []


class EventUpdate(BaseModel):
    title: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    description: Optional[str] = None
    category: Optional[str] = None
    venue: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    rulebook_ref: Optional[str] = None
    resources: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    version: int  # required for optimistic locking


class EventOut(BaseModel):
    event_id: str
    organizer_id: str
    title: str
    description: Optional[str] = None
    category: str
    venue: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    capacity: int
    confirmed_count: int
    rulebook_ref: Optional[str] = None
    resources: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    status: str
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class TransitionRequest(BaseModel):
    """Body for approve / submit / publish / close.  ``version`` is optional optimistic locking."""

    note: Optional[str] = None
    version: Optional[int] = None


class RequestChangesRequest(BaseModel):
    note: str = ""
    version: Optional[int] = None


class EventCancelRequest(BaseModel):
    cancel_reason: Optional[str] = None
    version: Optional[int] = None


class EventTransitionOut(BaseModel):
    sequence: int
    action: str
    from_status: str
    to_status: str
    actor_id: Optional[str] = None
    note: Optional[str] = None
    version: int
    created_at: dt.datetime

    model_config = {"from_attributes": True}


class AvailabilityOut(BaseModel):
    event_id: str
    capacity: int
    confirmed_count: int
    is_full: bool


class WindowSyncOut(BaseModel):
    published: list[str]
    closed: list[str]
