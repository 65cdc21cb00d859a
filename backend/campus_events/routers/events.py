"""Event API routes — delegates to lifecycle_service for state-machine enforcement."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from campus_events.database import get_db
from campus_events.errors import ForbiddenError, ValidationError
from campus_events.models.event import Event, EventStatus
from campus_events.routers.deps import Actor, Role, require_role
from campus_events.schemas.event import (
    AvailabilityOut,
    EventCancelRequest,
    EventCreate,
    EventOut,
    EventTransitionOut,
    EventUpdate,
    RequestChangesRequest,
    TransitionRequest,
    WindowSyncOut,
)
from campus_events.schemas.registration import RegistrationOut, RosterOut
from campus_events.services import lifecycle_service, registration_service, storage

logger = logging.getLogger(__name__)
router = APIRouter()

organizer_or_admin = require_role(Role.organizer, Role.admin)
admin_only = require_role(Role.admin)


def _check_can_manage(event: Event, actor: Actor) -> None:
    if not actor.is_admin and event.organizer_id != actor.actor_id:
        raise ForbiddenError("Only the organizer of this event or an administrator may do this")


@router.post("/", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    actor: Actor = Depends(organizer_or_admin),
    db: Session = Depends(get_db),
):
    """Create a new event in draft."""
    return storage.call_with_retry(
        db,
        lifecycle_service.create_event,
        organizer_id=actor.actor_id,
        title=payload.title,
        capacity=payload.capacity,
        description=payload.description,
        category=payload.category,
        venue=payload.venue,
        event_date=payload.date,
        start_time=payload.time,
        end_time=payload.end_time,
        rulebook_ref=payload.rulebook_ref,
        resources=payload.resources,
        tags=payload.tags,
    )


@router.get("/", response_model=list[EventOut])
def list_events(
    status_filter: Optional[str] = Query(None, alias="status"),
    organizer_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """List events, optionally filtered by status or organizer."""
    query = db.query(Event)
    if status_filter:
        try:
            query = query.filter(Event.status == EventStatus(status_filter))
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")
    if organizer_id:
        query = query.filter(Event.organizer_id == organizer_id)
    return query.order_by(Event.date, Event.created_at).all()


@router.get("/pending", response_model=list[EventOut])
def review_queue(actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    """Events awaiting review, oldest submission first."""
    return (
        db.query(Event)
        .filter(Event.status == EventStatus.pending)
        .order_by(Event.updated_at)
        .all()
    )


@router.post("/sync-windows", response_model=WindowSyncOut)
def sync_windows(actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    """Publish events whose start has passed and close events whose end has passed."""
    return storage.call_with_retry(db, lifecycle_service.sync_time_windows)


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return lifecycle_service.get_event(db, event_id)


@router.put("/{event_id}", response_model=EventOut)
def update_event(
    event_id: str,
    payload: EventUpdate,
    actor: Actor = Depends(organizer_or_admin),
    db: Session = Depends(get_db),
):
    """Edit a draft or changes-requested event (organizer only, optimistic locking enforced)."""
    updates = payload.model_dump(exclude_unset=True, exclude={"version"})
    return storage.call_with_retry(
        db,
        lifecycle_service.update_event,
        event_id=event_id,
        actor_id=actor.actor_id,
        version=payload.version,
        updates=updates,
    )


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(event_id: str, actor: Actor = Depends(organizer_or_admin), db: Session = Depends(get_db)):
    """Delete an event that never had registrations."""
    storage.call_with_retry(
        db, lifecycle_service.delete_event,
        event_id=event_id, actor_id=actor.actor_id, is_admin=actor.is_admin,
    )


@router.post("/{event_id}/submit", response_model=EventOut)
def submit_event(
    event_id: str,
    payload: Optional[TransitionRequest] = None,
    actor: Actor = Depends(require_role(Role.organizer)),
    db: Session = Depends(get_db),
):
    return storage.call_with_retry(
        db, lifecycle_service.submit_for_review,
        event_id=event_id, actor_id=actor.actor_id,
        expected_version=payload.version if payload else None,
    )


@router.post("/{event_id}/approve", response_model=EventOut)
def approve_event(
    event_id: str,
    payload: Optional[TransitionRequest] = None,
    actor: Actor = Depends(admin_only),
    db: Session = Depends(get_db),
):
    return storage.call_with_retry(
        db, lifecycle_service.approve,
        event_id=event_id, admin_id=actor.actor_id,
        note=payload.note if payload else None,
        expected_version=payload.version if payload else None,
    )


@router.post("/{event_id}/request-changes", response_model=EventOut)
def request_changes(
    event_id: str,
    payload: RequestChangesRequest,
    actor: Actor = Depends(admin_only),
    db: Session = Depends(get_db),
):
    return storage.call_with_retry(
        db, lifecycle_service.request_changes,
        event_id=event_id, admin_id=actor.actor_id,
        note=payload.note, expected_version=payload.version,
    )


@router.post("/{event_id}/publish", response_model=EventOut)
def publish_event(
    event_id: str,
    payload: Optional[TransitionRequest] = None,
    actor: Actor = Depends(organizer_or_admin),
    db: Session = Depends(get_db),
):
    _check_can_manage(lifecycle_service.get_event(db, event_id), actor)
    return storage.call_with_retry(
        db, lifecycle_service.publish,
        event_id=event_id, actor_id=actor.actor_id,
        expected_version=payload.version if payload else None,
    )


@router.post("/{event_id}/close", response_model=EventOut)
def close_event(
    event_id: str,
    payload: Optional[TransitionRequest] = None,
    actor: Actor = Depends(organizer_or_admin),
    db: Session = Depends(get_db),
):
    _check_can_manage(lifecycle_service.get_event(db, event_id), actor)
    return storage.call_with_retry(
        db, lifecycle_service.close,
        event_id=event_id, actor_id=actor.actor_id,
        expected_version=payload.version if payload else None,
    )


@router.post("/{event_id}/cancel", response_model=EventOut)
def cancel_event(
    event_id: str,
    payload: Optional[EventCancelRequest] = None,
    actor: Actor = Depends(organizer_or_admin),
    db: Session = Depends(get_db),
):
    """Cancel an event; every confirmed registration is cancelled with it."""
    return storage.call_with_retry(
        db, lifecycle_service.cancel,
        event_id=event_id, actor_id=actor.actor_id, is_admin=actor.is_admin,
        reason=payload.cancel_reason if payload else None,
        expected_version=payload.version if payload else None,
    )


@router.get("/{event_id}/transitions", response_model=list[EventTransitionOut])
def list_transitions(event_id: str, db: Session = Depends(get_db)):
    return lifecycle_service.list_transitions(db, event_id)


@router.get("/{event_id}/availability", response_model=AvailabilityOut)
def availability(event_id: str, db: Session = Depends(get_db)):
    event = lifecycle_service.get_event(db, event_id)
    return AvailabilityOut(
        event_id=event.event_id,
        capacity=event.capacity,
        confirmed_count=registration_service.confirmed_count(db, event_id),
        is_full=registration_service.is_full(db, event_id),
    )


@router.get("/{event_id}/roster", response_model=RosterOut)
def roster(event_id: str, actor: Actor = Depends(organizer_or_admin), db: Session = Depends(get_db)):
    """Confirmed attendees and check-in count, for the organizer or an admin."""
    _check_can_manage(lifecycle_service.get_event(db, event_id), actor)
    return registration_service.roster(db, event_id)


@router.post("/{event_id}/register", response_model=RegistrationOut, status_code=status.HTTP_201_CREATED)
def register(event_id: str, actor: Actor = Depends(require_role(Role.student)), db: Session = Depends(get_db)):
    """Register the calling student; the response carries the check-in credential."""
    return storage.call_with_retry(
        db, registration_service.register, event_id=event_id, student_id=actor.actor_id,
    )
