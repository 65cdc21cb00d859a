"""Event lifecycle service — owns the approval state machine.

Responsibilities:
- Draft creation and editing by the owning organizer
- Status transitions along the TRANSITIONS graph only
- Atomic transitions: each one is a conditional UPDATE on (status, version),
  so of two concurrent callers acting on the same read exactly one wins
- Transition ledger (EventTransitions) written in the same transaction
- Cascade cancellation of registrations when an event is cancelled
- Best-effort notifications after commit
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

import pytz
from sqlalchemy import update
from sqlalchemy.orm import Session

from campus_events.config import settings
from campus_events.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StaleEventError,
    ValidationError,
)
from campus_events.models.event import (
    EDITABLE_STATUSES,
    Event,
    EventCategory,
    EventStatus,
    can_transition,
)
from campus_events.models.event_transition import EventTransition, TransitionAction
from campus_events.models.notification import NotificationKind
from campus_events.models.registration import Registration
from campus_events.services import notifier, registration_service

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "title", "description", "category", "venue", "date", "time", "end_time",
    "capacity", "rulebook_ref", "resources", "tags",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_event(db: Session, event_id: str) -> Event:
    event = db.get(Event, event_id, populate_existing=True)
    if not event:
        raise NotFoundError("Event", event_id)
    return event


def _check_organizer(event: Event, actor_id: str) -> None:
    """Only the organizer who owns the event may edit or submit it."""
    if event.organizer_id != actor_id:
        raise ForbiddenError("Only the organizer of this event may modify it")


def _validate_capacity(capacity: Any) -> int:
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
        raise ValidationError("capacity must be a positive integer")
    return capacity


def _missing_for_review(event: Event) -> list[str]:
    missing = []
    if not (event.title or "").strip():
        missing.append("title")
    if event.date is None:
        missing.append("date")
    if not (event.venue or "").strip():
        missing.append("venue")
    if not event.capacity:
        missing.append("capacity")
    if not (event.rulebook_ref or "").strip():
        missing.append("rulebook_ref")
    return missing


def event_window(event: Event) -> Optional[tuple[datetime, datetime]]:
    """Return the event's (start, end) in UTC, or None when it has no date.

    ``date``/``time``/``end_time`` are campus wall-clock values.  Without an
    ``end_time`` the event runs until local midnight.
    """
    if event.date is None:
        return None
    tz = pytz.timezone(settings.CAMPUS_TIMEZONE)
    starts = event.time or time(0, 0)
    start_local = tz.localize(datetime.combine(event.date, starts))
    if event.end_time and event.end_time > starts:
        end_local = tz.localize(datetime.combine(event.date, event.end_time))
    else:
        end_local = tz.localize(datetime.combine(event.date + timedelta(days=1), time(0, 0)))
    return start_local.astimezone(pytz.utc), end_local.astimezone(pytz.utc)


def _transition(
    db: Session,
    event: Event,
    target: EventStatus,
    action: TransitionAction,
    actor_id: Optional[str],
    note: Optional[str] = None,
    expected_version: Optional[int] = None,
    **values: Any,
) -> None:
    """Move ``event`` to ``target`` inside the caller's transaction.

    The write only lands if status and version still match what was read;
    otherwise the session is rolled back and the caller gets an error naming
    the state it actually lost to.
    """
    current = event.status
    if expected_version is not None and expected_version != event.version:
        raise StaleEventError(current.value, target.value, expected_version, event.version)
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)

    result = db.execute(
        update(Event)
        .where(
            Event.event_id == event.event_id,
            Event.status == current,
            Event.version == event.version,
        )
        .values(status=target, version=Event.version + 1, updated_at=_utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        read_version = event.version
        db.rollback()
        fresh = get_event(db, event.event_id)
        if can_transition(fresh.status, target):
            raise StaleEventError(fresh.status.value, target.value, read_version, fresh.version)
        raise InvalidTransitionError(fresh.status.value, target.value)

    db.add(EventTransition(
        event_id=event.event_id,
        action=action,
        from_status=current,
        to_status=target,
        actor_id=actor_id,
        note=note,
        version=event.version + 1,
    ))


def create_event(
    db: Session,
    organizer_id: str,
    title: str,
    capacity: int,
    description: Optional[str] = None,
    category: str = "Other",
    venue: Optional[str] = None,
    event_date: Optional[date] = None,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    rulebook_ref: Optional[str] = None,
    resources: Optional[list] = None,
    tags: Optional[list] = None,
) -> Event:
    """Create an event in draft."""
    if not (title or "").strip():
        raise ValidationError("title is required")
    _validate_capacity(capacity)
    try:
        category_value = EventCategory(category)
    except ValueError:
        raise ValidationError(f"Invalid category: {category}")

    event = Event(
        organizer_id=organizer_id,
        title=title.strip(),
        description=description,
        category=category_value,
        venue=venue,
        date=event_date,
        time=start_time,
        end_time=end_time,
        capacity=capacity,
        confirmed_count=0,
        rulebook_ref=rulebook_ref,
        resources=resources or [],
        tags=tags or [],
        status=EventStatus.draft,
        version=1,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("Created draft event '%s' (%s) by organizer %s", event.title, event.event_id, organizer_id)
    return event


def update_event(
    db: Session,
    event_id: str,
    actor_id: str,
    version: int,
    updates: dict[str, Any],
) -> Event:
    """Edit descriptive fields while the event is with its organizer."""
    event = get_event(db, event_id)
    _check_organizer(event, actor_id)

    if event.status not in EDITABLE_STATUSES:
        raise InvalidTransitionError(
            event.status.value, event.status.value,
            f"event cannot be edited while '{event.status.value}'",
        )
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    if "capacity" in updates:
        if event.status != EventStatus.draft and updates["capacity"] != event.capacity:
            raise ValidationError("capacity is fixed once the event has left draft")
        _validate_capacity(updates["capacity"])
    if "title" in updates and not (updates["title"] or "").strip():
        raise ValidationError("title is required")
    if "category" in updates:
        try:
            updates = {**updates, "category": EventCategory(updates["category"])}
        except ValueError:
            raise ValidationError(f"Invalid category: {updates['category']}")

    result = db.execute(
        update(Event)
        .where(
            Event.event_id == event_id,
            Event.version == version,
            Event.status.in_(EDITABLE_STATUSES),
        )
        .values(version=Event.version + 1, updated_at=_utcnow(), **updates)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        fresh = get_event(db, event_id)
        raise StaleEventError(fresh.status.value, fresh.status.value, version, fresh.version)
    db.commit()
    event = get_event(db, event_id)
    logger.info("Updated event %s to version %d", event_id, event.version)
    return event


def delete_event(db: Session, event_id: str, actor_id: str, is_admin: bool = False) -> None:
    """Physically delete an event that never had a registration."""
    event = get_event(db, event_id)
    if not is_admin:
        _check_organizer(event, actor_id)
    has_registrations = db.query(Registration.registration_id).filter(
        Registration.event_id == event_id
    ).first() is not None
    if has_registrations:
        raise InvalidTransitionError(
            event.status.value, EventStatus.cancelled.value,
            "event has registrations and cannot be deleted; cancel it instead",
        )
    db.delete(event)
    db.commit()
    logger.info("Deleted event %s by %s", event_id, actor_id)


def submit_for_review(
    db: Session, event_id: str, actor_id: str, expected_version: Optional[int] = None,
) -> Event:
    """draft / changes-requested → pending.  Clears earlier review notes."""
    event = get_event(db, event_id)
    _check_organizer(event, actor_id)
    if event.status not in EDITABLE_STATUSES:
        raise InvalidTransitionError(event.status.value, EventStatus.pending.value)
    missing = _missing_for_review(event)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    _transition(
        db, event, EventStatus.pending, TransitionAction.submit, actor_id,
        expected_version=expected_version,
        review_notes=None, reviewed_by=None, reviewed_at=None,
    )
    db.commit()
    event = get_event(db, event_id)
    logger.info("Event %s submitted for review by %s", event_id, actor_id)

    notifier.notify(
        db, NotificationKind.new_event,
        title="New Event Pending Approval",
        message=f"{event.title} has been submitted for approval",
        recipient_role="admin",
        event_id=event_id,
    )
    return event


def approve(
    db: Session, event_id: str, admin_id: str, note: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Event:
    """pending → approved."""
    event = get_event(db, event_id)
    note = (note or "").strip() or None
    _transition(
        db, event, EventStatus.approved, TransitionAction.approve, admin_id,
        note=note, expected_version=expected_version,
        review_notes=note, reviewed_by=admin_id, reviewed_at=_utcnow(),
    )
    db.commit()
    event = get_event(db, event_id)
    logger.info("Event %s approved by %s", event_id, admin_id)

    notifier.notify(
        db, NotificationKind.event_approved,
        title="Event Approved",
        message=f"Your event {event.title} has been approved",
        recipient_id=event.organizer_id,
        event_id=event_id,
    )
    return event


def request_changes(
    db: Session, event_id: str, admin_id: str, note: str,
    expected_version: Optional[int] = None,
) -> Event:
    """pending → changes-requested.  A non-empty note is mandatory."""
    note = (note or "").strip()
    if not note:
        raise ValidationError("a note describing the requested changes is required")
    event = get_event(db, event_id)
    _transition(
        db, event, EventStatus.changes_requested, TransitionAction.request_changes, admin_id,
        note=note, expected_version=expected_version,
        review_notes=note, reviewed_by=admin_id, reviewed_at=_utcnow(),
    )
    db.commit()
    event = get_event(db, event_id)
    logger.info("Changes requested on event %s by %s", event_id, admin_id)

    notifier.notify(
        db, NotificationKind.changes_requested,
        title="Changes Requested",
        message=f"Changes requested for {event.title}: {note}",
        recipient_id=event.organizer_id,
        event_id=event_id,
    )
    return event


def publish(
    db: Session, event_id: str, actor_id: Optional[str], expected_version: Optional[int] = None,
) -> Event:
    """approved → live."""
    event = get_event(db, event_id)
    _transition(db, event, EventStatus.live, TransitionAction.publish, actor_id, expected_version=expected_version)
    db.commit()
    logger.info("Event %s is live", event_id)
    return get_event(db, event_id)


def close(
    db: Session, event_id: str, actor_id: Optional[str], expected_version: Optional[int] = None,
) -> Event:
    """live → closed."""
    event = get_event(db, event_id)
    _transition(db, event, EventStatus.closed, TransitionAction.close, actor_id, expected_version=expected_version)
    db.commit()
    logger.info("Event %s closed", event_id)
    return get_event(db, event_id)


def cancel(
    db: Session,
    event_id: str,
    actor_id: str,
    is_admin: bool = False,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Event:
    """Any non-terminal status → cancelled, cancelling every confirmed registration with it."""
    event = get_event(db, event_id)
    if not is_admin:
        _check_organizer(event, actor_id)
    now = _utcnow()
    _transition(
        db, event, EventStatus.cancelled, TransitionAction.cancel, actor_id,
        note=reason, expected_version=expected_version,
        cancelled_at=now, cancelled_by=actor_id, cancel_reason=reason,
    )
    affected_students = registration_service.cascade_cancel_in_transaction(db, event_id, now=now)
    db.commit()
    event = get_event(db, event_id)
    logger.info(
        "Cancelled event %s (reason: %s); %d registrations cancelled",
        event_id, reason, len(affected_students),
    )

    if is_admin and actor_id != event.organizer_id:
        notifier.notify(
            db, NotificationKind.event_cancelled,
            title="Event Cancelled",
            message=f"Your event {event.title} was cancelled" + (f": {reason}" if reason else ""),
            recipient_id=event.organizer_id,
            event_id=event_id,
        )
    for student_id in affected_students:
        notifier.notify(
            db, NotificationKind.event_cancelled,
            title="Event Cancelled",
            message=f"{event.title} has been cancelled and your registration withdrawn",
            recipient_id=student_id,
            event_id=event_id,
        )
    return event


def sync_time_windows(db: Session, now: Optional[datetime] = None) -> dict[str, list[str]]:
    """Activate approved events whose start has passed and close live events whose end has passed."""
    now = now or _utcnow()
    published: list[str] = []
    closed: list[str] = []

    for target, source, bucket, pick in (
        (EventStatus.live, EventStatus.approved, published, 0),
        (EventStatus.closed, EventStatus.live, closed, 1),
    ):
        candidates = db.query(Event).filter(Event.status == source, Event.date.isnot(None)).all()
        for event in candidates:
            window = event_window(event)
            if window is None or window[pick] > now:
                continue
            action = TransitionAction.publish if target == EventStatus.live else TransitionAction.close
            try:
                _transition(db, event, target, action, actor_id=None)
                db.commit()
            except InvalidTransitionError as exc:
                # Someone else moved it first; their transition stands.
                logger.info("Skipped %s of event %s: %s", action.value, event.event_id, exc.message)
                continue
            bucket.append(event.event_id)

    if published or closed:
        logger.info("Time-window sync: %d published, %d closed", len(published), len(closed))
    return {"published": published, "closed": closed}


def list_transitions(db: Session, event_id: str) -> list[EventTransition]:
    get_event(db, event_id)
    return (
        db.query(EventTransition)
        .filter(EventTransition.event_id == event_id)
        .order_by(EventTransition.sequence)
        .all()
    )
