"""Registration ledger — capacity accounting and at-most-once registration.

Two invariants hold under any interleaving of concurrent callers:

- confirmed registrations for an event never exceed its capacity, because the
  capacity check and the count increment are a single conditional UPDATE on
  the event row (compare-and-increment);
- at most one confirmed registration exists per (event, student), backed by a
  partial unique index, so a lost race surfaces as IntegrityError and rolls the
  increment back with it.

Admission is first-committed-wins.  There is no waitlist.
"""
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import exists, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_events.errors import (
    AlreadyRegisteredError,
    CapacityExceededError,
    EventNotOpenError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from campus_events.models.credential import Credential
from campus_events.models.event import OPEN_STATUSES, Event, EventStatus
from campus_events.models.notification import NotificationKind
from campus_events.models.registration import Registration, RegistrationStatus
from campus_events.services import credential_service, notifier

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_registration_number() -> str:
    """Human-readable reference printed next to the QR code, e.g. CF-M2K9XJ1Q-7GQ2ZD."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"CF-{_base36(int(time.time() * 1000))}-{suffix}"


def _get_event(db: Session, event_id: str) -> Event:
    event = db.get(Event, event_id, populate_existing=True)
    if not event:
        raise NotFoundError("Event", event_id)
    return event


def get_registration(db: Session, registration_id: str) -> Registration:
    registration = db.get(Registration, registration_id, populate_existing=True)
    if not registration:
        raise NotFoundError("Registration", registration_id)
    return registration


def _has_confirmed(db: Session, event_id: str, student_id: str) -> bool:
    return db.query(Registration.registration_id).filter(
        Registration.event_id == event_id,
        Registration.student_id == student_id,
        Registration.status == RegistrationStatus.confirmed,
    ).first() is not None


def register(db: Session, event_id: str, student_id: str) -> Registration:
    """Admit ``student_id`` to ``event_id`` and issue their check-in credential.

    Raises:
        NotFoundError: the event does not exist.
        EventNotOpenError: the event is not approved or live.
        AlreadyRegisteredError: the student already holds a confirmed registration.
        CapacityExceededError: the event is full.
    """
    event = _get_event(db, event_id)
    if event.status not in OPEN_STATUSES:
        raise EventNotOpenError(event.status.value)
    if _has_confirmed(db, event_id, student_id):
        raise AlreadyRegisteredError()

    # Compare-and-increment: the seat is taken only if the event is still open and not full.
    result = db.execute(
        update(Event)
        .where(
            Event.event_id == event_id,
            Event.status.in_(OPEN_STATUSES),
            Event.confirmed_count < Event.capacity,
        )
        .values(confirmed_count=Event.confirmed_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        event = _get_event(db, event_id)
        if event.status not in OPEN_STATUSES:
            raise EventNotOpenError(event.status.value)
        raise CapacityExceededError(event.capacity)

    registration = Registration(
        event_id=event_id,
        student_id=student_id,
        registration_number=generate_registration_number(),
        status=RegistrationStatus.confirmed,
    )
    db.add(registration)
    try:
        db.flush()
    except IntegrityError:
        # A concurrent request for the same student committed first.
        db.rollback()
        raise AlreadyRegisteredError()

    credential_service.issue_in_transaction(db, registration)
    db.commit()
    db.refresh(registration)
    logger.info(
        "Registered student %s for event %s (registration %s)",
        student_id, event_id, registration.registration_id,
    )

    notifier.notify(
        db, NotificationKind.registration_confirmed,
        title="Registration Confirmed",
        message=f"You have successfully registered for {event.title}",
        recipient_id=student_id,
        event_id=event_id,
    )
    return registration


def _void_credentials(db: Session, registration_ids: list[str], now: datetime) -> int:
    """Void unconsumed credentials.  A consumed credential stays as the record of attendance."""
    if not registration_ids:
        return 0
    result = db.execute(
        update(Credential)
        .where(
            Credential.registration_id.in_(registration_ids),
            Credential.consumed_at.is_(None),
            Credential.voided_at.is_(None),
        )
        .values(voided_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _check_student_may_cancel(db: Session, registration: Registration) -> None:
    event = _get_event(db, registration.event_id)
    if event.status == EventStatus.closed:
        raise InvalidStateError("cannot cancel a registration for an event that has closed")
    credential = registration.credential
    if credential is not None and credential.is_consumed:
        raise InvalidStateError("cannot cancel a registration that has already checked in")


def cancel(
    db: Session,
    registration_id: str,
    student_id: Optional[str],
    administrative: bool = False,
) -> tuple[Registration, bool]:
    """Cancel a confirmed registration.

    Idempotent: cancelling an already-cancelled registration returns it
    unchanged.  The second element of the result is True only for the call
    that actually cancelled it.
    """
    registration = get_registration(db, registration_id)
    if not administrative and registration.student_id != student_id:
        raise ForbiddenError("Only the student who registered may cancel this registration")
    if registration.status == RegistrationStatus.cancelled:
        return registration, False
    if not administrative:
        _check_student_may_cancel(db, registration)

    conditions = [
        Registration.registration_id == registration_id,
        Registration.status == RegistrationStatus.confirmed,
    ]
    if not administrative:
        # Re-checked in the write: a gate scan or a close may commit after the reads above.
        conditions.append(~exists().where(
            Credential.registration_id == Registration.registration_id,
            Credential.consumed_at.isnot(None),
        ))
        conditions.append(~exists().where(
            Event.event_id == Registration.event_id,
            Event.status == EventStatus.closed,
        ))

    now = _utcnow()
    result = db.execute(
        update(Registration)
        .where(*conditions)
        .values(status=RegistrationStatus.cancelled, cancelled_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        registration = get_registration(db, registration_id)
        if registration.status == RegistrationStatus.cancelled:
            # A concurrent cancel won; its effect is the one that counts.
            return registration, False
        _check_student_may_cancel(db, registration)
        raise InvalidStateError("registration changed while it was being cancelled")

    db.execute(
        update(Event)
        .where(Event.event_id == registration.event_id, Event.confirmed_count > 0)
        .values(confirmed_count=Event.confirmed_count - 1)
        .execution_options(synchronize_session=False)
    )
    _void_credentials(db, [registration_id], now)
    db.commit()
    logger.info("Cancelled registration %s for event %s", registration_id, registration.event_id)
    return get_registration(db, registration_id), True


def cascade_cancel_in_transaction(db: Session, event_id: str, now: Optional[datetime] = None) -> list[str]:
    """Cancel every confirmed registration of an event without committing.

    Returns the affected student ids.
    """
    now = now or _utcnow()
    rows = db.query(Registration.registration_id, Registration.student_id).filter(
        Registration.event_id == event_id,
        Registration.status == RegistrationStatus.confirmed,
    ).all()
    if not rows:
        return []
    registration_ids = [row.registration_id for row in rows]

    result = db.execute(
        update(Registration)
        .where(
            Registration.registration_id.in_(registration_ids),
            Registration.status == RegistrationStatus.confirmed,
        )
        .values(status=RegistrationStatus.cancelled, cancelled_at=now)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(Event)
        .where(Event.event_id == event_id)
        .values(confirmed_count=Event.confirmed_count - result.rowcount)
        .execution_options(synchronize_session=False)
    )
    voided = _void_credentials(db, registration_ids, now)
    logger.info(
        "Cascade-cancelled %d registrations of event %s (%d credentials voided)",
        result.rowcount, event_id, voided,
    )
    return [row.student_id for row in rows]


def cascade_cancel(db: Session, event_id: str) -> list[str]:
    """Cancel every confirmed registration of an event, without ownership checks."""
    _get_event(db, event_id)
    students = cascade_cancel_in_transaction(db, event_id)
    db.commit()
    return students


def confirmed_count(db: Session, event_id: str) -> int:
    return _get_event(db, event_id).confirmed_count


def is_full(db: Session, event_id: str) -> bool:
    event = _get_event(db, event_id)
    return event.confirmed_count >= event.capacity


def list_for_student(db: Session, student_id: str) -> list[Registration]:
    return (
        db.query(Registration)
        .filter(Registration.student_id == student_id)
        .order_by(Registration.created_at.desc())
        .all()
    )


def roster(db: Session, event_id: str) -> dict:
    """Confirmed registrations of an event and how many have checked in."""
    event = _get_event(db, event_id)
    registrations = (
        db.query(Registration)
        .filter(Registration.event_id == event_id, Registration.status == RegistrationStatus.confirmed)
        .order_by(Registration.created_at)
        .all()
    )
    attended = sum(1 for r in registrations if r.credential is not None and r.credential.is_consumed)
    return {
        "event_id": event_id,
        "capacity": event.capacity,
        "total": len(registrations),
        "attended": attended,
        "registrations": registrations,
    }
