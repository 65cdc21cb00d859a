"""Credential issuer — check-in tokens for confirmed registrations.

Tokens come from ``secrets`` and carry CREDENTIAL_TOKEN_BYTES of entropy.
Consumption is a conditional UPDATE (``consumed_at IS NULL``), so of two
simultaneous scans of one token exactly one succeeds.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from campus_events.config import settings
from campus_events.errors import (
    AlreadyConsumedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    VoidedError,
)
from campus_events.models.credential import Credential
from campus_events.models.registration import Registration, RegistrationStatus

logger = logging.getLogger(__name__)

MIN_TOKEN_BYTES = 16


@dataclass(frozen=True)
class CheckInResult:
    """Identity shown at the gate after a successful scan."""

    credential_id: str
    registration_id: str
    registration_number: str
    event_id: str
    event_title: str
    student_id: str
    consumed_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_token() -> str:
    return secrets.token_urlsafe(max(settings.CREDENTIAL_TOKEN_BYTES, MIN_TOKEN_BYTES))


def issue_in_transaction(db: Session, registration: Registration) -> Credential:
    """Create the credential for a confirmed registration without committing."""
    if registration.status != RegistrationStatus.confirmed:
        raise InvalidStateError("credentials are only issued for confirmed registrations")
    existing = db.query(Credential.credential_id).filter(
        Credential.registration_id == registration.registration_id
    ).first()
    if existing is not None:
        raise InvalidStateError("registration already has a credential")

    credential = Credential(
        registration_id=registration.registration_id,
        token=generate_token(),
        issued_at=_utcnow(),
    )
    db.add(credential)
    db.flush()
    return credential


def issue(db: Session, registration: Registration) -> Credential:
    """Issue and persist a credential for ``registration``."""
    credential = issue_in_transaction(db, registration)
    db.commit()
    db.refresh(credential)
    logger.info("Issued credential %s for registration %s", credential.credential_id, registration.registration_id)
    return credential


def _get_by_token(db: Session, token: str) -> Credential:
    credential = (
        db.query(Credential)
        .filter(Credential.token == token)
        .populate_existing()
        .first()
    )
    if credential is None:
        raise NotFoundError("Credential")
    return credential


def _raise_if_unusable(credential: Credential) -> None:
    # Consumed wins over void: attendance already recorded stays a fact.
    if credential.is_consumed:
        raise AlreadyConsumedError()
    if credential.is_void or credential.registration.status != RegistrationStatus.confirmed:
        raise VoidedError()


def _check_scanner(credential: Credential, scanner_id: Optional[str], is_admin: bool) -> None:
    if scanner_id is None or is_admin:
        return
    if credential.registration.event.organizer_id != scanner_id:
        raise ForbiddenError("Only the organizer of this event or an administrator may check attendees in")


def check_in(db: Session, token: str, scanner_id: Optional[str] = None, is_admin: bool = False) -> CheckInResult:
    """Consume a credential at the gate.

    When ``scanner_id`` is given, the scanner must organize the credential's
    event unless ``is_admin`` is set.

    Raises:
        ValidationError: empty token.
        NotFoundError: unknown token.
        ForbiddenError: the scanner does not manage this event.
        AlreadyConsumedError: token was already used.
        VoidedError: the registration behind the token was cancelled.
    """
    token = (token or "").strip()
    if not token:
        raise ValidationError("token is required")
    credential = _get_by_token(db, token)
    _check_scanner(credential, scanner_id, is_admin)
    _raise_if_unusable(credential)

    now = _utcnow()
    result = db.execute(
        update(Credential)
        .where(
            Credential.credential_id == credential.credential_id,
            Credential.consumed_at.is_(None),
            Credential.voided_at.is_(None),
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        _raise_if_unusable(_get_by_token(db, token))
        raise AlreadyConsumedError()
    db.commit()

    credential = _get_by_token(db, token)
    registration = credential.registration
    event = registration.event
    logger.info(
        "Checked in student %s at event %s (registration %s)",
        registration.student_id, registration.event_id, registration.registration_id,
    )
    return CheckInResult(
        credential_id=credential.credential_id,
        registration_id=registration.registration_id,
        registration_number=registration.registration_number,
        event_id=event.event_id,
        event_title=event.title,
        student_id=registration.student_id,
        consumed_at=credential.consumed_at,
    )
