"""Registration API routes."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_events.database import get_db
from campus_events.routers.deps import Actor, Role, get_actor, require_role
from campus_events.schemas.registration import RegistrationCancelOut, RegistrationOut
from campus_events.services import registration_service, storage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/my", response_model=list[RegistrationOut])
def my_registrations(actor: Actor = Depends(require_role(Role.student)), db: Session = Depends(get_db)):
    """The calling student's registrations, newest first."""
    return registration_service.list_for_student(db, actor.actor_id)


@router.delete("/{registration_id}", response_model=RegistrationCancelOut)
def cancel_registration(registration_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    """Cancel a registration.  Repeating the call is a no-op reported with ``cancelled_now: false``."""
    registration, cancelled_now = storage.call_with_retry(
        db,
        registration_service.cancel,
        registration_id=registration_id,
        student_id=actor.actor_id,
        administrative=actor.is_admin,
    )
    return RegistrationCancelOut(
        registration=RegistrationOut.model_validate(registration),
        cancelled_now=cancelled_now,
    )
