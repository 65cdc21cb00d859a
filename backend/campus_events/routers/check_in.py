"""Gate check-in route."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_events.database import get_db
from campus_events.routers.deps import Actor, Role, require_role
from campus_events.schemas.registration import CheckInOut, CheckInRequest
from campus_events.services import credential_service, storage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=CheckInOut)
def check_in(
    payload: CheckInRequest,
    actor: Actor = Depends(require_role(Role.organizer, Role.admin)),
    db: Session = Depends(get_db),
):
    """Consume a scanned credential for an event the caller manages and return who it belongs to."""
    result = storage.call_with_retry(
        db, credential_service.check_in,
        token=payload.token, scanner_id=actor.actor_id, is_admin=actor.is_admin,
    )
    logger.info("Credential %s scanned by %s", result.credential_id, actor.actor_id)
    return result
