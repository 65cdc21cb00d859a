"""Notification API routes."""
import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from campus_events.database import get_db
from campus_events.errors import ForbiddenError, NotFoundError
from campus_events.models.notification import Notification
from campus_events.routers.deps import Actor, get_actor
from campus_events.schemas.notification import NotificationOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=list[NotificationOut])
def list_notifications(
    unread_only: bool = Query(False),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Notifications addressed to the caller or broadcast to the caller's role."""
    query = db.query(Notification).filter(
        or_(Notification.recipient_id == actor.actor_id, Notification.recipient_role == actor.role.value)
    )
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc()).all()


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification", notification_id)
    if notification.recipient_id != actor.actor_id and notification.recipient_role != actor.role.value:
        raise ForbiddenError("This notification is addressed to someone else")
    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification
