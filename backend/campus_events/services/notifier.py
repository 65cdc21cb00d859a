"""Best-effort notification dispatcher.

Notifications are written after the core operation has committed.  A failure
here is logged and dropped; it can never undo or block the operation that
triggered it.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from campus_events.models.notification import Notification, NotificationKind

logger = logging.getLogger(__name__)

DeliveryHook = Callable[[Notification], None]

_hooks: list[DeliveryHook] = []


def register_hook(hook: DeliveryHook) -> None:
    """Register an outbound delivery channel (email, push, socket...)."""
    _hooks.append(hook)


def clear_hooks() -> None:
    _hooks.clear()


def notify(
    db: Session,
    kind: NotificationKind,
    title: str,
    message: str,
    recipient_id: Optional[str] = None,
    recipient_role: Optional[str] = None,
    event_id: Optional[str] = None,
) -> Optional[Notification]:
    """Persist a notification and hand it to delivery hooks. Never raises."""
    try:
        notification = Notification(
            recipient_id=recipient_id,
            recipient_role=recipient_role,
            kind=kind,
            title=title,
            message=message,
            event_id=event_id,
        )
        db.add(notification)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to store %s notification for event %s", kind.value, event_id)
        return None

    for hook in list(_hooks):
        try:
            hook(notification)
        except Exception:
            logger.exception("Notification hook %r failed for %s", hook, notification.notification_id)
    return notification
