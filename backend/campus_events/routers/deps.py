"""Identity claims forwarded by the authentication gateway."""
import enum
from dataclasses import dataclass

from fastapi import Depends, Header

from campus_events.errors import ForbiddenError, ValidationError


class Role(str, enum.Enum):
    student = "student"
    organizer = "organizer"
    admin = "admin"


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin


def get_actor(
    x_actor_id: str = Header(..., description="Stable user id from the identity provider"),
    x_actor_role: str = Header(..., description="Role claim: student, organizer or admin"),
) -> Actor:
    if not x_actor_id.strip():
        raise ValidationError("X-Actor-Id header is empty")
    try:
        role = Role(x_actor_role.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {x_actor_role}")
    return Actor(actor_id=x_actor_id.strip(), role=role)


def require_role(*roles: Role):
    """Dependency factory restricting a route to the given roles."""

    def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise ForbiddenError(f"This action requires one of the roles: {allowed}")
        return actor

    return _check
