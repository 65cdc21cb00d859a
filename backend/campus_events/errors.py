"""Domain and infrastructure error taxonomy.

Every rejected operation raises one of these.  Each error carries a stable
``code`` for clients, a message naming the violated rule, the HTTP status the
API layer renders it with, and whether retrying the unchanged request can help.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable error kinds exposed to API callers."""

    VALIDATION = "validation_error"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    STALE_EVENT = "stale_event"
    EVENT_NOT_OPEN = "event_not_open"
    ALREADY_REGISTERED = "already_registered"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    INVALID_STATE = "invalid_state"
    ALREADY_CONSUMED = "already_consumed"
    VOIDED = "voided"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    TIMEOUT = "timeout"


class DomainError(Exception):
    """Base error with code and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION
    http_status: int = 400
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {"error": self.code.value, "message": self.message, "retryable": self.retryable}


class ValidationError(DomainError):
    """Malformed or missing input."""

    code = ErrorCode.VALIDATION
    http_status = 422


class ForbiddenError(DomainError):
    """Actor lacks the role, or does not own the resource."""

    code = ErrorCode.FORBIDDEN
    http_status = 403


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    http_status = 404

    def __init__(self, entity: str, entity_id: Optional[str] = None) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(DomainError):
    """Requested status change is not an edge of the event state machine."""

    code = ErrorCode.INVALID_TRANSITION
    http_status = 409

    def __init__(self, current: str, target: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"cannot move event from '{current}' to '{target}'")
        self.current = current
        self.target = target


class StaleEventError(InvalidTransitionError):
    """The event changed between read and write."""

    code = ErrorCode.STALE_EVENT

    def __init__(self, current: str, target: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            current,
            target,
            f"event was modified concurrently (expected version {expected_version}, found {actual_version})",
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class EventNotOpenError(DomainError):
    code = ErrorCode.EVENT_NOT_OPEN
    http_status = 409

    def __init__(self, status: str) -> None:
        super().__init__(f"event is not open for registration (status: {status})")
        self.status = status


class AlreadyRegisteredError(DomainError):
    code = ErrorCode.ALREADY_REGISTERED
    http_status = 409

    def __init__(self) -> None:
        super().__init__("already registered for this event")


class CapacityExceededError(DomainError):
    code = ErrorCode.CAPACITY_EXCEEDED
    http_status = 409

    def __init__(self, capacity: int) -> None:
        super().__init__(f"event is full (capacity {capacity})")
        self.capacity = capacity


class InvalidStateError(DomainError):
    code = ErrorCode.INVALID_STATE
    http_status = 409


class AlreadyConsumedError(DomainError):
    code = ErrorCode.ALREADY_CONSUMED
    http_status = 409

    def __init__(self) -> None:
        super().__init__("credential has already been used to check in")


class VoidedError(DomainError):
    code = ErrorCode.VOIDED
    http_status = 409

    def __init__(self) -> None:
        super().__init__("credential is void because its registration was cancelled")


class StorageUnavailableError(DomainError):
    """Storage backend refused or dropped the operation; nothing was committed."""

    code = ErrorCode.STORAGE_UNAVAILABLE
    http_status = 503
    retryable = True


class StorageTimeoutError(DomainError):
    """A persistence call exceeded its time bound; nothing was committed."""

    code = ErrorCode.TIMEOUT
    http_status = 504
    retryable = True
