"""Storage boundary: classify infrastructure faults and retry whole operations.

Service functions run as one transaction each, so an operation that fails with
an infrastructure fault before committing has changed nothing and may be re-run
from the top.  Retries happen here, after the session has been rolled back and
every lock it held has been released, never inside a service function.

A fault raised after the operation committed (while re-reading the result or
writing notifications) is never retried: re-running would apply the operation
a second time.  The caller gets a non-retryable storage error instead.
"""
import logging
import time
from typing import Any, Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from campus_events.config import settings
from campus_events.errors import StorageTimeoutError, StorageUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMEOUT_MARKERS = ("timeout", "timed out", "database is locked", "canceling statement", "lock_not_available")
_COMMITTED = "campus_events.committed"


@event.listens_for(Session, "after_commit")
def _mark_committed(session: Session) -> None:
    session.info[_COMMITTED] = True


def classify(exc: Exception) -> StorageUnavailableError | StorageTimeoutError:
    """Map a SQLAlchemy infrastructure exception onto the public taxonomy."""
    if isinstance(exc, PoolTimeoutError):
        return StorageTimeoutError("timed out waiting for a database connection")
    text = str(getattr(exc, "orig", exc)).lower()
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return StorageTimeoutError("storage operation timed out; nothing was committed")
    return StorageUnavailableError("storage is unavailable; nothing was committed")


def _after_commit_error(error: StorageUnavailableError | StorageTimeoutError):
    error.message = "the operation was committed but its result could not be read; do not retry it"
    error.retryable = False
    return error


def call_with_retry(db: Session, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run ``operation(db, *args, **kwargs)``, retrying infrastructure faults with backoff.

    Only attempts that failed before committing are retried.
    """
    attempts = max(1, settings.STORAGE_RETRY_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        db.info[_COMMITTED] = False
        try:
            return operation(db, *args, **kwargs)
        except (OperationalError, PoolTimeoutError) as exc:
            committed = db.info.get(_COMMITTED, False)
            db.rollback()
            error = classify(exc)
            if committed:
                logger.error("%s failed after committing: %s", operation.__name__, exc)
                raise _after_commit_error(error) from exc
            if attempt == attempts:
                logger.warning("%s failed after %d attempts: %s", operation.__name__, attempt, exc)
                raise error from exc
            delay = settings.STORAGE_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.warning(
                "%s hit %s (attempt %d/%d); retrying in %.3fs",
                operation.__name__, error.code.value, attempt, attempts, delay,
            )
            time.sleep(delay)
        except DBAPIError as exc:
            if not exc.connection_invalidated:
                raise
            committed = db.info.get(_COMMITTED, False)
            db.rollback()
            error = StorageUnavailableError("storage connection was lost; nothing was committed")
            raise (_after_commit_error(error) if committed else error) from exc
    raise AssertionError("unreachable")
