"""Tests for the storage retry and timeout boundary."""
import pytest
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from campus_events.errors import StorageTimeoutError, StorageUnavailableError
from campus_events.services import registration_service, storage
from tests.conftest import make_open_event


def _operational(message: str) -> OperationalError:
    return OperationalError("UPDATE events ...", {}, Exception(message))


@pytest.fixture(autouse=True)
def _fast_backoff(monkeypatch):
    monkeypatch.setattr(storage.settings, "STORAGE_RETRY_BACKOFF_SECONDS", 0.0)
    monkeypatch.setattr(storage.settings, "STORAGE_RETRY_ATTEMPTS", 3)


class TestClassify:
    def test_lock_wait_is_timeout(self):
        assert isinstance(storage.classify(_operational("database is locked")), StorageTimeoutError)

    def test_statement_timeout_is_timeout(self):
        error = storage.classify(_operational("canceling statement due to statement timeout"))
        assert isinstance(error, StorageTimeoutError)
        assert error.retryable

    def test_pool_timeout_is_timeout(self):
        assert isinstance(storage.classify(PoolTimeoutError("QueuePool limit")), StorageTimeoutError)

    def test_connection_refused_is_unavailable(self):
        error = storage.classify(_operational("could not connect to server: Connection refused"))
        assert isinstance(error, StorageUnavailableError)
        assert error.to_dict()["error"] == "storage_unavailable"


class TestCallWithRetry:
    def test_retries_then_succeeds(self, db):
        calls = []

        def flaky(session, value):
            calls.append(value)
            if len(calls) < 3:
                raise _operational("database is locked")
            return value * 2

        assert storage.call_with_retry(db, flaky, 21) == 42
        assert calls == [21, 21, 21]

    def test_gives_up_after_bounded_attempts(self, db):
        calls = []

        def down(session):
            calls.append(1)
            raise _operational("server closed the connection unexpectedly")

        with pytest.raises(StorageUnavailableError):
            storage.call_with_retry(db, down)
        assert len(calls) == 3

    def test_domain_errors_are_not_retried(self, db):
        from campus_events.errors import CapacityExceededError

        calls = []

        def full(session):
            calls.append(1)
            raise CapacityExceededError(10)

        with pytest.raises(CapacityExceededError):
            storage.call_with_retry(db, full)
        assert len(calls) == 1


class TestFaultAfterCommit:
    def test_operation_that_committed_is_not_rerun(self, db):
        calls = []

        def commits_then_fails(session):
            calls.append(1)
            session.commit()
            raise _operational("server closed the connection unexpectedly")

        with pytest.raises(StorageUnavailableError) as excinfo:
            storage.call_with_retry(db, commits_then_fails)
        assert len(calls) == 1
        assert excinfo.value.retryable is False
        assert "committed" in excinfo.value.message

    def test_registration_read_back_failure_is_not_reported_as_duplicate(self, db, monkeypatch):
        event = make_open_event(db)
        real_refresh = db.refresh
        failures = []

        def flaky_refresh(instance, *args, **kwargs):
            if not failures:
                failures.append(instance)
                raise _operational("server closed the connection unexpectedly")
            return real_refresh(instance, *args, **kwargs)

        monkeypatch.setattr(db, "refresh", flaky_refresh)
        with pytest.raises(StorageUnavailableError) as excinfo:
            storage.call_with_retry(db, registration_service.register, event_id=event.event_id, student_id="student-1")
        monkeypatch.undo()

        assert excinfo.value.retryable is False
        assert registration_service.confirmed_count(db, event.event_id) == 1
        assert [r.student_id for r in registration_service.list_for_student(db, "student-1")] == ["student-1"]

    def test_retry_window_resets_between_calls(self, db):
        db.commit()
        attempts = []

        def flaky(session):
            attempts.append(1)
            if len(attempts) == 1:
                raise _operational("database is locked")
            return "done"

        assert storage.call_with_retry(db, flaky) == "done"
        assert len(attempts) == 2
