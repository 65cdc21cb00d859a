"""Concurrency properties — one session per thread against a shared SQLite file.

SQLite serializes writers; the conditional UPDATEs in the services are what
keep the invariants, exactly as row locks would on PostgreSQL.
"""
import threading
from datetime import date
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import func

from campus_events.errors import DomainError
from campus_events.models.credential import Credential
from campus_events.models.event import EventStatus
from campus_events.models.registration import Registration, RegistrationStatus
from campus_events.services import credential_service, lifecycle_service, registration_service
from tests.conftest import ADMIN_ID, ORGANIZER_ID, make_open_event


def _race(session_factory, calls):
    """Run each callable(session) on its own thread and session, released together."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        session = session_factory()
        try:
            barrier.wait()
            return call(session)
        except DomainError as exc:
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


def _outcome(result):
    return type(result).__name__ if isinstance(result, DomainError) else "ok"


def _confirmed_rows(db, event_id):
    return db.query(func.count(Registration.registration_id)).filter(
        Registration.event_id == event_id,
        Registration.status == RegistrationStatus.confirmed,
    ).scalar()


class TestRegistrationRaces:
    def test_capacity_one_two_students(self, db, session_factory):
        event = make_open_event(db, capacity=1)
        results = _race(session_factory, [
            lambda s: registration_service.register(s, event.event_id, "student-a"),
            lambda s: registration_service.register(s, event.event_id, "student-b"),
        ])
        assert sorted(_outcome(r) for r in results) == ["CapacityExceededError", "ok"]
        db.expire_all()
        assert _confirmed_rows(db, event.event_id) == 1

    def test_capacity_never_exceeded(self, db, session_factory):
        event = make_open_event(db, capacity=5)
        calls = [
            (lambda n: lambda s: registration_service.register(s, event.event_id, f"student-{n}"))(n)
            for n in range(12)
        ]
        results = _race(session_factory, calls)
        outcomes = [_outcome(r) for r in results]
        assert outcomes.count("ok") == 5
        assert outcomes.count("CapacityExceededError") == 7

        db.expire_all()
        assert _confirmed_rows(db, event.event_id) == 5
        assert registration_service.confirmed_count(db, event.event_id) == 5
        assert db.query(func.count(Credential.credential_id)).scalar() == 5

    def test_same_student_twice(self, db, session_factory):
        event = make_open_event(db, capacity=10)
        results = _race(session_factory, [
            lambda s: registration_service.register(s, event.event_id, "student-a"),
            lambda s: registration_service.register(s, event.event_id, "student-a"),
        ])
        assert sorted(_outcome(r) for r in results) == ["AlreadyRegisteredError", "ok"]
        db.expire_all()
        assert _confirmed_rows(db, event.event_id) == 1
        assert registration_service.confirmed_count(db, event.event_id) == 1

    def test_concurrent_cancel_effects_once(self, db, session_factory):
        event = make_open_event(db, capacity=3)
        registration = registration_service.register(db, event.event_id, "student-a")
        registration_service.register(db, event.event_id, "student-b")
        results = _race(session_factory, [
            lambda s: registration_service.cancel(s, registration.registration_id, "student-a"),
            lambda s: registration_service.cancel(s, registration.registration_id, "student-a"),
        ])
        assert sorted(effected for _, effected in results) == [False, True]
        db.expire_all()
        assert registration_service.confirmed_count(db, event.event_id) == 1


class TestCheckInRace:
    def test_simultaneous_scans(self, db, session_factory):
        event = make_open_event(db)
        token = registration_service.register(db, event.event_id, "student-a").credential.token
        results = _race(session_factory, [
            lambda s: credential_service.check_in(s, token),
            lambda s: credential_service.check_in(s, token),
        ])
        assert sorted(_outcome(r) for r in results) == ["AlreadyConsumedError", "ok"]


class TestReviewRace:
    def test_approve_vs_request_changes(self, db, session_factory):
        event = lifecycle_service.create_event(
            db, organizer_id=ORGANIZER_ID, title="Film Club", capacity=40,
            venue="AV Room", event_date=date(2030, 2, 2), rulebook_ref="r.pdf",
        )
        lifecycle_service.submit_for_review(db, event.event_id, ORGANIZER_ID)

        results = _race(session_factory, [
            lambda s: lifecycle_service.approve(s, event.event_id, ADMIN_ID),
            lambda s: lifecycle_service.request_changes(s, event.event_id, "admin-2", "fix venue"),
        ])
        assert sorted(_outcome(r) for r in results) == ["InvalidTransitionError", "ok"]

        db.expire_all()
        final = lifecycle_service.get_event(db, event.event_id)
        assert final.status in (EventStatus.approved, EventStatus.changes_requested)
        transitions = lifecycle_service.list_transitions(db, event.event_id)
        assert [(t.from_status, t.to_status) for t in transitions] == [
            (EventStatus.draft, EventStatus.pending),
            (EventStatus.pending, final.status),
        ]
