"""Pytest fixtures — throwaway SQLite database per test."""
from datetime import date, time

import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from campus_events.database import Base, build_engine, get_db
from campus_events.main import app
from campus_events.services import lifecycle_service, notifier

# Import all models so they register with Base.metadata
import campus_events.models  # noqa: F401

ORGANIZER_ID = "organizer-1"
ADMIN_ID = "admin-1"


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a fresh SQLite engine (WAL, busy timeout) for each test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session_factory):
    """FastAPI TestClient with the database dependency overridden to use SQLite."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_notification_hooks():
    yield
    notifier.clear_hooks()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def auth(actor_id: str, role: str) -> dict:
    """Identity headers as forwarded by the auth gateway."""
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


def student(n: int) -> dict:
    return auth(f"student-{n}", "student")


ORGANIZER = auth(ORGANIZER_ID, "organizer")
ADMIN = auth(ADMIN_ID, "admin")


def event_payload(**overrides) -> dict:
    payload = {
        "title": "Robotics Hackathon",
        "capacity": 50,
        "description": "24h build sprint",
        "category": "Technical",
        "venue": "Main Auditorium",
        "date": "2030-03-14",
        "time": "10:00:00",
        "end_time": "18:00:00",
        "rulebook_ref": "docs/rulebook-123.pdf",
    }
    payload.update(overrides)
    return payload


def create_test_event(client: TestClient, headers: dict = ORGANIZER, **overrides) -> dict:
    """Helper — POST /api/events and return response JSON."""
    resp = client.post("/api/events/", json=event_payload(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def open_test_event(client: TestClient, **overrides) -> dict:
    """Helper — create, submit and approve an event; return the approved event JSON."""
    event = create_test_event(client, **overrides)
    resp = client.post(f"/api/events/{event['event_id']}/submit", headers=ORGANIZER)
    assert resp.status_code == 200, resp.text
    resp = client.post(f"/api/events/{event['event_id']}/approve", headers=ADMIN)
    assert resp.status_code == 200, resp.text
    return resp.json()


def make_open_event(db, capacity: int = 10, **fields):
    """Helper — build an approved event directly through the lifecycle service."""
    event = lifecycle_service.create_event(
        db,
        organizer_id=ORGANIZER_ID,
        title=fields.pop("title", "Open Mic Night"),
        capacity=capacity,
        venue=fields.pop("venue", "Amphitheatre"),
        event_date=fields.pop("event_date", date(2030, 5, 1)),
        start_time=fields.pop("start_time", time(18, 0)),
        end_time=fields.pop("end_time", time(21, 0)),
        rulebook_ref=fields.pop("rulebook_ref", "docs/rules.pdf"),
        **fields,
    )
    lifecycle_service.submit_for_review(db, event.event_id, ORGANIZER_ID)
    return lifecycle_service.approve(db, event.event_id, ADMIN_ID)
