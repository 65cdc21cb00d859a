"""Notifications are best-effort: written after commit, never able to undo it."""
from campus_events.models.notification import Notification, NotificationKind
from campus_events.services import notifier, registration_service
from tests.conftest import ADMIN, ORGANIZER, auth, create_test_event, make_open_event, student


class TestLifecycleNotifications:
    def test_submit_notifies_admins(self, client):
        event = create_test_event(client, title="Poetry Slam")
        client.post(f"/api/events/{event['event_id']}/submit", headers=ORGANIZER)

        resp = client.get("/api/notifications/", headers=ADMIN)
        assert resp.status_code == 200
        kinds = [(n["kind"], n["event_id"]) for n in resp.json()]
        assert ("new_event", event["event_id"]) in kinds

        # Addressed to the admin role, not to organizers
        assert client.get("/api/notifications/", headers=ORGANIZER).json() == []

    def test_review_outcome_notifies_organizer(self, client):
        event = create_test_event(client)
        client.post(f"/api/events/{event['event_id']}/submit", headers=ORGANIZER)
        client.post(f"/api/events/{event['event_id']}/request-changes", headers=ADMIN, json={"note": "add poster"})

        notes = client.get("/api/notifications/", headers=ORGANIZER).json()
        assert len(notes) == 1
        assert notes[0]["kind"] == "changes_requested"
        assert "add poster" in notes[0]["message"]

    def test_registration_and_cancellation_notify_student(self, client):
        event = create_test_event(client)
        client.post(f"/api/events/{event['event_id']}/submit", headers=ORGANIZER)
        client.post(f"/api/events/{event['event_id']}/approve", headers=ADMIN)
        client.post(f"/api/events/{event['event_id']}/register", headers=student(1))
        client.post(f"/api/events/{event['event_id']}/cancel", headers=ADMIN, json={"cancel_reason": "Venue flooded"})

        kinds = {n["kind"] for n in client.get("/api/notifications/", headers=student(1)).json()}
        assert kinds == {"registration_confirmed", "event_cancelled"}
        organizer_kinds = {n["kind"] for n in client.get("/api/notifications/", headers=ORGANIZER).json()}
        assert "event_cancelled" in organizer_kinds

    def test_mark_read(self, client):
        event = create_test_event(client)
        client.post(f"/api/events/{event['event_id']}/submit", headers=ORGANIZER)
        client.post(f"/api/events/{event['event_id']}/approve", headers=ADMIN)
        note = client.get("/api/notifications/", headers=ORGANIZER).json()[0]

        assert client.post(f"/api/notifications/{note['notification_id']}/read", headers=student(3)).status_code == 403
        resp = client.post(f"/api/notifications/{note['notification_id']}/read", headers=ORGANIZER)
        assert resp.status_code == 200
        assert resp.json()["read"] is True
        assert client.get("/api/notifications/?unread_only=true", headers=ORGANIZER).json() == []

    def test_mark_read_unknown(self, client):
        resp = client.post("/api/notifications/missing/read", headers=auth("x", "student"))
        assert resp.status_code == 404


class TestNotifierFailures:
    def test_failing_hook_does_not_block_registration(self, db):
        event = make_open_event(db)
        delivered = []

        def _broken(notification):
            raise RuntimeError("smtp down")

        notifier.register_hook(_broken)
        notifier.register_hook(delivered.append)

        registration = registration_service.register(db, event.event_id, "student-1")
        assert registration.status.value == "confirmed"
        assert [n.kind for n in delivered] == [NotificationKind.registration_confirmed]

    def test_storage_failure_does_not_roll_back_registration(self, db, monkeypatch):
        event = make_open_event(db)

        def _explode(**kwargs):
            raise RuntimeError("notification table unavailable")

        monkeypatch.setattr(notifier, "Notification", _explode)
        registration = registration_service.register(db, event.event_id, "student-1")

        assert registration_service.confirmed_count(db, event.event_id) == 1
        assert registration.credential is not None
        monkeypatch.undo()
        assert db.query(Notification).filter(Notification.recipient_id == "student-1").count() == 0
