from datetime import datetime, timedelta, timezone

import pytest

from academia_world import events, models
from academia_world.exceptions import InvalidStatusTransitionError


def test_create_event_is_auto_published(helpers):
    helpers["make_user"]("host@test.edu")
    event = helpers["create_event"](helpers["login"]("host@test.edu"), capacity=30)
    assert event["status"] == "published"
    assert event["capacity"] == 30
    assert event["registered_count"] == 0


def test_create_event_validation(helpers):
    client = helpers["client"]
    helpers["make_user"]("host@test.edu")
    headers = helpers["auth_header"](helpers["login"]("host@test.edu"))
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    start = helpers["future_time"](days=3)

    resp = client.post("/api/events", json={"title": "Past event", "start_date": past}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_event"

    resp = client.post(
        "/api/events",
        json={"title": "Zero seats", "start_date": start.isoformat(), "capacity": 0},
        headers=headers,
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/events",
        json={
            "title": "Backwards",
            "start_date": start.isoformat(),
            "end_date": (start - timedelta(hours=1)).isoformat(),
        },
        headers=headers,
    )
    assert resp.status_code == 400


def test_only_host_can_update(helpers):
    client = helpers["client"]
    helpers["make_user"]("host@test.edu")
    helpers["make_user"]("other@test.edu")
    event = helpers["create_event"](helpers["login"]("host@test.edu"))
    other_headers = helpers["auth_header"](helpers["login"]("other@test.edu"))
    host_headers = helpers["auth_header"](helpers["login"]("host@test.edu"))

    resp = client.put(f"/api/events/{event['id']}", json={"title": "Hijacked"}, headers=other_headers)
    assert resp.status_code == 403

    resp = client.put(f"/api/events/{event['id']}", json={"title": "Renamed colloquium"}, headers=host_headers)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Renamed colloquium"


def test_status_transitions_only_move_forward(helpers):
    client = helpers["client"]
    helpers["make_user"]("host@test.edu")
    headers = helpers["auth_header"](helpers["login"]("host@test.edu"))
    event = helpers["create_event"](helpers["login"]("host@test.edu"))

    resp = client.put(f"/api/events/{event['id']}", json={"status": "completed"}, headers=headers)
    assert resp.status_code == 200

    resp = client.put(f"/api/events/{event['id']}", json={"status": "published"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_status_transition"

    resp = client.put(f"/api/events/{event['id']}", json={"status": "banned"}, headers=headers)
    assert resp.status_code == 422


def test_rejected_transition_leaves_event_untouched(helpers):
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host, status="cancelled", title="Original title")

    with pytest.raises(InvalidStatusTransitionError):
        events.update_event(db, event_id=event.id, user=host, changes={"title": "New title", "status": "draft"})
    db.refresh(event)
    assert event.title == "Original title"
    assert event.status == "cancelled"


def test_soft_delete_hides_event(helpers):
    client = helpers["client"]
    db = helpers["db"]
    helpers["make_user"]("host@test.edu")
    headers = helpers["auth_header"](helpers["login"]("host@test.edu"))
    event = helpers["create_event"](helpers["login"]("host@test.edu"))

    assert client.delete(f"/api/events/{event['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/events/{event['id']}").status_code == 404
    assert client.get("/api/events").json()["total"] == 0
    row = db.get(models.Event, event["id"])
    db.refresh(row)
    assert row.deleted_at is not None


def test_list_events_counts_registrations(helpers):
    client = helpers["client"]
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host, capacity=5)
    helpers["make_event"](host, title="Hidden draft", status="draft")
    user = helpers["make_user"]("a@test.edu")
    db.add(models.Registration(user_id=user.id, event_id=event.id, status="registered"))
    db.commit()

    body = client.get("/api/events").json()
    assert body["total"] == 1
    assert body["items"][0]["registered_count"] == 1


def test_health(helpers):
    assert helpers["client"].get("/api/health").json() == {"status": "ok"}


def test_unexpected_error_keeps_error_envelope(helpers, monkeypatch):
    from fastapi.testclient import TestClient

    from academia_world.api import app

    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)

    def _explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(events, "registered_count", _explode)
    client = TestClient(app, raise_server_exceptions=False)
    resp = client.get(f"/api/events/{event.id}")

    assert resp.status_code == 500
    assert resp.json() == {
        "error": {"code": "internal_error", "message": "An unexpected error occurred."},
        "detail": "An unexpected error occurred.",
    }


@pytest.mark.parametrize(
    "column",
    [
        models.Registration.__table__.c.event_id,
        models.DiscussionForum.__table__.c.event_id,
        models.ForumPost.__table__.c.forum_id,
    ],
)
def test_event_children_cascade_in_the_schema(column):
    (foreign_key,) = column.foreign_keys
    assert foreign_key.ondelete == "CASCADE"
