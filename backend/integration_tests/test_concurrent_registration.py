from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

from academia_world import models, registrations
from academia_world.database import SessionLocal
from academia_world.exceptions import DomainError, DuplicateRegistrationError, EventFullError


def _attempt(event_id: int, user_id: int, barrier: Barrier) -> str:
    db = SessionLocal()
    try:
        user = db.get(models.User, user_id)
        barrier.wait()
        registrations.register_for_event(db, event_id=event_id, user=user)
        return "ok"
    except DomainError as exc:
        return exc.code
    finally:
        db.close()


def _run_concurrently(event_id: int, user_ids: list[int]) -> list[str]:
    barrier = Barrier(len(user_ids))
    with ThreadPoolExecutor(max_workers=len(user_ids)) as pool:
        futures = [pool.submit(_attempt, event_id, user_id, barrier) for user_id in user_ids]
        return [future.result() for future in futures]


def test_concurrent_registrations_never_exceed_capacity(helpers):
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host, capacity=3)
    users = [helpers["make_user"](f"student{i}@test.edu") for i in range(10)]

    outcomes = _run_concurrently(event.id, [user.id for user in users])

    assert outcomes.count("ok") == 3
    assert outcomes.count(EventFullError.code) == 7
    registered = (
        db.query(models.Registration)
        .filter(models.Registration.event_id == event.id, models.Registration.status == "registered")
        .count()
    )
    assert registered == 3


def test_concurrent_duplicate_registrations_yield_one_row(helpers):
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    user = helpers["make_user"]("eager@test.edu")

    outcomes = _run_concurrently(event.id, [user.id] * 5)

    assert outcomes.count("ok") == 1
    assert outcomes.count(DuplicateRegistrationError.code) == 4
    rows = (
        db.query(models.Registration)
        .filter(models.Registration.event_id == event.id, models.Registration.user_id == user.id)
        .count()
    )
    assert rows == 1


def test_register_ban_and_force_delete_over_http(helpers):
    client = helpers["client"]
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    helpers["make_user"]("admin@test.edu", is_admin=True)
    helpers["make_user"]("student@test.edu")
    event = helpers["make_event"](host, capacity=10)
    event_id = event.id

    student_headers = helpers["auth_header"](helpers["login"]("student@test.edu"))
    admin_headers = helpers["auth_header"](helpers["login"]("admin@test.edu"))

    assert client.post(f"/api/events/{event_id}/register", headers=student_headers).status_code == 201
    assert client.post(f"/api/admin/events/{event_id}/ban", json={"reason": "spam"}, headers=admin_headers).status_code == 200
    assert client.delete(f"/api/admin/events/{event_id}/force-delete", headers=admin_headers).status_code == 200

    db.expire_all()
    assert db.query(models.Registration).filter(models.Registration.event_id == event_id).count() == 0
    actions = [row.action for row in db.query(models.AdminLog).order_by(models.AdminLog.id).all()]
    assert actions == ["event_ban", "event_delete"]
