from datetime import datetime, timedelta, timezone

from academia_world import models
from academia_world.task_queue import JOB_TYPE_SEND_EMAIL_VERIFICATION, process_job


def _signup(client, email="new@test.edu", password="password123"):
    return client.post(
        "/register",
        json={"email": email, "password": password, "first_name": "Emmy", "last_name": "Noether"},
    )


def test_signup_creates_pending_user_and_queues_verification(helpers, sent_emails):
    client = helpers["client"]
    db = helpers["db"]

    resp = _signup(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["account_status"] == "pending"
    assert body["is_admin"] is False

    job = db.query(models.BackgroundJob).filter(models.BackgroundJob.job_type == JOB_TYPE_SEND_EMAIL_VERIFICATION).one()
    assert job.payload["user_id"] == body["id"]
    assert sent_emails == []

    process_job(db, job)
    assert len(sent_emails) == 1
    assert sent_emails[0]["template"] == "email_verification"
    assert job.payload["token"] in sent_emails[0]["data"]["verification_url"]


def test_verify_email_activates_account_once(helpers):
    client = helpers["client"]
    db = helpers["db"]
    user_id = _signup(client).json()["id"]
    token = db.query(models.EmailVerificationToken).filter(models.EmailVerificationToken.user_id == user_id).one()

    resp = client.post("/verify-email", json={"token": token.token})
    assert resp.status_code == 200
    assert resp.json()["account_status"] == "active"
    user = db.get(models.User, user_id)
    db.refresh(user)
    assert user.email_verified_at is not None

    resp = client.post("/verify-email", json={"token": token.token})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_verification_token"


def test_expired_verification_token_is_rejected(helpers):
    client = helpers["client"]
    db = helpers["db"]
    user_id = _signup(client).json()["id"]
    token = db.query(models.EmailVerificationToken).filter(models.EmailVerificationToken.user_id == user_id).one()
    token.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()

    resp = client.post("/verify-email", json={"token": token.token})
    assert resp.status_code == 400


def test_signup_rejects_taken_email(helpers):
    client = helpers["client"]
    assert _signup(client, email="dup@test.edu").status_code == 201

    resp = _signup(client, email="DUP@test.edu")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "email_taken"


def test_signup_validates_password(helpers):
    resp = _signup(helpers["client"], password="short")
    assert resp.status_code == 422


def test_login_and_me(helpers):
    client = helpers["client"]
    helpers["make_user"]("user@test.edu")

    bad = client.post("/login", json={"email": "user@test.edu", "password": "wrong-pass1"})
    assert bad.status_code == 401
    assert bad.json()["error"]["code"] == "http_401"

    token = helpers["login"]("user@test.edu")
    resp = client.get("/me", headers=helpers["auth_header"](token))
    assert resp.status_code == 200
    assert resp.json()["email"] == "user@test.edu"


def test_me_requires_valid_token(helpers):
    client = helpers["client"]
    assert client.get("/me").status_code == 401
    assert client.get("/me", headers=helpers["auth_header"]("not-a-jwt")).status_code == 401


def test_request_id_is_echoed(helpers):
    resp = helpers["client"].get("/", headers={"X-Request-ID": "req-123"})
    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "req-123"
