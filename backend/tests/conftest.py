import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("EMAIL_ENABLED", "false")

from academia_world import auth, email_service, models
from academia_world.api import app
from academia_world.database import Base, engine, get_db, SessionLocal


@pytest.fixture(scope="session", autouse=True)
def _ensure_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def sent_emails(monkeypatch):
    sent = []

    def _fake_send(to_email, template_name, template_data, context=None):
        sent.append({"to": to_email, "template": template_name, "data": template_data, "context": context or {}})
        return True

    monkeypatch.setattr(email_service, "send_templated_email", _fake_send)
    return sent


@pytest.fixture()
def helpers(client, db_session):
    def make_user(email: str, password: str = "password123", **fields) -> models.User:
        fields.setdefault("account_status", "active")
        fields.setdefault("first_name", email.split("@")[0].title())
        user = models.User(email=email, password_hash=auth.get_password_hash(password), **fields)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    def make_admin(email: str = "admin@test.edu", password: str = "admin12345") -> models.User:
        return make_user(email, password, is_admin=True)

    def login(email: str, password: str = "password123") -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def auth_header(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def future_time(days: int = 0, hours: int = 0, minutes: int = 0) -> datetime:
        if not (days or hours or minutes):
            days = 7
        return datetime.now(timezone.utc) + timedelta(days=days, hours=hours, minutes=minutes)

    def make_event(host: models.User, **fields) -> models.Event:
        fields.setdefault("title", "Graph Theory Colloquium")
        fields.setdefault("start_date", future_time(days=7))
        fields.setdefault("location", "Room 101")
        event = models.Event(host_id=host.id, **fields)
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)
        return event

    def create_event(token: str, **fields) -> dict:
        payload = {
            "title": "Graph Theory Colloquium",
            "description": "Invited talks",
            "start_date": future_time(days=7).isoformat(),
            "location": "Room 101",
        }
        payload.update(fields)
        resp = client.post("/api/events", json=payload, headers=auth_header(token))
        assert resp.status_code == 201, resp.text
        return resp.json()

    return {
        "client": client,
        "db": db_session,
        "make_user": make_user,
        "make_admin": make_admin,
        "login": login,
        "auth_header": auth_header,
        "future_time": future_time,
        "make_event": make_event,
        "create_event": create_event,
    }
