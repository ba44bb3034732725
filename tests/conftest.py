"""Shared pytest fixtures for Philia Hub."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from philiahub import api, crud, database, storage
from philiahub.integrations import LogEmailSender
from philiahub.models import Base, User
from philiahub.permissions import Principal
from philiahub.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.DATABASE_URL = str(engine.url)
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(autouse=True)
def fresh_collaborators(monkeypatch):
    """Give every test its own rate limiter and an in-memory outbox."""

    outbox = LogEmailSender()
    monkeypatch.setattr(api, "limiter", api.RateLimiter())
    monkeypatch.setattr(api, "email_sender", outbox)
    return outbox


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture()
def make_user(session):
    counter = {"value": 0}

    def _make_user(
        *,
        email: str | None = None,
        name: str = "Test Member",
        role: str = "member",
        verified: bool = True,
        password: str | None = None,
    ) -> User:
        counter["value"] += 1
        user = User(
            email=email or f"member{counter['value']}@example.com",
            name=name,
            role=role,
            email_verified_at=utcnow() if verified else None,
            password_hash=crud.hash_password(password) if password else None,
        )
        crud.issue_api_token(user)
        session.add(user)
        session.commit()
        return user

    return _make_user


def event_fields(**overrides):
    start = utcnow().replace(microsecond=0) + timedelta(days=7)
    fields = {
        "title": "Queer Book Club",
        "starts_at": start,
        "ends_at": start + timedelta(hours=2),
        "place_id": "place-123",
        "formatted_address": "123 Woodward Ave, Detroit, MI",
        "latitude": 42.3314,
        "longitude": -83.0458,
        "short_description": "Monthly meetup to talk about the book we read.",
        "types": ["social"],
        "tags": ["books"],
    }
    fields.update(overrides)
    return fields


@pytest.fixture()
def make_event(session, make_user):
    def _make_event(organizer: User | None = None, **overrides):
        organizer = organizer or make_user(name="Organizer")
        event = crud.create_event(
            session, Principal.from_user(organizer), **event_fields(**overrides)
        )
        session.commit()
        return event

    return _make_event


@pytest.fixture()
def auth_headers():
    def _auth_headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {user.api_token}"}

    return _auth_headers


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with the scheduler disabled."""

    from fastapi.testclient import TestClient

    monkeypatch.setattr(api, "start_scheduler", lambda *_: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client
