# tests/conftest.py
"""
Shared fixtures: an in-memory SQLite database per test, a TestClient wired
to it, and small factories for users, devices and needs.
"""
from __future__ import annotations

import os

# Must be set before db.py builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from db import get_session
from main import app
from models import Device, Need, User
from routers.auth import create_session_token, hash_password


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Point the client's session cookie at ``user`` acting as ``role``."""
    def _login(user: User, role: str) -> TestClient:
        client.cookies.set("session", create_session_token(user.id, role))
        return client

    return _login


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make_user(**kwargs) -> User:
        counter["n"] += 1
        kwargs.setdefault("email", f"user{counter['n']}@example.com")
        kwargs.setdefault("name", f"User {counter['n']}")
        kwargs.setdefault("password_hash", hash_password("secret"))
        user = User(**kwargs)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def donor(make_user):
    return make_user(name="Dana Donor", is_donor=True, is_verified=True)


@pytest.fixture
def school(make_user):
    return make_user(name="Hillside School", is_school=True, is_verified=True)


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", is_admin=True, is_verified=True)


@pytest.fixture
def make_device(session):
    def _make_device(donor: User, **kwargs) -> Device:
        kwargs.setdefault("name", "ThinkPad T480")
        kwargs.setdefault("device_type", "Laptop")
        kwargs.setdefault("condition", "used-good")
        kwargs.setdefault("status", "approved")
        device = Device(donor_id=donor.id, **kwargs)
        session.add(device)
        session.commit()
        session.refresh(device)
        return device

    return _make_device


@pytest.fixture
def make_need(session):
    def _make_need(school: User, **kwargs) -> Need:
        kwargs.setdefault("device_type", "Laptop")
        kwargs.setdefault("priority", "medium")
        need = Need(school_id=school.id, **kwargs)
        session.add(need)
        session.commit()
        session.refresh(need)
        return need

    return _make_need


@pytest.fixture
def device(make_device, donor):
    return make_device(donor)
