import itertools
import os
import tempfile
from types import SimpleNamespace

# Settings are read at import time, so the test database must be chosen first
_db_dir = tempfile.mkdtemp(prefix="tabletop-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["REDIS_EVENTS_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

import tabletop.models  # noqa: F401
from tabletop.core.database import Base, SessionLocal, engine
from tabletop.main import app
from tabletop.models.participant import ROLE_PARTICIPANT, Participant
from tabletop.models.user import User
from tabletop.services import sessions as session_service

Base.metadata.create_all(bind=engine)


def _clear_tables():
    with SessionLocal() as db:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()


@pytest.fixture(autouse=True)
def clean_tables():
    _clear_tables()
    yield
    _clear_tables()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(username=None):
        user = User(username=username or f"player{next(counter)}", password_hash="!", hash_type="bcrypt")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_session(db):
    def _make(owner, name="Table", visibility="private"):
        return session_service.create_session(db, owner.id, name, visibility)

    return _make


@pytest.fixture
def add_participant(db):
    def _add(session, user, role=ROLE_PARTICIPANT):
        participant = Participant(session_id=session.id, user_id=user.id, role=role)
        db.add(participant)
        db.commit()
        return participant

    return _add


@pytest.fixture
def register(client):
    """Register through the API; returns id, token and auth headers."""

    def _register(username, password="pass123"):
        response = client.post("/auth/register", json={"username": username, "password": password})
        assert response.status_code == 200
        token = response.json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}
        me = client.get("/auth/me", headers=headers)
        assert me.status_code == 200
        return SimpleNamespace(id=me.json()["id"], username=username, token=token, headers=headers)

    return _register
