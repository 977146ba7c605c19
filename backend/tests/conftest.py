# backend/tests/conftest.py
import os

# Settings are read at import time; keep tests off real providers and the on-disk database
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["REPLICATE_API_TOKEN"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from planwise.db import Base, get_db
from planwise.main import app
from planwise.models import User
from planwise.routers.auth import User as AuthenticatedUser, get_current_user


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    engine.dispose()


def _create_user(factory, **fields):
    db = factory()
    try:
        user = User(password_hash="not-a-real-hash", email=f"{fields['username']}@example.com", **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        db.expunge(user)
        return user
    finally:
        db.close()


@pytest.fixture
def teacher(session_factory):
    return _create_user(session_factory, username="teacher", credits=5)


@pytest.fixture
def other_teacher(session_factory):
    return _create_user(session_factory, username="other", credits=5)


@pytest.fixture
def make_user(session_factory):
    def _make(username, **fields):
        return _create_user(session_factory, username=username, **fields)
    return _make


@pytest.fixture
def acting_as():
    """Mutable username the overridden auth dependency resolves to."""
    return {"username": "teacher"}


@pytest.fixture
def client(session_factory, teacher, acting_as):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedUser(username=acting_as["username"])
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fetch_user(session_factory):
    def _fetch(username):
        db = session_factory()
        try:
            return db.query(User).filter(User.username == username).one()
        finally:
            db.close()
    return _fetch
