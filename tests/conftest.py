# tests/conftest.py

"""
Pytest configuration and shared fixtures for testing.
"""

from __future__ import annotations

import os

# Must be set before `basira` is imported.
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from basira.cache import PropertyCache
from basira.db import get_db, session_scope
from basira.main import app
from basira.models import Base, Property, PropertyImage, User
from basira.rate_limit import limiter
from basira.roles import Role
from basira.security import create_access_token
from basira.users import create_user


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    """Test client bound to the in-memory database and a fresh property cache."""

    def _get_test_db():
        with session_scope(session_factory) as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.state.property_cache = PropertyCache()
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def property_cache(client) -> PropertyCache:
    return app.state.property_cache


@pytest.fixture
def make_user(session_factory):
    """Create and commit a user with the given role; returns the detached row."""
    counter = {"n": 0}

    def _make(role: Role = Role.USER, /, *, email: str | None = None, password: str = "secret123", **kwargs) -> User:
        counter["n"] += 1
        with session_scope(session_factory) as session:
            user = create_user(
                session,
                email=email or f"{role.value}{counter['n']}@example.com",
                password=password,
                name=kwargs.pop("name", f"{role.value.title()} {counter['n']}"),
                role=role,
            )
            for key, value in kwargs.items():
                setattr(user, key, value)
        return user

    return _make


@pytest.fixture
def make_property(session_factory):
    """Insert a property directly (bypassing the API and its cache invalidation)."""

    def _make(creator: User, *, approval_status: str = "approved", images: list[str] | None = None, **kwargs) -> Property:
        fields = {
            "title": "Sea view apartment",
            "description": "Bright two-bedroom apartment close to the beach.",
            "property_type": "apartment",
            "listing_status": "for-sale",
            "price": 1_500_000,
        }
        fields.update(kwargs)
        with session_scope(session_factory) as session:
            prop = Property(
                **fields,
                created_by_id=creator.id,
                submitted_by_id=creator.id,
                approval_status=approval_status,
            )
            prop.images = [
                PropertyImage(url=f"https://img.example.com/{pid or idx}.jpg", public_id=pid, sort_order=idx)
                for idx, pid in enumerate(images or [])
            ]
            session.add(prop)
        return prop

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user.id)}"}


class RecordingDeleter:
    """Stand-in for the cloudinary destroy call."""

    def __init__(self, fail_on: tuple[str, ...] = ()) -> None:
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    def __call__(self, *, public_id: str, resource_type: str = "image") -> bool:
        self.calls.append(public_id)
        if public_id in self.fail_on:
            raise RuntimeError(f"storage unavailable for {public_id}")
        return True
