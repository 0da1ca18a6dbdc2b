"""
Shared fixtures.

Every test gets its own in-memory Mongita database, so nothing touches disk
or a real MongoDB server.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from mongita import MongitaClientMemory

from auth import SessionRegistry
from config import Settings
from database import PRIORITIES, Store
from feed import PriorityFeed
from main import create_app
from schemas import Identity

ADMIN_EMAIL = "admin@example.org"
BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store() -> Store:
    client = MongitaClientMemory()
    return Store(client[f"test_{uuid.uuid4().hex}"], client=client)


@pytest.fixture
def feed() -> PriorityFeed:
    return PriorityFeed()


@pytest.fixture
def sessions() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def alice(sessions):
    return sessions.open(Identity(uid="u-alice", email="alice@example.org", displayName="Alice"))


@pytest.fixture
def bob(sessions):
    return sessions.open(Identity(uid="u-bob", email="bob@example.net"))


@pytest.fixture
def admin(sessions):
    return sessions.open(Identity(uid="u-admin", email=ADMIN_EMAIL), admin=True)


@pytest.fixture
def make_priority(store):
    """Insert a priority directly and return its id."""
    counter = {"n": 0}

    def _make(status="approved", votes=0, title=None, created_at=None, **extra):
        counter["n"] += 1
        doc = {
            "title": title or f"Priority {counter['n']}",
            "description": "A description long enough to matter.",
            "category": "Health",
            "status": status,
            "votes": votes,
            "submittedBy": "u-someone",
            "createdAt": created_at or BASE_TIME + timedelta(minutes=counter["n"]),
            **extra,
        }
        return str(store[PRIORITIES].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(admin_emails=frozenset({ADMIN_EMAIL}), environment="development")


@pytest.fixture
def app(settings, store):
    return create_app(settings=settings, store=store)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def identity_headers(uid, email=None, name=None):
    headers = {"X-User-Id": uid}
    if email:
        headers["X-User-Email"] = email
    if name:
        headers["X-User-Name"] = name
    return headers


@pytest.fixture
def sign_in(client):
    """Sign in through the API and return headers carrying the session token."""

    def _sign_in(uid, email=None, name=None, admin=False):
        path = "/api/admin/session" if admin else "/api/session"
        response = client.post(path, headers=identity_headers(uid, email, name))
        assert response.status_code == 200, response.text
        return {"X-Session-Token": response.json()["token"]}

    return _sign_in


class OverrideDb:
    """
    Wrap a database so one collection's methods can be replaced, e.g. to
    simulate another writer racing between a read and a write.
    """

    def __init__(self, db, collection_name, **methods):
        self._db = db
        self._collection_name = collection_name
        self._methods = methods

    def __getitem__(self, name):
        collection = self._db[name]
        if name != self._collection_name:
            return collection
        return _OverrideCollection(collection, self._methods)


class _OverrideCollection:
    def __init__(self, collection, methods):
        self._collection = collection
        self._methods = methods

    def __getattr__(self, name):
        if name in self._methods:
            return self._methods[name]
        return getattr(self._collection, name)
