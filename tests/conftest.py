"""
Shared fixtures.

Tests never touch a real MongoDB or SMTP server: the store is mongomock and
the reset-email sender is a recorder that can be told to fail.
"""

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, get_db


class RecordingSender:
    """Stands in for the SMTP sender."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def __call__(self, email, token):
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append((email, token))


@pytest.fixture
def db():
    database = mongomock.MongoClient()["finance_tracker_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def app(db, sender):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_mail_sender] = lambda: sender
    yield main.app
    main.app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


def signed_up_client(app, name, email, password="secret123"):
    client = TestClient(app)
    response = client.post("/api/auth/signup", json={"name": name, "email": email, "password": password})
    assert response.status_code == 200, response.text
    client.user_id = response.json()["user"]["id"]
    return client


@pytest.fixture
def alice(app):
    return signed_up_client(app, "Alice", "alice@example.com")


@pytest.fixture
def bob(app):
    return signed_up_client(app, "Bob", "bob@example.com")
