"""Shared pytest fixtures: an in-memory database, a test client and users."""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import store
from auth import get_token_manager
from main import app

PASSWORD = "7Q5su!ommtvgNvoQ"
OTHER_PASSWORD = "Zx9$ponmlkjihgfE"


@pytest.fixture(autouse=True)
def db():
    """Fresh in-memory database for every test."""
    database.connect(name="todo_api_test", mongo_client=mongomock.MongoClient())
    yield database.get_db()
    database.disconnect()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def tokens():
    return get_token_manager()


@pytest.fixture
def user():
    return store.create_user("first@example.com", PASSWORD)


@pytest.fixture
def other_user():
    return store.create_user("second@example.com", OTHER_PASSWORD)


@pytest.fixture
def token(user, tokens):
    return tokens.issue(user)


@pytest.fixture
def headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers(other_user, tokens):
    return {"Authorization": f"Bearer {tokens.issue(other_user)}"}
