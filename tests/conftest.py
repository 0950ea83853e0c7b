"""
Conevent - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from bson import ObjectId
from faker import Faker
from fastapi.testclient import TestClient

# Set testing environment before the application modules read it
os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret-key-for-testing"
os.environ["EXIT_ON_UNHANDLED"] = "false"
os.environ["FRONTEND_URL"] = "http://frontend.test"

from database import ensure_indexes, get_db  # noqa: E402
from live import ConnectionRegistry  # noqa: E402
from main import app  # noqa: E402
from security import create_access_token  # noqa: E402

fake = Faker()

PASSWORD = "testpassword123"


@pytest.fixture
def db():
    """Fresh in-memory database with the production indexes"""
    mongo = mongomock.MongoClient(tz_aware=True)
    database = mongo["conevent_test"]
    ensure_indexes(database)
    yield database
    mongo.drop_database("conevent_test")


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.state.live = ConnectionRegistry()
    # https so the secure session cookie is sent back
    with_client = TestClient(app, base_url="https://testserver")
    yield with_client
    app.dependency_overrides.clear()


def auth_headers(db, user: dict) -> dict:
    account = db["account"].find_one({"_id": ObjectId(user["id"])})
    return {"Authorization": f"Bearer {create_access_token(account)}"}


@pytest.fixture
def make_user(client, db):
    """Sign up through the API with a separate cookie jar; returns the public user plus bearer headers"""

    def _make(role: str = "student", email: str = None, name: str = None) -> dict:
        response = TestClient(app, base_url="https://testserver").post(
            "/api/auth/signup",
            json={
                "name": name or fake.name(),
                "email": email or fake.unique.email(),
                "password": PASSWORD,
                "role": role,
            },
        )
        assert response.status_code == 201, response.text
        user = response.json()["user"]
        return {**user, "headers": auth_headers(db, user)}

    return _make


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def university(make_user):
    return make_user("university", name="Northfield University")


@pytest.fixture
def event_body():
    return {
        "title": "Open Day",
        "description": "Campus tour and talks",
        "date": (datetime.now(timezone.utc) + timedelta(days=14)).isoformat(),
        "location": "Main Hall",
        "media": ["https://cdn.example.com/open-day.jpg"],
    }


@pytest.fixture
def create_event(client, event_body):
    def _create(owner: dict, **overrides) -> dict:
        response = client.post("/api/events", json={**event_body, **overrides}, headers=owner["headers"])
        assert response.status_code == 201, response.text
        return response.json()["event"]

    return _create
