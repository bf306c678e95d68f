"""
Shared fixtures: an in-memory Mongo (mongomock-motor), seeded admin/client
sessions and a recording push transport, wired into the FastAPI app.
"""
import asyncio
import json
from datetime import datetime, timezone, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from server import app
from database import get_db
from models.user import User
from services.push_client import PushClient, get_push_client

ADMIN_ID = "user_admin01"
CLIENT_ID = "user_client01"
ADMIN_TOKEN = "sess_admin_test"
CLIENT_TOKEN = "sess_client_test"


def run(coro):
    """Drive a coroutine from a sync test"""
    return asyncio.run(coro)


async def _seed(db):
    now = datetime.now(timezone.utc)
    expires = (now + timedelta(days=7)).isoformat()
    await db.users.insert_many([
        {"user_id": ADMIN_ID, "email": "admin@gmail.com", "name": "Test Admin", "role": "admin",
         "created_at": now.isoformat(), "fcm_tokens": []},
        {"user_id": CLIENT_ID, "email": "jane.doe@gmail.com", "name": "Jane Doe", "role": "client",
         "created_at": now.isoformat(), "fcm_tokens": []},
    ])
    await db.user_sessions.insert_many([
        {"user_id": ADMIN_ID, "session_token": ADMIN_TOKEN, "expires_at": expires, "created_at": now.isoformat()},
        {"user_id": CLIENT_ID, "session_token": CLIENT_TOKEN, "expires_at": expires, "created_at": now.isoformat()},
    ])


class RecordingPush:
    """httpx.MockTransport handler that records payloads and answers like the push service"""

    def __init__(self, success=1, failure=0, status_code=200):
        self.requests = []
        self.success = success
        self.failure = failure
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return httpx.Response(
            self.status_code,
            json={"stats": {"total_success": self.success, "total_failure": self.failure}}
        )


@pytest.fixture
def db():
    database = AsyncMongoMockClient()["event_admin_test"]
    run(_seed(database))
    return database


@pytest.fixture
def push_recorder():
    return RecordingPush()


@pytest.fixture
def push_client(push_recorder):
    return PushClient(url="http://push.test/api/notifications/send", transport=httpx.MockTransport(push_recorder))


@pytest.fixture
def admin_user():
    return User(user_id=ADMIN_ID, email="admin@gmail.com", name="Test Admin", role="admin")


@pytest.fixture
def client_user():
    return User(user_id=CLIENT_ID, email="jane.doe@gmail.com", name="Jane Doe", role="client")


@pytest.fixture
def api_overrides(db, push_client):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_push_client] = lambda: push_client
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def admin_api(api_overrides):
    """TestClient authenticated as the admin"""
    return TestClient(app, headers={"Authorization": f"Bearer {ADMIN_TOKEN}"})


@pytest.fixture
def client_api(api_overrides):
    """TestClient authenticated as the client"""
    return TestClient(app, headers={"Authorization": f"Bearer {CLIENT_TOKEN}"})


def event_order_payload(**overrides):
    payload = {
        "order_type": "event",
        "client_id": CLIENT_ID,
        "client_info": {"full_name": "Jane Doe", "email": "jane.doe@gmail.com", "phone": "+237650000000"},
        "event_details": {
            "event_type": "wedding",
            "event_date": "2026-12-20T00:00:00Z",
            "event_time": "14:00",
            "venue": {"name": "Hilton Yaounde", "address": "Boulevard du 20 Mai", "city": "Yaounde"},
            "guest_count": 150
        },
        "budget_range": {"min": 400000, "max": 600000, "currency": "XAF"}
    }
    payload.update(overrides)
    return payload


QUOTE_480K = {
    "breakdown": [
        {"item": "Venue & decoration", "amount": 400000},
        {"item": "Catering", "amount": 80000}
    ],
    "discount": 0
}
