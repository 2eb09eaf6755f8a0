"""Shared fixtures: in-memory redis, stubbed email and API helpers."""

from unittest.mock import MagicMock

import bcrypt
import pytest
from fastapi.testclient import TestClient
from freezegun import freeze_time

from chorechamp.main import app
from chorechamp.services.email_service import email_service
from chorechamp.services.redis_service import redis_service
from tests.mocks import FakeRedis

_real_gensalt = bcrypt.gensalt


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Every test gets an empty store in place of the redis connection."""
    store = FakeRedis()
    monkeypatch.setattr(redis_service, "redis_client", store)
    monkeypatch.setenv("CHORE_TIMEZONE", "UTC")
    return store


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=4, prefix=b"2b": _real_gensalt(rounds=4, prefix=prefix))


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Record outgoing email instead of talking to SMTP."""
    sender = MagicMock()
    monkeypatch.setattr(email_service, "send_email", sender)
    return sender


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def clock():
    """Time frozen at Monday 2024-01-01 10:00 UTC; move it with tick()/move_to()."""
    with freeze_time("2024-01-01 10:00:00", tz_offset=0, real_asyncio=True) as frozen:
        yield frozen


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register_parent(client: TestClient, username: str, email: str = None) -> dict:
    response = client.post(
        "/api/auth/register/parent",
        json={"username": username, "email": email or f"{username}@example.com", "password": "secret123"},
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return {"token": body["access_token"], "user": body["user"]}


def register_child(client: TestClient, parent_token: str, username: str, **extra) -> dict:
    payload = {"username": username, "first_name": username.title(), "password": "secret123", **extra}
    response = client.post("/api/auth/register/child", json=payload, headers=auth(parent_token))
    assert response.status_code == 201, response.text
    login = client.post("/api/auth/login", json={"username": username, "password": "secret123"})
    return {"token": login.json()["access_token"], "user": response.json()}


@pytest.fixture
def family(client):
    """A parent with a household and two children in it."""
    parent = register_parent(client, "mom")
    response = client.post("/api/household", json={"name": "The Smiths"}, headers=auth(parent["token"]))
    assert response.status_code == 201, response.text
    household = response.json()

    alice = register_child(client, parent["token"], "alice", chore_rotation_order=1)
    bob = register_child(client, parent["token"], "bob", chore_rotation_order=2)
    response = client.post(
        "/api/household/add-children",
        json={"children_ids": [alice["user"]["id"], bob["user"]["id"]]},
        headers=auth(parent["token"]),
    )
    assert response.status_code == 200, response.text

    return {"parent": parent, "household": household, "alice": alice, "bob": bob}
