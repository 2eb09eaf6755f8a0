"""Tests for household-scoped broadcasting and the /ws endpoint."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from starlette.websockets import WebSocketDisconnect

from chorechamp.models.user import UserRole
from chorechamp.services.auth_service import auth_service
from chorechamp.services.websocket_service import WebSocketManager
from tests.conftest import register_parent


def connection():
    websocket = AsyncMock()
    websocket.send_text = AsyncMock()
    return websocket


def member(username, household_id=None):
    """Store a parent account belonging to household_id and return its id."""
    user = auth_service.create_user(username, "secret123", UserRole.PARENT, email=f"{username}@example.com")
    user.household_id = household_id
    auth_service.update_user(user)
    return user.id


def test_broadcast_reaches_only_the_matching_household():
    manager = WebSocketManager()
    home, away = connection(), connection()
    manager.active_connections = {home: member("mom", "h1"), away: member("dad", "h2")}

    message = json.dumps({"type": "chore_updated", "household_id": "h1"})
    asyncio.run(manager.broadcast(message))

    home.send_text.assert_awaited_once_with(message)
    away.send_text.assert_not_awaited()


def test_broadcast_without_household_goes_to_everyone():
    manager = WebSocketManager()
    first, second = connection(), connection()
    manager.active_connections = {first: member("mom", "h1"), second: member("dad")}

    asyncio.run(manager.broadcast(json.dumps({"type": "notice"})))

    first.send_text.assert_awaited_once()
    second.send_text.assert_awaited_once()


def test_membership_is_read_at_broadcast_time():
    manager = WebSocketManager()
    websocket = connection()
    user_id = member("dad")
    manager.active_connections = {websocket: user_id}

    # Joins a household after the socket connected
    user = auth_service.get_user_by_id(user_id)
    user.household_id = "h1"
    auth_service.update_user(user)
    asyncio.run(manager.broadcast(json.dumps({"household_id": "h1"})))
    websocket.send_text.assert_awaited_once()

    # Removed again: later updates stop
    user.household_id = None
    auth_service.update_user(user)
    asyncio.run(manager.broadcast(json.dumps({"household_id": "h1"})))
    websocket.send_text.assert_awaited_once()


def test_deleted_user_gets_no_household_updates():
    manager = WebSocketManager()
    websocket = connection()
    manager.active_connections = {websocket: "gone"}

    asyncio.run(manager.broadcast(json.dumps({"household_id": "h1"})))

    websocket.send_text.assert_not_awaited()


def test_failed_connection_is_dropped():
    manager = WebSocketManager()
    broken = connection()
    broken.send_text.side_effect = RuntimeError("closed")
    manager.active_connections = {broken: member("mom", "h1")}

    asyncio.run(manager.broadcast(json.dumps({"household_id": "h1"})))

    assert manager.active_connections == {}


def test_malformed_message_is_ignored():
    manager = WebSocketManager()
    websocket = connection()
    manager.active_connections = {websocket: "u1"}

    asyncio.run(manager.broadcast("not json"))

    websocket.send_text.assert_not_awaited()


def test_endpoint_rejects_missing_or_bad_token(client):
    for url in ("/ws", "/ws?token=garbage"):
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect(url) as websocket:
                websocket.receive_text()
        assert excinfo.value.code == 1008


def test_endpoint_answers_ping(client, monkeypatch):
    manager = WebSocketManager()
    # Skip the redis subscriber; pretend it is already running
    manager.redis_client = object()
    monkeypatch.setattr("chorechamp.routers.websockets.websocket_manager", manager)
    parent = register_parent(client, "mom")

    with client.websocket_connect(f"/ws?token={parent['token']}") as websocket:
        websocket.send_text(json.dumps({"type": "ping"}))
        assert json.loads(websocket.receive_text()) == {"type": "pong"}
