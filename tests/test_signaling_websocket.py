"""End-to-end tests for the signaling WebSocket endpoint."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from callroom.main import app
from callroom.routers import rtc as rtc_router
from callroom.services.signaling import SignalingManager

SIGNALING_PATH = "/api/rtc/signaling"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(rtc_router, "signaling_manager", SignalingManager())
    monkeypatch.setattr(rtc_router.settings, "database_auto_create", False)
    with TestClient(app) as test_client:
        yield test_client


def _greeting(ws) -> tuple[dict, dict]:
    return ws.receive_json(), ws.receive_json()


def test_connect_join_call_and_disconnect(client):
    with client.websocket_connect(SIGNALING_PATH) as alice:
        connected, joined = _greeting(alice)
        assert connected["type"] == "connected"
        assert connected["payload"]["connectionId"]
        assert joined == {"type": "joined", "payload": {}}

        alice.send_json({"type": "join-user", "payload": "alice"})
        assert set(alice.receive_json()["payload"]) == {"alice"}

        with client.websocket_connect(SIGNALING_PATH) as bob:
            _, bob_joined = _greeting(bob)
            assert set(bob_joined["payload"]) == {"alice"}

            bob.send_json({"type": "join-user", "payload": "bob"})
            assert set(bob.receive_json()["payload"]) == {"alice", "bob"}
            assert set(alice.receive_json()["payload"]) == {"alice", "bob"}

            offer = {"sdp": "v=0", "type": "offer"}
            alice.send_json({"type": "offer", "payload": {"from": "alice", "to": "bob", "offer": offer}})
            received = bob.receive_json()
            assert received["type"] == "offer"
            assert received["payload"]["offer"] == offer
            call_id = received["payload"]["callId"]

            answer = {"sdp": "v=0", "type": "answer"}
            bob.send_json(
                {"type": "answer", "payload": {"from": "bob", "to": "alice", "answer": answer, "callId": call_id}}
            )
            assert alice.receive_json()["payload"]["answer"] == answer

            bob.send_json({"type": "call-ended", "payload": ["alice", "bob"]})
            assert alice.receive_json() == {"type": "call-ended", "payload": ["alice", "bob"]}
            assert bob.receive_json() == {"type": "call-ended", "payload": ["alice", "bob"]}

        assert alice.receive_json() == {"type": "user-disconnected", "payload": "bob"}
        assert set(alice.receive_json()["payload"]) == {"alice"}


def test_invalid_json_is_answered_with_an_error(client):
    with client.websocket_connect(SIGNALING_PATH) as ws:
        _greeting(ws)

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "payload": {"reason": "invalid-json"}}

        ws.send_json({"type": "chat-message", "payload": {"username": "x", "message": "   "}})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["payload"]["reason"] == "invalid-payload"


def test_username_query_parameter_joins_on_connect(client):
    with client.websocket_connect(f"{SIGNALING_PATH}?username=carol") as ws:
        _greeting(ws)
        assert set(ws.receive_json()["payload"]) == {"carol"}

        body = client.get("/api/rtc/presence").json()
        assert body["count"] == 1
        assert body["users"]["carol"]["username"] == "carol"


def test_username_query_parameter_is_validated(client):
    with client.websocket_connect(f"{SIGNALING_PATH}?username=%20%20") as ws:
        _greeting(ws)
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["payload"]["reason"] == "invalid-payload"
        assert error["payload"]["event"] == "join-user"

    with client.websocket_connect(f"{SIGNALING_PATH}?username={'n' * 65}") as ws:
        _greeting(ws)
        assert ws.receive_json()["payload"]["reason"] == "invalid-payload"

    assert client.get("/api/rtc/presence").json()["count"] == 0
