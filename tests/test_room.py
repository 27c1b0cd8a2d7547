"""Tests for the headless room client wiring."""
from __future__ import annotations

import pytest

from callroom.client.media import SharedMediaController
from callroom.client.peer import PeerConnectionManager
from callroom.client.room import RoomClient
from callroom.schemas.signaling import SignalEvent


class RecordingTransport:
    """Stand-in for ``SignalingClient`` that lets tests push inbound frames."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, object]] = []
        self.handlers: dict[str, list] = {}
        self.closed = False

    def on(self, event_type, handler) -> None:
        self.handlers.setdefault(getattr(event_type, "value", event_type), []).append(handler)

    async def emit(self, event_type, payload=None) -> None:
        self.sent.append((getattr(event_type, "value", event_type), payload))

    async def deliver(self, event_type: str, payload) -> None:
        for handler in self.handlers.get(event_type, []):
            await handler(payload)

    async def close(self) -> None:
        self.closed = True


def _room(username: str = "alice") -> tuple[RoomClient, RecordingTransport]:
    transport = RecordingTransport()
    peers = PeerConnectionManager(transport, username, ice_servers=[])
    room = RoomClient(transport, username, peers=peers, media=SharedMediaController(transport))
    return room, transport


def test_every_server_event_has_a_handler():
    _, transport = _room()

    expected = {
        SignalEvent.JOINED, SignalEvent.USER_DISCONNECTED, SignalEvent.CHAT_MESSAGE, SignalEvent.ERROR,
        SignalEvent.OFFER, SignalEvent.ANSWER, SignalEvent.ICE_CANDIDATE, SignalEvent.CALL_ENDED,
        SignalEvent.END_CALL, SignalEvent.RECIPIENT_OFFLINE, SignalEvent.SYNC_YOUTUBE_VIDEO,
        SignalEvent.YOUTUBE_LOADED, SignalEvent.PLAY_VIDEO, SignalEvent.PAUSE_VIDEO,
        SignalEvent.MEDIA_UPLOADED, SignalEvent.VIDEO_UPLOADED,
    }
    assert {SignalEvent(name) for name in transport.handlers} == expected


@pytest.mark.asyncio
async def test_join_and_directory_updates():
    room, transport = _room()

    await room.join()
    await transport.deliver(
        "joined",
        {
            "carol": {"username": "carol", "id": "c3"},
            "alice": {"username": "alice", "id": "c1"},
            "bob": {"username": "bob", "id": "c2"},
        },
    )

    assert transport.sent == [("join-user", "alice")]
    assert room.participants == ["alice (You)", "bob", "carol"]

    await transport.deliver("user-disconnected", "bob")
    assert room.participants == ["alice (You)", "carol"]


@pytest.mark.asyncio
async def test_chat_is_sent_and_received():
    room, transport = _room()

    assert await room.send_chat("   ") is None
    await room.send_chat(" hello ")
    await transport.deliver("chat-message", {"username": "bob", "message": "hi alice"})

    assert transport.sent == [("chat-message", {"username": "alice", "message": "hello"})]
    assert [(entry.username, entry.message) for entry in room.chat.entries] == [
        ("You", "hello"),
        ("bob", "hi alice"),
    ]


@pytest.mark.asyncio
async def test_server_errors_are_collected():
    room, transport = _room()

    await transport.deliver("error", {"reason": "unknown-type", "event": "teleport"})

    assert room.errors == [{"reason": "unknown-type", "event": "teleport"}]


@pytest.mark.asyncio
async def test_close_shuts_down_transport():
    room, transport = _room()

    await room.close()

    assert transport.closed is True
