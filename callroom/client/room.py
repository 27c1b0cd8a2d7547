"""Headless call room participant: presence, chat, calls and shared media."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..schemas.signaling import SignalEvent
from .media import SharedMediaController
from .peer import PeerConnectionManager
from .transport import SignalingClient

logger = logging.getLogger(__name__)


@dataclass
class ChatEntry:
    username: str
    message: str


class ChatLog:
    """Ephemeral chat history as seen by this client."""

    def __init__(self) -> None:
        self.entries: list[ChatEntry] = []

    def add(self, username: str, message: str) -> ChatEntry:
        entry = ChatEntry(username=username, message=message)
        self.entries.append(entry)
        return entry


class RoomClient:
    """Wire a signaling connection to presence, chat, call and media handlers."""

    def __init__(
        self,
        transport: SignalingClient,
        username: str,
        *,
        peers: PeerConnectionManager | None = None,
        media: SharedMediaController | None = None,
    ) -> None:
        self.transport = transport
        self.username = username
        self.peers = peers or PeerConnectionManager(transport, username)
        self.media = media or SharedMediaController(transport)
        self.chat = ChatLog()
        self.directory: dict[str, dict[str, str]] = {}
        self.errors: list[dict[str, Any]] = []
        self._register()

    @property
    def participants(self) -> list[str]:
        """Everyone in the room, this client first and marked like the browser UI."""

        others = sorted(name for name in self.directory if name != self.username)
        listed = [f"{self.username} (You)"] if self.username in self.directory else []
        return listed + others

    async def join(self) -> None:
        await self.transport.emit(SignalEvent.JOIN_USER, self.username)

    async def send_chat(self, message: str) -> ChatEntry | None:
        text = message.strip()
        if not text:
            return None
        await self.transport.emit(SignalEvent.CHAT_MESSAGE, {"username": self.username, "message": text})
        return self.chat.add("You", text)

    async def call(self, username: str) -> None:
        await self.peers.start_call(username)

    async def hang_up(self) -> None:
        await self.peers.hang_up()

    async def close(self) -> None:
        await self.peers.close()
        await self.transport.close()

    def _register(self) -> None:
        on = self.transport.on
        on(SignalEvent.JOINED, self._on_joined)
        on(SignalEvent.USER_DISCONNECTED, self._on_user_disconnected)
        on(SignalEvent.CHAT_MESSAGE, self._on_chat_message)
        on(SignalEvent.ERROR, self._on_error)

        on(SignalEvent.OFFER, self.peers.handle_offer)
        on(SignalEvent.ANSWER, self.peers.handle_answer)
        on(SignalEvent.ICE_CANDIDATE, self.peers.handle_icecandidate)
        on(SignalEvent.CALL_ENDED, self.peers.handle_call_ended)
        on(SignalEvent.END_CALL, self.peers.handle_end_call)
        on(SignalEvent.RECIPIENT_OFFLINE, self.peers.handle_recipient_offline)

        on(SignalEvent.SYNC_YOUTUBE_VIDEO, self.media.on_sync_youtube_video)
        on(SignalEvent.YOUTUBE_LOADED, self.media.on_youtube_loaded)
        on(SignalEvent.PLAY_VIDEO, self.media.on_play_video)
        on(SignalEvent.PAUSE_VIDEO, self.media.on_pause_video)
        on(SignalEvent.MEDIA_UPLOADED, self.media.on_media_uploaded)
        on(SignalEvent.VIDEO_UPLOADED, self.media.on_video_uploaded)

    async def _on_joined(self, payload: Any) -> None:
        if isinstance(payload, dict):
            self.directory = dict(payload)

    async def _on_user_disconnected(self, payload: Any) -> None:
        if isinstance(payload, str):
            self.directory.pop(payload, None)

    async def _on_chat_message(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("message"):
            self.chat.add(str(payload.get("username", "?")), str(payload["message"]))

    async def _on_error(self, payload: Any) -> None:
        logger.warning("Server rejected a frame: %s", payload)
        if isinstance(payload, dict):
            self.errors.append(payload)
