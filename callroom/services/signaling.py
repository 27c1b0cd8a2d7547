"""In-memory WebRTC signaling manager.

One ``SignalingManager`` owns every piece of shared relay state: the endpoint
table, the presence directory and the call pairing table. All mutations happen
while holding a single ``asyncio.Lock`` and every send is a non-blocking
enqueue onto the recipient's outbox, so a handling step never awaits network
I/O and a disconnect is fully applied (directory updated and broadcast) before
the next frame from any other endpoint is processed.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

from pydantic import ValidationError

from ..core.config import settings
from ..schemas.signaling import (
    AnswerMessage,
    CallEndedMessage,
    ChatMessage,
    EndCallMessage,
    ErrorReason,
    IceCandidateMessage,
    JoinUserPayload,
    MediaReference,
    MediaUploaded,
    OfferMessage,
    PlaybackEvent,
    SignalEnvelope,
    SignalEvent,
    SyncYoutubeVideo,
    event,
)
from .calls import CallPairing, CallSessionTracker
from .presence import PresenceDirectory

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], None]

NEGOTIATION_SCHEMAS = {
    SignalEvent.OFFER: OfferMessage,
    SignalEvent.ANSWER: AnswerMessage,
    SignalEvent.ICE_CANDIDATE: IceCandidateMessage,
    SignalEvent.END_CALL: EndCallMessage,
}


class RelayOutcome(str, enum.Enum):
    DELIVERED = "delivered"
    RECIPIENT_OFFLINE = "recipient-offline"
    DROPPED = "dropped"


@dataclass(slots=True)
class SignalingConnection:
    """Connection wrapper for signaling participants.

    ``send`` must not block: the websocket router backs it with a bounded
    outbox drained by a writer task.
    """

    connection_id: str
    send: SendCallable
    username: str | None = field(default=None)


Handler = Callable[[SignalingConnection, SignalEvent, Any], Awaitable[None]]


class SignalingManager:
    """Route presence, negotiation, chat and media-sync frames between endpoints."""

    def __init__(
        self,
        directory: PresenceDirectory | None = None,
        calls: CallSessionTracker | None = None,
    ) -> None:
        self._connections: Dict[str, SignalingConnection] = {}
        self.directory = directory or PresenceDirectory()
        self.calls = calls or CallSessionTracker(ttl_seconds=settings.call_pairing_ttl_seconds)
        self._lock = asyncio.Lock()
        self._handlers: Dict[SignalEvent, Handler] = {
            SignalEvent.JOIN_USER: self._on_join_user,
            SignalEvent.OFFER: self._on_negotiation,
            SignalEvent.ANSWER: self._on_negotiation,
            SignalEvent.ICE_CANDIDATE: self._on_negotiation,
            SignalEvent.END_CALL: self._on_negotiation,
            SignalEvent.CALL_ENDED: self._on_call_ended,
            SignalEvent.CHAT_MESSAGE: self._on_chat_message,
            SignalEvent.SYNC_YOUTUBE_VIDEO: self._on_sync_youtube_video,
            SignalEvent.YOUTUBE_LOADED: self._on_media_reference,
            SignalEvent.PLAY_VIDEO: self._on_playback,
            SignalEvent.PAUSE_VIDEO: self._on_playback,
            SignalEvent.MEDIA_UPLOADED: self._on_media_uploaded,
            SignalEvent.VIDEO_UPLOADED: self._on_media_reference,
        }

    # ------------------------------------------------------------------ lifecycle

    async def connect(self, connection: SignalingConnection) -> None:
        """Register an endpoint and greet it with its connection id and the current directory."""

        async with self._lock:
            self._connections[connection.connection_id] = connection
            self._deliver(connection, event(SignalEvent.CONNECTED, {"connectionId": connection.connection_id}))
            self._deliver(connection, event(SignalEvent.JOINED, self.directory.snapshot()))
        logger.info("Endpoint connected: %s", connection.connection_id)

    async def disconnect(self, connection_id: str) -> str | None:
        """Drop an endpoint, release its username and notify everyone else.

        Returns the released username, if the connection owned one.
        """

        async with self._lock:
            self._connections.pop(connection_id, None)
            username = self.directory.remove(connection_id)
            if username is None:
                logger.info("Endpoint disconnected: %s", connection_id)
                return None

            self._emit_all(event(SignalEvent.USER_DISCONNECTED, username))
            self._emit_all(event(SignalEvent.JOINED, self.directory.snapshot()))
            for pairing in self.calls.involving(username):
                self.calls.discard(pairing.call_id)
                self._send_to_user(pairing.other(username), self._call_ended_frame(pairing))
            logger.info("Endpoint disconnected: %s (%s)", connection_id, username)
            return username

    async def join_user(self, connection_id: str, username: str) -> None:
        """Bind ``username`` to a connection and broadcast the new directory."""

        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                logger.warning("join-user from unknown connection %s", connection_id)
                return
            self._bind(connection, username)

    # ------------------------------------------------------------------ routing

    async def dispatch(self, connection_id: str, frame: Any) -> None:
        """Validate an inbound frame and hand it to the matching handler.

        Protocol errors are reported back to the sender and never raised.
        """

        async with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None:
            logger.warning("Frame from unknown connection %s ignored", connection_id)
            return

        try:
            envelope = SignalEnvelope.model_validate(frame)
        except ValidationError as exc:
            self._reject(connection, ErrorReason.INVALID_PAYLOAD, None, exc)
            return

        try:
            event_type = SignalEvent(envelope.type)
        except ValueError:
            event_type = None
        handler = self._handlers.get(event_type) if event_type is not None else None
        if handler is None:
            logger.warning("Unknown frame type %r from %s", envelope.type, connection_id)
            self._deliver(
                connection,
                event(SignalEvent.ERROR, {"reason": ErrorReason.UNKNOWN_TYPE.value, "event": envelope.type}),
            )
            return

        try:
            await handler(connection, event_type, envelope.payload)
        except ValidationError as exc:
            self._reject(connection, ErrorReason.INVALID_PAYLOAD, envelope.type, exc)

    async def relay(self, sender_id: str, event_type: SignalEvent, message: dict[str, Any]) -> RelayOutcome:
        """Forward a negotiation frame to the connection bound to ``message["to"]``."""

        async with self._lock:
            sender = self._connections.get(sender_id)
            return self._relay_locked(sender, event_type, message)

    async def end_call(self, sender_id: str, payload: Any) -> list[str]:
        """Fan a termination out to both parties of a call.

        Returns the usernames that were reachable and received ``call-ended``.
        """

        message = CallEndedMessage.model_validate(payload)
        async with self._lock:
            return self._end_call_locked(message)

    async def broadcast(self, sender_id: str, message: dict) -> None:
        """Send a message to every endpoint except the sender."""

        async with self._lock:
            for connection in list(self._connections.values()):
                if connection.connection_id != sender_id:
                    self._deliver(connection, message)

    async def snapshot(self) -> dict[str, dict[str, str]]:
        async with self._lock:
            return self.directory.snapshot()

    # ------------------------------------------------------------------ handlers

    async def _on_join_user(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        join = JoinUserPayload.model_validate(payload)
        async with self._lock:
            if connection.connection_id in self._connections:
                self._bind(connection, join.username)

    async def _on_negotiation(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        NEGOTIATION_SCHEMAS[event_type].model_validate(payload)
        await self.relay(connection.connection_id, event_type, payload)

    async def _on_call_ended(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        await self.end_call(connection.connection_id, payload)

    async def _on_chat_message(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        ChatMessage.model_validate(payload)
        await self.broadcast(connection.connection_id, event(event_type, payload))

    async def _on_sync_youtube_video(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        sync = SyncYoutubeVideo.model_validate(payload)
        if not sync.video_id:
            logger.debug("sync-youtube-video without videoId from %s dropped", connection.connection_id)
            return
        await self.broadcast(
            connection.connection_id,
            event(event_type, {"videoId": sync.video_id, "timestamp": payload["timestamp"]}),
        )

    async def _on_playback(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        PlaybackEvent.model_validate(payload)
        await self.broadcast(connection.connection_id, event(event_type, payload))

    async def _on_media_uploaded(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        media = MediaUploaded.model_validate(payload)
        if media.data_url and len(media.data_url) > settings.media_inline_max_bytes:
            logger.warning(
                "Inline media from %s exceeds %s bytes; dropped",
                connection.connection_id,
                settings.media_inline_max_bytes,
            )
            self._deliver(
                connection,
                event(
                    SignalEvent.ERROR,
                    {
                        "reason": ErrorReason.INVALID_PAYLOAD.value,
                        "event": event_type.value,
                        "detail": "inline media too large; upload it and share the path",
                    },
                ),
            )
            return
        await self.broadcast(connection.connection_id, event(event_type, payload))

    async def _on_media_reference(self, connection: SignalingConnection, event_type: SignalEvent, payload: Any) -> None:
        MediaReference.model_validate(payload)
        await self.broadcast(connection.connection_id, event(event_type, payload))

    # ------------------------------------------------------------------ internals

    def _bind(self, connection: SignalingConnection, username: str) -> None:
        if connection.username and connection.username != username:
            self.directory.release(connection.username, connection.connection_id)
        displaced = self.directory.join(username, connection.connection_id)
        if displaced is not None:
            logger.warning("Username %r re-bound from %s to %s", username, displaced, connection.connection_id)
            previous_owner = self._connections.get(displaced)
            if previous_owner is not None and previous_owner.username == username:
                previous_owner.username = None
        connection.username = username
        self._emit_all(event(SignalEvent.JOINED, self.directory.snapshot()))

    def _relay_locked(
        self,
        sender: SignalingConnection | None,
        event_type: SignalEvent,
        message: dict[str, Any],
    ) -> RelayOutcome:
        target = message.get("to")
        target_id = self.directory.resolve(target) if isinstance(target, str) else None
        recipient = self._connections.get(target_id) if target_id else None
        if recipient is None:
            logger.info("%s for %r dropped: recipient offline", event_type.value, target)
            if sender is not None:
                self._deliver(
                    sender,
                    event(SignalEvent.RECIPIENT_OFFLINE, {"event": event_type.value, "to": target}),
                )
                return RelayOutcome.RECIPIENT_OFFLINE
            return RelayOutcome.DROPPED

        forwarded = message
        if event_type is SignalEvent.OFFER:
            pairing = self.calls.record(message["from"], target, message.get("callId"))
            if message.get("callId") != pairing.call_id:
                forwarded = {**message, "callId": pairing.call_id}
        elif event_type is SignalEvent.END_CALL:
            self._discard_declined(message.get("from"), target, message.get("callId"))
        elif message.get("callId"):
            self.calls.touch(message["callId"])

        self._deliver(recipient, event(event_type, forwarded))
        return RelayOutcome.DELIVERED

    def _end_call_locked(self, message: CallEndedMessage) -> list[str]:
        pairing: CallPairing | None = None
        if message.call_id:
            pairing = self.calls.get(message.call_id)
        if pairing is None and message.sender and message.to:
            pairing = self.calls.find(message.sender, message.to)

        if pairing is not None:
            self.calls.discard(pairing.call_id)
            parties = pairing.parties
            frame = self._call_ended_frame(pairing)
        elif message.sender and message.to:
            parties = (message.sender, message.to)
            frame = event(SignalEvent.CALL_ENDED, [message.sender, message.to])
        else:
            logger.info("call-ended for unknown call %s ignored", message.call_id)
            return []

        reached: list[str] = []
        for username in dict.fromkeys(parties):
            if self._send_to_user(username, frame):
                reached.append(username)
        return reached

    def _discard_declined(self, sender: Any, target: str, call_id: Any) -> None:
        """Forget the pairing a one-sided ``end-call`` refers to."""

        pairing = self.calls.get(call_id) if isinstance(call_id, str) and call_id else None
        if isinstance(sender, str):
            if pairing is None or not pairing.matches(sender, target):
                pairing = self.calls.find(sender, target)
        elif pairing is not None and not pairing.involves(target):
            pairing = None
        if pairing is not None:
            self.calls.discard(pairing.call_id)

    def _call_ended_frame(self, pairing: CallPairing) -> dict:
        return event(SignalEvent.CALL_ENDED, [pairing.caller, pairing.callee])

    def _send_to_user(self, username: str, message: dict) -> bool:
        connection_id = self.directory.resolve(username)
        connection = self._connections.get(connection_id) if connection_id else None
        if connection is None:
            return False
        self._deliver(connection, message)
        return True

    def _emit_all(self, message: dict) -> None:
        for connection in list(self._connections.values()):
            self._deliver(connection, message)

    def _deliver(self, connection: SignalingConnection, message: dict) -> None:
        try:
            connection.send(message)
        except Exception:  # noqa: BLE001 - one bad endpoint must not break fan-out
            logger.exception("Failed to enqueue %s for %s", message.get("type"), connection.connection_id)

    def _reject(
        self,
        connection: SignalingConnection,
        reason: ErrorReason,
        event_type: str | None,
        exc: ValidationError,
    ) -> None:
        logger.info("Rejected %s frame from %s: %s", event_type or "malformed", connection.connection_id, exc.errors())
        body: dict[str, Any] = {"reason": reason.value, "detail": _summarise(exc)}
        if event_type:
            body["event"] = event_type
        self._deliver(connection, event(SignalEvent.ERROR, body))


def _summarise(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


manager = SignalingManager()
