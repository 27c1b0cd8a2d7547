"""Client-side peer connection management built on aiortc.

Each call gets its own ``CallSession`` holding the ``RTCPeerConnection``; the
session is created when a call starts (outgoing offer or incoming offer) and
discarded when it ends, so the next call always starts from a fresh
connection. Only one session may be active per endpoint.

Call state machine::

    idle -> offer-sent      -> answer-received -> connected -> ended   (caller)
    idle -> offer-received  -> answer-sent     -> connected -> ended   (callee)
"""
from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRelay
from aiortc.sdp import candidate_from_sdp

from ..core.config import settings
from ..schemas.signaling import SignalEvent
from ..services.calls import new_call_id

logger = logging.getLogger(__name__)

RemoteSink = Callable[[MediaStreamTrack], Awaitable[None]]
PeerFactory = Callable[[], RTCPeerConnection]


class Emitter(Protocol):
    async def emit(self, event_type: SignalEvent | str, payload: Any = None) -> None: ...


class CallState(str, enum.Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWER_SENT = "answer-sent"
    ANSWER_RECEIVED = "answer-received"
    CONNECTED = "connected"
    ENDED = "ended"


class CallRole(str, enum.Enum):
    CALLER = "caller"
    CALLEE = "callee"


class CallInProgressError(RuntimeError):
    """Raised when a call is started while another session is still active."""


class NegotiationError(RuntimeError):
    """Raised for out-of-order offer/answer handling."""


@dataclass
class CallSession:
    call_id: str
    peer: str
    role: CallRole
    pc: Any
    state: CallState = CallState.IDLE
    pending_candidates: list[RTCIceCandidate] = field(default_factory=list)
    remote_description_set: bool = False

    def advance(self, new_state: CallState, *, expected: Iterable[CallState]) -> None:
        allowed = tuple(expected)
        if self.state not in allowed:
            raise NegotiationError(f"Cannot move call {self.call_id} from {self.state.value} to {new_state.value}")
        logger.debug("Call %s: %s -> %s", self.call_id, self.state.value, new_state.value)
        self.state = new_state

    @property
    def active(self) -> bool:
        return self.state is not CallState.ENDED


def iter_local_candidates(sdp: str) -> list[dict[str, Any]]:
    """Extract browser-style candidate dicts from a gathered session description."""

    candidates: list[dict[str, Any]] = []
    mline_index = -1
    mid: str | None = None
    for raw_line in sdp.splitlines():
        line = raw_line.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            candidates.append({"candidate": line[2:], "sdpMid": mid, "sdpMLineIndex": mline_index})
    return candidates


def parse_remote_candidate(data: Any) -> Optional[RTCIceCandidate]:
    """Turn a relayed candidate payload into an aiortc candidate.

    Returns ``None`` for end-of-candidates markers.
    """

    if not data:
        return None
    if isinstance(data, str):
        data = {"candidate": data}
    line = (data.get("candidate") or "").strip()
    if not line:
        return None
    if line.startswith("a="):
        line = line[2:]
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


def describe(description: Any) -> dict[str, str]:
    return {"sdp": description.sdp, "type": description.type}


async def blackhole_sink(track: MediaStreamTrack) -> None:
    """Consume a remote track so it never stalls the connection."""

    sink = MediaBlackhole()
    sink.addTrack(track)
    await sink.start()


class PeerConnectionManager:
    """Own at most one call session and drive it through signaling events."""

    def __init__(
        self,
        transport: Emitter,
        username: str,
        *,
        ice_servers: list[str] | None = None,
        peer_factory: PeerFactory | None = None,
        remote_sink: RemoteSink | None = None,
    ) -> None:
        self._transport = transport
        self.username = username
        self._ice_servers = list(settings.stun_servers if ice_servers is None else ice_servers)
        self._peer_factory = peer_factory or self._default_peer
        self._remote_sink = remote_sink or blackhole_sink
        self._relay = MediaRelay()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._audio_sender: Any = None

        self.session: CallSession | None = None
        self.local_tracks: list[MediaStreamTrack] = []
        self.media_error: str | None = None
        self.controls_visible = False
        self.muted = False
        self.remote_tracks: list[MediaStreamTrack] = []

    # ------------------------------------------------------------------ media

    async def acquire_local_media(
        self,
        source: str | None,
        *,
        media_format: str | None = None,
        options: dict[str, str] | None = None,
    ) -> bool:
        """Open local capture; on failure log it and continue without local media."""

        if not source:
            self.local_tracks = []
            return False
        try:
            player = MediaPlayer(source, format=media_format, options=options or {})
        except Exception as exc:  # noqa: BLE001 - device failures are reported, not fatal
            logger.warning("Could not open local media %s: %s", source, exc)
            self.media_error = str(exc)
            self.local_tracks = []
            return False
        self.media_error = None
        self.local_tracks = [track for track in (player.audio, player.video) if track is not None]
        return bool(self.local_tracks)

    def use_local_tracks(self, tracks: Iterable[MediaStreamTrack]) -> None:
        self.local_tracks = list(tracks)

    async def toggle_mute(self) -> bool:
        """Flip the outgoing audio on or off and return the new muted state."""

        audio = next((track for track in self.local_tracks if track.kind == "audio"), None)
        if audio is None or self._audio_sender is None:
            logger.info("No local audio to mute")
            return self.muted
        self.muted = not self.muted
        result = self._audio_sender.replaceTrack(None if self.muted else self._relay.subscribe(audio))
        if inspect.isawaitable(result):
            await result
        return self.muted

    # ------------------------------------------------------------------ outgoing

    async def start_call(self, callee: str) -> CallSession:
        """Create a caller session, send the offer and our candidates."""

        if self.session is not None and self.session.active:
            raise CallInProgressError(f"Already in a call with {self.session.peer}")
        if callee == self.username:
            raise ValueError("Cannot call yourself")

        session = self._open_session(new_call_id(), callee, CallRole.CALLER)
        try:
            offer = await session.pc.createOffer()
            await session.pc.setLocalDescription(offer)
            session.advance(CallState.OFFER_SENT, expected=(CallState.IDLE,))
            await self._transport.emit(
                SignalEvent.OFFER,
                {
                    "from": self.username,
                    "to": callee,
                    "offer": describe(session.pc.localDescription),
                    "callId": session.call_id,
                },
            )
            await self._emit_local_candidates(session)
        except Exception:
            await self._teardown(session)
            raise
        return session

    async def hang_up(self) -> None:
        """Ask the relay to end the call for both parties."""

        session = self.session
        if session is None:
            return
        await self._transport.emit(
            SignalEvent.CALL_ENDED,
            {"from": self.username, "to": session.peer, "callId": session.call_id},
        )

    # ------------------------------------------------------------------ incoming

    async def handle_offer(self, payload: dict[str, Any]) -> None:
        caller = payload.get("from")
        call_id = payload.get("callId") or new_call_id()
        if self.session is not None and self.session.active:
            logger.info("Rejecting call from %s: busy with %s", caller, self.session.peer)
            await self._transport.emit(
                SignalEvent.END_CALL,
                {"from": self.username, "to": caller, "callId": call_id, "reason": "busy"},
            )
            return

        session = self._open_session(call_id, caller, CallRole.CALLEE)
        try:
            session.advance(CallState.OFFER_RECEIVED, expected=(CallState.IDLE,))
            await self._apply_remote_description(session, payload["offer"])
            answer = await session.pc.createAnswer()
            await session.pc.setLocalDescription(answer)
            session.advance(CallState.ANSWER_SENT, expected=(CallState.OFFER_RECEIVED,))
            await self._transport.emit(
                SignalEvent.ANSWER,
                {
                    "from": self.username,
                    "to": caller,
                    "answer": describe(session.pc.localDescription),
                    "callId": session.call_id,
                },
            )
            await self._emit_local_candidates(session)
        except Exception:
            logger.exception("Failed to answer call from %s", caller)
            await self._teardown(session)

    async def handle_answer(self, payload: dict[str, Any]) -> None:
        session = self._session_for(payload, adopt_call_id=True)
        if session is None:
            logger.info("Answer for unknown call %s ignored", payload.get("callId"))
            return
        try:
            session.advance(CallState.ANSWER_RECEIVED, expected=(CallState.OFFER_SENT,))
            await self._apply_remote_description(session, payload["answer"])
        except Exception:  # noqa: BLE001 - negotiation failures stall the call, they do not crash the client
            logger.exception("Failed to apply answer from %s", payload.get("from"))
            return
        session.advance(CallState.CONNECTED, expected=(CallState.ANSWER_RECEIVED,))
        self.controls_visible = True

    async def handle_icecandidate(self, payload: dict[str, Any]) -> None:
        session = self._session_for(payload)
        if session is None:
            logger.debug("Candidate without an active call ignored")
            return
        try:
            candidate = parse_remote_candidate(payload.get("candidate"))
        except Exception as exc:  # noqa: BLE001 - malformed candidates are logged and skipped
            logger.warning("Malformed ICE candidate from %s: %s", payload.get("from"), exc)
            return
        if candidate is None:
            return
        if not session.remote_description_set:
            session.pending_candidates.append(candidate)
            return
        await self._add_candidate(session, candidate)

    async def handle_call_ended(self, payload: Any) -> None:
        session = self.session
        if session is None:
            return
        parties = _parties(payload)
        if parties and session.peer not in parties:
            logger.debug("call-ended for another call ignored: %s", parties)
            return
        if isinstance(payload, dict) and payload.get("callId") not in (None, session.call_id):
            return
        await self._teardown(session)

    async def handle_end_call(self, payload: dict[str, Any]) -> None:
        """One-sided notice from the peer, for example a busy signal."""

        session = self._session_for(payload)
        if session is None:
            return
        logger.info("Call with %s ended by peer (%s)", session.peer, payload.get("reason") or "hang-up")
        await self._teardown(session)

    async def handle_recipient_offline(self, payload: dict[str, Any]) -> None:
        session = self.session
        if session is None or payload.get("to") != session.peer:
            return
        if payload.get("event") == SignalEvent.OFFER.value:
            logger.info("%s is offline; dropping call", session.peer)
            await self._teardown(session)

    async def close(self) -> None:
        if self.session is not None:
            await self._teardown(self.session)
        for task in list(self._tasks):
            task.cancel()

    # ------------------------------------------------------------------ internals

    def _default_peer(self) -> RTCPeerConnection:
        servers = [RTCIceServer(urls=url) for url in self._ice_servers]
        return RTCPeerConnection(RTCConfiguration(iceServers=servers))

    def _open_session(self, call_id: str, peer: str, role: CallRole) -> CallSession:
        pc = self._peer_factory()
        session = CallSession(call_id=call_id, peer=peer, role=role, pc=pc)
        self.session = session
        self.remote_tracks = []
        self._audio_sender = None

        kinds = set()
        for track in self.local_tracks:
            sender = pc.addTrack(self._relay.subscribe(track))
            kinds.add(track.kind)
            if track.kind == "audio":
                self._audio_sender = sender
        for kind in ("audio", "video"):
            if kind not in kinds:
                pc.addTransceiver(kind, direction="recvonly")

        @pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            self.remote_tracks.append(track)
            self._spawn(self._remote_sink(track))

        @pc.on("connectionstatechange")
        async def on_connection_state() -> None:
            state = pc.connectionState
            logger.info("Call %s connection state: %s", session.call_id, state)
            if state == "connected" and session.state is CallState.ANSWER_SENT:
                session.advance(CallState.CONNECTED, expected=(CallState.ANSWER_SENT,))
                self.controls_visible = True
            elif state == "failed" and self.session is session:
                await self._teardown(session)

        return session

    async def _apply_remote_description(self, session: CallSession, description: dict[str, Any]) -> None:
        await session.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        session.remote_description_set = True
        pending, session.pending_candidates = session.pending_candidates, []
        for candidate in pending:
            await self._add_candidate(session, candidate)

    async def _add_candidate(self, session: CallSession, candidate: RTCIceCandidate) -> None:
        try:
            await session.pc.addIceCandidate(candidate)
        except Exception as exc:  # noqa: BLE001 - a bad candidate must not abort the call
            logger.warning("Failed to add ICE candidate for call %s: %s", session.call_id, exc)

    async def _emit_local_candidates(self, session: CallSession) -> None:
        description = session.pc.localDescription
        if description is None:
            return
        for candidate in iter_local_candidates(description.sdp):
            await self._transport.emit(
                SignalEvent.ICE_CANDIDATE,
                {"from": self.username, "to": session.peer, "candidate": candidate, "callId": session.call_id},
            )

    def _session_for(self, payload: Any, *, adopt_call_id: bool = False) -> CallSession | None:
        session = self.session
        if session is None or not isinstance(payload, dict):
            return None
        sender = payload.get("from")
        if sender and sender != session.peer:
            return None
        call_id = payload.get("callId")
        if call_id and call_id != session.call_id:
            # The relay re-stamps an offer whose id was already taken; the answer carries the new one.
            if not (adopt_call_id and sender and session.state is CallState.OFFER_SENT):
                return None
            logger.info("Call %s renumbered to %s by the server", session.call_id, call_id)
            session.call_id = call_id
        return session

    async def _teardown(self, session: CallSession) -> None:
        if session.state is CallState.ENDED:
            return
        session.state = CallState.ENDED
        try:
            await session.pc.close()
        except Exception:  # noqa: BLE001 - closing a half-open connection may fail
            logger.exception("Error closing peer connection for call %s", session.call_id)
        if self.session is session:
            self.session = None
        self.controls_visible = False
        self.muted = False
        self._audio_sender = None
        logger.info("Call %s with %s ended", session.call_id, session.peer)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _parties(payload: Any) -> tuple[str, ...]:
    if isinstance(payload, (list, tuple)):
        return tuple(str(item) for item in payload)
    if isinstance(payload, dict):
        return tuple(value for value in (payload.get("from"), payload.get("to")) if value)
    return ()
