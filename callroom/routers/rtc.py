"""ICE configuration, presence and signaling endpoints."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core.config import settings
from ..schemas.rtc import IceServer, IceServersResponse, PresenceEntry, PresenceResponse
from ..schemas.signaling import ErrorReason, SignalEvent, event
from ..services.signaling import SignalingConnection, manager as signaling_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/ice-servers", response_model=IceServersResponse, response_model_by_alias=True)
async def ice_servers() -> IceServersResponse:
    """Return the STUN servers browsers should use for peer connections."""

    return IceServersResponse(ice_servers=[IceServer(urls=[url]) for url in settings.stun_servers])


@router.get("/presence", response_model=PresenceResponse)
async def presence() -> PresenceResponse:
    """Return the current presence directory snapshot."""

    snapshot = await signaling_manager.snapshot()
    users = {name: PresenceEntry(**entry) for name, entry in snapshot.items()}
    return PresenceResponse(users=users, count=len(users))


class _Outbox:
    """Bounded per-connection queue drained by a writer task.

    ``put`` may be called from any coroutine; it never waits on the socket.
    """

    def __init__(self, connection_id: str, limit: int) -> None:
        self._connection_id = connection_id
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=limit)
        self._loop = asyncio.get_running_loop()

    def put(self, message: dict) -> None:
        self._loop.call_soon_threadsafe(self._enqueue, message)

    def _enqueue(self, message: dict) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbox full for %s; dropping %s", self._connection_id, message.get("type"))

    async def pump(self, websocket: WebSocket) -> None:
        while True:
            message = await self._queue.get()
            await websocket.send_json(message)


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Presence, negotiation relay, chat and media-sync over one socket."""

    connection_id = str(uuid4())
    await websocket.accept()

    outbox = _Outbox(connection_id, settings.signaling_outbox_limit)
    writer = asyncio.create_task(outbox.pump(websocket))
    connection = SignalingConnection(connection_id=connection_id, send=outbox.put)
    await signaling_manager.connect(connection)

    username = websocket.query_params.get("username")
    if username is not None:
        await signaling_manager.dispatch(connection_id, event(SignalEvent.JOIN_USER, username))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                outbox.put(event(SignalEvent.ERROR, {"reason": ErrorReason.INVALID_JSON.value}))
                continue
            await signaling_manager.dispatch(connection_id, frame)
    except WebSocketDisconnect:
        pass
    except Exception:  # noqa: BLE001 - a broken endpoint must not affect the others
        logger.exception("Signaling loop failed for %s", connection_id)
    finally:
        await signaling_manager.disconnect(connection_id)
        writer.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await writer
