"""WebSocket signaling transport for headless call room clients."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List

import websockets
from websockets.exceptions import ConnectionClosed

from ..schemas.signaling import SignalEvent, event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]


class SignalingClient:
    """Send named events and dispatch inbound ones to registered handlers.

    Handlers for one socket run strictly one after another in arrival order, so
    an offer is always applied before the ICE candidates that follow it.
    """

    def __init__(self, url: str) -> None:
        self._url = url
        self._ws: Any = None
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._waiters: Dict[str, List[asyncio.Future[Any]]] = {}
        self._receive_task: asyncio.Task[None] | None = None
        self.connection_id: str | None = None

    def on(self, event_type: SignalEvent | str, handler: EventHandler) -> None:
        name = event_type.value if isinstance(event_type, SignalEvent) else event_type
        self._handlers.setdefault(name, []).append(handler)

    async def connect(self) -> "SignalingClient":
        self._ws = await websockets.connect(self._url)
        self._receive_task = asyncio.create_task(self._receive_loop())
        return self

    async def close(self) -> None:
        if self._receive_task:
            self._receive_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receive_task
            self._receive_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def __aenter__(self) -> "SignalingClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def emit(self, event_type: SignalEvent | str, payload: Any = None) -> None:
        if self._ws is None:
            raise RuntimeError("Signaling client is not connected")
        await self._ws.send(json.dumps(event(event_type, payload)))

    async def wait_for(self, event_type: SignalEvent | str, timeout: float | None = None) -> Any:
        """Resolve with the payload of the next ``event_type`` frame."""

        name = event_type.value if isinstance(event_type, SignalEvent) else event_type
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(name, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            waiters = self._waiters.get(name, [])
            if future in waiters:
                waiters.remove(future)

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from server")
                    continue
                if isinstance(frame, dict) and isinstance(frame.get("type"), str):
                    await self._dispatch(frame["type"], frame.get("payload"))
        except asyncio.CancelledError:
            raise
        except ConnectionClosed:
            logger.info("Signaling connection closed")

    async def _dispatch(self, name: str, payload: Any) -> None:
        if name == SignalEvent.CONNECTED.value and isinstance(payload, dict):
            self.connection_id = payload.get("connectionId")

        for handler in list(self._handlers.get(name, [])):
            try:
                await handler(payload)
            except Exception:  # noqa: BLE001 - one failing handler must not stop the stream
                logger.exception("Handler for %s failed", name)

        for future in self._waiters.pop(name, []):
            if not future.done():
                future.set_result(payload)
