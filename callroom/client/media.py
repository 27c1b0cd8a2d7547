"""Shared media playback for call room clients.

Playback sync is best-effort. A receiver starts an embedded video at the
offset implied by the sender's wall clock, and play/pause events carry the
sender's player position. Nothing is acknowledged, so clock skew and relay
latency show up as small drift rather than frame-accurate alignment.
"""
from __future__ import annotations

import base64
import enum
import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from ..schemas.signaling import SUPPORTED_MEDIA_PREFIXES, SignalEvent

logger = logging.getLogger(__name__)

YOUTUBE_ID_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?(?:youtube\.com/(?:watch\?v=|embed/|v/|shorts/)|youtu\.be/)([a-zA-Z0-9_-]{11})"
)
YOUTUBE_EMBED_BASE = "https://www.youtube.com/embed/"


class InvalidMediaError(ValueError):
    """Raised for user input that cannot be shared (bad URL or file type)."""


class MediaKind(str, enum.Enum):
    EMBED = "embed"
    VIDEO = "video"
    IMAGE = "image"


def extract_youtube_video_id(url: str) -> str | None:
    match = YOUTUBE_ID_PATTERN.search(url.strip())
    return match.group(1) if match else None


def youtube_embed_url(video_id: str, start: float = 0) -> str:
    url = f"{YOUTUBE_EMBED_BASE}{video_id}?enablejsapi=1&autoplay=1"
    whole_seconds = int(math.floor(start))
    if whole_seconds > 0:
        url += f"&start={whole_seconds}"
    return url


def compute_start_offset(origin_ms: float, now_ms: float) -> float:
    """Seconds elapsed since the origin wall clock; clamped at zero for skewed clocks."""

    return max(0.0, (now_ms - origin_ms) / 1000.0)


def build_data_url(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def media_kind_for(content_type: str) -> MediaKind:
    if content_type.startswith("video/"):
        return MediaKind.VIDEO
    if content_type.startswith("image/"):
        return MediaKind.IMAGE
    raise InvalidMediaError("Please upload a valid video or image file.")


def wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class MediaElement:
    kind: MediaKind
    src: str
    position: float = 0.0
    playing: bool = False

    @property
    def playable(self) -> bool:
        return self.kind in (MediaKind.EMBED, MediaKind.VIDEO)


class MediaStage:
    """The shared media container: at most one visible element at a time."""

    def __init__(self) -> None:
        self._element: MediaElement | None = None
        self.previous: MediaElement | None = None

    @property
    def element(self) -> MediaElement | None:
        return self._element

    @property
    def visible(self) -> list[MediaElement]:
        return [self._element] if self._element is not None else []

    def show(self, element: MediaElement) -> MediaElement:
        """Replace whatever is displayed with ``element``."""

        if self._element is not None:
            self.previous = self._element
        self._element = element
        return element

    def clear(self) -> None:
        if self._element is not None:
            self.previous = self._element
        self._element = None

    def seek(self, position: float) -> bool:
        element = self._element
        if element is None or not element.playable:
            logger.debug("Seek ignored: nothing playable on stage")
            return False
        element.position = max(0.0, position)
        return True

    def play(self) -> bool:
        element = self._element
        if element is None or not element.playable:
            return False
        element.playing = True
        return True

    def pause(self) -> bool:
        element = self._element
        if element is None or not element.playable:
            return False
        element.playing = False
        return True


class Emitter(Protocol):
    async def emit(self, event_type: SignalEvent | str, payload: Any = None) -> None: ...


class SharedMediaController:
    """Apply local media actions to the stage and mirror them to other endpoints."""

    def __init__(
        self,
        transport: Emitter,
        stage: MediaStage | None = None,
        *,
        clock: Callable[[], float] = wall_clock_ms,
    ) -> None:
        self._transport = transport
        self.stage = stage or MediaStage()
        self._clock = clock

    # ------------------------------------------------------------------ local actions

    async def load_youtube(self, url: str) -> str:
        video_id = extract_youtube_video_id(url)
        if not video_id:
            raise InvalidMediaError("Invalid YouTube URL")
        self.stage.show(MediaElement(kind=MediaKind.EMBED, src=youtube_embed_url(video_id), playing=True))
        await self._transport.emit(
            SignalEvent.SYNC_YOUTUBE_VIDEO,
            {"videoId": video_id, "timestamp": self._clock()},
        )
        return video_id

    async def upload(self, data: bytes, content_type: str) -> MediaElement:
        """Share a local file inline as a data URL."""

        kind = media_kind_for(content_type)
        data_url = build_data_url(data, content_type)
        element = self.stage.show(self._element_for(kind, data_url))
        await self._transport.emit(SignalEvent.MEDIA_UPLOADED, {"dataUrl": data_url, "type": content_type})
        return element

    async def share_path(self, path: str, content_type: str) -> MediaElement:
        """Share media already stored by the upload endpoint."""

        kind = media_kind_for(content_type)
        element = self.stage.show(self._element_for(kind, path))
        await self._transport.emit(SignalEvent.MEDIA_UPLOADED, {"path": path, "type": content_type})
        return element

    async def play(self, position: float) -> None:
        self.stage.seek(position)
        self.stage.play()
        await self._transport.emit(SignalEvent.PLAY_VIDEO, position)

    async def pause(self, position: float) -> None:
        self.stage.seek(position)
        self.stage.pause()
        await self._transport.emit(SignalEvent.PAUSE_VIDEO, position)

    # ------------------------------------------------------------------ remote events

    async def on_sync_youtube_video(self, payload: dict[str, Any]) -> float:
        """Start the shared video offset by the time the event spent in flight."""

        offset = compute_start_offset(float(payload["timestamp"]), self._clock())
        self.stage.show(
            MediaElement(
                kind=MediaKind.EMBED,
                src=youtube_embed_url(payload["videoId"], offset),
                position=offset,
                playing=True,
            )
        )
        return offset

    async def on_youtube_loaded(self, payload: str) -> None:
        video_id = extract_youtube_video_id(payload) if isinstance(payload, str) else None
        if video_id:
            self.stage.show(MediaElement(kind=MediaKind.EMBED, src=youtube_embed_url(video_id), playing=True))

    async def on_play_video(self, payload: float) -> None:
        self.stage.seek(float(payload))
        self.stage.play()

    async def on_pause_video(self, payload: float) -> None:
        self.stage.seek(float(payload))
        self.stage.pause()

    async def on_media_uploaded(self, payload: dict[str, Any]) -> None:
        content_type = payload.get("type") or ""
        source = payload.get("dataUrl") or payload.get("path")
        if not source or not content_type.startswith(SUPPORTED_MEDIA_PREFIXES):
            logger.warning("Ignoring shared media of type %r", content_type)
            return
        self.stage.show(self._element_for(media_kind_for(content_type), source))

    async def on_video_uploaded(self, payload: str) -> None:
        if isinstance(payload, str) and payload:
            self.stage.show(self._element_for(MediaKind.VIDEO, payload))

    @staticmethod
    def _element_for(kind: MediaKind, src: str) -> MediaElement:
        return MediaElement(kind=kind, src=src, playing=kind is MediaKind.VIDEO)
