"""Schemas for signaling, presence, chat and media-sync frames."""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SignalEvent(str, enum.Enum):
    CONNECTED = "connected"
    JOIN_USER = "join-user"
    JOINED = "joined"
    USER_DISCONNECTED = "user-disconnected"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "icecandidate"
    END_CALL = "end-call"
    CALL_ENDED = "call-ended"
    CHAT_MESSAGE = "chat-message"
    SYNC_YOUTUBE_VIDEO = "sync-youtube-video"
    YOUTUBE_LOADED = "youtube-loaded"
    PLAY_VIDEO = "play-video"
    PAUSE_VIDEO = "pause-video"
    MEDIA_UPLOADED = "media-uploaded"
    VIDEO_UPLOADED = "video-uploaded"
    RECIPIENT_OFFLINE = "recipient-offline"
    ERROR = "error"


class ErrorReason(str, enum.Enum):
    INVALID_JSON = "invalid-json"
    INVALID_PAYLOAD = "invalid-payload"
    UNKNOWN_TYPE = "unknown-type"


SUPPORTED_MEDIA_PREFIXES = ("video/", "image/")


def event(event_type: SignalEvent | str, payload: Any = None) -> dict[str, Any]:
    """Build an outgoing frame."""

    name = event_type.value if isinstance(event_type, SignalEvent) else event_type
    return {"type": name, "payload": payload}


class SignalEnvelope(BaseModel):
    type: str = Field(..., min_length=1)
    payload: Any = None

    @model_validator(mode="before")
    @classmethod
    def _accept_data_alias(cls, value: Any) -> Any:
        if isinstance(value, dict) and "payload" not in value and "data" in value:
            value = dict(value)
            value["payload"] = value.pop("data")
        return value


class JoinUserPayload(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"username": value}
        return value

    @field_validator("username")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("username must not be blank")
        return stripped


class AddressedMessage(BaseModel):
    """Base for frames routed to a single named recipient.

    Unknown fields are preserved so the relay can forward payloads verbatim.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    to: str = Field(..., min_length=1)
    sender: str | None = Field(default=None, alias="from")
    call_id: str | None = Field(default=None, alias="callId")


class OfferMessage(AddressedMessage):
    sender: str = Field(..., min_length=1, alias="from")
    offer: dict[str, Any]


class AnswerMessage(AddressedMessage):
    sender: str = Field(..., min_length=1, alias="from")
    answer: dict[str, Any]


class IceCandidateMessage(AddressedMessage):
    candidate: dict[str, Any] | str | None = None


class EndCallMessage(AddressedMessage):
    sender: str = Field(..., min_length=1, alias="from")
    reason: str | None = None


class CallEndedMessage(BaseModel):
    """Termination request; accepts ``[from, to]`` or ``{from, to, callId}``."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str | None = Field(default=None, alias="from")
    to: str | None = None
    call_id: str | None = Field(default=None, alias="callId")

    @model_validator(mode="before")
    @classmethod
    def _accept_pair(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError("call-ended expects [from, to]")
            return {"from": value[0], "to": value[1]}
        return value

    @model_validator(mode="after")
    def _require_target(self) -> "CallEndedMessage":
        if not self.call_id and not (self.sender and self.to):
            raise ValueError("call-ended needs callId or both parties")
        return self


class ChatMessage(BaseModel):
    username: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class SyncYoutubeVideo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str | None = Field(default=None, alias="videoId")
    timestamp: float = Field(..., description="Origin wall-clock time in epoch milliseconds")


class PlaybackEvent(BaseModel):
    timestamp: float = Field(..., ge=0, description="Player position in seconds")

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_number(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {"timestamp": value}
        return value


class MediaUploaded(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data_url: str | None = Field(default=None, alias="dataUrl")
    path: str | None = None
    type: str

    @field_validator("type")
    @classmethod
    def _supported_type(cls, value: str) -> str:
        if not value.startswith(SUPPORTED_MEDIA_PREFIXES):
            raise ValueError("only video or image media can be shared")
        return value

    @model_validator(mode="after")
    def _require_source(self) -> "MediaUploaded":
        if not (self.data_url or self.path):
            raise ValueError("media-uploaded needs dataUrl or path")
        return self


class MediaReference(BaseModel):
    """Bare string payloads such as ``video-uploaded`` paths or ``youtube-loaded`` URLs."""

    value: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"value": value}
        return value
