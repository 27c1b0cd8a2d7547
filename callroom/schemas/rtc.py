"""Data contracts for RTC endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field


class IceServer(BaseModel):
    urls: list[str] = Field(..., description="STUN server URLs")


class IceServersResponse(BaseModel):
    ice_servers: list[IceServer] = Field(default_factory=list, serialization_alias="iceServers")


class PresenceEntry(BaseModel):
    username: str
    id: str = Field(..., description="Connection identifier owning the username")


class PresenceResponse(BaseModel):
    users: dict[str, PresenceEntry] = Field(default_factory=dict)
    count: int = Field(..., ge=0)
