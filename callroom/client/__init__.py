"""Headless call room client."""
from .media import InvalidMediaError, MediaStage, SharedMediaController
from .peer import CallInProgressError, CallSession, CallState, PeerConnectionManager
from .room import RoomClient
from .transport import SignalingClient

__all__ = [
    "CallInProgressError",
    "CallSession",
    "CallState",
    "InvalidMediaError",
    "MediaStage",
    "PeerConnectionManager",
    "RoomClient",
    "SharedMediaController",
    "SignalingClient",
]
