"""In-memory table of active call pairings keyed by call id."""
from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


def new_call_id() -> str:
    return uuid4().hex


@dataclass
class CallPairing:
    call_id: str
    caller: str
    callee: str
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    sequence: int = 0

    @property
    def parties(self) -> tuple[str, str]:
        return (self.caller, self.callee)

    def involves(self, username: str) -> bool:
        return username in (self.caller, self.callee)

    def matches(self, first: str, second: str) -> bool:
        """Return True when the pairing covers the unordered pair ``{first, second}``."""

        return {self.caller, self.callee} == {first, second}

    def other(self, username: str) -> str:
        return self.callee if username == self.caller else self.caller


class CallSessionTracker:
    """Small call registry with TTL eviction for pairings that never end cleanly."""

    def __init__(self, ttl_seconds: int = 6 * 60 * 60, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._calls: Dict[str, CallPairing] = {}
        self._sequence = itertools.count(1)

    def record(self, caller: str, callee: str, call_id: str | None = None) -> CallPairing:
        """Register (or refresh) the pairing created when an offer is relayed."""

        self._evict_expired()
        resolved_id = call_id or new_call_id()
        now = self._clock()
        existing = self._calls.get(resolved_id)
        if existing is not None:
            if existing.matches(caller, callee):
                existing.last_seen = now
                return existing
            logger.warning("Call id %s already belongs to %s; issuing a new one", resolved_id, existing.parties)
            resolved_id = new_call_id()
        pairing = CallPairing(
            call_id=resolved_id,
            caller=caller,
            callee=callee,
            created_at=now,
            last_seen=now,
            sequence=next(self._sequence),
        )
        self._calls[resolved_id] = pairing
        return pairing

    def get(self, call_id: str) -> Optional[CallPairing]:
        self._evict_expired()
        return self._calls.get(call_id)

    def find(self, first: str, second: str) -> Optional[CallPairing]:
        """Return the most recently recorded pairing between two usernames."""

        self._evict_expired()
        candidates = [pairing for pairing in self._calls.values() if pairing.matches(first, second)]
        if not candidates:
            return None
        return max(candidates, key=lambda pairing: pairing.sequence)

    def involving(self, username: str) -> list[CallPairing]:
        self._evict_expired()
        return [pairing for pairing in self._calls.values() if pairing.involves(username)]

    def touch(self, call_id: str) -> None:
        pairing = self._calls.get(call_id)
        if pairing is not None:
            pairing.last_seen = self._clock()

    def discard(self, call_id: str) -> Optional[CallPairing]:
        return self._calls.pop(call_id, None)

    def __len__(self) -> int:
        return len(self._calls)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [key for key, pairing in self._calls.items() if now - pairing.last_seen > self._ttl]
        for key in expired:
            self._calls.pop(key, None)
