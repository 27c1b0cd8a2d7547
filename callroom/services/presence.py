"""In-memory presence directory mapping usernames to live connections."""
from __future__ import annotations

from typing import Dict


class PresenceDirectory:
    """Username -> connection id map with last-writer-wins joins.

    The directory is not synchronised on its own; the signaling manager owns it
    and only touches it while holding its lock.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def join(self, username: str, connection_id: str) -> str | None:
        """Bind ``username`` to ``connection_id`` and return the displaced connection, if any."""

        previous = self._entries.get(username)
        self._entries[username] = connection_id
        if previous == connection_id:
            return None
        return previous

    def resolve(self, username: str) -> str | None:
        return self._entries.get(username)

    def remove(self, connection_id: str) -> str | None:
        """Delete every entry owned by the connection and return the first username removed."""

        owned = [username for username, owner in self._entries.items() if owner == connection_id]
        for username in owned:
            del self._entries[username]
        return owned[0] if owned else None

    def release(self, username: str, connection_id: str) -> bool:
        """Drop ``username`` only while it still belongs to ``connection_id``."""

        if self._entries.get(username) != connection_id:
            return False
        del self._entries[username]
        return True

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Return the wire representation broadcast with ``joined`` events."""

        return {username: {"username": username, "id": owner} for username, owner in self._entries.items()}

    def usernames(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, username: object) -> bool:
        return username in self._entries

    def __len__(self) -> int:
        return len(self._entries)
