"""Tests for the presence directory."""
from __future__ import annotations

from callroom.services.presence import PresenceDirectory


def test_join_resolve_and_snapshot():
    directory = PresenceDirectory()

    assert directory.join("alice", "c1") is None
    assert directory.join("bob", "c2") is None

    assert directory.resolve("alice") == "c1"
    assert directory.resolve("nobody") is None
    assert directory.snapshot() == {
        "alice": {"username": "alice", "id": "c1"},
        "bob": {"username": "bob", "id": "c2"},
    }
    assert "alice" in directory
    assert len(directory) == 2


def test_join_overwrites_and_reports_displaced_connection():
    directory = PresenceDirectory()
    directory.join("alice", "c1")

    assert directory.join("alice", "c1") is None
    assert directory.join("alice", "c9") == "c1"
    assert directory.resolve("alice") == "c9"


def test_remove_by_connection():
    directory = PresenceDirectory()
    directory.join("alice", "c1")
    directory.join("bob", "c2")

    assert directory.remove("c1") == "alice"
    assert directory.remove("c1") is None
    assert directory.usernames() == ["bob"]


def test_release_only_when_still_owned():
    directory = PresenceDirectory()
    directory.join("alice", "c1")
    directory.join("alice", "c2")

    assert directory.release("alice", "c1") is False
    assert directory.resolve("alice") == "c2"
    assert directory.release("alice", "c2") is True
    assert len(directory) == 0


def test_snapshot_is_a_copy():
    directory = PresenceDirectory()
    directory.join("alice", "c1")

    snapshot = directory.snapshot()
    snapshot.pop("alice")

    assert directory.resolve("alice") == "c1"
