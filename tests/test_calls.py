"""Tests for the call pairing table."""
from __future__ import annotations

from callroom.services.calls import CallSessionTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_record_generates_ids_and_find_is_unordered():
    tracker = CallSessionTracker()

    pairing = tracker.record("alice", "bob")

    assert pairing.call_id
    assert tracker.get(pairing.call_id) is pairing
    assert tracker.find("bob", "alice") is pairing
    assert pairing.other("alice") == "bob"


def test_find_returns_most_recent_pairing():
    tracker = CallSessionTracker()
    first = tracker.record("alice", "bob", "call-1")
    second = tracker.record("bob", "alice", "call-2")

    assert tracker.find("alice", "bob") is second
    tracker.discard(second.call_id)
    assert tracker.find("alice", "bob") is first


def test_record_with_same_id_refreshes_existing_pairing():
    tracker = CallSessionTracker()
    first = tracker.record("alice", "bob", "call-1")

    again = tracker.record("alice", "bob", "call-1")

    assert again is first
    assert len(tracker) == 1


def test_involving_lists_every_call_of_a_user():
    tracker = CallSessionTracker()
    tracker.record("alice", "bob", "call-1")
    tracker.record("carol", "alice", "call-2")
    tracker.record("carol", "dave", "call-3")

    assert sorted(p.call_id for p in tracker.involving("alice")) == ["call-1", "call-2"]


def test_stale_pairings_expire():
    clock = FakeClock()
    tracker = CallSessionTracker(ttl_seconds=60, clock=clock)
    tracker.record("alice", "bob", "call-1")
    tracker.record("carol", "dave", "call-2")

    clock.now += 30
    tracker.touch("call-2")
    clock.now += 45

    assert tracker.get("call-1") is None
    assert tracker.get("call-2") is not None


def test_call_id_held_by_another_pair_is_not_overwritten():
    tracker = CallSessionTracker()
    first = tracker.record("alice", "bob", "x")

    second = tracker.record("carol", "dave", "x")

    assert second.call_id != "x"
    assert tracker.get("x") is first
    assert tracker.get(second.call_id).parties == ("carol", "dave")
