"""Tests for conflict detection and the resolver state machine."""

from __future__ import annotations

import pytest

from cardcraft.errors import ConflictStateError
from cardcraft.models import Deck, serialize_deck
from cardcraft.sync.conflict import ConflictChoice, ConflictResolver, ResolverState, SyncConflict, is_conflict
from cardcraft.sync.remote import RemoteFile, format_rfc3339_ms

from conftest import BASE_MS


def _remote(modified_ms: int) -> RemoteFile:
    return RemoteFile(id="f1", name="deck-d1.json", modified_time=format_rfc3339_ms(modified_ms))


def _conflict(remaining=None) -> SyncConflict:
    deck = Deck(id="d1", name="Space", updated_at=BASE_MS)
    return SyncConflict(
        local_deck=deck,
        local_content=serialize_deck(deck),
        remote_file=_remote(BASE_MS + 5000),
        remote_content="{}",
        remaining=list(remaining or []),
    )


@pytest.mark.parametrize(
    "remote_ms, local_hash, remote_hash, expected",
    [
        (BASE_MS + 1001, "a", "b", True),
        (BASE_MS + 1000, "a", "b", False),
        (BASE_MS + 60_000, "a", "a", False),
        (BASE_MS - 60_000, "a", "b", False),
    ],
)
def test_is_conflict(remote_ms, local_hash, remote_hash, expected):
    assert is_conflict(_remote(remote_ms), BASE_MS, local_hash, remote_hash) is expected


def test_no_remote_file_is_never_a_conflict():
    assert is_conflict(None, BASE_MS, "a", "b") is False


def test_resolver_lifecycle():
    resolver = ConflictResolver()
    conflict = _conflict(["d2"])

    resolver.begin(conflict)
    assert resolver.state is ResolverState.CONFLICT_PENDING
    assert resolver.pending

    assert resolver.present() is conflict
    assert resolver.state is ResolverState.RESOLVING

    assert resolver.finish(ConflictChoice.USE_CLOUD) is conflict
    assert resolver.state is ResolverState.NORMAL
    assert resolver.conflict is None


def test_finish_straight_from_pending():
    resolver = ConflictResolver()
    resolver.begin(_conflict())

    resolver.finish(ConflictChoice.KEEP_LOCAL)

    assert resolver.state is ResolverState.NORMAL


def test_dismiss_returns_dropped_queue():
    resolver = ConflictResolver()
    resolver.begin(_conflict(["d2", "d3"]))

    assert resolver.dismiss() == ["d2", "d3"]
    assert resolver.state is ResolverState.NORMAL


def test_only_one_conflict_at_a_time():
    resolver = ConflictResolver()
    resolver.begin(_conflict())

    with pytest.raises(ConflictStateError):
        resolver.begin(_conflict())


def test_actions_without_conflict_raise():
    resolver = ConflictResolver()
    with pytest.raises(ConflictStateError):
        resolver.present()
    with pytest.raises(ConflictStateError):
        resolver.finish(ConflictChoice.KEEP_LOCAL)
    with pytest.raises(ConflictStateError):
        resolver.dismiss()


def test_conflict_summary():
    data = _conflict(["d2"]).to_dict()

    assert data["deck_id"] == "d1"
    assert data["deck_name"] == "Space"
    assert data["remaining"] == ["d2"]
