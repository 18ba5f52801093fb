"""Tests for the four-phase sync engine."""

from __future__ import annotations

import asyncio

import pytest

from cardcraft.errors import ConflictStateError, DeckFormatError, RemoteStoreError, TransportError
from cardcraft.models import Deck, parse_deck, serialize_deck
from cardcraft.sync.blobs import image_file_name, to_data_url
from cardcraft.sync.conflict import ConflictChoice, ResolverState
from cardcraft.sync.engine import EngineState, SyncStatus
from cardcraft.sync.remote import deck_file_name

from conftest import PNG_BYTES


def _run(engine, *args, **kwargs):
    return asyncio.run(engine.run(*args, **kwargs))


def _remote_variant(deck: Deck, name: str) -> str:
    variant = deck.copy()
    variant.name = name
    return serialize_deck(variant)


def test_first_pass_uploads_and_round_trips(harness):
    library = harness.library
    deck = library.create("Dungeon")
    library.add_card(deck.id, "Goblin", {"hp": 3})
    engine = harness.engine()

    outcome = _run(engine)

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.uploaded == [deck.id]
    remote = parse_deck(harness.remote.content_of(deck_file_name(deck.id)))
    local = library.get(deck.id)
    assert [c.to_dict() for c in remote.cards] == [c.to_dict() for c in local.cards]
    assert remote.style == local.style
    assert engine.state is EngineState.IDLE


def test_second_pass_skips_unchanged_deck(harness):
    deck = harness.library.create("Dungeon")
    engine = harness.engine()
    _run(engine)

    outcome = _run(engine)

    assert outcome.skipped == [deck.id]
    assert outcome.uploaded == []
    assert harness.remote.saves_of(deck_file_name(deck.id)) == 1


def test_identical_content_never_conflicts_despite_clock_gap(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(deck_file_name(deck.id), serialize_deck(deck), modified_ms=deck.updated_at + 86_400_000)

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.skipped == [deck.id]


def test_remote_newer_within_window_is_overwritten(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Cloud edit"), modified_ms=deck.updated_at + 1000
    )

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.uploaded == [deck.id]
    assert harness.remote.content_of(deck_file_name(deck.id)) == serialize_deck(harness.library.get(deck.id))


def test_remote_newer_beyond_window_pauses_on_conflict(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Cloud edit"), modified_ms=deck.updated_at + 1001
    )
    engine = harness.engine()

    outcome = _run(engine)

    assert outcome.status is SyncStatus.CONFLICT
    assert outcome.conflict.deck_id == deck.id
    assert engine.state is EngineState.PAUSED
    assert engine.resolver.state is ResolverState.CONFLICT_PENDING


def test_custom_window_is_honoured(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Cloud edit"), modified_ms=deck.updated_at + 3000
    )

    outcome = _run(harness.engine(window_ms=5000))

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.uploaded == [deck.id]


def test_local_newer_with_different_content_uploads(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Old"), modified_ms=deck.updated_at - 60_000
    )

    outcome = _run(harness.engine())

    assert outcome.uploaded == [deck.id]


def test_keep_local_makes_remote_match_pre_conflict_local(harness):
    deck = harness.library.create("Dungeon")
    local_before = serialize_deck(harness.library.get(deck.id))
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Cloud edit"), modified_ms=deck.updated_at + 5000
    )
    engine = harness.engine()
    _run(engine)

    outcome = asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))

    assert outcome.status is SyncStatus.SUCCESS
    assert harness.remote.content_of(deck_file_name(deck.id)) == local_before
    assert engine.state is EngineState.IDLE
    assert engine.resolver.state is ResolverState.NORMAL


def test_use_cloud_makes_local_match_pre_conflict_remote(harness):
    deck = harness.library.create("Dungeon")
    remote_content = _remote_variant(deck, "Cloud edit")
    harness.remote.put(deck_file_name(deck.id), remote_content, modified_ms=deck.updated_at + 5000)
    engine = harness.engine()
    _run(engine)

    outcome = asyncio.run(engine.resolve(ConflictChoice.USE_CLOUD))

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.downloaded == [deck.id]
    assert serialize_deck(harness.library.get(deck.id)) == remote_content


def test_resume_attempts_each_remaining_deck_exactly_once(harness):
    library = harness.library
    first = library.create("First")
    harness.clock.advance(10)
    second = library.create("Second")
    harness.clock.advance(10)
    third = library.create("Third")
    harness.remote.put(
        deck_file_name(second.id), _remote_variant(second, "Cloud"), modified_ms=second.updated_at + 5000
    )
    engine = harness.engine()

    paused = _run(engine)
    assert paused.uploaded == [first.id]
    assert paused.conflict.remaining == [third.id]

    resumed = asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))

    assert resumed.uploaded == [second.id, third.id]
    assert harness.remote.saves_of(deck_file_name(first.id)) == 1
    assert harness.remote.saves_of(deck_file_name(third.id)) == 1


def test_resumed_pass_skips_discovery(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Cloud"), modified_ms=deck.updated_at + 5000
    )
    engine = harness.engine()
    _run(engine)
    stranger = Deck(id="remote-only", name="Stranger", updated_at=1)
    harness.remote.put(deck_file_name(stranger.id), serialize_deck(stranger))

    outcome = asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))

    assert outcome.downloaded == []
    assert harness.library.find("remote-only") is None


def test_run_while_paused_is_busy(harness):
    deck = harness.library.create("Dungeon")
    harness.remote.put(
        deck_file_name(deck.id), _remote_variant(deck, "Cloud"), modified_ms=deck.updated_at + 5000
    )
    engine = harness.engine()
    _run(engine)
    calls_before = len(harness.remote.calls)

    outcome = _run(engine)

    assert outcome.status is SyncStatus.BUSY
    assert len(harness.remote.calls) == calls_before
    assert engine.state is EngineState.PAUSED


def test_dismiss_aborts_remaining_queue(harness):
    library = harness.library
    first = library.create("First")
    harness.clock.advance(10)
    second = library.create("Second")
    harness.remote.put(
        deck_file_name(first.id), _remote_variant(first, "Cloud"), modified_ms=first.updated_at + 5000
    )
    engine = harness.engine()
    _run(engine)

    outcome = engine.dismiss()

    assert outcome.status is SyncStatus.ABORTED
    assert engine.state is EngineState.IDLE
    assert harness.remote.content_of(deck_file_name(second.id)) is None


def test_unreadable_cloud_copy_cannot_be_chosen(harness):
    library = harness.library
    first = library.create("First")
    harness.clock.advance(10)
    second = library.create("Second")
    harness.remote.put(deck_file_name(first.id), "{corrupt", modified_ms=first.updated_at + 5000)
    engine = harness.engine()
    assert _run(engine).status is SyncStatus.CONFLICT

    with pytest.raises(DeckFormatError, match="unreadable"):
        asyncio.run(engine.resolve(ConflictChoice.USE_CLOUD))

    assert engine.state is EngineState.PAUSED
    assert engine.conflict.remaining == [second.id]
    assert library.get(first.id).name == "First"

    outcome = asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.uploaded == [first.id, second.id]
    assert parse_deck(harness.remote.content_of(deck_file_name(first.id))).name == "First"


def test_failure_while_resuming_leaves_engine_idle_for_next_pass(harness):
    library = harness.library
    first = library.create("First")
    harness.clock.advance(10)
    second = library.create("Second")
    harness.remote.put(
        deck_file_name(first.id), _remote_variant(first, "Cloud"), modified_ms=first.updated_at + 5000
    )
    harness.remote.fail("save", deck_file_name(second.id), TransportError("offline"))
    engine = harness.engine()
    _run(engine)

    failed = asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))

    assert failed.status is SyncStatus.FAILED
    assert failed.uploaded == [first.id]
    assert engine.state is EngineState.IDLE
    assert engine.conflict is None
    assert engine.resolver.state is ResolverState.NORMAL

    harness.remote.failures.clear()
    retried = _run(engine)

    assert retried.status is SyncStatus.SUCCESS
    assert retried.skipped == [first.id]
    assert retried.uploaded == [second.id]


def test_resolve_without_conflict_raises(harness):
    engine = harness.engine()
    with pytest.raises(ConflictStateError):
        asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))
    with pytest.raises(ConflictStateError):
        engine.dismiss()


def test_tombstoned_deck_is_deleted_and_not_rediscovered(harness):
    library = harness.library
    deck = library.create("Doomed")
    engine = harness.engine()
    _run(engine)
    library.delete(deck.id)

    outcome = _run(engine)

    assert outcome.deleted_remote == [deck.id]
    assert deck.id not in outcome.downloaded
    assert library.find(deck.id) is None
    assert harness.remote.content_of(deck_file_name(deck.id)) is None
    assert harness.tombstones.pending_deletions() == []


def test_tombstone_without_remote_file_is_cleared(harness):
    harness.tombstones.record_deletion("never-uploaded")

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert harness.tombstones.pending_deletions() == []


def test_tombstone_survives_transport_failure(harness):
    deck = Deck(id="doomed", name="Doomed", updated_at=1)
    harness.remote.put(deck_file_name(deck.id), serialize_deck(deck))
    harness.tombstones.record_deletion(deck.id)
    harness.remote.fail("delete", deck_file_name(deck.id), TransportError("connection reset"))

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.FAILED
    assert outcome.error_kind == "transport"
    assert harness.tombstones.pending_deletions() == [deck.id]
    assert harness.library.find(deck.id) is None


def test_tombstone_cleared_after_rejected_delete(harness):
    deck = Deck(id="doomed", name="Doomed", updated_at=1)
    harness.remote.put(deck_file_name(deck.id), serialize_deck(deck))
    harness.tombstones.record_deletion(deck.id)
    harness.remote.fail("delete", deck_file_name(deck.id), RemoteStoreError("forbidden"))

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert harness.tombstones.pending_deletions() == []
    assert harness.library.find(deck.id) is None


def test_discovery_isolates_bad_remote_files(harness):
    good = Deck(id="good", name="Good", updated_at=5)
    mismatched = Deck(id="other", name="Mismatch", updated_at=5)
    harness.remote.put(deck_file_name("broken"), "{not json")
    harness.remote.put(deck_file_name("no-cards"), '{"id": "no-cards"}')
    harness.remote.put(deck_file_name("claimed"), serialize_deck(mismatched))
    harness.remote.put(deck_file_name(good.id), serialize_deck(good))

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.downloaded == ["good"]
    assert len(outcome.warnings) == 3
    assert harness.library.get("good").name == "Good"


def test_discovery_skips_remote_decks_with_unstorable_values(harness):
    good = Deck(id="good", name="Good", updated_at=5)
    harness.remote.put(deck_file_name("huge"), '{"id": "huge", "cards": [], "updatedAt": 1e999}')
    harness.remote.put(deck_file_name("nan"), '{"id": "nan", "cards": [], "updatedAt": NaN}')
    harness.remote.put(deck_file_name("surr"), r'{"id": "surr", "cards": [], "name": "bad \ud800"}')
    harness.remote.put(deck_file_name(good.id), serialize_deck(good))

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.downloaded == ["good"]
    assert len(outcome.warnings) == 3
    assert harness.library.deck_ids() == ["good"]
    assert [entry["id"] for entry in harness.store.get("decks")] == ["good"]
    assert not list(harness.store.state_dir.glob("*.tmp"))

    harness.library.create("Still editable")
    assert len(harness.store.get("decks")) == 2


def test_discovery_pulls_referenced_images(harness):
    ref = harness.images.put_ref(PNG_BYTES, "image/png")
    harness.remote.put(image_file_name(ref.hash, "image/png"), PNG_BYTES)
    harness.images.delete(ref.hash)
    remote_deck = Deck.from_dict(
        {"id": "art", "name": "Art", "cards": [{"id": "c1", "data": {"art": ref.token}}], "updatedAt": 5}
    )
    harness.remote.put(deck_file_name("art"), serialize_deck(remote_deck))

    outcome = _run(harness.engine())

    assert outcome.images_downloaded == 1
    assert harness.images.contains(ref.hash)
    assert harness.images.get(ref.hash).mime_type == "image/png"


def test_missing_remote_image_does_not_block_discovery(harness):
    remote_deck = Deck.from_dict(
        {"id": "art", "cards": [{"id": "c1", "data": {"art": "ref:" + "a" * 64}}]}
    )
    harness.remote.put(deck_file_name("art"), serialize_deck(remote_deck))

    outcome = _run(harness.engine())

    assert outcome.downloaded == ["art"]
    assert harness.images.resolve("ref:" + "a" * 64) is None


def test_images_are_pushed_once_before_deck(harness):
    library = harness.library
    deck = library.create("Art")
    library.add_card(deck.id, "One", {"art": to_data_url(PNG_BYTES, "image/png")})
    library.add_card(deck.id, "Two", {"art": to_data_url(PNG_BYTES, "image/png")})
    image_hash = library.get(deck.id).image_hashes()[0]
    engine = harness.engine()

    outcome = _run(engine)

    image_name = image_file_name(image_hash, "image/png")
    assert outcome.images_uploaded == 1
    assert harness.remote.saves_of(image_name) == 1
    image_call = harness.remote.calls.index(("save", image_name))
    deck_call = harness.remote.calls.index(("save", deck_file_name(deck.id)))
    assert image_call < deck_call

    library.rename(deck.id, "Art 2")
    _run(engine)
    assert harness.remote.saves_of(image_name) == 1


def test_image_push_failure_does_not_block_deck(harness):
    library = harness.library
    deck = library.create("Art")
    library.add_card(deck.id, "One", {"art": to_data_url(PNG_BYTES, "image/png")})
    image_hash = library.get(deck.id).image_hashes()[0]
    harness.remote.fail("save", image_file_name(image_hash, "image/png"), TransportError("timeout"))

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.SUCCESS
    assert outcome.uploaded == [deck.id]
    assert outcome.images_uploaded == 0


def test_authentication_failure_attempts_nothing(harness):
    harness.library.create("Dungeon")
    harness.remote.signed_in = False

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.FAILED
    assert outcome.error_kind == "authentication"
    assert harness.remote.calls == [("sign_in", "")]


def test_abort_policy_stops_at_failing_deck(harness):
    library = harness.library
    first = library.create("First")
    second = library.create("Second")
    harness.remote.fail("save", deck_file_name(first.id), TransportError("connection reset"))

    outcome = _run(harness.engine())

    assert outcome.status is SyncStatus.FAILED
    assert outcome.error_kind == "transport"
    assert harness.remote.saves_of(deck_file_name(second.id)) == 0


def test_continue_policy_reports_errors_and_finishes_queue(harness):
    library = harness.library
    first = library.create("First")
    second = library.create("Second")
    harness.remote.fail("save", deck_file_name(first.id), TransportError("connection reset"))

    outcome = _run(harness.engine(on_deck_error="continue"))

    assert outcome.status is SyncStatus.FAILED
    assert outcome.uploaded == [second.id]
    assert len(outcome.errors) == 1
    assert "First" in outcome.errors[0]


def test_unknown_policy_is_rejected(harness):
    with pytest.raises(ValueError):
        harness.engine(on_deck_error="retry")


def test_queued_deck_deleted_before_resume_is_skipped(harness):
    library = harness.library
    first = library.create("First")
    harness.clock.advance(10)
    second = library.create("Second")
    harness.remote.put(
        deck_file_name(first.id), _remote_variant(first, "Cloud"), modified_ms=first.updated_at + 5000
    )
    engine = harness.engine()
    _run(engine)
    library.delete(second.id)

    outcome = asyncio.run(engine.resolve(ConflictChoice.KEEP_LOCAL))

    assert outcome.status is SyncStatus.SUCCESS
    assert second.id not in outcome.uploaded


def test_outcome_to_dict_is_serializable(harness):
    import json

    harness.library.create("Dungeon")
    outcome = _run(harness.engine())

    data = outcome.to_dict()
    assert json.loads(json.dumps(data))["status"] == "success"
    assert data["conflict"] is None
