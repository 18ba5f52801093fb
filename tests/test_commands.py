"""End-to-end tests for slash commands against an opened workspace."""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from cardcraft.app import build_router, execute_cli_command
from cardcraft.configuration import load_runtime_configuration
from cardcraft.models import serialize_deck
from cardcraft.sync.engine import EngineState
from cardcraft.sync.remote import deck_file_name
from cardcraft.workspace import Workspace

from conftest import PNG_BYTES, MemoryFileStore


@pytest.fixture
def remote():
    return MemoryFileStore()


@pytest.fixture
def workspace(tmp_path: Path, remote: MemoryFileStore):
    home = tmp_path / "home"
    home.mkdir()
    config = load_runtime_configuration(home)
    ws = Workspace.open(config, remote=remote, auto_sync=False)
    yield ws
    ws.close()


@pytest.fixture
def run(workspace):
    router = build_router(workspace.config, workspace)

    def _run(line: str) -> str:
        return execute_cli_command(line, router, suppress_output=True)

    return _run


def _only_deck(workspace):
    decks = workspace.library.decks()
    assert len(decks) == 1
    return decks[0]


def test_help_lists_every_command(run):
    output = run("help")
    for name in ("card", "config", "decks", "export", "images", "import", "status", "sync"):
        assert f"/{name}" in output
    assert run("help sync").startswith("/sync:")


def test_deck_and_card_editing(run, workspace):
    assert "created 'Space Pirates'" in run('decks new "Space Pirates"')
    deck = _only_deck(workspace)

    run('card add "Space Pirates" Captain')
    run(f"card set {deck.id[:8]} 0 hp 12")
    run(f"card duplicate {deck.id[:8]} 0")
    run(f"card move {deck.id[:8]} 1 0")

    deck = _only_deck(workspace)
    assert [card.name for card in deck.cards] == ["Captain (copy)", "Captain"]
    assert deck.cards[1].data == {"hp": "12"}
    assert "Captain" in run(f"decks show {deck.id}")

    run(f"card clear {deck.id} 1 hp")
    run(f"card remove {deck.id} 0")
    deck = _only_deck(workspace)
    assert [card.data for card in deck.cards] == [{}]

    assert "renamed to 'Void'" in run(f"decks rename {deck.id} Void")
    assert "deleted 'Void'" in run("decks delete Void")
    assert workspace.library.deck_ids() == []
    assert workspace.tombstones.pending_deletions() == [deck.id]


def test_errors_are_reported_not_raised(run):
    assert run("decks show nothing").startswith("[decks] No unique deck matches")
    assert "missing arguments" in run("card set")
    assert "unknown command" in run("bogus")


def test_card_image_and_images_gc(run, workspace, tmp_path):
    run("decks new Art")
    deck = _only_deck(workspace)
    run(f"card add {deck.id} One")
    art = tmp_path / "art.png"
    art.write_bytes(PNG_BYTES)

    assert "stored image" in run(f"card image {deck.id} 0 art {art}")
    assert "1 image(s)" in run("images")

    run(f"card clear {deck.id} 0 art")
    assert run("images gc") == "[images] removed 1 unreferenced image(s)"
    assert run("images") == "[images] no images stored"


def test_sync_run_uploads_and_enables_auto_sync(run, workspace, remote):
    run("decks new Space")
    deck = _only_deck(workspace)
    assert not workspace.sync_enabled

    output = run("sync run")

    assert output.startswith("[sync] Sync complete: 1 uploaded")
    assert remote.content_of(deck_file_name(deck.id)) == serialize_deck(deck)
    assert workspace.sync_enabled
    assert run("sync disable") == "[sync] automatic sync disabled"
    assert not workspace.sync_enabled


def test_failed_sign_in_does_not_enable_auto_sync(run, workspace, remote):
    remote.signed_in = False

    output = run("sync run")

    assert "Sign-in required" in output
    assert not workspace.sync_enabled


def test_sync_conflict_resolution_flow(run, workspace, remote):
    run("decks new Space")
    deck = _only_deck(workspace)
    cloud = deck.copy()
    cloud.name = "Space (cloud)"
    remote.put(deck_file_name(deck.id), serialize_deck(cloud), modified_ms=deck.updated_at + 10_000)

    output = run("sync run")

    assert "Sync conflict" in output
    assert "This device" in output
    assert workspace.engine.state is EngineState.PAUSED
    assert run("sync run") == "[sync] Sync already paused"

    resolved = run("sync resolve cloud")

    assert resolved.startswith("[sync] Sync complete")
    assert _only_deck(workspace).name == "Space (cloud)"
    assert workspace.engine.state is EngineState.IDLE


def test_unreadable_cloud_copy_keeps_conflict_open(run, workspace, remote):
    run("decks new Space")
    deck = _only_deck(workspace)
    remote.put(deck_file_name(deck.id), "{corrupt", modified_ms=deck.updated_at + 10_000)
    run("sync run")

    refused = run("sync resolve cloud")

    assert refused.startswith("[sync] Cloud copy of 'Space' is unreadable")
    assert workspace.engine.state is EngineState.PAUSED
    assert run("sync resolve local").startswith("[sync] Sync complete")
    assert workspace.engine.state is EngineState.IDLE


def test_sync_dismiss_and_bad_resolve(run, workspace, remote):
    run("decks new Space")
    deck = _only_deck(workspace)
    cloud = deck.copy()
    cloud.name = "Elsewhere"
    remote.put(deck_file_name(deck.id), serialize_deck(cloud), modified_ms=deck.updated_at + 10_000)
    run("sync run")

    assert "choose 'local' or 'cloud'" in run("sync resolve maybe")
    assert "Sync cancelled" in run("sync dismiss")
    assert "No sync pass is waiting" in run("sync dismiss")


def test_sync_status_renders(run):
    output = run("sync status")
    assert "Deck Sync Status" in output
    assert "folder" in output


def test_export_then_import(run, workspace, tmp_path):
    run("decks new Art")
    deck = _only_deck(workspace)
    run(f"card add {deck.id} One")
    art = tmp_path / "art.png"
    art.write_bytes(PNG_BYTES)
    run(f"card image {deck.id} 0 art {art}")
    target = tmp_path / "out.zip"

    assert "exported to" in run(f"export {deck.id} {target}")
    with zipfile.ZipFile(target) as zf:
        assert "deck.json" in zf.namelist()

    output = run(f"import {target}")

    assert "imported 'Art' (1 cards, 1 images)" in output
    assert len(workspace.library.deck_ids()) == 2
    assert run(f"import {tmp_path / 'missing.zip'}").startswith("[import] no such file")


def test_status_shows_workspace(run):
    output = run("status info")
    assert "CardCraft Status" in output
    assert "Sync provider" in output


def test_commands_need_workspace(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    router = build_router(load_runtime_configuration(home), None)

    assert "needs an open workspace" in execute_cli_command("decks", router, suppress_output=True)
    assert "Workspace" in execute_cli_command("status", router, suppress_output=True)
