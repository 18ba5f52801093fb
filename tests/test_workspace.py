"""Tests for workspace wiring."""

from __future__ import annotations

from pathlib import Path

from cardcraft.configuration import load_runtime_configuration
from cardcraft.sync.drive import CredentialsFileTokenProvider, DriveFileStore, StaticTokenProvider
from cardcraft.sync.engine import SyncSettings
from cardcraft.sync.remote import FolderFileStore
from cardcraft.workspace import Workspace, build_remote_store

from conftest import MemoryFileStore


def test_folder_provider_resolves_under_home(tmp_path: Path):
    store = build_remote_store(SyncSettings(folder_path="remote"), tmp_path, env={})

    assert isinstance(store, FolderFileStore)
    assert store.root == tmp_path / "remote"


def test_drive_provider_prefers_env_token(tmp_path: Path):
    settings = SyncSettings(provider="drive")

    from_env = build_remote_store(settings, tmp_path, env={"CARDCRAFT_DRIVE_TOKEN": "abc"})
    from_file = build_remote_store(settings, tmp_path, env={})

    assert isinstance(from_env, DriveFileStore)
    assert isinstance(from_env.tokens, StaticTokenProvider)
    assert isinstance(from_file.tokens, CredentialsFileTokenProvider)
    assert from_file.tokens.path == tmp_path / "state" / "drive-credentials.json"


def test_settings_fall_back_on_unknown_policy():
    settings = SyncSettings.from_config({"sync": {"on_deck_error": "retry", "conflict_window_ms": 2500}})

    assert settings.on_deck_error == "abort"
    assert settings.conflict_window_ms == 2500


def test_auto_sync_follows_flag_and_sign_in(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    remote = MemoryFileStore()
    workspace = Workspace.open(load_runtime_configuration(home), remote=remote, auto_sync=True)
    try:
        assert workspace.scheduler is not None
        assert not workspace.should_auto_sync()

        workspace.set_sync_enabled(True)
        assert workspace.should_auto_sync()

        remote.signed_in = False
        assert not workspace.should_auto_sync()
    finally:
        workspace.close()
    assert not workspace.runtime.running
