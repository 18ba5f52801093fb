"""Wires local stores, the remote store and the sync engine together."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .configuration import ConfigurationBundle
from .library import DeckLibrary
from .storage import KeyValueStore
from .sync.blobs import ContentAddressableStore
from .sync.conflict import ConflictChoice
from .sync.drive import CredentialsFileTokenProvider, DriveFileStore, StaticTokenProvider
from .sync.engine import SyncEngine, SyncOutcome, SyncSettings
from .sync.remote import FolderFileStore, RemoteFileStore
from .sync.scheduler import AUTO_SYNC_FLAG, AutoSyncScheduler, SyncRuntime
from .sync.tombstones import TombstoneTracker

logger = logging.getLogger("cardcraft.workspace")

DRIVE_TOKEN_ENV = "CARDCRAFT_DRIVE_TOKEN"
SYNC_TIMEOUT_SECONDS = 300.0


def build_remote_store(
    settings: SyncSettings,
    home_dir: Path,
    env: Optional[Mapping[str, str]] = None,
) -> RemoteFileStore:
    """Create the remote store selected by ``sync.provider``."""
    env_source = env if env is not None else os.environ
    if settings.provider == "drive":
        token = env_source.get(DRIVE_TOKEN_ENV)
        if token:
            tokens = StaticTokenProvider(token)
        else:
            tokens = CredentialsFileTokenProvider(settings.resolve_path(home_dir, settings.drive_credentials_file))
        return DriveFileStore(tokens, settings.drive_folder_name, timeout=settings.drive_timeout)
    return FolderFileStore(settings.resolve_path(home_dir, settings.folder_path))


@dataclass
class Workspace:
    """Every long-lived service the CLI needs, opened from one configuration."""

    config: ConfigurationBundle
    settings: SyncSettings
    store: KeyValueStore
    images: ContentAddressableStore
    tombstones: TombstoneTracker
    library: DeckLibrary
    remote: RemoteFileStore
    engine: SyncEngine
    runtime: SyncRuntime
    scheduler: Optional[AutoSyncScheduler] = None

    @classmethod
    def open(
        cls,
        config: ConfigurationBundle,
        *,
        remote: Optional[RemoteFileStore] = None,
        auto_sync: Optional[bool] = None,
    ) -> "Workspace":
        settings = SyncSettings.from_config(config.merged)
        storage = config.section("storage")
        store = KeyValueStore(config.resolve_path(storage.get("state_dir", "state")))
        images = ContentAddressableStore(config.resolve_path(storage.get("images_db", "state/images.db")))
        images.initialize()
        tombstones = TombstoneTracker(store)
        library = DeckLibrary(store, tombstones, images)
        library.migrate_inline_images()

        remote_store = remote if remote is not None else build_remote_store(settings, config.home_dir)
        engine = SyncEngine(
            library,
            images,
            tombstones,
            remote_store,
            window_ms=settings.conflict_window_ms,
            on_deck_error=settings.on_deck_error,
        )
        runtime = SyncRuntime()
        runtime.start()

        workspace = cls(
            config=config,
            settings=settings,
            store=store,
            images=images,
            tombstones=tombstones,
            library=library,
            remote=remote_store,
            engine=engine,
            runtime=runtime,
        )
        if settings.auto if auto_sync is None else auto_sync:
            workspace.scheduler = AutoSyncScheduler(
                runtime.loop,
                engine,
                settings.debounce_seconds,
                workspace.should_auto_sync,
            )
            library.subscribe(workspace._on_library_change)
        logger.info(
            "Workspace opened (%d decks, provider %s)", len(library.deck_ids()), settings.provider
        )
        return workspace

    @property
    def sync_enabled(self) -> bool:
        return self.store.get_flag(AUTO_SYNC_FLAG)

    def set_sync_enabled(self, enabled: bool) -> None:
        self.store.set_flag(AUTO_SYNC_FLAG, enabled)

    def should_auto_sync(self) -> bool:
        return self.sync_enabled and self.remote.is_signed_in

    def _on_library_change(self, event: str, deck_id: str) -> None:
        # Writes made by the engine itself never schedule another pass.
        if event != "synced" and self.scheduler is not None:
            self.scheduler.notify()

    def sync(self, timeout: float = SYNC_TIMEOUT_SECONDS) -> SyncOutcome:
        return self.runtime.call(self.engine.run(), timeout)

    def resolve_conflict(self, choice: ConflictChoice, timeout: float = SYNC_TIMEOUT_SECONDS) -> SyncOutcome:
        return self.runtime.call(self.engine.resolve(choice), timeout)

    def dismiss_conflict(self) -> SyncOutcome:
        async def _dismiss() -> SyncOutcome:
            return self.engine.dismiss()

        return self.runtime.call(_dismiss(), SYNC_TIMEOUT_SECONDS)

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel()
        aclose = getattr(self.remote, "aclose", None)
        if aclose is not None and self.runtime.running:
            try:
                self.runtime.call(aclose(), 5.0)
            except Exception:
                logger.exception("Failed to close remote store")
        self.runtime.stop()
        self.images.close()


__all__ = ["DRIVE_TOKEN_ENV", "Workspace", "build_remote_store"]
