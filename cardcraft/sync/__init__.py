"""Deck synchronization for CardCraft."""

from __future__ import annotations

from .blobs import ContentAddressableStore, StoredImage, compute_hash, image_file_name
from .remote import FolderFileStore, RemoteFile, RemoteFileStore, deck_file_name
from .tombstones import TombstoneTracker
from .conflict import ConflictChoice, ConflictResolver, ResolverState, SyncConflict, is_conflict
from .engine import EngineState, SyncEngine, SyncOutcome, SyncSettings, SyncStatus
from .scheduler import AUTO_SYNC_FLAG, AutoSyncScheduler, SyncRuntime

__all__ = [
    # Images
    "ContentAddressableStore",
    "StoredImage",
    "compute_hash",
    "image_file_name",
    # Remote
    "FolderFileStore",
    "RemoteFile",
    "RemoteFileStore",
    "deck_file_name",
    # Tombstones
    "TombstoneTracker",
    # Conflict
    "ConflictChoice",
    "ConflictResolver",
    "ResolverState",
    "SyncConflict",
    "is_conflict",
    # Engine
    "EngineState",
    "SyncEngine",
    "SyncOutcome",
    "SyncSettings",
    "SyncStatus",
    # Scheduling
    "AUTO_SYNC_FLAG",
    "AutoSyncScheduler",
    "SyncRuntime",
]
