"""Sync engine: reconciles the local deck library with a remote file store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Set

from ..errors import (
    AuthenticationError,
    CardCraftError,
    ConflictStateError,
    DeckFormatError,
    RemoteNotFoundError,
    RemoteStoreError,
    TransportError,
)
from ..models import Deck, canonical_content_hash, content_hash, parse_deck, serialize_deck
from .blobs import ContentAddressableStore, compute_hash, image_file_name, mime_for_extension, parse_image_file_name
from .conflict import DEFAULT_CONFLICT_WINDOW_MS, ConflictChoice, ConflictResolver, SyncConflict, is_conflict
from .remote import DECK_MIME_TYPE, RemoteFile, RemoteFileStore, deck_file_name, find_file, find_image_file
from .tombstones import TombstoneTracker

if TYPE_CHECKING:
    from ..library import DeckLibrary

logger = logging.getLogger("cardcraft.sync.engine")

ON_DECK_ERROR_POLICIES = ("abort", "continue")


@dataclass
class SyncSettings:
    """Settings for sync operations."""

    provider: str = "folder"  # folder, drive
    auto: bool = True
    debounce_seconds: float = 5.0
    conflict_window_ms: int = DEFAULT_CONFLICT_WINDOW_MS
    on_deck_error: str = "abort"
    folder_path: str = "remote"
    drive_folder_name: str = "CardCraftStudio Data"
    drive_credentials_file: str = "state/drive-credentials.json"
    drive_timeout: float = 30.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        drive = raw.get("drive", {}) or {}
        policy = str(raw.get("on_deck_error", "abort"))
        if policy not in ON_DECK_ERROR_POLICIES:
            logger.warning("Unknown sync.on_deck_error '%s'; using 'abort'", policy)
            policy = "abort"
        return cls(
            provider=str(raw.get("provider", "folder")),
            auto=bool(raw.get("auto", True)),
            debounce_seconds=float(raw.get("debounce_seconds", 5.0)),
            conflict_window_ms=int(raw.get("conflict_window_ms", DEFAULT_CONFLICT_WINDOW_MS)),
            on_deck_error=policy,
            folder_path=str(raw.get("folder_path", "remote")),
            drive_folder_name=str(drive.get("folder_name", "CardCraftStudio Data")),
            drive_credentials_file=str(drive.get("credentials_file", "state/drive-credentials.json")),
            drive_timeout=float(drive.get("timeout", 30.0)),
        )

    def resolve_path(self, home: Path, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else home / path


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    FAILED = "failed"
    ABORTED = "aborted"
    BUSY = "busy"


@dataclass
class SyncOutcome:
    """Terminal result of one sync pass."""

    status: SyncStatus = SyncStatus.SUCCESS
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    downloaded: List[str] = field(default_factory=list)
    deleted_remote: List[str] = field(default_factory=list)
    images_uploaded: int = 0
    images_downloaded: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    message: str = ""
    error_kind: Optional[str] = None
    conflict: Optional[SyncConflict] = None

    @property
    def success(self) -> bool:
        return self.status is SyncStatus.SUCCESS

    def fail(self, kind: str, message: str) -> None:
        self.status = SyncStatus.FAILED
        self.error_kind = kind
        self.message = message
        self.errors.append(message)

    def summary(self) -> str:
        return (
            f"{len(self.uploaded)} uploaded, {len(self.skipped)} unchanged, "
            f"{len(self.downloaded)} downloaded, {len(self.deleted_remote)} deleted remotely"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "uploaded": list(self.uploaded),
            "skipped": list(self.skipped),
            "downloaded": list(self.downloaded),
            "deleted_remote": list(self.deleted_remote),
            "images_uploaded": self.images_uploaded,
            "images_downloaded": self.images_downloaded,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "message": self.message,
            "error_kind": self.error_kind,
            "conflict": self.conflict.to_dict() if self.conflict else None,
        }


class SyncEngine:
    """Runs four-phase sync passes, one at a time.

    Phases: propagate tombstones, upload/skip/conflict per local deck in queue
    order, discover new remote decks (full passes only), report one outcome.
    """

    def __init__(
        self,
        library: "DeckLibrary",
        images: ContentAddressableStore,
        tombstones: TombstoneTracker,
        remote: RemoteFileStore,
        resolver: Optional[ConflictResolver] = None,
        *,
        window_ms: int = DEFAULT_CONFLICT_WINDOW_MS,
        on_deck_error: str = "abort",
    ):
        if on_deck_error not in ON_DECK_ERROR_POLICIES:
            raise ValueError(f"on_deck_error must be one of {ON_DECK_ERROR_POLICIES}")
        self.library = library
        self.images = images
        self.tombstones = tombstones
        self.remote = remote
        self.resolver = resolver or ConflictResolver()
        self.window_ms = window_ms
        self.on_deck_error = on_deck_error
        self._state = EngineState.IDLE
        self._known_images: Set[str] = set()
        self._last_outcome: Optional[SyncOutcome] = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def last_outcome(self) -> Optional[SyncOutcome]:
        return self._last_outcome

    @property
    def conflict(self) -> Optional[SyncConflict]:
        return self.resolver.conflict

    async def run(self, queue_override: Optional[Sequence[str]] = None, *, silent: bool = False) -> SyncOutcome:
        """Run a full pass, or a resumed pass over ``queue_override``."""
        if self._state is not EngineState.IDLE:
            logger.debug("Sync requested while %s; ignoring", self._state.value)
            return SyncOutcome(status=SyncStatus.BUSY, message=f"Sync already {self._state.value}")

        self._state = EngineState.RUNNING
        outcome = SyncOutcome()
        try:
            await self._pass(outcome, queue_override)
        except Exception as e:
            self._record_failure(outcome, e)
        finally:
            if self._state is EngineState.RUNNING:
                self._state = EngineState.IDLE
        return self._complete(outcome, silent)

    async def resolve(self, choice: ConflictChoice, *, silent: bool = False) -> SyncOutcome:
        """Apply the user's choice for the pending conflict and resume the queue."""
        if self._state is not EngineState.PAUSED:
            raise ConflictStateError("No sync pass is waiting on a conflict")
        choice = ConflictChoice(choice)
        pending = self.resolver.conflict
        if choice is ConflictChoice.USE_CLOUD and pending is not None:
            try:
                parse_deck(pending.remote_content)
            except DeckFormatError as e:
                raise DeckFormatError(
                    f"Cloud copy of '{pending.local_deck.name}' is unreadable; keep the local copy or dismiss: {e}"
                ) from e
        conflict = self.resolver.finish(choice)

        self._state = EngineState.RUNNING
        outcome = SyncOutcome()
        try:
            await self.remote.ensure_signed_in()
            files = await self.remote.list_files()
            self._remember_remote_images(files)
            if choice is ConflictChoice.KEEP_LOCAL:
                await self._push_images(conflict.local_deck, outcome)
                await self.remote.save_file(
                    deck_file_name(conflict.deck_id), conflict.local_content, DECK_MIME_TYPE
                )
                outcome.uploaded.append(conflict.deck_id)
            else:
                remote_deck = parse_deck(conflict.remote_content)
                self.library.replace_synced(remote_deck)
                outcome.downloaded.append(remote_deck.id)
                await self._pull_images(remote_deck, files, outcome)
            await self._pass(outcome, conflict.remaining, signed_in=True)
        except Exception as e:
            self._record_failure(outcome, e)
        finally:
            if self._state is EngineState.RUNNING:
                self._state = EngineState.IDLE
        return self._complete(outcome, silent)

    def dismiss(self) -> SyncOutcome:
        """Drop the pending conflict and the rest of its queue."""
        if self._state is not EngineState.PAUSED:
            raise ConflictStateError("No sync pass is waiting on a conflict")
        conflict = self.resolver.conflict
        dropped = self.resolver.dismiss()
        self._state = EngineState.IDLE
        deck_name = conflict.local_deck.name if conflict else "deck"
        outcome = SyncOutcome(
            status=SyncStatus.ABORTED,
            message=f"Sync cancelled at '{deck_name}'; {len(dropped)} deck(s) not synced",
        )
        return self._complete(outcome, silent=False)

    # Pass body

    async def _pass(self, outcome: SyncOutcome, queue_override: Optional[Sequence[str]], signed_in: bool = False) -> None:
        if not signed_in:
            await self.remote.ensure_signed_in()

        drained = await self._drain_tombstones(outcome)

        files = await self.remote.list_files()
        self._remember_remote_images(files)

        resumed = queue_override is not None
        queue = list(queue_override) if resumed else self.library.deck_ids()
        if await self._push_decks(queue, files, outcome):
            return

        if not resumed:
            await self._discover(files, outcome, drained)

        if outcome.errors:
            outcome.status = SyncStatus.FAILED
            outcome.error_kind = outcome.error_kind or "deck"
            outcome.message = f"Sync finished with {len(outcome.errors)} error(s): {outcome.summary()}"
        else:
            outcome.message = f"Sync complete: {outcome.summary()}"

    async def _drain_tombstones(self, outcome: SyncOutcome) -> Set[str]:
        """Delete remote copies of locally deleted decks; returns the ids handled."""
        pending = self.tombstones.pending_deletions()
        if not pending:
            return set()
        files = await self.remote.list_files()
        for deck_id in pending:
            remote = find_file(files, deck_file_name(deck_id))
            if remote is not None:
                try:
                    await self.remote.delete_file(remote.id)
                    outcome.deleted_remote.append(deck_id)
                    logger.info("Deleted remote copy of deck %s", deck_id)
                except TransportError:
                    raise
                except RemoteNotFoundError:
                    logger.debug("Remote copy of deck %s already gone", deck_id)
                except RemoteStoreError as e:
                    logger.warning("Could not delete remote copy of deck %s: %s", deck_id, e)
            self.tombstones.clear(deck_id)
        return set(pending)

    async def _push_decks(self, queue: List[str], files: List[RemoteFile], outcome: SyncOutcome) -> bool:
        """Process ``queue`` in order; returns True when paused on a conflict."""
        for position, deck_id in enumerate(queue):
            deck = self.library.find(deck_id)
            if deck is None:
                logger.debug("Deck %s no longer exists locally; skipping", deck_id)
                continue
            try:
                if await self._sync_deck(deck, files, queue[position + 1:], outcome):
                    return True
            except RemoteStoreError as e:
                if self.on_deck_error != "continue":
                    raise
                message = f"{deck.name} ({deck.id}): {e}"
                outcome.errors.append(message)
                logger.warning("Deck sync failed, continuing: %s", message)
        return False

    async def _sync_deck(
        self,
        deck: Deck,
        files: List[RemoteFile],
        remaining: List[str],
        outcome: SyncOutcome,
    ) -> bool:
        await self._push_images(deck, outcome)

        local_content = serialize_deck(deck)
        name = deck_file_name(deck.id)
        remote = find_file(files, name)
        if remote is None:
            await self.remote.save_file(name, local_content, DECK_MIME_TYPE)
            outcome.uploaded.append(deck.id)
            logger.debug("Uploaded new deck %s", deck.id)
            return False

        remote_content = await self.remote.get_file_content(remote.id)
        local_hash = content_hash(local_content)
        remote_hash = canonical_content_hash(remote_content)
        if local_hash == remote_hash:
            outcome.skipped.append(deck.id)
            return False

        if is_conflict(remote, deck.updated_at, local_hash, remote_hash, self.window_ms):
            conflict = SyncConflict(
                local_deck=deck,
                local_content=local_content,
                remote_file=remote,
                remote_content=remote_content,
                remaining=list(remaining),
            )
            self.resolver.begin(conflict)
            self._state = EngineState.PAUSED
            outcome.status = SyncStatus.CONFLICT
            outcome.conflict = conflict
            outcome.message = f"Conflict on '{deck.name}': choose local or cloud"
            return True

        await self.remote.save_file(name, local_content, DECK_MIME_TYPE)
        outcome.uploaded.append(deck.id)
        logger.debug("Uploaded deck %s", deck.id)
        return False

    async def _discover(self, files: List[RemoteFile], outcome: SyncOutcome, drained: Set[str]) -> None:
        local_ids = set(self.library.deck_ids())
        tombstoned = drained | set(self.tombstones.pending_deletions())
        for remote in files:
            deck_id = remote.deck_id
            if deck_id is None or deck_id in local_ids or deck_id in tombstoned:
                continue
            try:
                deck = parse_deck(await self.remote.get_file_content(remote.id))
                if deck.id != deck_id:
                    raise DeckFormatError(f"file name names deck '{deck_id}' but content has '{deck.id}'")
            except (RemoteStoreError, DeckFormatError) as e:
                message = f"Skipped remote file {remote.name}: {e}"
                outcome.warnings.append(message)
                logger.warning(message)
                continue

            if self.library.put_synced(deck):
                local_ids.add(deck.id)
                outcome.downloaded.append(deck.id)
                logger.info("Downloaded new deck %s (%s)", deck.id, deck.name)
                await self._pull_images(deck, files, outcome)

    # Images

    def _remember_remote_images(self, files: Iterable[RemoteFile]) -> None:
        for remote in files:
            parsed = parse_image_file_name(remote.name)
            if parsed is not None:
                self._known_images.add(parsed[0])

    async def _push_images(self, deck: Deck, outcome: SyncOutcome) -> None:
        for image_hash in deck.image_hashes():
            if image_hash in self._known_images:
                continue
            stored = self.images.get(image_hash)
            if stored is None:
                logger.warning("Deck %s references image %s which is not stored locally", deck.id, image_hash)
                continue
            try:
                await self.remote.save_file(image_file_name(image_hash, stored.mime_type), stored.data, stored.mime_type)
            except RemoteStoreError as e:
                logger.warning("Image %s upload failed, deck sync continues: %s", image_hash, e)
                continue
            self._known_images.add(image_hash)
            outcome.images_uploaded += 1

    async def _pull_images(self, deck: Deck, files: List[RemoteFile], outcome: SyncOutcome) -> None:
        for image_hash in deck.image_hashes():
            if self.images.contains(image_hash):
                continue
            remote = find_image_file(files, image_hash)
            if remote is None:
                logger.warning("Image %s for deck %s is missing remotely", image_hash, deck.id)
                continue
            try:
                data = await self.remote.get_file_bytes(remote.id)
            except RemoteStoreError as e:
                logger.warning("Image %s download failed: %s", image_hash, e)
                continue
            if compute_hash(data) != image_hash:
                logger.warning("Image %s failed its content check; ignoring", remote.name)
                continue
            extension = remote.name.rsplit(".", 1)[-1]
            self.images.put(data, mime_for_extension(extension))
            self._known_images.add(image_hash)
            outcome.images_downloaded += 1

    # Completion

    def _record_failure(self, outcome: SyncOutcome, error: Exception) -> None:
        if isinstance(error, AuthenticationError):
            outcome.fail("authentication", f"Sign-in required: {error}")
        elif isinstance(error, TransportError):
            outcome.fail("transport", f"Connection error: {error}")
        elif isinstance(error, RemoteStoreError):
            outcome.fail("remote", f"Remote store error: {error}")
        elif isinstance(error, CardCraftError):
            outcome.fail("local", f"Sync failed: {error}")
        else:
            logger.exception("Sync failed")
            outcome.fail("internal", f"Sync failed: {error}")

    def _complete(self, outcome: SyncOutcome, silent: bool) -> SyncOutcome:
        self._last_outcome = outcome
        if outcome.status is SyncStatus.FAILED:
            logger.error(outcome.message)
        elif silent:
            logger.debug(outcome.message)
        else:
            logger.info(outcome.message)
        return outcome


__all__ = [
    "EngineState",
    "ON_DECK_ERROR_POLICIES",
    "SyncEngine",
    "SyncOutcome",
    "SyncSettings",
    "SyncStatus",
]
