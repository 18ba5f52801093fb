"""Conflict detection and the resolution state machine for deck sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import ConflictStateError
from ..models import Deck
from .remote import RemoteFile

logger = logging.getLogger("cardcraft.sync.conflict")

DEFAULT_CONFLICT_WINDOW_MS = 1000


class ResolverState(str, Enum):
    """Where the resolver is in the conflict lifecycle."""
    NORMAL = "normal"
    CONFLICT_PENDING = "conflict_pending"
    RESOLVING = "resolving"


class ConflictChoice(str, Enum):
    """Which replica wins."""
    KEEP_LOCAL = "keep_local"
    USE_CLOUD = "use_cloud"


@dataclass
class SyncConflict:
    """A deck whose local and remote replicas diverged, plus the paused queue."""

    local_deck: Deck
    local_content: str
    remote_file: RemoteFile
    remote_content: str
    remaining: List[str] = field(default_factory=list)

    @property
    def deck_id(self) -> str:
        return self.local_deck.id

    @property
    def local_ms(self) -> int:
        return self.local_deck.updated_at

    @property
    def remote_ms(self) -> int:
        return self.remote_file.modified_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deck_id": self.deck_id,
            "deck_name": self.local_deck.name,
            "local_updated_at": _format_ms(self.local_ms),
            "remote_modified_at": self.remote_file.modified_time,
            "remaining": list(self.remaining),
        }


def is_conflict(
    remote_file: Optional[RemoteFile],
    local_updated_at: int,
    local_hash: str,
    remote_hash: str,
    window_ms: int = DEFAULT_CONFLICT_WINDOW_MS,
) -> bool:
    """Three-part divergence test.

    A conflict needs a remote file, a remote modification time later than the
    local edit by more than ``window_ms``, and different content hashes.
    """
    if remote_file is None:
        return False
    if remote_file.modified_ms - local_updated_at <= window_ms:
        return False
    return local_hash != remote_hash


class ConflictResolver:
    """Pauses a sync pass on divergence until the user picks a winner."""

    def __init__(self) -> None:
        self._state = ResolverState.NORMAL
        self._conflict: Optional[SyncConflict] = None

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def conflict(self) -> Optional[SyncConflict]:
        return self._conflict

    @property
    def pending(self) -> bool:
        return self._state is not ResolverState.NORMAL

    def begin(self, conflict: SyncConflict) -> None:
        if self._state is not ResolverState.NORMAL:
            raise ConflictStateError(
                f"Cannot start a conflict while resolver is {self._state.value}"
            )
        self._conflict = conflict
        self._state = ResolverState.CONFLICT_PENDING
        logger.info(
            "Conflict on deck %s (local %s, remote %s); %d deck(s) queued behind it",
            conflict.deck_id,
            _format_ms(conflict.local_ms),
            conflict.remote_file.modified_time,
            len(conflict.remaining),
        )

    def present(self) -> SyncConflict:
        """Mark the conflict as shown to the user."""
        conflict = self._require_conflict()
        self._state = ResolverState.RESOLVING
        return conflict

    def finish(self, choice: ConflictChoice) -> SyncConflict:
        """Close the conflict with a winner; returns the captured conflict."""
        conflict = self._require_conflict()
        self._conflict = None
        self._state = ResolverState.NORMAL
        logger.info("Conflict on deck %s resolved: %s", conflict.deck_id, ConflictChoice(choice).value)
        return conflict

    def dismiss(self) -> List[str]:
        """Close the conflict without a choice; returns the dropped queue."""
        conflict = self._require_conflict()
        self._conflict = None
        self._state = ResolverState.NORMAL
        logger.info(
            "Conflict on deck %s dismissed; dropping %d queued deck(s)",
            conflict.deck_id,
            len(conflict.remaining),
        )
        return list(conflict.remaining)

    def _require_conflict(self) -> SyncConflict:
        if self._conflict is None or self._state is ResolverState.NORMAL:
            raise ConflictStateError("No conflict is pending")
        return self._conflict


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


__all__ = [
    "ConflictChoice",
    "ConflictResolver",
    "DEFAULT_CONFLICT_WINDOW_MS",
    "ResolverState",
    "SyncConflict",
    "is_conflict",
]
