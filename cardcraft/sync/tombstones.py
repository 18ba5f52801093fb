"""Persisted set of locally deleted decks awaiting remote deletion."""

from __future__ import annotations

import logging
from typing import List

from ..storage import KeyValueStore

logger = logging.getLogger("cardcraft.sync.tombstones")

TOMBSTONES_KEY = "deleted-deck-ids"


class TombstoneTracker:
    """Ordered set of deck ids, persisted through a KeyValueStore."""

    def __init__(self, store: KeyValueStore, key: str = TOMBSTONES_KEY):
        self.store = store
        self.key = key

    def _load(self) -> List[str]:
        raw = self.store.get(self.key, [])
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed tombstone list under '%s'", self.key)
            return []
        return [str(item) for item in raw]

    def record_deletion(self, deck_id: str) -> None:
        pending = self._load()
        if deck_id in pending:
            return
        pending.append(deck_id)
        self.store.set(self.key, pending)
        logger.info("Recorded tombstone for deck %s", deck_id)

    def pending_deletions(self) -> List[str]:
        return self._load()

    def clear(self, deck_id: str) -> None:
        pending = self._load()
        if deck_id not in pending:
            return
        pending.remove(deck_id)
        self.store.set(self.key, pending)
        logger.debug("Cleared tombstone for deck %s", deck_id)

    def __contains__(self, deck_id: object) -> bool:
        return deck_id in self._load()

    def __len__(self) -> int:
        return len(self._load())


__all__ = ["TombstoneTracker", "TOMBSTONES_KEY"]
