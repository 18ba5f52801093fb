"""Local deck library: the always-available replica of the user's decks."""

from __future__ import annotations

import logging
import mimetypes
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from .errors import DeckFormatError, DeckNotFoundError, StorageError
from .models import (
    DEFAULT_DECK_STYLE,
    Card,
    Deck,
    ImageRef,
    new_id,
    now_ms,
    serialize_deck,
)
from .storage import KeyValueStore
from .sync.blobs import ContentAddressableStore, is_data_url
from .sync.tombstones import TombstoneTracker

logger = logging.getLogger("cardcraft.library")

DECKS_KEY = "decks"

MutationListener = Callable[[str, str], None]


class DeckLibrary:
    """Owns the local deck list and records every mutation.

    ``updated_at`` advances only when a mutation changes the deck's canonical
    serialization. Listeners receive ``(event, deck_id)`` where event is one of
    ``created``, ``updated``, ``deleted`` or ``synced``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        tombstones: TombstoneTracker,
        images: ContentAddressableStore,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.tombstones = tombstones
        self.images = images
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: List[MutationListener] = []
        self._decks: List[Deck] = self._load()

    def _load(self) -> List[Deck]:
        raw = self.store.get(DECKS_KEY, [])
        if not isinstance(raw, list):
            logger.error("Deck list in state is not a list; starting empty")
            return []
        decks: List[Deck] = []
        for entry in raw:
            try:
                decks.append(Deck.from_dict(entry))
            except DeckFormatError as e:
                logger.error("Skipping unreadable local deck: %s", e)
        return decks

    def _commit(self, decks: List[Deck]) -> None:
        """Persist ``decks`` and adopt them; the in-memory list is untouched on failure."""
        self.store.set(DECKS_KEY, [deck.to_dict() for deck in decks])
        self._decks = decks

    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, event: str, deck_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, deck_id)
            except Exception:
                logger.exception("Library listener failed for %s %s", event, deck_id)

    # Queries

    def decks(self) -> List[Deck]:
        with self._lock:
            return [deck.copy() for deck in self._decks]

    def deck_ids(self) -> List[str]:
        with self._lock:
            return [deck.id for deck in self._decks]

    def find(self, deck_id: str) -> Optional[Deck]:
        with self._lock:
            index = self._index(deck_id)
            return None if index is None else self._decks[index].copy()

    def get(self, deck_id: str) -> Deck:
        deck = self.find(deck_id)
        if deck is None:
            raise DeckNotFoundError(f"Deck '{deck_id}' not found")
        return deck

    def resolve_id(self, token: str) -> str:
        """Accept a full id, a unique id prefix, or an exact deck name."""
        with self._lock:
            if self._index(token) is not None:
                return token
            by_prefix = [deck.id for deck in self._decks if deck.id.startswith(token)]
            if len(by_prefix) == 1:
                return by_prefix[0]
            by_name = [deck.id for deck in self._decks if deck.name == token]
            if len(by_name) == 1:
                return by_name[0]
        raise DeckNotFoundError(f"No unique deck matches '{token}'")

    def referenced_hashes(self) -> Set[str]:
        with self._lock:
            hashes: Set[str] = set()
            for deck in self._decks:
                hashes.update(deck.image_hashes())
            return hashes

    def _index(self, deck_id: str) -> Optional[int]:
        for index, deck in enumerate(self._decks):
            if deck.id == deck_id:
                return index
        return None

    # Local edits

    def create(self, name: str, style: Optional[Mapping[str, Any]] = None) -> Deck:
        deck = Deck(
            id=new_id(),
            name=name.strip() or "Untitled Deck",
            style=dict(style) if style is not None else dict(DEFAULT_DECK_STYLE),
            updated_at=self._clock(),
        )
        with self._lock:
            self._commit(self._decks + [deck])
        logger.info("Created deck %s (%s)", deck.id, deck.name)
        self._notify("created", deck.id)
        return deck.copy()

    def rename(self, deck_id: str, name: str) -> Deck:
        def _apply(deck: Deck) -> None:
            deck.name = name.strip() or deck.name

        return self._mutate(deck_id, _apply)

    def set_style(self, deck_id: str, updates: Mapping[str, Any]) -> Deck:
        def _apply(deck: Deck) -> None:
            for key, value in updates.items():
                stored = self._store_image_value(value)
                deck.style[key] = stored.token if isinstance(stored, ImageRef) else stored

        return self._mutate(deck_id, _apply)

    def add_card(self, deck_id: str, name: str = "", data: Optional[Dict[str, Any]] = None) -> Card:
        card = Card(id=new_id(), name=name)
        for slot, value in (data or {}).items():
            card.data[slot] = self._store_image_value(value)

        def _apply(deck: Deck) -> None:
            deck.cards.append(card)

        self._mutate(deck_id, _apply)
        return card.copy()

    def remove_card(self, deck_id: str, card_id: str) -> Deck:
        def _apply(deck: Deck) -> None:
            card = self._require_card(deck, card_id)
            deck.cards.remove(card)

        return self._mutate(deck_id, _apply)

    def duplicate_card(self, deck_id: str, card_id: str) -> Card:
        created: Dict[str, Card] = {}

        def _apply(deck: Deck) -> None:
            original = self._require_card(deck, card_id)
            clone = original.copy()
            clone.id = new_id()
            clone.name = f"{original.name} (copy)" if original.name else original.name
            deck.cards.insert(deck.cards.index(original) + 1, clone)
            created["card"] = clone

        self._mutate(deck_id, _apply)
        return created["card"].copy()

    def move_card(self, deck_id: str, card_id: str, index: int) -> Deck:
        def _apply(deck: Deck) -> None:
            card = self._require_card(deck, card_id)
            deck.cards.remove(card)
            position = max(0, min(index, len(deck.cards)))
            deck.cards.insert(position, card)

        return self._mutate(deck_id, _apply)

    def set_card_value(self, deck_id: str, card_id: str, slot: str, value: Any) -> Deck:
        """Set a card slot; data URLs are moved into the image store."""
        stored = self._store_image_value(value)

        def _apply(deck: Deck) -> None:
            card = self._require_card(deck, card_id)
            if stored is None:
                card.data.pop(slot, None)
            else:
                card.data[slot] = stored

        return self._mutate(deck_id, _apply)

    def set_card_image(self, deck_id: str, card_id: str, slot: str, image_path: Path) -> ImageRef:
        try:
            data = image_path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read image '{image_path}': {e}") from e
        mime_type = mimetypes.guess_type(image_path.name)[0] or "application/octet-stream"
        ref = self.images.put_ref(data, mime_type)
        self.set_card_value(deck_id, card_id, slot, ref)
        return ref

    def delete(self, deck_id: str) -> None:
        with self._lock:
            index = self._index(deck_id)
            if index is None:
                raise DeckNotFoundError(f"Deck '{deck_id}' not found")
            removed = self._decks[index]
            self._commit(self._decks[:index] + self._decks[index + 1 :])
            self.tombstones.record_deletion(deck_id)
        logger.info("Deleted deck %s (%s)", removed.id, removed.name)
        self._notify("deleted", deck_id)

    def import_deck(
        self,
        name: str,
        cards: Iterable[Card],
        style: Optional[Mapping[str, Any]] = None,
    ) -> Deck:
        """Add an externally sourced deck under fresh deck and card ids."""
        fresh_cards: List[Card] = []
        for card in cards:
            clone = card.copy()
            clone.id = new_id()
            fresh_cards.append(clone)
        deck = Deck(
            id=new_id(),
            name=name.strip() or "Imported Deck",
            cards=fresh_cards,
            style=dict(style) if style else dict(DEFAULT_DECK_STYLE),
            updated_at=self._clock(),
        )
        with self._lock:
            self._commit(self._decks + [deck])
        logger.info("Imported deck %s (%s, %d cards)", deck.id, deck.name, len(deck.cards))
        self._notify("created", deck.id)
        return deck.copy()

    def migrate_inline_images(self) -> int:
        """Move inline data-URL images into the image store; returns decks changed."""
        changed = 0
        for deck_id in self.deck_ids():

            def _apply(deck: Deck) -> None:
                for card in deck.cards:
                    for slot, value in list(card.data.items()):
                        if is_data_url(value):
                            card.data[slot] = self._store_image_value(value)
                if is_data_url(deck.style.get("backgroundImage")):
                    deck.style["backgroundImage"] = self.images.put_ref(deck.style["backgroundImage"]).token

            before = self.get(deck_id).updated_at
            if self._mutate(deck_id, _apply).updated_at != before:
                changed += 1
        if changed:
            logger.info("Migrated inline images in %d deck(s)", changed)
        return changed

    # Sync-side writes (remote content is taken as-is, timestamps untouched)

    def put_synced(self, deck: Deck) -> bool:
        """Append a deck pulled from the remote store unless the id already exists."""
        with self._lock:
            if self._index(deck.id) is not None:
                return False
            self._commit(self._decks + [deck.copy()])
        self._notify("synced", deck.id)
        return True

    def replace_synced(self, deck: Deck) -> None:
        with self._lock:
            index = self._index(deck.id)
            decks = list(self._decks)
            if index is None:
                decks.append(deck.copy())
            else:
                decks[index] = deck.copy()
            self._commit(decks)
        self._notify("synced", deck.id)

    # Internals

    def _mutate(self, deck_id: str, apply: Callable[[Deck], None]) -> Deck:
        with self._lock:
            index = self._index(deck_id)
            if index is None:
                raise DeckNotFoundError(f"Deck '{deck_id}' not found")
            current = self._decks[index]
            candidate = current.copy()
            apply(candidate)
            if serialize_deck(candidate) == serialize_deck(current):
                return current.copy()
            candidate.updated_at = max(self._clock(), current.updated_at + 1)
            decks = list(self._decks)
            decks[index] = candidate
            self._commit(decks)
        self._notify("updated", deck_id)
        return candidate.copy()

    def _store_image_value(self, value: Any) -> Any:
        if is_data_url(value):
            return self.images.put_ref(value)
        ref = ImageRef.parse(value)
        return ref if ref is not None else value

    @staticmethod
    def _require_card(deck: Deck, card_id: str) -> Card:
        card = deck.find_card(card_id)
        if card is None:
            raise DeckNotFoundError(f"Card '{card_id}' not found in deck '{deck.id}'")
        return card


__all__ = ["DeckLibrary", "DECKS_KEY"]
