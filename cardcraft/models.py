"""Deck and card data model plus the versioned JSON wire format."""

from __future__ import annotations

import hashlib
import json
import math
import re
import time
import uuid
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .errors import DeckFormatError

SCHEMA_VERSION = 1
REF_PREFIX = "ref:"
DEFAULT_DECK_NAME = "Untitled Deck"
_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

DEFAULT_DECK_STYLE: Dict[str, Any] = {
    "borderColor": "#000000",
    "borderWidth": 8,
    "backgroundColor": "#ffffff",
    "backgroundImage": None,
    "gameHp": "",
    "gameMana": "",
    "gameSuit": "",
    "svgFrameColor": "#000000",
    "svgCornerColor": "#000000",
    "svgStrokeWidth": 2,
    "elements": [],
    "cardSizePreset": "poker",
}

_DECK_FIELDS = {"schemaVersion", "id", "name", "cards", "style", "updatedAt"}
_CARD_FIELDS = {"id", "name", "data", "borderColor", "borderWidth", "count"}


@dataclass(frozen=True)
class ImageRef:
    """Reference to an image stored in the content-addressable store."""

    hash: str

    @property
    def token(self) -> str:
        return f"{REF_PREFIX}{self.hash}"

    @classmethod
    def parse(cls, value: Any) -> Optional["ImageRef"]:
        """Return an ImageRef for a ``ref:<hash>`` token, otherwise None."""
        if not isinstance(value, str) or not value.startswith(REF_PREFIX):
            return None
        digest = value[len(REF_PREFIX):]
        if not _HASH_RE.match(digest):
            return None
        return cls(digest)

    def __str__(self) -> str:
        return self.token


@dataclass
class Card:
    """A single card inside a deck."""

    id: str
    name: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    border_color: Optional[str] = None
    border_width: Optional[float] = None
    count: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def image_refs(self) -> Iterator[ImageRef]:
        for value in self.data.values():
            if isinstance(value, ImageRef):
                yield value

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = deepcopy(self.extra)
        result["id"] = self.id
        result["name"] = self.name
        result["data"] = {
            slot: value.token if isinstance(value, ImageRef) else deepcopy(value)
            for slot, value in self.data.items()
        }
        if self.border_color is not None:
            result["borderColor"] = self.border_color
        if self.border_width is not None:
            result["borderWidth"] = self.border_width
        if self.count is not None:
            result["count"] = self.count
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "Card":
        if not isinstance(data, dict):
            raise DeckFormatError("card entries must be objects")
        card_id = data.get("id")
        if not isinstance(card_id, str) or not card_id:
            raise DeckFormatError("card is missing a string 'id'")
        raw_data = data.get("data") or {}
        if not isinstance(raw_data, dict):
            raise DeckFormatError(f"card '{card_id}' has a non-object 'data' field")

        values: Dict[str, Any] = {}
        for slot, value in raw_data.items():
            ref = ImageRef.parse(value)
            values[str(slot)] = ref if ref is not None else deepcopy(value)

        return cls(
            id=card_id,
            name=str(data.get("name") or ""),
            data=values,
            border_color=data.get("borderColor"),
            border_width=data.get("borderWidth"),
            count=data.get("count"),
            extra={k: deepcopy(v) for k, v in data.items() if k not in _CARD_FIELDS},
        )

    def copy(self) -> "Card":
        return Card.from_dict(self.to_dict())


@dataclass
class Deck:
    """The unit of synchronization."""

    id: str
    name: str = DEFAULT_DECK_NAME
    cards: List[Card] = field(default_factory=list)
    style: Dict[str, Any] = field(default_factory=dict)
    updated_at: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def image_hashes(self) -> List[str]:
        """Return referenced image hashes in first-seen order."""
        seen: List[str] = []
        for card in self.cards:
            for ref in card.image_refs():
                if ref.hash not in seen:
                    seen.append(ref.hash)
        style_ref = ImageRef.parse(self.style.get("backgroundImage"))
        if style_ref is not None and style_ref.hash not in seen:
            seen.append(style_ref.hash)
        return seen

    def find_card(self, card_id: str) -> Optional[Card]:
        for card in self.cards:
            if card.id == card_id:
                return card
        return None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = deepcopy(self.extra)
        result.update(
            {
                "schemaVersion": SCHEMA_VERSION,
                "id": self.id,
                "name": self.name,
                "cards": [card.to_dict() for card in self.cards],
                "style": deepcopy(self.style),
                "updatedAt": self.updated_at,
            }
        )
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "Deck":
        if not isinstance(data, dict):
            raise DeckFormatError("deck document must be a JSON object")

        version = data.get("schemaVersion", SCHEMA_VERSION)
        if not isinstance(version, int) or isinstance(version, bool):
            raise DeckFormatError("'schemaVersion' must be an integer")
        if version > SCHEMA_VERSION:
            raise DeckFormatError(
                f"unsupported deck schema version {version} (newest known: {SCHEMA_VERSION})"
            )

        deck_id = data.get("id")
        if not isinstance(deck_id, str) or not deck_id:
            raise DeckFormatError("deck is missing a string 'id'")
        cards = data.get("cards")
        if not isinstance(cards, list):
            raise DeckFormatError(f"deck '{deck_id}' is missing a 'cards' list")

        style = data.get("style") or {}
        if not isinstance(style, dict):
            raise DeckFormatError(f"deck '{deck_id}' has a non-object 'style'")

        updated_at = data.get("updatedAt", 0) or 0
        if isinstance(updated_at, bool) or not isinstance(updated_at, (int, float)):
            raise DeckFormatError(f"deck '{deck_id}' has a non-numeric 'updatedAt'")
        if isinstance(updated_at, float) and not math.isfinite(updated_at):
            raise DeckFormatError(f"deck '{deck_id}' has a non-finite 'updatedAt'")

        name = data.get("name")
        return cls(
            id=deck_id,
            name=str(name) if name else DEFAULT_DECK_NAME,
            cards=[Card.from_dict(card) for card in cards],
            style=deepcopy(style),
            updated_at=int(updated_at),
            extra={k: deepcopy(v) for k, v in data.items() if k not in _DECK_FIELDS},
        )

    def copy(self) -> "Deck":
        return Deck.from_dict(self.to_dict())


def serialize_deck(deck: Deck) -> str:
    """Canonical JSON form used for storage, upload and hashing."""
    return json.dumps(
        deck.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def parse_deck(text: str) -> Deck:
    """Parse and validate a serialized deck.

    Non-finite numbers and strings that cannot be encoded as UTF-8 are rejected
    here so a deck that parses can always be stored, hashed and uploaded.
    """
    try:
        data = json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
    except (ValueError, TypeError, RecursionError) as exc:
        raise DeckFormatError(f"deck is not valid JSON: {exc}") from exc
    try:
        deck = Deck.from_dict(data)
        serialize_deck(deck).encode("utf-8")
    except (ValueError, TypeError, RecursionError) as exc:
        raise DeckFormatError(f"deck cannot be stored: {exc}") from exc
    return deck


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number {text} is out of range")
    return value


def content_hash(text: str) -> str:
    """SHA-256 of a serialized document."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_content_hash(text: str) -> str:
    """Hash of the canonical form when ``text`` is a valid deck, raw hash otherwise."""
    try:
        return content_hash(serialize_deck(parse_deck(text)))
    except DeckFormatError:
        return content_hash(text)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


__all__ = [
    "Card",
    "DEFAULT_DECK_NAME",
    "DEFAULT_DECK_STYLE",
    "Deck",
    "ImageRef",
    "REF_PREFIX",
    "SCHEMA_VERSION",
    "canonical_content_hash",
    "content_hash",
    "new_id",
    "now_ms",
    "parse_deck",
    "serialize_deck",
]
