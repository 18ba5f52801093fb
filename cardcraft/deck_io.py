"""Self-contained zip export and import of a single deck."""

from __future__ import annotations

import json
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import DeckFormatError, StorageError
from .models import Card, Deck, ImageRef
from .sync.blobs import (
    ContentAddressableStore,
    compute_hash,
    decode_data_url,
    extension_for_mime,
    is_data_url,
    mime_for_extension,
)

logger = logging.getLogger("cardcraft.deck_io")

EXPORT_VERSION = "1.0"
DECK_ENTRY = "deck.json"
IMAGES_DIR = "images/"


@dataclass
class ImportedDeck:
    """Deck contents read from an archive, ready for ``DeckLibrary.import_deck``."""

    name: str
    cards: List[Card] = field(default_factory=list)
    style: Optional[Dict[str, Any]] = None
    images_restored: int = 0


def export_file_name(deck_name: str) -> str:
    slug = "-".join(deck_name.split()).lower() or "deck"
    return f"{slug}.zip"


def _image_payload(value: Any, images: ContentAddressableStore) -> Optional[Tuple[bytes, str]]:
    """Return ``(bytes, mime)`` for an image-valued slot, or None."""
    if isinstance(value, ImageRef):
        stored = images.get(value.hash)
        if stored is None:
            logger.warning("Image %s is not stored locally; exporting the reference", value.hash)
            return None
        return stored.data, stored.mime_type
    if is_data_url(value):
        try:
            return decode_data_url(value)
        except ValueError as e:
            logger.warning("Skipping malformed inline image: %s", e)
    return None


def export_deck_zip(deck: Deck, images: ContentAddressableStore, path: Path) -> Path:
    """Write ``deck`` and every image it uses to a zip archive at ``path``."""
    written: Dict[str, str] = {}
    cards: List[Dict[str, Any]] = []

    def _store(zf: zipfile.ZipFile, value: Any) -> Any:
        payload = _image_payload(value, images)
        if payload is None:
            return value.token if isinstance(value, ImageRef) else value
        data, mime_type = payload
        digest = compute_hash(data)
        if digest not in written:
            written[digest] = f"{IMAGES_DIR}{digest}.{extension_for_mime(mime_type)}"
            zf.writestr(written[digest], data)
        return written[digest]

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for card in deck.cards:
                entry = card.to_dict()
                entry["data"] = {slot: _store(zf, value) for slot, value in card.data.items()}
                cards.append(entry)
            style = dict(deck.style)
            background = ImageRef.parse(style.get("backgroundImage")) or style.get("backgroundImage")
            if background:
                style["backgroundImage"] = _store(zf, background)
            document = {
                "deckName": deck.name,
                "version": EXPORT_VERSION,
                "cards": cards,
                "style": style,
            }
            zf.writestr(DECK_ENTRY, json.dumps(document, indent=2, ensure_ascii=False))
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}") from e

    logger.info("Exported deck %s to %s (%d images)", deck.id, path, len(written))
    return path


def import_deck_zip(path: Path, images: ContentAddressableStore) -> ImportedDeck:
    """Read an exported archive, storing bundled images as references."""
    try:
        with zipfile.ZipFile(path) as zf:
            names = set(zf.namelist())
            if DECK_ENTRY not in names:
                raise DeckFormatError("Invalid deck file: missing deck.json")
            try:
                document = json.loads(zf.read(DECK_ENTRY).decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise DeckFormatError(f"Invalid deck.json: {e}") from e
            if not isinstance(document, dict):
                raise DeckFormatError("Invalid deck.json: expected an object")

            restored = 0

            def _restore(value: Any) -> Any:
                nonlocal restored
                if isinstance(value, str) and value.startswith(IMAGES_DIR) and value in names:
                    extension = value.rsplit(".", 1)[-1] if "." in value else ""
                    restored += 1
                    return images.put_ref(zf.read(value), mime_for_extension(extension)).token
                return value

            cards: List[Card] = []
            for raw in document.get("cards") or []:
                if not isinstance(raw, dict):
                    raise DeckFormatError("Invalid deck.json: card entries must be objects")
                entry = dict(raw)
                entry["data"] = {slot: _restore(value) for slot, value in (raw.get("data") or {}).items()}
                cards.append(Card.from_dict(entry))

            style = document.get("style")
            if isinstance(style, dict):
                style = dict(style)
                if style.get("backgroundImage"):
                    style["backgroundImage"] = _restore(style["backgroundImage"])
            else:
                style = None
    except zipfile.BadZipFile as e:
        raise DeckFormatError(f"{path} is not a zip archive") from e
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e

    name = document.get("deckName") or "Imported Deck"
    logger.info("Read deck '%s' from %s (%d cards, %d images)", name, path, len(cards), restored)
    return ImportedDeck(name=str(name), cards=cards, style=style, images_restored=restored)


__all__ = ["ImportedDeck", "export_deck_zip", "export_file_name", "import_deck_zip"]
