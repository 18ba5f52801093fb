"""Content-addressable image store backed by SQLite."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union
from urllib.parse import unquote_to_bytes

from ..errors import StorageError
from ..models import ImageRef

logger = logging.getLogger("cardcraft.sync.blobs")

DEFAULT_MIME_TYPE = "application/octet-stream"
IMAGE_FILE_PREFIX = "img-"

_EXTENSION_MIME = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "avif": "image/avif",
}

Content = Union[bytes, str]


@dataclass
class StoredImage:
    """An image payload as held in the store."""

    hash: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_data_url(url: str) -> Tuple[bytes, str]:
    """Split a data URL into its raw bytes and MIME type."""
    if not is_data_url(url):
        raise ValueError("Not a data URL")
    header, sep, payload = url[len("data:"):].partition(",")
    if not sep:
        raise ValueError("Malformed data URL: missing ',' separator")
    params = header.split(";")
    mime_type = params[0] or DEFAULT_MIME_TYPE
    if "base64" in params[1:]:
        try:
            return base64.b64decode(payload, validate=False), mime_type
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Malformed base64 payload: {e}") from e
    return unquote_to_bytes(payload), mime_type


def to_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type or DEFAULT_MIME_TYPE};base64,{encoded}"


def compute_hash(data: bytes) -> str:
    """SHA-256 of the canonical (unwrapped) image bytes."""
    return hashlib.sha256(data).hexdigest()


def canonicalize(content: Content, mime_type: Optional[str] = None) -> Tuple[bytes, str]:
    """Reduce content to raw bytes plus MIME type, stripping any data-URL wrapper."""
    if isinstance(content, str):
        data, parsed_mime = decode_data_url(content)
        return data, mime_type or parsed_mime
    return bytes(content), mime_type or DEFAULT_MIME_TYPE


def extension_for_mime(mime_type: str) -> str:
    subtype = (mime_type or "").partition("/")[2]
    subtype = subtype.split("+")[0].split(";")[0].strip().lower()
    return subtype or "bin"


def mime_for_extension(extension: str) -> str:
    return _EXTENSION_MIME.get(extension.lower().lstrip("."), DEFAULT_MIME_TYPE)


def image_file_name(image_hash: str, mime_type: str) -> str:
    return f"{IMAGE_FILE_PREFIX}{image_hash}.{extension_for_mime(mime_type)}"


def parse_image_file_name(name: str) -> Optional[Tuple[str, str]]:
    """Return ``(hash, extension)`` for an ``img-<hash>.<ext>`` name."""
    if not name.startswith(IMAGE_FILE_PREFIX):
        return None
    stem, dot, extension = name[len(IMAGE_FILE_PREFIX):].partition(".")
    if not dot or ImageRef.parse(f"ref:{stem}") is None:
        return None
    return stem, extension


class ContentAddressableStore:
    """Deduplicated local storage of image payloads keyed by content hash."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to open image store {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS images (
                    hash TEXT PRIMARY KEY,
                    mime_type TEXT NOT NULL,
                    data BLOB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self._conn.commit()

    def _db(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Store not initialized")
        return self._conn

    def put(self, content: Content, mime_type: Optional[str] = None) -> str:
        """Store content under its hash and return the hash.

        Storing content that is already present is a no-op.
        """
        data, resolved_mime = canonicalize(content, mime_type)
        digest = compute_hash(data)
        with self._lock:
            conn = self._db()
            try:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO images (hash, mime_type, data) VALUES (?, ?, ?)",
                    (digest, resolved_mime, sqlite3.Binary(data)),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to store image {digest}: {e}") from e
        if cursor.rowcount:
            logger.debug("Stored image %s (%d bytes, %s)", digest, len(data), resolved_mime)
        return digest

    def put_ref(self, content: Content, mime_type: Optional[str] = None) -> ImageRef:
        return ImageRef(self.put(content, mime_type))

    def get(self, image_hash: str) -> Optional[StoredImage]:
        with self._lock:
            row = self._db().execute(
                "SELECT hash, mime_type, data FROM images WHERE hash = ?",
                (image_hash,),
            ).fetchone()
        if row is None:
            return None
        return StoredImage(hash=row["hash"], mime_type=row["mime_type"], data=bytes(row["data"]))

    def contains(self, image_hash: str) -> bool:
        with self._lock:
            row = self._db().execute(
                "SELECT 1 FROM images WHERE hash = ?", (image_hash,)
            ).fetchone()
        return row is not None

    def delete(self, image_hash: str) -> bool:
        with self._lock:
            conn = self._db()
            cursor = conn.execute("DELETE FROM images WHERE hash = ?", (image_hash,))
            conn.commit()
        return cursor.rowcount > 0

    def hashes(self) -> List[str]:
        with self._lock:
            rows = self._db().execute("SELECT hash FROM images ORDER BY created_at, hash").fetchall()
        return [row["hash"] for row in rows]

    def stats(self) -> List[Tuple[str, str, int]]:
        """Return ``(hash, mime_type, size)`` for each stored image."""
        with self._lock:
            rows = self._db().execute(
                "SELECT hash, mime_type, length(data) AS size FROM images ORDER BY created_at, hash"
            ).fetchall()
        return [(row["hash"], row["mime_type"], row["size"]) for row in rows]

    def resolve(self, value: Any) -> Any:
        """Turn a reference into a data URL; inline values pass through.

        A reference whose content is not stored resolves to None.
        """
        ref = value if isinstance(value, ImageRef) else ImageRef.parse(value)
        if ref is None:
            return value
        stored = self.get(ref.hash)
        if stored is None:
            logger.debug("Image %s is not available locally", ref.hash)
            return None
        return stored.to_data_url()

    def prune(self, referenced: Iterable[str]) -> int:
        """Delete every stored image not in ``referenced``."""
        keep = set(referenced)
        removed = 0
        for image_hash in self.hashes():
            if image_hash not in keep and self.delete(image_hash):
                removed += 1
        if removed:
            logger.info("Pruned %d unreferenced image(s)", removed)
        return removed

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


__all__ = [
    "ContentAddressableStore",
    "StoredImage",
    "canonicalize",
    "compute_hash",
    "decode_data_url",
    "extension_for_mime",
    "image_file_name",
    "is_data_url",
    "mime_for_extension",
    "parse_image_file_name",
    "to_data_url",
]
