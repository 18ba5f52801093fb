"""Remote file store protocol, naming conventions and a folder-backed store."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Union, runtime_checkable

from ..errors import RemoteNotFoundError, RemoteStoreError, TransportError

logger = logging.getLogger("cardcraft.sync.remote")

DECK_FILE_PREFIX = "deck-"
DECK_FILE_SUFFIX = ".json"
DECK_MIME_TYPE = "application/json"


@dataclass
class RemoteFile:
    """A listing entry reported by the remote store."""

    id: str
    name: str
    modified_time: str  # RFC 3339, server-assigned

    @property
    def modified_ms(self) -> int:
        return parse_rfc3339_ms(self.modified_time)

    @property
    def deck_id(self) -> Optional[str]:
        return deck_id_from_file_name(self.name)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "modifiedTime": self.modified_time}


@runtime_checkable
class RemoteFileStore(Protocol):
    """Flat namespace of named files with server-reported modification times."""

    @property
    def is_signed_in(self) -> bool:
        ...

    async def ensure_signed_in(self) -> str:
        """Obtain or refresh credentials; raises AuthenticationError."""
        ...

    async def list_files(self) -> List[RemoteFile]:
        ...

    async def get_file_content(self, file_id: str) -> str:
        ...

    async def get_file_bytes(self, file_id: str) -> bytes:
        ...

    async def save_file(self, name: str, content: Union[str, bytes], mime_type: str) -> None:
        """Create ``name`` or overwrite the existing file with that name."""
        ...

    async def delete_file(self, file_id: str) -> None:
        ...


def parse_rfc3339_ms(value: str) -> int:
    """Convert an RFC 3339 timestamp to milliseconds since the epoch."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(round(parsed.timestamp() * 1000))


def format_rfc3339_ms(ms: int) -> str:
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def deck_file_name(deck_id: str) -> str:
    return f"{DECK_FILE_PREFIX}{deck_id}{DECK_FILE_SUFFIX}"


def deck_id_from_file_name(name: str) -> Optional[str]:
    if not (name.startswith(DECK_FILE_PREFIX) and name.endswith(DECK_FILE_SUFFIX)):
        return None
    deck_id = name[len(DECK_FILE_PREFIX):-len(DECK_FILE_SUFFIX)]
    return deck_id or None


def find_file(files: Iterable[RemoteFile], name: str) -> Optional[RemoteFile]:
    for remote in files:
        if remote.name == name:
            return remote
    return None


def find_image_file(files: Iterable[RemoteFile], image_hash: str) -> Optional[RemoteFile]:
    prefix = f"img-{image_hash}."
    for remote in files:
        if remote.name.startswith(prefix):
            return remote
    return None


class FolderFileStore:
    """Remote store backed by a plain directory (e.g. a synced or mounted folder).

    File ids are the file names; ``modifiedTime`` is the file's mtime.
    """

    def __init__(self, root: Path):
        self.root = root

    @property
    def is_signed_in(self) -> bool:
        return self.root.is_dir()

    async def ensure_signed_in(self) -> str:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Folder store '{self.root}' is unavailable: {e}") from e
        return f"folder:{self.root}"

    def _path(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise RemoteStoreError(f"Invalid remote file name '{name}'")
        return self.root / name

    async def list_files(self) -> List[RemoteFile]:
        try:
            entries = sorted(self.root.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise TransportError(f"Failed to list '{self.root}': {e}") from e

        files: List[RemoteFile] = []
        for path in entries:
            if not path.is_file() or path.name.startswith(".") or path.name.endswith(".tmp"):
                continue
            mtime_ms = int(path.stat().st_mtime * 1000)
            files.append(RemoteFile(id=path.name, name=path.name, modified_time=format_rfc3339_ms(mtime_ms)))
        return files

    async def get_file_bytes(self, file_id: str) -> bytes:
        path = self._path(file_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise RemoteNotFoundError(f"Remote file '{file_id}' not found") from e
        except OSError as e:
            raise TransportError(f"Failed to read '{path}': {e}") from e

    async def get_file_content(self, file_id: str) -> str:
        data = await self.get_file_bytes(file_id)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RemoteStoreError(f"Remote file '{file_id}' is not UTF-8 text") from e

    async def save_file(self, name: str, content: Union[str, bytes], mime_type: str = DECK_MIME_TYPE) -> None:
        path = self._path(name)
        payload = content.encode("utf-8") if isinstance(content, str) else content
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(payload)
            os.replace(tmp_path, path)
        except OSError as e:
            raise TransportError(f"Failed to write '{path}': {e}") from e
        logger.debug("Saved %s (%d bytes, %s)", name, len(payload), mime_type)

    async def delete_file(self, file_id: str) -> None:
        path = self._path(file_id)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise RemoteNotFoundError(f"Remote file '{file_id}' not found") from e
        except OSError as e:
            raise TransportError(f"Failed to delete '{path}': {e}") from e


__all__ = [
    "DECK_MIME_TYPE",
    "FolderFileStore",
    "RemoteFile",
    "RemoteFileStore",
    "deck_file_name",
    "deck_id_from_file_name",
    "find_file",
    "find_image_file",
    "format_rfc3339_ms",
    "parse_rfc3339_ms",
]
