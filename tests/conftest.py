"""Shared fixtures: an in-memory remote store and a wired-up local workspace."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pytest

from cardcraft.errors import AuthenticationError, RemoteNotFoundError
from cardcraft.library import DeckLibrary
from cardcraft.storage import KeyValueStore
from cardcraft.sync.blobs import ContentAddressableStore
from cardcraft.sync.engine import SyncEngine
from cardcraft.sync.remote import RemoteFile, format_rfc3339_ms
from cardcraft.sync.tombstones import TombstoneTracker

BASE_MS = 1_700_000_000_000
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class Clock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = BASE_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class MemoryFileStore:
    """RemoteFileStore kept in a dict; failures are injected per (operation, name)."""

    def __init__(self, now_ms: int = BASE_MS):
        self.files: Dict[str, Dict[str, object]] = {}
        self.signed_in = True
        self.now_ms = now_ms
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple[str, str]] = []
        self._next_id = 0

    @property
    def is_signed_in(self) -> bool:
        return self.signed_in

    async def ensure_signed_in(self) -> str:
        self.calls.append(("sign_in", ""))
        if not self.signed_in:
            raise AuthenticationError("not signed in")
        return "token"

    def fail(self, operation: str, name: str, error: Exception) -> None:
        self.failures[(operation, name)] = error

    def _check(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        error = self.failures.get((operation, name)) or self.failures.get((operation, "*"))
        if error is not None:
            raise error

    def _by_name(self, name: str) -> Optional[str]:
        for file_id, entry in self.files.items():
            if entry["name"] == name:
                return file_id
        return None

    def put(self, name: str, content: Union[str, bytes], modified_ms: Optional[int] = None) -> str:
        """Seed a file directly, bypassing failure injection."""
        payload = content.encode("utf-8") if isinstance(content, str) else content
        file_id = self._by_name(name)
        if file_id is None:
            self._next_id += 1
            file_id = f"file-{self._next_id}"
        self.files[file_id] = {
            "name": name,
            "content": payload,
            "modified_ms": self.now_ms if modified_ms is None else modified_ms,
        }
        return file_id

    def content_of(self, name: str) -> Optional[str]:
        file_id = self._by_name(name)
        return None if file_id is None else self.files[file_id]["content"].decode("utf-8")

    def names(self) -> List[str]:
        return sorted(str(entry["name"]) for entry in self.files.values())

    def saves_of(self, name: str) -> int:
        return sum(1 for op, target in self.calls if op == "save" and target == name)

    async def list_files(self) -> List[RemoteFile]:
        self._check("list", "*")
        return [
            RemoteFile(id=file_id, name=str(entry["name"]), modified_time=format_rfc3339_ms(int(entry["modified_ms"])))
            for file_id, entry in self.files.items()
        ]

    async def get_file_bytes(self, file_id: str) -> bytes:
        entry = self.files.get(file_id)
        self._check("get", str(entry["name"]) if entry else file_id)
        if entry is None:
            raise RemoteNotFoundError(file_id)
        return bytes(entry["content"])

    async def get_file_content(self, file_id: str) -> str:
        return (await self.get_file_bytes(file_id)).decode("utf-8")

    async def save_file(self, name: str, content: Union[str, bytes], mime_type: str = "application/json") -> None:
        self._check("save", name)
        self.put(name, content)

    async def delete_file(self, file_id: str) -> None:
        entry = self.files.get(file_id)
        self._check("delete", str(entry["name"]) if entry else file_id)
        if entry is None:
            raise RemoteNotFoundError(file_id)
        del self.files[file_id]


@dataclass
class SyncHarness:
    clock: Clock
    store: KeyValueStore
    images: ContentAddressableStore
    tombstones: TombstoneTracker
    library: DeckLibrary
    remote: MemoryFileStore

    def engine(self, **kwargs) -> SyncEngine:
        return SyncEngine(self.library, self.images, self.tombstones, self.remote, **kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def kv_store(tmp_path: Path) -> KeyValueStore:
    return KeyValueStore(tmp_path / "state")


@pytest.fixture
def images(tmp_path: Path):
    store = ContentAddressableStore(tmp_path / "state" / "images.db")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def harness(clock: Clock, kv_store: KeyValueStore, images: ContentAddressableStore) -> SyncHarness:
    tombstones = TombstoneTracker(kv_store)
    library = DeckLibrary(kv_store, tombstones, images, clock=clock)
    return SyncHarness(
        clock=clock,
        store=kv_store,
        images=images,
        tombstones=tombstones,
        library=library,
        remote=MemoryFileStore(now_ms=clock.now),
    )
