"""JSON-file key-value store for local state (deck list, tombstones, flags)."""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Optional

from .errors import StorageError

logger = logging.getLogger("cardcraft.storage")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore:
    """Stores one JSON document per key under ``state_dir``.

    Writes go to a temporary file first and are moved into place, so a crash
    mid-write leaves the previous value intact.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        self._lock = threading.RLock()

    def path_for(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid storage key '{key}'.")
        return self.state_dir / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self.path_for(key)
        with self._lock:
            if not path.exists():
                return default
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                logger.error("Corrupt state file %s: %s", path, e)
                return default
            except OSError as e:
                raise StorageError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(value, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as e:
                tmp_path.unlink(missing_ok=True)
                raise StorageError(f"Failed to write {path}: {e}") from e
        logger.debug("Saved state key '%s'", key)

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as e:
                raise StorageError(f"Failed to delete {path}: {e}") from e

    def get_flag(self, key: str, default: bool = False) -> bool:
        value: Optional[Any] = self.get(key)
        if value is None:
            return default
        return bool(value)

    def set_flag(self, key: str, value: bool) -> None:
        self.set(key, bool(value))


__all__ = ["KeyValueStore"]
