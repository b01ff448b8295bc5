"""
Key-value persistence for Focus Gamble.

Two partitions with different scope:
- "sync": user settings.
- "local": ledger, reroll state and armed alarms.

Each partition supports get/set/remove by key and change subscriptions keyed
by key. Callbacks receive (new_value, old_value); a removed key reports None.
The JSON backend keeps one file per partition in the user's OS-specific
application data directory and re-reads it on every access, so several
processes can share it. No cross-process locking is done.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import platform
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import APP_NAME, DATA_DIR_ENV, LOCAL, SYNC

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any, Any], None]

_MISSING = object()


class StorageError(Exception):
    """Persistence is unavailable or denied."""


def resolve_data_dir(app_name: str = APP_NAME) -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    system = platform.system().lower()
    if system == "darwin":  # macOS
        return Path.home() / "Library" / "Application Support" / app_name
    elif system == "windows":
        base = os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming")
        return Path(base) / app_name
    else:  # linux/other
        return Path.home() / f".{app_name.lower()}"


class MemoryPartition:
    """In-process partition. Also the base for file-backed partitions."""

    def __init__(self, name: str):
        self.name = name
        self._data: Dict[str, Any] = {}
        self._snapshot: Dict[str, Any] = {}
        self._listeners: Dict[str, List[ChangeCallback]] = defaultdict(list)
        self._lock = threading.RLock()

    def _read(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def _write(self, data: Dict[str, Any]) -> None:
        self._data = copy.deepcopy(data)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            data = self._read()
        return data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            old = data.get(key)
            data[key] = copy.deepcopy(value)
            self._write(data)
            self._snapshot = data
        if old != value:
            self._notify(key, copy.deepcopy(value), old)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            old = data.pop(key, _MISSING)
            if old is _MISSING:
                return
            self._write(data)
            self._snapshot = data
        if old is not None:
            self._notify(key, None, old)

    def on_changed(self, key: str, callback: ChangeCallback) -> None:
        with self._lock:
            self._listeners[key].append(callback)

    def refresh(self) -> None:
        """Emit change notifications for keys modified behind our back."""
        with self._lock:
            data = self._read()
            previous, self._snapshot = self._snapshot, data
            watched = list(self._listeners)
        for key in watched:
            old, new = previous.get(key), data.get(key)
            if old != new:
                self._notify(key, copy.deepcopy(new), old)

    def _notify(self, key: str, new: Any, old: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(key, ()))
        for callback in listeners:
            try:
                callback(new, old)
            except Exception:
                logger.exception("Error in %s/%s change listener", self.name, key)


class JsonFilePartition(MemoryPartition):
    """Partition stored as a single JSON document."""

    def __init__(self, name: str, path: Path):
        super().__init__(name)
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._snapshot = self._read()
        except (OSError, StorageError) as e:
            logger.warning("Storage %s unavailable: %s", self.path, e)

    def _read(self) -> Dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        try:
            data = json.loads(raw) if raw.strip() else {}
        except ValueError:
            logger.warning("Ignoring corrupt storage file %s", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed storage file %s", self.path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp = self.path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e


class Storage:
    """Handle to both partitions, passed to every component."""

    def __init__(self, sync: MemoryPartition, local: MemoryPartition):
        self.sync = sync
        self.local = local

    @classmethod
    def in_memory(cls) -> "Storage":
        return cls(MemoryPartition(SYNC), MemoryPartition(LOCAL))

    @classmethod
    def open(cls, directory: Optional[Path] = None) -> "Storage":
        directory = Path(directory) if directory else resolve_data_dir()
        return cls(
            JsonFilePartition(SYNC, directory / "sync.json"),
            JsonFilePartition(LOCAL, directory / "local.json"),
        )

    def partition(self, name: str) -> MemoryPartition:
        if name == SYNC:
            return self.sync
        if name == LOCAL:
            return self.local
        raise KeyError(f"Unknown storage partition: {name}")

    def refresh(self) -> None:
        for partition in (self.sync, self.local):
            try:
                partition.refresh()
            except StorageError as e:
                logger.warning("Cannot refresh %s storage: %s", partition.name, e)
