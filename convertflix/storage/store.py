"""JSON persisted-object store.

One file per object (``<data_folder>/<name>.json``). Writers go through
``update()``, which holds a per-object lock across read, modify and write so
two concurrent callers never work from the same stale snapshot.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JsonStore:
    def __init__(self, data_folder: Path) -> None:
        self.data_folder = Path(data_folder)
        self.data_folder.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def path_for(self, name: str) -> Path:
        return self.data_folder / f"{name}.json"

    def lock_for(self, name: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
            return lock

    def read(self, name: str, default: Any) -> Any:
        """Load an object; a missing or unreadable file yields a copy of `default`."""
        path = self.path_for(name)
        with self.lock_for(name):
            if not path.exists():
                return copy.deepcopy(default)
            try:
                with path.open("r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"[store] Could not read {path.name}: {e}; using defaults")
                return copy.deepcopy(default)

    def write(self, name: str, value: Any) -> None:
        """Save an object. Writes a temp file first, then renames it into place."""
        path = self.path_for(name)
        with self.lock_for(name):
            temp_path = path.with_suffix(".tmp")
            with temp_path.open("w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
                f.write("\n")
            temp_path.replace(path)
        logger.debug(f"[store] Saved {path.name}")

    def update(self, name: str, default: Any, mutate: Callable[[Any], T]) -> T:
        """Read-modify-write under the object's lock.

        `mutate` changes the loaded object in place; its return value is
        passed back to the caller once the new state is on disk.
        """
        with self.lock_for(name):
            value = self.read(name, default)
            outcome = mutate(value)
            self.write(name, value)
            return outcome
