"""Substitutable storage backends for the record collections.

A backend stores named collections, each an ordered list of plain mappings.
Every read parses the current state fresh; ``update`` performs a whole
collection read-modify-write. ``YamlFileBackend`` serialises concurrent
writers that share a directory with a file lock; other backends are
last-writer-wins on the whole collection.
"""

from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, List

import yaml
from filelock import FileLock, Timeout

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Items = List[Dict[str, Any]]


class CollectionBackend:
    """Abstract backend interface."""

    def read(self, name: str) -> Items:
        """Return the items of collection ``name`` (empty when missing)."""
        raise NotImplementedError

    def write(self, name: str, items: Items) -> None:
        """Replace collection ``name`` with ``items``."""
        raise NotImplementedError

    def update(self, name: str, func: Callable[[Items], Items]) -> Items:
        """Apply ``func`` to the current items and write the result back."""

        items = func(self.read(name))
        self.write(name, items)
        return items


class MemoryBackend(CollectionBackend):
    """Process-local backend."""

    def __init__(self) -> None:
        self._data: Dict[str, Items] = {}
        self._lock = threading.RLock()

    def read(self, name: str) -> Items:
        with self._lock:
            return deepcopy(self._data.get(name, []))

    def write(self, name: str, items: Items) -> None:
        with self._lock:
            self._data[name] = deepcopy(list(items))

    def update(self, name: str, func: Callable[[Items], Items]) -> Items:
        with self._lock:
            return super().update(name, func)


class YamlFileBackend(CollectionBackend):
    """Store each collection as ``<directory>/<name>.yml``."""

    def __init__(self, directory: str | Path, *, lock_timeout: float = 10.0) -> None:
        self.directory = Path(directory)
        self._lock = FileLock(
            str(self.directory / ".collections.lock"), timeout=lock_timeout
        )

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.yml"

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def _read_unlocked(self, name: str) -> Items:
        path = self.path_for(name)
        if not path.exists():
            return []
        with open(path, "r") as fh:
            try:
                data = yaml.safe_load(fh) or []
            except yaml.YAMLError:
                logger.warning("Unreadable collection %s; treating as empty", path)
                return []
        if not isinstance(data, list):
            logger.warning("Collection %s is not a sequence; treating as empty", path)
            return []
        return [item for item in data if isinstance(item, dict)]

    def _write_unlocked(self, name: str, items: Items) -> None:
        path = self.path_for(name)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w") as fh:
            yaml.safe_dump(list(items), fh, sort_keys=False, allow_unicode=True)
        os.replace(tmp, path)

    def read(self, name: str) -> Items:
        try:
            self._ensure_dir()
            with self._lock:
                return self._read_unlocked(name)
        except (OSError, Timeout) as exc:
            raise StoreUnavailable(f"cannot read {name}: {exc}") from exc

    def write(self, name: str, items: Items) -> None:
        try:
            self._ensure_dir()
            with self._lock:
                self._write_unlocked(name, items)
        except (OSError, Timeout) as exc:
            raise StoreUnavailable(f"cannot write {name}: {exc}") from exc

    def update(self, name: str, func: Callable[[Items], Items]) -> Items:
        try:
            self._ensure_dir()
            with self._lock:
                items = func(self._read_unlocked(name))
                self._write_unlocked(name, items)
                return items
        except (OSError, Timeout) as exc:
            raise StoreUnavailable(f"cannot update {name}: {exc}") from exc


__all__ = ["CollectionBackend", "MemoryBackend", "YamlFileBackend"]
