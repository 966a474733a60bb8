"""Durable key/value storage for ritual ledgers, progress and achievements.

The engine only ever talks to the ``PersistenceGateway`` protocol. Two
implementations ship with the package:

- ``FilePersistenceGateway`` stores one JSON document per key. Every write
  goes to a sibling ``.tmp`` slot which is then swapped in with
  ``os.replace``, so a crash mid-write never leaves a half-updated record.
- ``InMemoryPersistenceGateway`` keeps bytes in a dict for tests and dry runs.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from renacer.errors import PersistenceError

logger = logging.getLogger(__name__)

ACHIEVEMENTS_KEY = "ritual.achievements"
_SESSIONS_PREFIX = "ritual.sessions."
_PROGRESS_PREFIX = "ritual.progress."

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


def sessions_key(definition_id: str) -> str:
    """Ledger key holding the completed sessions of one ritual definition."""
    return f"{_SESSIONS_PREFIX}{definition_id}"


def progress_key(definition_id: str) -> str:
    """Cache key for the derived progress record of one ritual definition."""
    return f"{_PROGRESS_PREFIX}{definition_id}"


def validate_key(key: str) -> str:
    if not key or not _KEY_PATTERN.match(key) or ".." in key:
        raise PersistenceError(f"Invalid storage key: {key!r}", key=key)
    return key


@runtime_checkable
class PersistenceGateway(Protocol):
    """Durable key/value storage consumed by the engine."""

    def load(self, key: str) -> Optional[bytes]:
        ...

    def save(self, key: str, data: bytes) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class FilePersistenceGateway:
    """Stores each key as ``<root>/<key>.json`` with atomic replacement."""

    SUFFIX = ".json"

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create data directory: {exc}") from exc
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        return self.root / f"{validate_key(key)}{self.SUFFIX}"

    def load(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Failed to read {key}: {exc}", key=key) from exc

    def save(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with self._lock:
            try:
                tmp.write_bytes(data)
                os.replace(tmp, path)
            except OSError as exc:
                try:
                    tmp.unlink()
                except FileNotFoundError:
                    pass
                except OSError:
                    logger.warning("Could not remove temporary slot", extra={"key": key})
                raise PersistenceError(f"Failed to write {key}: {exc}", key=key) from exc
        logger.debug("Persisted key", extra={"key": key, "bytes": len(data)})

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                raise PersistenceError(f"Failed to delete {key}: {exc}", key=key) from exc

    def keys(self) -> List[str]:
        """List stored keys (ignores temporary slots)."""
        return sorted(
            p.name[: -len(self.SUFFIX)]
            for p in self.root.glob(f"*{self.SUFFIX}")
            if p.is_file()
        )


class InMemoryPersistenceGateway:
    """Dict-backed gateway. Data is lost when the process exits."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[bytes]:
        validate_key(key)
        with self._lock:
            return self._data.get(key)

    def save(self, key: str, data: bytes) -> None:
        validate_key(key)
        with self._lock:
            self._data[key] = bytes(data)

    def delete(self, key: str) -> None:
        validate_key(key)
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)
