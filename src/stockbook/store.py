"""Durable key/value persistence for ledger collections.

Defines the PersistentStore Protocol that Ledger depends on, plus two
concrete stores: ``MemoryStore`` (tests, ephemeral sessions) and
``JsonFileStore`` (one JSON file per entry on local disk).
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a blob cannot be durably written or read."""


@runtime_checkable
class PersistentStore(Protocol):
    """Synchronous blob store keyed by collection name.

    ``set_many`` raises ``StorageError`` if any entry could not be written.
    """

    def get(self, key: str) -> str | None: ...

    def set_many(self, entries: dict[str, str]) -> None: ...


class MemoryStore:
    """Dict-backed store. ``fail_writes`` simulates a full disk."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.fail_writes = False
        self.writes = 0

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, blob: str) -> None:
        self.set_many({key: blob})

    def set_many(self, entries: dict[str, str]) -> None:
        if self.fail_writes:
            raise StorageError("memory store is read-only")
        self._data.update(entries)
        self.writes += 1

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """Stores each entry as ``<directory>/<key>.json``.

    Every blob is staged to a temp file in the same directory first; only
    when all temp files exist are they moved into place with
    ``os.replace``. A reader never sees a half-written entry.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"cannot read {path}: {exc}") from exc

    def set(self, key: str, blob: str) -> None:
        self.set_many({key: blob})

    def set_many(self, entries: dict[str, str]) -> None:
        staged: list[tuple[str, Path]] = []
        try:
            for key, blob in entries.items():
                fd, tmp = tempfile.mkstemp(
                    dir=self._dir, prefix=f".{key}.", suffix=".tmp"
                )
                staged.append((tmp, self._path(key)))
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(blob)
                    fh.flush()
                    os.fsync(fh.fileno())
        except OSError as exc:
            for tmp, _ in staged:
                _unlink_quietly(tmp)
            raise StorageError(f"cannot stage write in {self._dir}: {exc}") from exc

        for index, (tmp, target) in enumerate(staged):
            try:
                os.replace(tmp, target)
            except OSError as exc:
                for leftover, _ in staged[index:]:
                    _unlink_quietly(leftover)
                raise StorageError(f"cannot replace {target}: {exc}") from exc


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        logger.warning("Could not remove temp file %s", path)
