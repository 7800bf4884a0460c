"""
Key-value storage backends.

The store keeps one JSON text value per collection key. Two backends are
provided: ``MemoryStorage`` for tests and embedding, and ``FileStorage``
which keeps each key as ``<key>.json`` inside a storage directory. Both
enforce a byte quota measured the same way (key length plus value
length), and a batch write is checked against the quota before anything
is written. ``FileStorage`` applies a batch all-or-nothing.
"""

from __future__ import annotations

import errno
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from cmmc_tracker.errors import StorageError, StorageQuotaExceededError, StorageWriteError

logger = logging.getLogger(__name__)

_NO_SPACE_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def _entry_size(key: str, value: str) -> int:
    return len(key) + len(value)


class KeyValueStorage:
    """Base class for string key-value storage with a byte quota."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes

    # Backend hooks
    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def usage(self) -> int:
        """Bytes currently used across all keys."""
        total = 0
        for key in self.keys():
            value = self.get_item(key)
            if value is not None:
                total += _entry_size(key, value)
        return total

    def set_item(self, key: str, value: str) -> None:
        self.set_items({key: value})

    def set_items(self, items: Mapping[str, str]) -> None:
        """Write several keys, refusing the whole batch if it would not fit."""
        if self.quota_bytes is not None:
            projected = self.usage()
            for key, value in items.items():
                existing = self.get_item(key)
                if existing is not None:
                    projected -= _entry_size(key, existing)
                projected += _entry_size(key, value)
            if projected > self.quota_bytes:
                raise StorageQuotaExceededError(
                    f"Storage quota exceeded: {projected} bytes required, {self.quota_bytes} available",
                    required=projected,
                    available=self.quota_bytes,
                )
        self._write_batch(items)

    def _write_batch(self, items: Mapping[str, str]) -> None:
        for key, value in items.items():
            self._write(key, value)

    def clear(self) -> None:
        for key in self.keys():
            self.remove_item(key)


class MemoryStorage(KeyValueStorage):
    """Dictionary-backed storage."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def _write(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)


class FileStorage(KeyValueStorage):
    """Stores each key as a JSON text file inside ``storage_dir``."""

    def __init__(self, storage_dir: str = "data", quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        # Keep local compliance data out of version control
        gitignore_path = self.storage_dir / ".gitignore"
        if not gitignore_path.exists():
            gitignore_path.write_text("*\n!.gitignore\n")

    def _path(self, key: str) -> Path:
        return self.storage_dir / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    @staticmethod
    def _write_error(path: Path, error: OSError) -> StorageWriteError:
        if error.errno in _NO_SPACE_ERRNOS:
            return StorageQuotaExceededError(f"No space left writing {path}")
        return StorageWriteError(f"Failed to write {path}: {error}")

    def _write_batch(self, items: Mapping[str, str]) -> None:
        """Write every key or none of them.

        All values are first staged as ``<key>.json.tmp``. Existing files
        are then moved aside to ``<key>.json.bak`` while the staged files
        take their place, and put back if any replacement fails.
        """
        staged: List[Tuple[Path, Path]] = []
        try:
            for key, value in items.items():
                path = self._path(key)
                if path.is_dir():
                    raise IsADirectoryError(errno.EISDIR, "Is a directory", str(path))
                tmp_path = path.with_suffix(".json.tmp")
                staged.append((tmp_path, path))
                tmp_path.write_text(value, encoding="utf-8")
        except OSError as e:
            self._rollback(staged, [], [])
            raise self._write_error(path, e) from e

        committed: List[Path] = []
        backups: List[Tuple[Path, Path]] = []
        try:
            for tmp_path, path in staged:
                if path.exists():
                    backup = path.with_suffix(".json.bak")
                    path.replace(backup)
                    backups.append((backup, path))
                tmp_path.replace(path)
                committed.append(path)
        except OSError as e:
            self._rollback(staged, committed, backups)
            raise self._write_error(path, e) from e

        for backup, _ in backups:
            backup.unlink(missing_ok=True)
        logger.debug("Wrote %d keys to %s", len(staged), self.storage_dir)

    @staticmethod
    def _rollback(staged, committed, backups) -> None:
        steps = [p.unlink for p in committed]
        steps += [lambda b=backup, p=path: b.replace(p) for backup, path in backups]
        steps += [lambda t=tmp_path: t.unlink(missing_ok=True) for tmp_path, _ in staged]
        for step in steps:
            try:
                step()
            except OSError:
                logger.exception("Rollback step failed in file storage")

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageWriteError(f"Failed to remove {key}: {e}") from e

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.storage_dir.glob("*.json"))
