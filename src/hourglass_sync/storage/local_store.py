"""Local key-value stores holding a client's synced state."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from hourglass_sync.errors import StorageUnavailable

logger = logging.getLogger(__name__)

# Browser localStorage budget
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


class KeyValueStore(ABC):
    """Synchronous string-to-string store.

    ``write`` and ``remove`` may raise :class:`StorageUnavailable`; ``read``
    returns ``None`` for absent keys.
    """

    @abstractmethod
    def read(self, key: str) -> str | None: ...

    @abstractmethod
    def write(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> list[str]: ...

    def snapshot(self) -> dict[str, str]:
        """Return a copy of every key and value."""
        result: dict[str, str] = {}
        for key in self.keys():
            value = self.read(key)
            if value is not None:
                result[key] = value
        return result

    def clear(self) -> None:
        """Remove every key."""
        for key in self.keys():
            self.remove(key)


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store for tests and ephemeral clients.

    Data is lost when the process exits.
    """

    def __init__(
        self,
        initial: dict[str, str] | None = None,
        *,
        quota_bytes: int | None = None,
    ) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._quota_bytes = quota_bytes

    def read(self, key: str) -> str | None:
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            _check_quota(self._data, key, value, self._quota_bytes)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """Store persisted to a single JSON file.

    Several processes may share one file (``hsync watch`` next to ``hsync
    set``).  Every mutation runs under an exclusive lock on a sibling
    ``.lock`` file and re-reads the file first, so a save never drops keys
    another process wrote.  Reads are served from memory and refreshed when
    the file changes on disk.  Saves use an atomic temp-file + rename so a
    crash never leaves a half-written store.
    """

    def __init__(self, file_path: Path, *, quota_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self._file_path = file_path
        self._lock_path = file_path.with_name(f".{file_path.name}.lock")
        self._quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._signature: tuple[int, int, int] | None = None
        self._loaded = False

    @property
    def file_path(self) -> Path:
        return self._file_path

    def _stat(self) -> tuple[int, int, int] | None:
        try:
            st = self._file_path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"Cannot read local store {self._file_path}: {e}") from e
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _load(self) -> None:
        signature = self._stat()
        data: dict[str, str] = {}
        if signature is not None:
            try:
                with open(self._file_path, encoding="utf-8") as f:
                    raw = json.load(f)
            except FileNotFoundError:
                signature = None
            except (OSError, json.JSONDecodeError) as e:
                raise StorageUnavailable(f"Cannot read local store {self._file_path}: {e}") from e
            else:
                if not isinstance(raw, dict):
                    raise StorageUnavailable(f"Local store {self._file_path} is not a JSON object")
                data = {str(k): str(v) for k, v in raw.items() if v is not None}
        self._data = data
        self._signature = signature
        self._loaded = True

    def _refresh(self) -> None:
        if not self._loaded or self._stat() != self._signature:
            self._load()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the cross-process lock and work on the current file contents."""
        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(self._lock_path, "a+", encoding="utf-8")
        except OSError as e:
            raise StorageUnavailable(f"Cannot lock local store {self._file_path}: {e}") from e
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            self._load()
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            fh.close()

    def read(self, key: str) -> str | None:
        self._refresh()
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        with self._locked():
            _check_quota(self._data, key, value, self._quota_bytes)
            previous = self._data.get(key)
            self._data[key] = value
            try:
                self._save()
            except StorageUnavailable:
                if previous is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = previous
                raise

    def remove(self, key: str) -> None:
        with self._locked():
            if key not in self._data:
                return
            previous = self._data.pop(key)
            try:
                self._save()
            except StorageUnavailable:
                self._data[key] = previous
                raise

    def keys(self) -> list[str]:
        self._refresh()
        return list(self._data)

    def snapshot(self) -> dict[str, str]:
        self._refresh()
        return dict(self._data)

    def clear(self) -> None:
        with self._locked():
            previous = self._data
            self._data = {}
            try:
                self._save()
            except StorageUnavailable:
                self._data = previous
                raise

    def _save(self) -> None:
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._file_path.parent), suffix=".json.tmp"
            )
        except OSError as e:
            raise StorageUnavailable(f"Cannot write local store {self._file_path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, sort_keys=True)
            Path(tmp_path).replace(self._file_path)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise StorageUnavailable(f"Cannot write local store {self._file_path}: {e}") from e
        self._signature = self._stat()


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


def _check_quota(data: dict[str, str], key: str, value: str, quota_bytes: int) -> None:
    """Raise StorageUnavailable if storing ``key=value`` would exceed the quota.

    Sizes are UTF-8 encoded bytes of every key and value.
    """
    used = sum(_entry_size(k, v) for k, v in data.items() if k != key)
    if used + _entry_size(key, value) > quota_bytes:
        logger.debug("Quota exceeded writing %s (%d bytes used)", key, used)
        raise StorageUnavailable(f"Storage quota exceeded writing {key!r}")
