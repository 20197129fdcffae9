"""Storage adapters for workflow snapshots.

Any backend can be plugged in by implementing ``PersistenceAdapter``. Two
adapters ship with formflow: an in-memory one for tests and short-lived
sessions, and a JSON-file one (one file per key) for local persistence.
"""

from __future__ import annotations

import errno
import json
import logging
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from pydantic import ValidationError

from formflow.persistence.types import (
    PersistedSnapshot,
    PersistenceError,
    PersistenceErrorCode,
    StorageEntry,
)
from formflow.persistence.utils import now_ms

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "formflow_workflow_"
_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


@runtime_checkable
class PersistenceAdapter(Protocol):
    async def save(self, key: str, snapshot: PersistedSnapshot) -> None: ...

    async def load(self, key: str) -> PersistedSnapshot | None: ...

    async def remove(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...


@runtime_checkable
class ListableAdapter(PersistenceAdapter, Protocol):
    async def list_keys(self) -> list[str]: ...

    async def clear(self) -> None: ...


def _expires_at(max_age_seconds: float | None) -> int | None:
    if max_age_seconds is None:
        return None
    return now_ms() + int(max_age_seconds * 1000)


class InMemoryAdapter:
    def __init__(self, *, max_age_seconds: float | None = None) -> None:
        self._entries: dict[str, StorageEntry] = {}
        self._max_age_seconds = max_age_seconds
        self._lock = threading.Lock()

    async def save(self, key: str, snapshot: PersistedSnapshot) -> None:
        entry = StorageEntry(
            data=snapshot.model_copy(deep=True), expires_at=_expires_at(self._max_age_seconds)
        )
        with self._lock:
            self._entries[key] = entry

    async def load(self, key: str) -> PersistedSnapshot | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now_ms()):
                del self._entries[key]
                return None
            return entry.data.model_copy(deep=True)

    async def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.load(key) is not None

    async def list_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class JsonFileAdapter:
    """Persist each snapshot as ``<directory>/<prefix><quoted key>.json``.

    ``max_total_bytes`` caps the combined size of this adapter's files. When a
    save would exceed it, expired entries are purged and the check is retried
    once before ``QUOTA_EXCEEDED`` is raised.
    """

    def __init__(
        self,
        directory: Path,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        max_age_seconds: float | None = None,
        max_total_bytes: int | None = None,
    ) -> None:
        self.directory = Path(directory)
        self.key_prefix = key_prefix
        self._max_age_seconds = max_age_seconds
        self._max_total_bytes = max_total_bytes
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.directory / f"{self.key_prefix}{quote(key, safe='')}.json"

    def _files(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob(f"{self.key_prefix}*.json"))

    def _read_unlocked(self, path: Path) -> StorageEntry | None:
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return StorageEntry.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(
                f"Failed to load workflow data from {path.name}: {e}",
                PersistenceErrorCode.LOAD_FAILED,
                e,
            ) from e

    def _purge_expired_unlocked(self) -> int:
        removed = 0
        now = now_ms()
        for path in self._files():
            try:
                entry = self._read_unlocked(path)
            except PersistenceError:
                logger.warning("Skipping unreadable snapshot file", extra={"path": str(path)})
                continue
            if entry is not None and entry.is_expired(now):
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Purged expired snapshots", extra={"removed": removed})
        return removed

    def _usage_unlocked(self, exclude: Path) -> int:
        return sum(p.stat().st_size for p in self._files() if p != exclude)

    def _check_quota_unlocked(self, path: Path, size: int) -> None:
        if self._max_total_bytes is None:
            return
        if self._usage_unlocked(path) + size <= self._max_total_bytes:
            return
        self._purge_expired_unlocked()
        if self._usage_unlocked(path) + size > self._max_total_bytes:
            raise PersistenceError(
                "Storage quota exceeded and no expired entries could be purged",
                PersistenceErrorCode.QUOTA_EXCEEDED,
            )

    async def save(self, key: str, snapshot: PersistedSnapshot) -> None:
        entry = StorageEntry(data=snapshot, expires_at=_expires_at(self._max_age_seconds))
        text = (
            json.dumps(
                entry.model_dump(mode="json", by_alias=True, exclude_none=True),
                indent=2,
                ensure_ascii=False,
            )
            + "\n"
        )
        path = self._path(key)
        with self._lock:
            try:
                self._check_quota_unlocked(path, len(text.encode("utf-8")))
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(text, encoding="utf-8")
            except OSError as e:
                if e.errno in _QUOTA_ERRNOS:
                    raise PersistenceError(
                        f"No space left to save workflow data: {e}",
                        PersistenceErrorCode.QUOTA_EXCEEDED,
                        e,
                    ) from e
                raise PersistenceError(
                    f"Failed to save workflow data: {e}", PersistenceErrorCode.SAVE_FAILED, e
                ) from e

    async def load(self, key: str) -> PersistedSnapshot | None:
        path = self._path(key)
        with self._lock:
            entry = self._read_unlocked(path)
            if entry is None:
                return None
            if entry.is_expired(now_ms()):
                logger.info("Discarding expired snapshot", extra={"key": key})
                path.unlink(missing_ok=True)
                return None
            return entry.data

    async def remove(self, key: str) -> None:
        with self._lock:
            try:
                self._path(key).unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(
                    f"Failed to remove workflow data: {e}", PersistenceErrorCode.REMOVE_FAILED, e
                ) from e

    async def exists(self, key: str) -> bool:
        try:
            return await self.load(key) is not None
        except PersistenceError:
            logger.warning("Snapshot exists but cannot be read", extra={"key": key})
            return False

    async def list_keys(self) -> list[str]:
        with self._lock:
            try:
                names = [p.name for p in self._files()]
            except OSError as e:
                raise PersistenceError(
                    f"Failed to list workflow keys: {e}", PersistenceErrorCode.LIST_FAILED, e
                ) from e
        return [unquote(n[len(self.key_prefix) : -len(".json")]) for n in names]

    async def clear(self) -> None:
        with self._lock:
            try:
                for path in self._files():
                    path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(
                    f"Failed to clear workflow data: {e}", PersistenceErrorCode.CLEAR_FAILED, e
                ) from e

    async def purge_expired(self) -> int:
        with self._lock:
            return self._purge_expired_unlocked()
