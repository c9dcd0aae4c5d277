"""Object store protocol and the in-process backends."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import structlog

from app.backend.src.core.errors import StorageError

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class StorageEntry:
    """A single object listed from a bucket."""

    key: str
    size: int
    last_modified: datetime | None = None


class ObjectStore(Protocol):
    """Minimal protocol for binary object stores keyed by bucket and key."""

    def download(self, bucket: str, key: str) -> bytes | None:
        """Return the object bytes, or ``None`` when the key does not exist."""

    def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = True,
    ) -> str:
        """Persist bytes and return the object key."""

    def list(self, bucket: str, prefix: str = "") -> list[StorageEntry]:
        """Return the objects stored under ``prefix``."""

    def presigned_url(self, bucket: str, key: str, *, expires_in: int = 3600) -> str:
        """Return an access URL."""


class InMemoryObjectStore:
    """Dictionary-backed store used in tests and local development."""

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], tuple[bytes, str, datetime]] = {}
        self._lock = threading.Lock()

    def download(self, bucket: str, key: str) -> bytes | None:
        with self._lock:
            entry = self._objects.get((bucket, key))
        return entry[0] if entry else None

    def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = True,
    ) -> str:
        with self._lock:
            if not upsert and (bucket, key) in self._objects:
                raise StorageError(
                    f"Object {bucket}/{key} already exists", bucket=bucket, key=key
                )
            self._objects[(bucket, key)] = (
                bytes(data),
                content_type,
                datetime.now(timezone.utc),
            )
        return key

    def list(self, bucket: str, prefix: str = "") -> list[StorageEntry]:
        with self._lock:
            items = [
                StorageEntry(key=key, size=len(data), last_modified=modified)
                for (entry_bucket, key), (data, _, modified) in self._objects.items()
                if entry_bucket == bucket and key.startswith(prefix)
            ]
        return sorted(items, key=lambda item: item.key)

    def presigned_url(self, bucket: str, key: str, *, expires_in: int = 3600) -> str:
        if self.download(bucket, key) is None:
            raise StorageError(f"Object {bucket}/{key} not found", bucket=bucket, key=key)
        return f"memory://{bucket}/{key}"

    def content_type(self, bucket: str, key: str) -> str | None:
        with self._lock:
            entry = self._objects.get((bucket, key))
        return entry[1] if entry else None


class LocalObjectStore:
    """Filesystem-backed store rooted at ``LOCAL_STORAGE_PATH``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        bucket_root = (self.root / bucket).resolve()
        candidate = (bucket_root / key).resolve()
        if bucket_root != candidate and bucket_root not in candidate.parents:
            raise StorageError(
                f"Key escapes bucket root: {key}", bucket=bucket, key=key
            )
        return candidate

    def download(self, bucket: str, key: str) -> bytes | None:
        path = self._path(bucket, key)
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(
                f"Unable to read {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc

    def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = True,
    ) -> str:
        destination = self._path(bucket, key)
        if not upsert and destination.exists():
            raise StorageError(
                f"Object {bucket}/{key} already exists", bucket=bucket, key=key
            )
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            raise StorageError(
                f"Unable to write {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc
        LOGGER.info("stored_local", bucket=bucket, key=key, path=str(destination))
        return key

    def list(self, bucket: str, prefix: str = "") -> list[StorageEntry]:
        bucket_root = self.root / bucket
        if not bucket_root.is_dir():
            return []
        entries: list[StorageEntry] = []
        for path in sorted(bucket_root.rglob("*")):
            if not path.is_file():
                continue
            key = path.relative_to(bucket_root).as_posix()
            if not key.startswith(prefix):
                continue
            stat = path.stat()
            entries.append(
                StorageEntry(
                    key=key,
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return entries

    def presigned_url(self, bucket: str, key: str, *, expires_in: int = 3600) -> str:
        return self._path(bucket, key).as_uri()


__all__ = [
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    "StorageEntry",
]
