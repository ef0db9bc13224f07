"""Local filesystem object store for BucketOps.

Objects are stored under ``{root}/{container}/{key}``. Content types are
kept in sidecar files under ``{root}/.meta/{container}/{key}``.

Crash-only design:
    - Atomic writes via temp-fsync-rename pattern.
    - Startup cleans orphan temp files left by interrupted writes.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from bucketops.errors import (
    ContainerAlreadyExists,
    ContainerNotEmpty,
    ContainerNotFound,
    ObjectNotFound,
    ObjectStoreError,
)
from bucketops.metadata.models import ContainerInfo, ListPage, ObjectRef, StoredObject
from bucketops.storage.memory import decode_cursor, encode_cursor

logger = logging.getLogger(__name__)

_META_DIR = ".meta"
_DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file, fsync, and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")
    try:
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        try:
            os.write(fd, data)
            os.fsync(fd)
        finally:
            os.close(fd)
        tmp.rename(path)
    except Exception:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def _mtime_iso(path: Path) -> str:
    ts = path.stat().st_mtime
    return (
        datetime.fromtimestamp(ts, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class LocalObjectStore:
    """Object store that persists containers as directories.

    Attributes:
        root: The root directory for all stored data.
    """

    def __init__(self, root: str | Path) -> None:
        """Initialize the local object store.

        Args:
            root: Root directory path for object storage.
        """
        self.root = Path(root)

    def _container_dir(self, container: str) -> Path:
        return self.root / container

    def _object_path(self, container: str, key: str) -> Path:
        """Return the filesystem path for a stored object.

        Raises:
            ObjectStoreError: If the key would escape the container directory.
        """
        base = self._container_dir(container).resolve()
        path = (base / key).resolve()
        if base not in path.parents:
            raise ObjectStoreError(f"Invalid object key: {key}", status=400)
        return path

    def _meta_path(self, container: str, key: str) -> Path:
        return self.root / _META_DIR / container / key

    def _require_container(self, container: str) -> Path:
        path = self._container_dir(container)
        if not path.is_dir():
            raise ContainerNotFound(container)
        return path

    async def init(self) -> None:
        """Create the root directory and clean up orphan temp files."""
        self.root.mkdir(parents=True, exist_ok=True)
        self._clean_temp_files()
        logger.info("Local object store initialized at %s", self.root)

    def _clean_temp_files(self) -> None:
        count = 0
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for fname in filenames:
                if ".tmp." in fname:
                    try:
                        os.unlink(os.path.join(dirpath, fname))
                        count += 1
                    except OSError:
                        pass
        if count > 0:
            logger.info("Cleaned %d orphan temp files on startup", count)

    async def close(self) -> None:
        pass

    async def put(
        self,
        container: str,
        key: str,
        data: bytes,
        content_type: str = _DEFAULT_CONTENT_TYPE,
    ) -> str:
        """Store an object atomically, then record its content type."""
        self._require_container(container)
        path = self._object_path(container, key)
        try:
            _atomic_write(path, data)
            _atomic_write(self._meta_path(container, key), content_type.encode("utf-8"))
        except OSError as exc:
            raise ObjectStoreError(f"Failed to write {container}/{key}: {exc}") from exc
        return hashlib.md5(data).hexdigest()

    def _content_type(self, container: str, key: str) -> str:
        try:
            return self._meta_path(container, key).read_text("utf-8") or _DEFAULT_CONTENT_TYPE
        except FileNotFoundError:
            return _DEFAULT_CONTENT_TYPE

    async def get(self, container: str, key: str) -> StoredObject:
        self._require_container(container)
        path = self._object_path(container, key)
        try:
            data = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise ObjectNotFound(container, key) from None
        return StoredObject(
            data=data,
            content_type=self._content_type(container, key),
            etag=hashlib.md5(data).hexdigest(),
        )

    async def head(self, container: str, key: str) -> ObjectRef | None:
        self._require_container(container)
        path = self._object_path(container, key)
        if not path.is_file():
            return None
        return ObjectRef(
            key=key,
            size=path.stat().st_size,
            last_modified=_mtime_iso(path),
            content_type=self._content_type(container, key),
        )

    async def delete(self, container: str, key: str) -> None:
        """Delete an object and prune empty parent directories.

        Missing files are ignored.
        """
        self._require_container(container)
        path = self._object_path(container, key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except IsADirectoryError:
            return
        self._meta_path(container, key).unlink(missing_ok=True)

        container_dir = self._container_dir(container).resolve()
        parent = path.parent
        while parent != container_dir and container_dir in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def _walk_keys(self, container_dir: Path, prefix: str) -> list[str]:
        keys = []
        for dirpath, _dirnames, filenames in os.walk(container_dir):
            for fname in filenames:
                if ".tmp." in fname:
                    continue
                rel = Path(dirpath, fname).relative_to(container_dir).as_posix()
                if rel.startswith(prefix):
                    keys.append(rel)
        keys.sort()
        return keys

    async def list(
        self,
        container: str,
        prefix: str = "",
        cursor: str | None = None,
        page_size: int = 100,
    ) -> ListPage:
        container_dir = self._require_container(container)
        start_after = decode_cursor(cursor) if cursor else None
        keys = [
            k for k in self._walk_keys(container_dir, prefix)
            if start_after is None or k > start_after
        ]
        page_keys = keys[:page_size]
        truncated = len(keys) > page_size
        items = []
        for k in page_keys:
            path = container_dir / k
            items.append(
                ObjectRef(
                    key=k,
                    size=path.stat().st_size,
                    last_modified=_mtime_iso(path),
                    content_type=self._content_type(container, k),
                )
            )
        return ListPage(
            items=items,
            next_cursor=encode_cursor(page_keys[-1]) if truncated else None,
            truncated=truncated,
        )

    async def create_container(self, name: str) -> None:
        path = self._container_dir(name)
        try:
            path.mkdir(parents=True)
        except FileExistsError:
            raise ContainerAlreadyExists(name) from None

    async def delete_container(self, name: str) -> None:
        path = self._require_container(name)
        if self._walk_keys(path, ""):
            raise ContainerNotEmpty(name)
        shutil.rmtree(path)
        shutil.rmtree(self.root / _META_DIR / name, ignore_errors=True)

    async def container_exists(self, name: str) -> bool:
        return self._container_dir(name).is_dir()

    async def list_containers(self) -> list[ContainerInfo]:
        containers = []
        for child in sorted(self.root.iterdir()):
            if child.is_dir() and child.name != _META_DIR:
                containers.append(ContainerInfo(name=child.name, created_at=_mtime_iso(child)))
        return containers
