"""In-memory object store for BucketOps.

Holds every container as a dict of key to (bytes, content type, etag,
last-modified). Listing cursors are the URL-safe base64 of the last key
returned, so continuation is stable even if objects are added or removed
between pages.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass

from bucketops.errors import (
    ContainerAlreadyExists,
    ContainerNotEmpty,
    ContainerNotFound,
    ObjectNotFound,
)
from bucketops.metadata.models import (
    ContainerInfo,
    ListPage,
    ObjectRef,
    StoredObject,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    data: bytes
    content_type: str
    etag: str
    last_modified: str


def encode_cursor(key: str) -> str:
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> str:
    return base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")


class MemoryObjectStore:
    """Object store that keeps everything in process memory.

    Attributes:
        containers: Mapping of container name to its objects.
    """

    def __init__(self) -> None:
        self.containers: dict[str, dict[str, _Entry]] = {}
        self._created: dict[str, str] = {}

    async def init(self) -> None:
        logger.info("Memory object store initialized")

    async def close(self) -> None:
        pass

    def _container(self, name: str) -> dict[str, _Entry]:
        try:
            return self.containers[name]
        except KeyError:
            raise ContainerNotFound(name) from None

    async def put(
        self,
        container: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        objects = self._container(container)
        etag = hashlib.md5(data).hexdigest()
        objects[key] = _Entry(
            data=bytes(data),
            content_type=content_type,
            etag=etag,
            last_modified=utc_now_iso(),
        )
        return etag

    async def get(self, container: str, key: str) -> StoredObject:
        entry = self._container(container).get(key)
        if entry is None:
            raise ObjectNotFound(container, key)
        return StoredObject(data=entry.data, content_type=entry.content_type, etag=entry.etag)

    async def head(self, container: str, key: str) -> ObjectRef | None:
        entry = self._container(container).get(key)
        if entry is None:
            return None
        return ObjectRef(
            key=key,
            size=len(entry.data),
            last_modified=entry.last_modified,
            content_type=entry.content_type,
            etag=entry.etag,
        )

    async def delete(self, container: str, key: str) -> None:
        self._container(container).pop(key, None)

    async def list(
        self,
        container: str,
        prefix: str = "",
        cursor: str | None = None,
        page_size: int = 100,
    ) -> ListPage:
        objects = self._container(container)
        start_after = decode_cursor(cursor) if cursor else None
        keys = sorted(
            k for k in objects
            if k.startswith(prefix) and (start_after is None or k > start_after)
        )
        page_keys = keys[:page_size]
        truncated = len(keys) > page_size
        items = []
        for k in page_keys:
            entry = objects[k]
            items.append(
                ObjectRef(
                    key=k,
                    size=len(entry.data),
                    last_modified=entry.last_modified,
                    content_type=entry.content_type,
                    etag=entry.etag,
                )
            )
        return ListPage(
            items=items,
            next_cursor=encode_cursor(page_keys[-1]) if truncated else None,
            truncated=truncated,
        )

    async def create_container(self, name: str) -> None:
        if name in self.containers:
            raise ContainerAlreadyExists(name)
        self.containers[name] = {}
        self._created[name] = utc_now_iso()

    async def delete_container(self, name: str) -> None:
        objects = self._container(name)
        if objects:
            raise ContainerNotEmpty(name)
        del self.containers[name]
        self._created.pop(name, None)

    async def container_exists(self, name: str) -> bool:
        return name in self.containers

    async def list_containers(self) -> list[ContainerInfo]:
        return [
            ContainerInfo(name=name, created_at=self._created.get(name, ""))
            for name in sorted(self.containers)
        ]
