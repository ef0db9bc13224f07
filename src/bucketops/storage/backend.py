"""Abstract object store protocol for BucketOps."""

from __future__ import annotations

from typing import Protocol

from bucketops.metadata.models import ContainerInfo, ListPage, ObjectRef, StoredObject


class ObjectStore(Protocol):
    """Protocol defining the upstream object store interface.

    The store is a flat namespace of containers holding keyed blobs.
    Folders are only a naming convention over ``/`` in keys. Every
    non-success response raises ``ObjectStoreError`` (or a subclass).
    """

    async def init(self) -> None:
        """Initialize the backend (create directories, open clients, etc.)."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    async def put(
        self,
        container: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Store an object's bytes.

        Args:
            container: The container name.
            key: The object key.
            data: The raw bytes to store.
            content_type: MIME type recorded with the object.

        Returns:
            The object's ETag.

        Raises:
            ContainerNotFound: If the container does not exist.
        """
        ...

    async def get(self, container: str, key: str) -> StoredObject:
        """Retrieve an object's bytes and content type.

        Raises:
            ObjectNotFound: If the object does not exist.
        """
        ...

    async def head(self, container: str, key: str) -> ObjectRef | None:
        """Return an object's attributes, or None if it does not exist."""
        ...

    async def delete(self, container: str, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        ...

    async def list(
        self,
        container: str,
        prefix: str = "",
        cursor: str | None = None,
        page_size: int = 100,
    ) -> ListPage:
        """List one page of objects in key order.

        Args:
            container: The container name.
            prefix: Only keys starting with this prefix are returned.
            cursor: Continuation token from a previous page.
            page_size: Maximum number of items in the page.

        Returns:
            A ListPage whose ``next_cursor`` continues the listing when
            ``truncated`` is True.

        Raises:
            ContainerNotFound: If the container does not exist.
        """
        ...

    async def create_container(self, name: str) -> None:
        """Create an empty container.

        Raises:
            ContainerAlreadyExists: If the name is taken.
        """
        ...

    async def delete_container(self, name: str) -> None:
        """Delete an empty container.

        Raises:
            ContainerNotFound: If it does not exist.
            ContainerNotEmpty: If it still holds objects.
        """
        ...

    async def container_exists(self, name: str) -> bool:
        """Check whether a container exists."""
        ...

    async def list_containers(self) -> list[ContainerInfo]:
        """List all containers sorted by name."""
        ...
