"""Container-level request handlers for BucketOps.

Implements:
    - ListContainers (GET /containers)
    - CreateContainer (POST /containers)
    - DeleteContainer (DELETE /containers/{name}?force=bool)
    - RenameContainer (PATCH /containers/{name})
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, Response

from bucketops.errors import (
    ConflictFailure,
    ContainerAlreadyExists,
    ContainerNotEmpty,
    ContainerNotFound,
    NotFoundFailure,
)
from bucketops.handlers.common import get_identity, ok, read_json, report_response, require_str
from bucketops.metadata.models import AuditOperationType, AuditStatus
from bucketops.transfer.lister import PaginatedLister
from bucketops.validation import parse_bool, validate_container_name

logger = logging.getLogger(__name__)


class ContainerHandler:
    """Handles container operations.

    All handlers access their collaborators from ``app.state``.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def storage(self):
        return self.app.state.storage

    @property
    def metadata(self):
        return self.app.state.metadata

    @property
    def config(self):
        return self.app.state.config

    def _visible(self, name: str) -> bool:
        return name not in self.config.storage.hidden_containers

    async def _container_sizes(self, names: list[str]) -> dict[str, dict[str, int]]:
        """Object counts and byte totals per container, served from a TTL cache.

        Summing sizes means enumerating every object, so the result is
        cached for ``transfer.size_cache_ttl_seconds``.
        """
        cache = self.app.state.size_cache
        sizes = cache.get()
        if sizes is not None and all(n in sizes for n in names):
            return sizes

        sizes = {}
        lister = PaginatedLister(self.storage, page_size=1000)
        for name in names:
            count = 0
            total = 0
            async for batch in lister.pages(name):
                count += len(batch)
                total += sum(obj.size for obj in batch)
            sizes[name] = {"objectCount": count, "sizeBytes": total}
        cache.set(sizes)
        return sizes

    async def list_containers(self, request: Request) -> Response:
        """List visible containers with owner, object count and size.

        Implements: GET /containers[?refresh=true]
        """
        if parse_bool(request.query_params.get("refresh")):
            self.app.state.size_cache.invalidate()

        containers = [c for c in await self.storage.list_containers() if self._visible(c.name)]
        sizes = await self._container_sizes([c.name for c in containers])
        result: list[dict[str, Any]] = []
        for info in containers:
            entry = {
                "name": info.name,
                "createdAt": info.created_at,
                "owner": await self.metadata.get_container_owner(info.name),
            }
            entry.update(sizes.get(info.name, {"objectCount": 0, "sizeBytes": 0}))
            result.append(entry)
        return ok({"containers": result})

    async def create_container(self, request: Request) -> Response:
        """Create a container and record the caller as its owner.

        Implements: POST /containers  body {"name": str}
        """
        body = await read_json(request)
        name = require_str(body, "name")
        validate_container_name(name)
        identity = get_identity(request)

        try:
            await self.storage.create_container(name)
        except ContainerAlreadyExists:
            await self.app.state.audit.record(
                AuditOperationType.BUCKET_CREATE, identity, AuditStatus.FAILED, container=name,
            )
            raise ConflictFailure(
                f"Container already exists: {name}", details={"container": name}
            ) from None

        await self.metadata.set_container_owner(name, identity)
        await self.app.state.audit.record(
            AuditOperationType.BUCKET_CREATE, identity, container=name,
        )
        self.app.state.size_cache.invalidate()
        logger.info("Created container %s", name, extra={"container": name, "identity": identity})
        return ok({"container": {"name": name, "owner": identity}}, status=201)

    async def delete_container(self, request: Request, name: str) -> Response:
        """Delete a container.

        Implements: DELETE /containers/{name}[?force=true]

        Without ``force`` only an empty container is deleted. With
        ``force`` every object is deleted first through the coordinator
        and the bulk report is returned.
        """
        identity = get_identity(request)
        self.app.state.size_cache.invalidate()
        if parse_bool(request.query_params.get("force")):
            report = await self.app.state.coordinator.force_delete_container(name, identity)
            return report_response(report)

        try:
            await self.storage.delete_container(name)
        except ContainerNotFound:
            raise NotFoundFailure(f"Container not found: {name}", details={"container": name}) from None
        except ContainerNotEmpty:
            raise ConflictFailure(
                "Container is not empty. Use force=true to delete all objects.",
                details={"container": name},
            ) from None

        await self.metadata.delete_container_owner(name)
        await self.app.state.audit.record(
            AuditOperationType.BUCKET_DELETE, identity, container=name, metadata={"force": False},
        )
        return ok({"container": name})

    async def rename_container(self, request: Request, name: str) -> Response:
        """Rename a container by copying everything into a new one.

        Implements: PATCH /containers/{name}  body {"newName": str}
        """
        body = await read_json(request)
        new_name = require_str(body, "newName")
        validate_container_name(new_name)
        self.app.state.size_cache.invalidate()
        report = await self.app.state.coordinator.rename_container(
            name, new_name, get_identity(request)
        )
        return report_response(report)
