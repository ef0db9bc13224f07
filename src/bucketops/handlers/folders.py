"""Folder request handlers for BucketOps.

Folders are key prefixes. An empty folder exists only as a ``.keep``
marker object; every other folder operation acts on the objects under
the prefix through the bulk coordinator.
"""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from bucketops.handlers.common import get_identity, ok, read_json, report_response, require_str
from bucketops.metadata.models import AuditOperationType
from bucketops.transfer.coordinator import FOLDER_MARKER, FolderDeleteConfirmation, normalize_prefix
from bucketops.validation import parse_bool, validate_folder_name

logger = logging.getLogger(__name__)


class FolderHandler:
    """Handles folder create, rename, move, copy and delete.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def coordinator(self):
        return self.app.state.coordinator

    async def create_folder(self, request: Request, container: str) -> Response:
        """Create an empty folder marker.

        Implements: POST /containers/{c}/folders  body {"folderName": str}
        """
        body = await read_json(request)
        name = require_str(body, "folderName")
        validate_folder_name(name)
        folder = normalize_prefix(name)
        await self.app.state.storage.put(container, folder + FOLDER_MARKER, b"", content_type="text/plain")
        await self.app.state.audit.record(
            AuditOperationType.FOLDER_CREATE, get_identity(request), container=container, key=folder,
        )
        self.app.state.size_cache.invalidate()
        return ok({"folder": folder}, status=201)

    async def rename_folder(self, request: Request, container: str) -> Response:
        """Move every object under ``oldPath`` to ``newPath`` in the same container.

        Implements: POST /containers/{c}/folders/rename  body {"oldPath", "newPath"}
        """
        body = await read_json(request)
        old_path = require_str(body, "oldPath")
        new_path = require_str(body, "newPath")
        report = await self.coordinator.transfer_prefix(
            container, old_path, container, new_path,
            delete_source=True,
            owner=get_identity(request),
            audit_operation=AuditOperationType.FOLDER_RENAME,
        )
        self.app.state.size_cache.invalidate()
        return report_response(report)

    async def _transfer(
        self, request: Request, container: str, path: str, delete_source: bool
    ) -> Response:
        body = await read_json(request)
        dst_container = require_str(body, "destinationContainer")
        # Without a destination path the folder keeps its path in the destination.
        dst_path = body.get("destinationPath")
        if not isinstance(dst_path, str):
            dst_path = path
        report = await self.coordinator.transfer_prefix(
            container, path, dst_container, dst_path,
            delete_source=delete_source,
            owner=get_identity(request),
        )
        self.app.state.size_cache.invalidate()
        return report_response(report)

    async def move_folder(self, request: Request, container: str, path: str) -> Response:
        """Implements: POST /containers/{c}/folders/{path}/move"""
        return await self._transfer(request, container, path, True)

    async def copy_folder(self, request: Request, container: str, path: str) -> Response:
        """Implements: POST /containers/{c}/folders/{path}/copy"""
        return await self._transfer(request, container, path, False)

    async def delete_folder(self, request: Request, container: str, path: str) -> Response:
        """Delete a folder, asking for confirmation when it holds objects.

        Implements: DELETE /containers/{c}/folders/{path}[?force=true]

        Returns:
            200 with ``fileCount`` and ``success: false`` when the folder
            is non-empty and ``force`` is not set; otherwise the bulk
            delete report.
        """
        force = parse_bool(request.query_params.get("force"))
        outcome = await self.coordinator.delete_prefix(container, path, force, get_identity(request))
        self.app.state.size_cache.invalidate()
        if isinstance(outcome, FolderDeleteConfirmation):
            return JSONResponse(outcome.to_dict())
        return report_response(outcome)
