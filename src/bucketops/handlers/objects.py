"""Object-level request handlers for BucketOps.

Implements:
    - ListObjects (GET /containers/{c}/objects)
    - PutObject (PUT /containers/{c}/objects/{key})
    - DeleteObject (DELETE /containers/{c}/objects/{key})
    - MoveObject / CopyObject (POST /containers/{c}/objects/{key}/move|copy)
    - RenameObject (PATCH /containers/{c}/objects/{key}/rename)
    - SignedUrl (GET /containers/{c}/objects/{key}/signed-url)
    - Download (GET /download/{c}/{key}?ts&sig)
    - BatchDelete (POST /containers/{c}/batch-delete)
    - Export (POST /containers/{c}/export, POST /export)
"""

import logging
from datetime import datetime
from urllib.parse import quote

from fastapi import FastAPI, Request, Response

from bucketops.errors import ContainerNotFound, Forbidden, NotFoundFailure, ObjectNotFound, ValidationFailure
from bucketops.handlers.common import get_identity, ok, read_json, report_response, require_str
from bucketops.metadata.models import AuditOperationType, ObjectRef
from bucketops.transfer.coordinator import FOLDER_MARKER, destination_key, normalize_prefix
from bucketops.validation import parse_page_size, validate_container_name, validate_object_key

logger = logging.getLogger(__name__)

DOWNLOAD_PREFIX = "/download"


def _is_marker(key: str) -> bool:
    return key == FOLDER_MARKER or key.endswith("/" + FOLDER_MARKER)


def _version_seconds(last_modified: str) -> float | None:
    """Parse an ISO 8601 timestamp into epoch seconds."""
    if not last_modified:
        return None
    try:
        return datetime.fromisoformat(last_modified.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class ObjectHandler:
    """Handles single-object operations and object-set exports.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def storage(self):
        return self.app.state.storage

    @property
    def config(self):
        return self.app.state.config

    @property
    def coordinator(self):
        return self.app.state.coordinator

    @property
    def audit(self):
        return self.app.state.audit

    def download_url(self, container: str, key: str, version: float | None = None) -> str:
        """Signed download link for an object.

        ``version`` is the object's last-modified time; listings pass it
        so that a link changes only when the object does.
        """
        path = self.app.state.signer.signed_path(f"{DOWNLOAD_PREFIX}/{container}/{key}", version=version)
        return f"{self.config.server.public_base_url.rstrip('/')}{path}"

    async def list_objects(self, request: Request, container: str) -> Response:
        """List one page of a container, split into files and subfolders.

        Implements: GET /containers/{c}/objects?prefix&cursor&limit

        Files are the direct children of ``prefix``; deeper keys are
        reported once each as a folder name. Folder markers are hidden.
        Folders are derived from the returned page only.
        """
        params = request.query_params
        prefix = normalize_prefix(params.get("prefix", ""))
        page_size = parse_page_size(params.get("limit"), self.config.transfer.page_size)
        page = await self.storage.list(
            container, prefix=prefix, cursor=params.get("cursor") or None, page_size=page_size
        )

        files = []
        folders: list[str] = []
        for obj in page.items:
            rest = obj.key[len(prefix):]
            if "/" in rest:
                folder = prefix + rest.split("/", 1)[0]
                if folder not in folders:
                    folders.append(folder)
                continue
            if _is_marker(obj.key):
                continue
            files.append(self._describe(container, obj))

        return ok(
            {
                "objects": files,
                "folders": folders,
                "cursor": page.next_cursor,
                "hasMore": page.truncated,
            }
        )

    def _describe(self, container: str, obj: ObjectRef) -> dict:
        return {
            "key": obj.key,
            "size": obj.size,
            "uploaded": obj.last_modified,
            "contentType": obj.content_type,
            "etag": obj.etag,
            "url": self.download_url(container, obj.key, _version_seconds(obj.last_modified)),
        }

    async def put_object(self, request: Request, container: str, key: str) -> Response:
        """Upload an object from the raw request body.

        Implements: PUT /containers/{c}/objects/{key}
        """
        validate_object_key(key)
        data = await request.body()
        content_type = request.headers.get("content-type") or "application/octet-stream"
        identity = get_identity(request)
        etag = await self.storage.put(container, key, data, content_type=content_type)
        await self.audit.record(
            AuditOperationType.FILE_UPLOAD, identity,
            container=container, key=key, size_bytes=len(data),
        )
        self.app.state.size_cache.invalidate()
        return ok({"key": key, "size": len(data), "etag": etag, "contentType": content_type}, status=201)

    async def delete_object(self, request: Request, container: str, key: str) -> Response:
        """Delete one object. Deleting a missing key succeeds.

        Implements: DELETE /containers/{c}/objects/{key}
        """
        validate_object_key(key)
        await self.storage.delete(container, key)
        await self.audit.record(
            AuditOperationType.FILE_DELETE, get_identity(request), container=container, key=key,
        )
        self.app.state.size_cache.invalidate()
        return ok({"key": key})

    async def _relocate(
        self,
        request: Request,
        container: str,
        key: str,
        delete_source: bool,
        operation: AuditOperationType,
    ) -> Response:
        validate_object_key(key)
        body = await read_json(request)
        dst_container = require_str(body, "destinationContainer")
        dst_key = destination_key(key, body.get("destinationPath"))
        validate_object_key(dst_key)

        result = await self.coordinator.relocate_object(
            container, key, dst_container, dst_key,
            delete_source=delete_source,
            owner=get_identity(request),
            audit_operation=operation,
            overwrite=bool(body.get("overwrite", False)),
        )
        self.app.state.size_cache.invalidate()
        return ok(
            {
                "source": {"container": container, "key": key},
                "destination": {"container": dst_container, "key": dst_key},
                "size": result.size,
                "sourceDeleted": result.source_deleted,
            }
        )

    async def move_object(self, request: Request, container: str, key: str) -> Response:
        """Implements: POST /containers/{c}/objects/{key}/move"""
        return await self._relocate(request, container, key, True, AuditOperationType.FILE_MOVE)

    async def copy_object(self, request: Request, container: str, key: str) -> Response:
        """Implements: POST /containers/{c}/objects/{key}/copy"""
        return await self._relocate(request, container, key, False, AuditOperationType.FILE_COPY)

    async def rename_object(self, request: Request, container: str, key: str) -> Response:
        """Give an object a new key in the same container.

        Implements: PATCH /containers/{c}/objects/{key}/rename  body {"newKey": str}
        """
        validate_object_key(key)
        body = await read_json(request)
        new_key = require_str(body, "newKey").lstrip("/")
        validate_object_key(new_key)
        await self.coordinator.relocate_object(
            container, key, container, new_key,
            delete_source=True,
            owner=get_identity(request),
            audit_operation=AuditOperationType.FILE_RENAME,
            overwrite=bool(body.get("overwrite", False)),
        )
        return ok({"key": key, "newKey": new_key})

    async def signed_url(self, request: Request, container: str, key: str) -> Response:
        """Issue a fresh signed download link.

        Implements: GET /containers/{c}/objects/{key}/signed-url
        """
        validate_object_key(key)
        try:
            existing = await self.storage.head(container, key)
        except ContainerNotFound:
            raise NotFoundFailure(f"Container not found: {container}", details={"container": container}) from None
        if existing is None:
            raise NotFoundFailure("File not found", details={"container": container, "key": key})
        await self.audit.record(
            AuditOperationType.FILE_DOWNLOAD, get_identity(request),
            container=container, key=key, size_bytes=existing.size,
        )
        return ok({"url": self.download_url(container, key)})

    async def download(self, request: Request, container: str, key: str) -> Response:
        """Serve object bytes for a validly signed link.

        Implements: GET /download/{c}/{key}?ts&sig
        """
        raw_path = request.scope.get("raw_path", b"").decode("latin-1") or request.url.path
        raw_path = raw_path.split("?", 1)[0]
        if not self.app.state.signer.verify_url(raw_path, request.url.query):
            raise Forbidden()
        try:
            obj = await self.storage.get(container, key)
        except (ObjectNotFound, ContainerNotFound):
            raise NotFoundFailure("File not found", details={"container": container, "key": key}) from None
        filename = quote(key.rsplit("/", 1)[-1])
        headers = {
            "Content-Disposition": f"inline; filename*=UTF-8''{filename}",
            "Cache-Control": "private, max-age=3600",
        }
        if obj.etag:
            headers["ETag"] = f'"{obj.etag}"'
        return Response(content=obj.data, media_type=obj.content_type, headers=headers)

    async def batch_delete(self, request: Request, container: str) -> Response:
        """Delete an explicit list of keys.

        Implements: POST /containers/{c}/batch-delete  body {"keys": [str]}
        """
        body = await read_json(request)
        keys = body.get("keys")
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise ValidationFailure("keys must be a list of strings")
        report = await self.coordinator.delete_keys(container, keys, get_identity(request))
        self.app.state.size_cache.invalidate()
        return report_response(report)

    async def export_container(self, request: Request, container: str) -> Response:
        """ZIP selected objects of one container.

        Implements: POST /containers/{c}/export  body {"keys": [str]}
        """
        body = await read_json(request)
        keys = body.get("keys")
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise ValidationFailure("keys must be a list of strings")
        return await self._export([(container, keys)], request)

    async def export_many(self, request: Request) -> Response:
        """ZIP objects across containers, one folder per container.

        Implements: POST /export  body {"containers": [{"name": str, "keys": [str]}]}
        """
        body = await read_json(request)
        entries = body.get("containers")
        if not isinstance(entries, list) or not entries:
            raise ValidationFailure("containers must be a non-empty list")
        selections = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValidationFailure("containers entries must be objects")
            name = require_str(entry, "name")
            validate_container_name(name)
            keys = entry.get("keys")
            if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
                raise ValidationFailure("keys must be a list of strings", details={"container": name})
            selections.append((name, keys))
        return await self._export(selections, request)

    async def _export(self, selections: list[tuple[str, list[str]]], request: Request) -> Response:
        result = await self.coordinator.export_archive(selections, get_identity(request))
        report = result.report
        return Response(
            content=result.archive,
            media_type="application/zip",
            headers={
                "Content-Disposition": f'attachment; filename="{result.filename}"',
                "X-Job-Id": report.job_id or "",
                "X-Export-Files": str(report.succeeded),
                "X-Export-Failures": str(report.failed),
            },
        )
