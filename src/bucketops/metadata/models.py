"""Data model types for BucketOps.

These dataclasses describe objects as seen through the object store,
the job and audit records kept in the metadata store, and the typed
metadata payloads attached to each kind of job.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobOperationType(str, Enum):
    BULK_UPLOAD = "bulk_upload"
    BULK_DOWNLOAD = "bulk_download"
    BULK_DELETE = "bulk_delete"
    BUCKET_DELETE = "bucket_delete"
    BUCKET_RENAME = "bucket_rename"
    FILE_MOVE = "file_move"
    FILE_COPY = "file_copy"
    FOLDER_MOVE = "folder_move"
    FOLDER_COPY = "folder_copy"
    SEARCH_INDEX_SYNC = "search_index_sync"


class JobEventType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AuditOperationType(str, Enum):
    FILE_UPLOAD = "file_upload"
    FILE_DOWNLOAD = "file_download"
    FILE_DELETE = "file_delete"
    FILE_RENAME = "file_rename"
    FILE_MOVE = "file_move"
    FILE_COPY = "file_copy"
    BUCKET_CREATE = "bucket_create"
    BUCKET_DELETE = "bucket_delete"
    BUCKET_RENAME = "bucket_rename"
    FOLDER_CREATE = "folder_create"
    FOLDER_DELETE = "folder_delete"
    FOLDER_RENAME = "folder_rename"
    FOLDER_MOVE = "folder_move"
    FOLDER_COPY = "folder_copy"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string with milliseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_job_id(operation: JobOperationType | str) -> str:
    """Build a job id of the form ``<operation>-<base36 millis>-<random6>``."""
    op = operation.value if isinstance(operation, JobOperationType) else operation
    millis = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{op}-{millis}-{suffix}"


# -- Object store types -------------------------------------------------------


@dataclass(frozen=True)
class ObjectRef:
    """A listed object.

    Attributes:
        key: Full object key.
        size: Size in bytes.
        last_modified: ISO 8601 timestamp.
        content_type: MIME type when known.
        etag: Opaque entity tag.
    """

    key: str
    size: int = 0
    last_modified: str = ""
    content_type: str | None = None
    etag: str = ""


@dataclass
class StoredObject:
    """Bytes and headers returned by ``ObjectStore.get``."""

    data: bytes
    content_type: str = "application/octet-stream"
    etag: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ListPage:
    """One page of a listing.

    Attributes:
        items: Objects on this page.
        next_cursor: Opaque continuation token, None when absent.
        truncated: Whether the store reports more results.
    """

    items: list[ObjectRef] = field(default_factory=list)
    next_cursor: str | None = None
    truncated: bool = False


@dataclass
class ContainerInfo:
    """A container and its creation time."""

    name: str
    created_at: str = ""


# -- Job and audit records ----------------------------------------------------


@dataclass
class TransferJob:
    """A tracked long-running operation.

    Attributes:
        job_id: Unique identifier (see ``generate_job_id``).
        container_name: The primary container acted upon.
        operation_type: One of ``JobOperationType``.
        status: One of ``JobStatus``.
        total_items: Items discovered so far, None until known.
        processed_items: Items that succeeded.
        error_count: Items that failed.
        percentage: Monotonic completion estimate, 0-100.
        started_at: ISO 8601 start time.
        completed_at: ISO 8601 end time, set on terminal transition.
        created_by: Identity of the caller.
        error_message: Summary of the terminal error, if any.
        metadata: Operation-specific payload (JSON-serializable dict).
    """

    job_id: str
    container_name: str | None
    operation_type: str
    status: str = JobStatus.QUEUED.value
    total_items: int | None = None
    processed_items: int = 0
    error_count: int = 0
    percentage: float = 0.0
    started_at: str = ""
    completed_at: str | None = None
    created_by: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class JobEvent:
    """An append-only entry in a job's history."""

    job_id: str
    event_type: str
    timestamp: str
    details: dict[str, Any] | None = None
    user_email: str | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AuditLogEntry:
    """One user-initiated mutation or download."""

    operation_type: str
    user_email: str
    status: str
    timestamp: str = ""
    container_name: str | None = None
    object_key: str | None = None
    size_bytes: int | None = None
    destination_container: str | None = None
    destination_key: str | None = None
    metadata: dict[str, Any] | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# -- Typed job metadata -------------------------------------------------------


@dataclass
class ContainerDeleteMetadata:
    deleted_count: int = 0
    failed_count: int = 0


@dataclass
class ContainerRenameMetadata:
    source: str = ""
    destination: str = ""
    copied: int = 0
    copy_failures: int = 0
    deleted: int = 0
    source_retained: bool = False


@dataclass
class FolderTransferMetadata:
    source_prefix: str = ""
    destination_container: str = ""
    destination_prefix: str = ""
    delete_source: bool = False
    last_cursor: str | None = None


@dataclass
class FolderDeleteMetadata:
    prefix: str = ""
    deleted_count: int = 0
    failed_count: int = 0


@dataclass
class BulkDeleteMetadata:
    keys_requested: int = 0
    deleted_count: int = 0
    failed_count: int = 0


@dataclass
class ExportMetadata:
    containers: list[str] = field(default_factory=list)
    archive_name: str = ""
    files_added: int = 0
    bytes_added: int = 0


JobMetadata = (
    ContainerDeleteMetadata
    | ContainerRenameMetadata
    | FolderTransferMetadata
    | FolderDeleteMetadata
    | BulkDeleteMetadata
    | ExportMetadata
)

_METADATA_TYPES: dict[str, type] = {
    JobOperationType.BUCKET_DELETE.value: ContainerDeleteMetadata,
    JobOperationType.BUCKET_RENAME.value: ContainerRenameMetadata,
    JobOperationType.FOLDER_MOVE.value: FolderTransferMetadata,
    JobOperationType.FOLDER_COPY.value: FolderTransferMetadata,
    JobOperationType.BULK_DELETE.value: BulkDeleteMetadata,
    JobOperationType.BULK_DOWNLOAD.value: ExportMetadata,
}

_METADATA_KINDS: dict[str, type] = {
    cls.__name__: cls
    for cls in (
        ContainerDeleteMetadata,
        ContainerRenameMetadata,
        FolderTransferMetadata,
        FolderDeleteMetadata,
        BulkDeleteMetadata,
        ExportMetadata,
    )
}


def job_metadata_to_dict(meta: JobMetadata | dict[str, Any] | None) -> dict[str, Any] | None:
    """Serialize a typed metadata payload for storage."""
    if meta is None or isinstance(meta, dict):
        return meta
    return {"kind": type(meta).__name__, **asdict(meta)}


def job_metadata_from_dict(operation_type: str, data: dict[str, Any] | None) -> JobMetadata | None:
    """Parse a stored payload back into its typed variant.

    The ``kind`` tag wins when present (a ``bulk_delete`` job may carry
    either folder or key-list metadata). Unknown fields are ignored.

    Returns:
        The typed payload, or None when the operation has no typed variant.
    """
    if not data:
        return None
    cls = _METADATA_KINDS.get(data.get("kind", "")) or _METADATA_TYPES.get(operation_type)
    if cls is None:
        return None
    allowed = cls.__dataclass_fields__.keys()
    return cls(**{k: v for k, v in data.items() if k in allowed})


# -- Query parameters ---------------------------------------------------------

JOB_SORT_FIELDS = ("started_at", "completed_at", "total_items", "error_count", "percentage")
AUDIT_SORT_FIELDS = ("timestamp", "operation_type", "container_name", "size_bytes")


@dataclass
class JobQuery:
    """Filters and pagination for job listings.

    ``sort_by`` values outside ``JOB_SORT_FIELDS`` fall back to
    ``started_at``; the column name is never taken from the caller.
    """

    status: str | None = None
    operation_type: str | None = None
    container_name: str | None = None
    created_by: str | None = None
    start: str | None = None
    end: str | None = None
    job_id_contains: str | None = None
    min_errors: int | None = None
    sort_by: str = "started_at"
    sort_order: str = "desc"
    limit: int = 50
    offset: int = 0

    @property
    def sort_column(self) -> str:
        return self.sort_by if self.sort_by in JOB_SORT_FIELDS else "started_at"

    @property
    def descending(self) -> bool:
        return self.sort_order.lower() != "asc"


@dataclass
class AuditQuery:
    """Filters and pagination for audit listings."""

    operation_type: str | None = None
    container_name: str | None = None
    status: str | None = None
    user_email: str | None = None
    start: str | None = None
    end: str | None = None
    sort_by: str = "timestamp"
    sort_order: str = "desc"
    limit: int = 50
    offset: int = 0

    @property
    def sort_column(self) -> str:
        return self.sort_by if self.sort_by in AUDIT_SORT_FIELDS else "timestamp"

    @property
    def descending(self) -> bool:
        return self.sort_order.lower() != "asc"
