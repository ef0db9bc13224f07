"""Bulk operations composed from list, get, put and delete.

The object store has no rename, no server-side prefix operations and no
transactions, so every container or folder level action here is built
from per-object primitives:

    - enumerate with PaginatedLister, one page at a time,
    - act on each object with TransferExecutor, sequentially,
    - tally successes and failures, continue past per-item failures,
    - report progress to JobTracker and a final entry to AuditLogger.

Only enumeration and setup failures end an operation early; they mark the
job failed and come back as a failed OperationReport rather than an
exception. Validation, missing resources and conflicts are raised before
any job is created.
"""

import io
import logging
import posixpath
import time
import zipfile
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from bucketops.audit import AuditLogger
from bucketops.errors import (
    BucketOpsError,
    ConflictFailure,
    ContainerNotFound,
    FatalEnumerationFailure,
    NotFoundFailure,
    ObjectStoreError,
    ValidationFailure,
)
from bucketops.jobs import JobTracker
from bucketops.metadata.models import (
    AuditOperationType,
    AuditStatus,
    BulkDeleteMetadata,
    ContainerDeleteMetadata,
    ContainerRenameMetadata,
    ExportMetadata,
    FolderDeleteMetadata,
    FolderTransferMetadata,
    JobEventType,
    JobOperationType,
    JobStatus,
    ObjectRef,
)
from bucketops.storage.backend import ObjectStore
from bucketops.transfer.cancellation import CancellationRegistry, CancellationToken
from bucketops.transfer.executor import SOURCE_NOT_FOUND, TransferExecutor, TransferResult
from bucketops.transfer.lister import PaginatedLister
from bucketops.transfer.pacing import FixedDelayPacer, Pacer

logger = logging.getLogger(__name__)

FOLDER_MARKER = ".keep"

ItemAction = Callable[[ObjectRef], Awaitable[TransferResult]]


def normalize_prefix(path: str) -> str:
    """Strip leading slashes and ensure a single trailing slash ("" stays "")."""
    path = path.strip().lstrip("/")
    if not path:
        return ""
    return path.rstrip("/") + "/"


def destination_key(source_key: str, destination_path: str | None) -> str:
    """Key for a single object moved or copied into ``destination_path``.

    The object keeps its base name: ``a/b.txt`` into ``c`` or ``c/``
    becomes ``c/b.txt``; with no path it lands at the container root.
    """
    name = posixpath.basename(source_key)
    prefix = normalize_prefix(destination_path or "")
    return f"{prefix}{name}"


@dataclass
class OperationReport:
    """Final counts of a bulk operation.

    ``succeeded + failed == attempted <= enumerated`` always holds;
    ``attempted < enumerated`` only when the operation was cancelled.
    """

    job_id: str | None
    status: str
    enumerated: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_teardown: bool = False
    container_deleted: bool | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "enumerated": self.enumerated,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skippedTeardown": self.skipped_teardown,
            "containerDeleted": self.container_deleted,
            "error": self.error,
            **self.details,
        }


@dataclass
class FolderDeleteConfirmation:
    """Returned instead of deleting when a non-forced delete finds objects."""

    container: str
    prefix: str
    file_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "fileCount": self.file_count,
            "message": "Folder contains files. Use force=true to delete.",
        }


@dataclass
class ExportResult:
    archive: bytes
    filename: str
    report: OperationReport


class _Tally:
    """Running counters for one pass, with a progress-write cadence."""

    def __init__(self, interval: int) -> None:
        self.interval = max(1, interval)
        self.enumerated = 0
        self.succeeded = 0
        self.failed = 0
        self._since_report = 0

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    def record(self, ok: bool) -> bool:
        """Count one outcome. Returns True when a progress write is due."""
        if ok:
            self.succeeded += 1
        else:
            self.failed += 1
        self._since_report += 1
        if self._since_report >= self.interval:
            self._since_report = 0
            return True
        return False

    def flushed(self) -> None:
        self._since_report = 0


class _Cancelled(Exception):
    pass


class BulkOperationCoordinator:
    """Runs container and folder level operations with job tracking.

    Attributes:
        store: The upstream object store.
        jobs: Job lifecycle tracker.
        audit: Audit trail writer.
        pacer: Between-page backpressure strategy.
        cancellations: Registry of cancellable running jobs.
    """

    def __init__(
        self,
        store: ObjectStore,
        jobs: JobTracker,
        audit: AuditLogger,
        pacer: Pacer | None = None,
        cancellations: CancellationRegistry | None = None,
        page_size: int = 100,
        progress_interval: int = 5,
        list_retry_attempts: int = 3,
    ) -> None:
        self.store = store
        self.jobs = jobs
        self.audit = audit
        self.pacer = pacer if pacer is not None else FixedDelayPacer()
        self.cancellations = cancellations if cancellations is not None else CancellationRegistry()
        self.page_size = page_size
        self.progress_interval = progress_interval
        self.list_retry_attempts = list_retry_attempts
        self.executor = TransferExecutor(store)

    def _lister(self) -> PaginatedLister:
        return PaginatedLister(
            self.store,
            page_size=self.page_size,
            pacer=self.pacer,
            retry_attempts=self.list_retry_attempts,
        )

    async def _require_container(self, name: str) -> None:
        if not await self.store.container_exists(name):
            raise NotFoundFailure(f"Container not found: {name}", details={"container": name})

    # -- Shared page loop ------------------------------------------------------

    async def _run_pass(
        self,
        job_id: str,
        container: str,
        prefix: str,
        action: ItemAction,
        tally: _Tally,
        token: CancellationToken,
        progress_offset: tuple[int, int, int] = (0, 0, 0),
    ) -> None:
        """Enumerate ``container/prefix`` and apply ``action`` to every object.

        ``progress_offset`` carries (enumerated, succeeded, failed) from
        earlier passes of the same job so reported totals are cumulative.

        Raises:
            FatalEnumerationFailure: If listing fails.
            _Cancelled: If the token was cancelled at a page boundary.
        """
        base_total, base_ok, base_failed = progress_offset
        lister = self._lister()
        first_page = True
        async for batch in lister.pages(container, prefix):
            if not first_page:
                await self.pacer.wait()
            first_page = False
            if token.cancelled:
                raise _Cancelled()

            tally.enumerated += len(batch)
            total = base_total + tally.enumerated
            for obj in batch:
                result = await action(obj)
                if result.throttled:
                    self.pacer.throttled(result.retry_after)
                if not result.ok:
                    await self.jobs.log_event(
                        job_id,
                        JobEventType.ERROR,
                        {"key": obj.key, "error": result.error, "message": result.message},
                    )
                if tally.record(result.ok):
                    await self.jobs.update_progress(
                        job_id, base_ok + tally.succeeded, base_failed + tally.failed, total
                    )
            tally.flushed()
            await self.jobs.update_progress(
                job_id,
                base_ok + tally.succeeded,
                base_failed + tally.failed,
                total,
                details={"cursor": lister.last_cursor},
            )

    async def _finish(
        self,
        job_id: str,
        operation: JobOperationType,
        report: OperationReport,
    ) -> OperationReport:
        await self.jobs.complete(
            job_id,
            JobStatus(report.status),
            report.succeeded,
            report.failed,
            error_message=report.error,
            operation=operation.value,
        )
        self.cancellations.release(job_id)
        return report

    @staticmethod
    def _report(job_id: str, status: JobStatus, tally: _Tally, **kwargs) -> OperationReport:
        return OperationReport(
            job_id=job_id,
            status=status.value,
            enumerated=tally.enumerated,
            attempted=tally.attempted,
            succeeded=tally.succeeded,
            failed=tally.failed,
            **kwargs,
        )

    # -- Container delete ------------------------------------------------------

    async def force_delete_container(self, container: str, owner: str) -> OperationReport:
        """Delete every object in a container, then the container itself.

        The container is only removed when every object delete succeeded;
        otherwise it is kept and the report says so.
        """
        await self._require_container(container)
        op = JobOperationType.BUCKET_DELETE
        job_id = await self.jobs.create(op, container, owner, metadata=ContainerDeleteMetadata())
        token = self.cancellations.register(job_id)
        tally = _Tally(self.progress_interval)

        async def delete_one(obj: ObjectRef) -> TransferResult:
            return await self.executor.delete(container, obj.key, operation=op.value)

        try:
            await self._run_pass(job_id, container, "", delete_one, tally, token)
        except FatalEnumerationFailure as exc:
            await self._audit_container_delete(container, owner, AuditStatus.FAILED, tally)
            return await self._finish(
                job_id, op, self._report(job_id, JobStatus.FAILED, tally, error=exc.message)
            )
        except _Cancelled:
            return await self._finish(
                job_id, op, self._report(job_id, JobStatus.CANCELLED, tally, container_deleted=False)
            )

        await self.jobs.set_metadata(
            job_id,
            ContainerDeleteMetadata(deleted_count=tally.succeeded, failed_count=tally.failed),
        )
        if tally.failed:
            report = self._report(
                job_id,
                JobStatus.COMPLETED,
                tally,
                container_deleted=False,
                error=f"{tally.failed} objects could not be deleted; container retained",
            )
            await self._audit_container_delete(container, owner, AuditStatus.FAILED, tally)
            return await self._finish(job_id, op, report)

        try:
            await self.store.delete_container(container)
        except ObjectStoreError as exc:
            report = self._report(
                job_id,
                JobStatus.FAILED,
                tally,
                container_deleted=False,
                error=f"Failed to delete container: {exc.message}",
            )
            await self._audit_container_delete(container, owner, AuditStatus.FAILED, tally)
            return await self._finish(job_id, op, report)

        await self._forget_owner(container)
        await self._audit_container_delete(container, owner, AuditStatus.SUCCESS, tally)
        report = self._report(job_id, JobStatus.COMPLETED, tally, container_deleted=True)
        return await self._finish(job_id, op, report)

    async def _audit_container_delete(
        self, container: str, owner: str, status: AuditStatus, tally: _Tally
    ) -> None:
        await self.audit.record(
            AuditOperationType.BUCKET_DELETE,
            owner,
            status,
            container=container,
            metadata={"deleted": tally.succeeded, "failed": tally.failed, "force": True},
        )

    async def _forget_owner(self, container: str) -> None:
        try:
            await self.jobs.store.delete_container_owner(container)
        except Exception:
            logger.warning("Failed to drop owner record for %s", container, exc_info=True)

    # -- Container rename ------------------------------------------------------

    async def rename_container(self, source: str, destination: str, owner: str) -> OperationReport:
        """Rename by create, copy all, delete all, delete source.

        The copy pass is a barrier: if any object failed to copy, the
        source is left untouched (``skipped_teardown``) so it still holds
        the only complete copy. A retry then meets the half-filled
        destination and is rejected as a conflict.

        Raises:
            ValidationFailure: If the names are equal.
            NotFoundFailure: If the source does not exist.
            ConflictFailure: If the destination already exists.
        """
        if source == destination:
            raise ValidationFailure("New name must differ from the current name")
        await self._require_container(source)
        if await self.store.container_exists(destination):
            raise ConflictFailure(
                f"Container already exists: {destination}", details={"container": destination}
            )

        op = JobOperationType.BUCKET_RENAME
        meta = ContainerRenameMetadata(source=source, destination=destination)
        job_id = await self.jobs.create(op, source, owner, metadata=meta)
        token = self.cancellations.register(job_id)

        try:
            await self.store.create_container(destination)
        except ObjectStoreError as exc:
            report = OperationReport(
                job_id=job_id,
                status=JobStatus.FAILED.value,
                error=f"Failed to create destination container: {exc.message}",
            )
            await self._audit_rename(source, destination, owner, AuditStatus.FAILED, report)
            return await self._finish(job_id, op, report)

        copy = _Tally(self.progress_interval)

        async def copy_one(obj: ObjectRef) -> TransferResult:
            return await self.executor.transfer(
                source, obj.key, destination, obj.key, delete_source=False, operation=op.value
            )

        try:
            await self._run_pass(job_id, source, "", copy_one, copy, token)
        except (FatalEnumerationFailure, _Cancelled) as exc:
            cancelled = isinstance(exc, _Cancelled)
            report = self._report(
                job_id,
                JobStatus.CANCELLED if cancelled else JobStatus.FAILED,
                copy,
                skipped_teardown=True,
                container_deleted=False,
                error=None if cancelled else exc.message,
            )
            await self._audit_rename(source, destination, owner, AuditStatus.FAILED, report)
            return await self._finish(job_id, op, report)

        meta.copied = copy.succeeded
        meta.copy_failures = copy.failed
        if copy.failed:
            meta.source_retained = True
            await self.jobs.set_metadata(job_id, meta)
            report = self._report(
                job_id,
                JobStatus.COMPLETED,
                copy,
                skipped_teardown=True,
                container_deleted=False,
                error=f"{copy.failed} objects failed to copy; source container retained",
            )
            await self._audit_rename(source, destination, owner, AuditStatus.FAILED, report)
            return await self._finish(job_id, op, report)

        teardown = _Tally(self.progress_interval)

        async def delete_one(obj: ObjectRef) -> TransferResult:
            return await self.executor.delete(source, obj.key, operation=op.value)

        try:
            await self._run_pass(
                job_id,
                source,
                "",
                delete_one,
                teardown,
                token,
                progress_offset=(copy.enumerated, copy.succeeded, copy.failed),
            )
        except (FatalEnumerationFailure, _Cancelled) as exc:
            cancelled = isinstance(exc, _Cancelled)
            report = self._combined(
                job_id, JobStatus.CANCELLED if cancelled else JobStatus.FAILED, copy, teardown
            )
            report.container_deleted = False
            report.error = None if cancelled else exc.message
            await self._audit_rename(source, destination, owner, AuditStatus.FAILED, report)
            return await self._finish(job_id, op, report)

        meta.deleted = teardown.succeeded
        report = self._combined(job_id, JobStatus.COMPLETED, copy, teardown)
        report.container_deleted = False
        if teardown.failed:
            report.error = f"{teardown.failed} source objects could not be deleted"
        else:
            try:
                await self.store.delete_container(source)
                report.container_deleted = True
            except ObjectStoreError as exc:
                report.error = f"Failed to delete source container: {exc.message}"

        if report.container_deleted:
            try:
                await self.jobs.store.rename_container_owner(source, destination)
            except Exception:
                logger.warning("Failed to move owner record %s -> %s", source, destination, exc_info=True)

        await self.jobs.set_metadata(job_id, meta)
        status = AuditStatus.SUCCESS if report.error is None else AuditStatus.FAILED
        await self._audit_rename(source, destination, owner, status, report)
        return await self._finish(job_id, op, report)

    @staticmethod
    def _combined(job_id: str, status: JobStatus, *passes: _Tally) -> OperationReport:
        return OperationReport(
            job_id=job_id,
            status=status.value,
            enumerated=sum(p.enumerated for p in passes),
            attempted=sum(p.attempted for p in passes),
            succeeded=sum(p.succeeded for p in passes),
            failed=sum(p.failed for p in passes),
        )

    async def _audit_rename(
        self,
        source: str,
        destination: str,
        owner: str,
        status: AuditStatus,
        report: OperationReport,
    ) -> None:
        await self.audit.record(
            AuditOperationType.BUCKET_RENAME,
            owner,
            status,
            container=source,
            destination_container=destination,
            metadata={"jobId": report.job_id, "succeeded": report.succeeded, "failed": report.failed},
        )

    # -- Folder move / copy / rename -------------------------------------------

    async def transfer_prefix(
        self,
        src_container: str,
        src_prefix: str,
        dst_container: str,
        dst_prefix: str,
        delete_source: bool,
        owner: str,
        audit_operation: AuditOperationType | None = None,
    ) -> OperationReport:
        """Move or copy every object under a prefix to another prefix.

        Each key keeps its path relative to the source prefix. Objects
        already at the destination are overwritten, so a retry converges.

        Raises:
            ValidationFailure: If the source prefix is empty, identical to
                the destination, or contains the destination.
            NotFoundFailure: If either container does not exist.
        """
        src_prefix = normalize_prefix(src_prefix)
        dst_prefix = normalize_prefix(dst_prefix)
        if not src_prefix:
            raise ValidationFailure("Source folder path is required")
        if src_container == dst_container:
            if src_prefix == dst_prefix:
                raise ValidationFailure("Source and destination must be different")
            if dst_prefix.startswith(src_prefix):
                raise ValidationFailure("Cannot move or copy a folder into itself")
        await self._require_container(src_container)
        if dst_container != src_container:
            await self._require_container(dst_container)

        op = JobOperationType.FOLDER_MOVE if delete_source else JobOperationType.FOLDER_COPY
        if audit_operation is None:
            audit_operation = (
                AuditOperationType.FOLDER_MOVE if delete_source else AuditOperationType.FOLDER_COPY
            )
        meta = FolderTransferMetadata(
            source_prefix=src_prefix,
            destination_container=dst_container,
            destination_prefix=dst_prefix,
            delete_source=delete_source,
        )
        job_id = await self.jobs.create(op, src_container, owner, metadata=meta)
        token = self.cancellations.register(job_id)
        tally = _Tally(self.progress_interval)

        async def move_one(obj: ObjectRef) -> TransferResult:
            dst_key = dst_prefix + obj.key[len(src_prefix):]
            return await self.executor.transfer(
                src_container, obj.key, dst_container, dst_key,
                delete_source=delete_source, operation=op.value,
            )

        status = JobStatus.COMPLETED
        error = None
        try:
            await self._run_pass(job_id, src_container, src_prefix, move_one, tally, token)
        except FatalEnumerationFailure as exc:
            status, error = JobStatus.FAILED, exc.message
        except _Cancelled:
            status = JobStatus.CANCELLED

        await self.jobs.set_metadata(job_id, meta)
        report = self._report(
            job_id,
            status,
            tally,
            error=error,
            details={
                "sourcePath": src_prefix,
                "destinationContainer": dst_container,
                "destinationPath": dst_prefix,
            },
        )
        await self.audit.record(
            audit_operation,
            owner,
            AuditStatus.SUCCESS if status is JobStatus.COMPLETED and not tally.failed else AuditStatus.FAILED,
            container=src_container,
            key=src_prefix,
            destination_container=dst_container,
            destination_key=dst_prefix,
            metadata={"jobId": job_id, "succeeded": tally.succeeded, "failed": tally.failed},
        )
        return await self._finish(job_id, op, report)

    # -- Folder delete ---------------------------------------------------------

    async def delete_prefix(
        self, container: str, prefix: str, force: bool, owner: str
    ) -> OperationReport | FolderDeleteConfirmation:
        """Confirm-then-force delete of everything under a prefix.

        Without ``force`` a non-empty folder is only counted and a
        confirmation is returned; nothing is deleted.
        """
        prefix = normalize_prefix(prefix)
        if not prefix:
            raise ValidationFailure("Folder path is required")
        await self._require_container(container)

        if not force:
            count = len(await self._lister().collect(container, prefix))
            if count > 0:
                return FolderDeleteConfirmation(container=container, prefix=prefix, file_count=count)

        op = JobOperationType.BULK_DELETE
        job_id = await self.jobs.create(
            op, container, owner, metadata=FolderDeleteMetadata(prefix=prefix)
        )
        token = self.cancellations.register(job_id)
        tally = _Tally(self.progress_interval)

        async def delete_one(obj: ObjectRef) -> TransferResult:
            return await self.executor.delete(container, obj.key, operation=op.value)

        status = JobStatus.COMPLETED
        error = None
        try:
            await self._run_pass(job_id, container, prefix, delete_one, tally, token)
        except FatalEnumerationFailure as exc:
            status, error = JobStatus.FAILED, exc.message
        except _Cancelled:
            status = JobStatus.CANCELLED

        await self.jobs.set_metadata(
            job_id,
            FolderDeleteMetadata(prefix=prefix, deleted_count=tally.succeeded, failed_count=tally.failed),
        )
        await self.audit.record(
            AuditOperationType.FOLDER_DELETE,
            owner,
            AuditStatus.SUCCESS if status is JobStatus.COMPLETED and not tally.failed else AuditStatus.FAILED,
            container=container,
            key=prefix,
            metadata={"jobId": job_id, "deleted": tally.succeeded, "failed": tally.failed},
        )
        report = self._report(job_id, status, tally, error=error, details={"path": prefix})
        return await self._finish(job_id, op, report)

    # -- Explicit key batches --------------------------------------------------

    async def delete_keys(self, container: str, keys: list[str], owner: str) -> OperationReport:
        """Delete a caller-supplied list of keys, one page-sized chunk at a time."""
        keys = list(dict.fromkeys(k for k in keys if k))
        if not keys:
            raise ValidationFailure("No keys provided")
        await self._require_container(container)

        op = JobOperationType.BULK_DELETE
        job_id = await self.jobs.create(
            op, container, owner, total=len(keys),
            metadata=BulkDeleteMetadata(keys_requested=len(keys)),
        )
        token = self.cancellations.register(job_id)
        tally = _Tally(self.progress_interval)
        status = JobStatus.COMPLETED

        for start in range(0, len(keys), self.page_size):
            if start:
                await self.pacer.wait()
            if token.cancelled:
                status = JobStatus.CANCELLED
                break
            chunk = keys[start : start + self.page_size]
            tally.enumerated += len(chunk)
            for key in chunk:
                result = await self.executor.delete(container, key, operation=op.value)
                if result.throttled:
                    self.pacer.throttled(result.retry_after)
                await self.audit.record(
                    AuditOperationType.FILE_DELETE,
                    owner,
                    AuditStatus.SUCCESS if result.ok else AuditStatus.FAILED,
                    container=container,
                    key=key,
                    metadata={"jobId": job_id},
                )
                if not result.ok:
                    await self.jobs.log_event(
                        job_id, JobEventType.ERROR,
                        {"key": key, "error": result.error, "message": result.message},
                    )
                if tally.record(result.ok):
                    await self.jobs.update_progress(job_id, tally.succeeded, tally.failed, len(keys))
            tally.flushed()
            await self.jobs.update_progress(job_id, tally.succeeded, tally.failed, len(keys))

        await self.jobs.set_metadata(
            job_id,
            BulkDeleteMetadata(
                keys_requested=len(keys), deleted_count=tally.succeeded, failed_count=tally.failed
            ),
        )
        return await self._finish(job_id, op, self._report(job_id, status, tally))

    # -- Archive export --------------------------------------------------------

    async def export_archive(
        self,
        selections: list[tuple[str, list[str]]],
        owner: str,
    ) -> ExportResult:
        """Build a ZIP of the selected objects.

        With more than one container each container becomes a top-level
        folder in the archive. Files that cannot be fetched are recorded
        as job errors and skipped; the archive holds whatever succeeded.

        Raises:
            ValidationFailure: If nothing was selected.
            NotFoundFailure: If a selected container does not exist.
        """
        selections = [(c, [k for k in keys if k]) for c, keys in selections if c]
        selections = [(c, keys) for c, keys in selections if keys]
        if not selections:
            raise ValidationFailure("No files selected for export")
        for container, _keys in selections:
            await self._require_container(container)

        containers = [c for c, _ in selections]
        multi = len(containers) > 1
        total = sum(len(keys) for _, keys in selections)
        stamp = int(time.time() * 1000)
        filename = f"buckets-{stamp}.zip" if multi else f"{containers[0]}-{stamp}.zip"

        op = JobOperationType.BULK_DOWNLOAD
        meta = ExportMetadata(containers=containers, archive_name=filename)
        job_id = await self.jobs.create(op, ",".join(containers), owner, total=total, metadata=meta)
        token = self.cancellations.register(job_id)
        tally = _Tally(self.progress_interval)
        status = JobStatus.COMPLETED

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for container, keys in selections:
                if status is JobStatus.CANCELLED:
                    break
                for key in keys:
                    if token.cancelled:
                        status = JobStatus.CANCELLED
                        break
                    tally.enumerated += 1
                    ok = await self._add_to_archive(archive, job_id, container, key, multi, meta)
                    if tally.record(ok) or tally.attempted == total:
                        await self.jobs.update_progress(job_id, tally.succeeded, tally.failed, total)

        await self.jobs.set_metadata(job_id, meta)
        report = self._report(job_id, status, tally, details={"filename": filename})
        await self._finish(job_id, op, report)
        return ExportResult(archive=buffer.getvalue(), filename=filename, report=report)

    async def _add_to_archive(
        self,
        archive: zipfile.ZipFile,
        job_id: str,
        container: str,
        key: str,
        multi: bool,
        meta: ExportMetadata,
    ) -> bool:
        try:
            obj = await self.store.get(container, key)
        except ObjectStoreError as exc:
            await self.jobs.log_event(
                job_id, JobEventType.ERROR,
                {"container": container, "key": key, "message": exc.message},
            )
            return False
        archive.writestr(f"{container}/{key}" if multi else key, obj.data)
        meta.files_added += 1
        meta.bytes_added += obj.size
        return True

    # -- Single objects --------------------------------------------------------

    async def relocate_object(
        self,
        src_container: str,
        src_key: str,
        dst_container: str,
        dst_key: str,
        delete_source: bool,
        owner: str,
        audit_operation: AuditOperationType,
        overwrite: bool = False,
    ) -> TransferResult:
        """Move, copy or rename one object.

        Same-container moves onto the same key are rejected before any
        store call. Unless ``overwrite`` is set, an existing destination
        is a conflict, whatever the containers involved.

        Raises:
            ValidationFailure: Source and destination are the same object.
            ConflictFailure: The destination exists and overwrite is off.
            NotFoundFailure: The source object or a container is missing.
            BucketOpsError: The store failed to read or write the object.
        """
        if src_container == dst_container and src_key == dst_key:
            raise ValidationFailure("Source and destination must be different")
        if not overwrite:
            try:
                existing = await self.store.head(dst_container, dst_key)
            except ContainerNotFound:
                raise NotFoundFailure(
                    f"Container not found: {dst_container}", details={"container": dst_container}
                ) from None
            if existing is not None:
                raise ConflictFailure(
                    "File with that name already exists",
                    details={"container": dst_container, "key": dst_key},
                )

        result = await self.executor.transfer(
            src_container, src_key, dst_container, dst_key,
            delete_source=delete_source, operation=audit_operation.value,
        )
        await self.audit.record(
            audit_operation,
            owner,
            AuditStatus.SUCCESS if result.ok else AuditStatus.FAILED,
            container=src_container,
            key=src_key,
            size_bytes=result.size if result.ok else None,
            destination_container=dst_container,
            destination_key=dst_key,
            metadata=None if result.ok else {"error": result.error, "message": result.message},
        )
        if result.ok:
            return result
        if result.error == SOURCE_NOT_FOUND:
            raise NotFoundFailure("Source file not found", details={"key": src_key})
        raise BucketOpsError(
            code=result.error or "TransferFailed",
            message=f"Failed to transfer file: {result.message}",
            http_status=502,
            details=asdict(result),
        )
