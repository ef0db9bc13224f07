"""Job lifecycle tracking for long-running operations.

Every write here is best-effort: a failing metadata store is logged and
never fails the operation being tracked. Reads raise normally so the API
can report store outages.
"""

import dataclasses
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from bucketops import metrics
from bucketops.metadata.models import (
    AuditOperationType,
    AuditQuery,
    AuditStatus,
    JobEvent,
    JobEventType,
    JobMetadata,
    JobOperationType,
    JobQuery,
    JobStatus,
    TransferJob,
    generate_job_id,
    job_metadata_to_dict,
    utc_now_iso,
)
from bucketops.metadata.store import MetadataStore
from bucketops.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)

_JOB_OPERATIONS = frozenset(op.value for op in JobOperationType)
_AUDIT_ONLY_OPERATIONS = frozenset(op.value for op in AuditOperationType) - _JOB_OPERATIONS

_TERMINAL_EVENTS = {
    JobStatus.COMPLETED: JobEventType.COMPLETED,
    JobStatus.FAILED: JobEventType.FAILED,
    JobStatus.CANCELLED: JobEventType.CANCELLED,
}

STALE_JOB_MESSAGE = "stale job swept on startup"

# Job sort columns that an audit entry maps onto its timestamp.
_TIME_COLUMNS = frozenset({"started_at", "completed_at"})


def compute_percentage(processed: int, total: int | None) -> float | None:
    """processed / total as a percentage, or None while total is unknown or zero."""
    if not total:
        return None
    return round(min(100.0, processed / total * 100), 2)


def _sort_key(value: Any) -> tuple[int, Any]:
    # NULLs first ascending, matching the stores.
    return (0, 0) if value is None else (1, value)


def audit_entry_to_job(entry) -> TransferJob:
    """Present a single audited action as a one-item finished job."""
    ok = entry.status == AuditStatus.SUCCESS.value
    return TransferJob(
        job_id=f"audit-{entry.id}",
        container_name=entry.container_name,
        operation_type=entry.operation_type,
        status=JobStatus.COMPLETED.value if ok else JobStatus.FAILED.value,
        total_items=1,
        processed_items=1 if ok else 0,
        error_count=0 if ok else 1,
        percentage=100.0 if ok else 0.0,
        started_at=entry.timestamp,
        completed_at=entry.timestamp,
        created_by=entry.user_email,
        metadata=entry.metadata,
    )


class JobTracker:
    """Creates, advances and finishes jobs, and answers job queries.

    Attributes:
        store: The metadata store holding jobs and events.
    """

    def __init__(self, store: MetadataStore, webhooks: WebhookDispatcher | None = None) -> None:
        self.store = store
        self.webhooks = webhooks
        self._owners: dict[str, str | None] = {}
        self._containers: dict[str, str | None] = {}

    async def _owner(self, job_id: str) -> str | None:
        if job_id in self._owners:
            return self._owners[job_id]
        try:
            job = await self.store.get_job(job_id)
        except Exception:
            logger.debug("Could not look up owner of job %s", job_id, exc_info=True)
            return None
        return job.created_by if job is not None else None

    async def create(
        self,
        operation: JobOperationType,
        container: str | None,
        owner: str | None,
        total: int | None = None,
        metadata: JobMetadata | dict[str, Any] | None = None,
    ) -> str:
        """Register a new job and move it to running.

        The job is inserted ``queued``, then transitioned to ``running``
        with a ``started`` event. The id is returned even when the store
        write fails so the caller can proceed untracked.

        Returns:
            The new job id.
        """
        job_id = generate_job_id(operation)
        now = utc_now_iso()
        self._owners[job_id] = owner
        self._containers[job_id] = container
        try:
            await self.store.insert_job(
                TransferJob(
                    job_id=job_id,
                    container_name=container,
                    operation_type=operation.value,
                    status=JobStatus.QUEUED.value,
                    total_items=total,
                    started_at=now,
                    created_by=owner,
                    metadata=job_metadata_to_dict(metadata),
                )
            )
            await self.store.transition_job(
                job_id, (JobStatus.QUEUED.value,), JobStatus.RUNNING.value
            )
            await self.store.insert_job_event(
                JobEvent(
                    job_id=job_id,
                    event_type=JobEventType.STARTED.value,
                    timestamp=now,
                    details={"total": total},
                    user_email=owner,
                )
            )
        except Exception:
            logger.warning(
                "Failed to record job %s", job_id, exc_info=True, extra={"job_id": job_id}
            )
        logger.info(
            "Job %s started", job_id,
            extra={"job_id": job_id, "operation": operation.value, "container": container},
        )
        return job_id

    async def update_progress(
        self,
        job_id: str,
        processed: int,
        errors: int,
        total: int | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write counters and a ``progress`` event.

        The store keeps counters and percentage monotonic, so a late or
        out-of-order call never moves progress backwards.
        """
        percentage = compute_percentage(processed, total)
        try:
            await self.store.update_job_progress(job_id, processed, errors, total, percentage)
            event_details: dict[str, Any] = {
                "processed": processed,
                "errors": errors,
                "total": total,
                "percentage": percentage,
            }
            if details:
                event_details.update(details)
            await self.store.insert_job_event(
                JobEvent(
                    job_id=job_id,
                    event_type=JobEventType.PROGRESS.value,
                    timestamp=utc_now_iso(),
                    details=event_details,
                    user_email=await self._owner(job_id),
                )
            )
        except Exception:
            logger.warning("Failed to update progress for job %s", job_id, exc_info=True)

    async def log_event(
        self, job_id: str, event_type: JobEventType, details: dict[str, Any] | None = None
    ) -> None:
        try:
            await self.store.insert_job_event(
                JobEvent(
                    job_id=job_id,
                    event_type=event_type.value,
                    timestamp=utc_now_iso(),
                    details=details,
                    user_email=await self._owner(job_id),
                )
            )
        except Exception:
            logger.warning("Failed to log %s event for job %s", event_type.value, job_id, exc_info=True)

    async def set_metadata(self, job_id: str, metadata: JobMetadata | dict[str, Any] | None) -> None:
        try:
            await self.store.set_job_metadata(job_id, job_metadata_to_dict(metadata))
        except Exception:
            logger.warning("Failed to store metadata for job %s", job_id, exc_info=True)

    async def complete(
        self,
        job_id: str,
        status: JobStatus,
        processed: int,
        errors: int,
        error_message: str | None = None,
        operation: str | None = None,
    ) -> bool:
        """Move a running job to a terminal status.

        A job that already finished is left untouched and no second
        terminal event is written.

        Returns:
            True if this call performed the transition.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        owner = self._owners.pop(job_id, None)
        container = self._containers.pop(job_id, None)
        try:
            changed = await self.store.transition_job(
                job_id,
                (JobStatus.QUEUED.value, JobStatus.RUNNING.value),
                status.value,
                completed_at=utc_now_iso(),
                processed_items=processed,
                error_count=errors,
                error_message=error_message,
                percentage=100.0 if status is JobStatus.COMPLETED else None,
            )
            if not changed:
                logger.warning("Job %s already finished; ignoring %s", job_id, status.value)
                return False
            if owner is None:
                owner = await self._owner(job_id)
            await self.store.insert_job_event(
                JobEvent(
                    job_id=job_id,
                    event_type=_TERMINAL_EVENTS[status].value,
                    timestamp=utc_now_iso(),
                    details={
                        "processed": processed,
                        "errors": errors,
                        "error_message": error_message,
                    },
                    user_email=owner,
                )
            )
        except Exception:
            logger.warning("Failed to complete job %s", job_id, exc_info=True)
            return False
        if operation:
            metrics.record_job(operation, status.value)
        logger.info(
            "Job %s %s: processed=%d errors=%d", job_id, status.value, processed, errors,
            extra={"job_id": job_id, "operation": operation},
        )
        if self.webhooks is not None:
            self.webhooks.trigger(
                f"job_{status.value}",
                {
                    "jobId": job_id,
                    "operation": operation,
                    "container": container,
                    "status": status.value,
                    "processed": processed,
                    "errors": errors,
                    "errorMessage": error_message,
                    "user": owner,
                },
            )
        return True

    async def sweep_stale(self, max_age_seconds: int) -> list[str]:
        """Fail jobs left running by a previous process.

        Returns:
            The swept job ids.
        """
        cutoff = (
            (datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds))
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        try:
            swept = await self.store.mark_stale_jobs(cutoff, STALE_JOB_MESSAGE)
        except Exception:
            logger.warning("Failed to sweep stale jobs", exc_info=True)
            return []
        for job_id in swept:
            await self.log_event(job_id, JobEventType.FAILED, {"error_message": STALE_JOB_MESSAGE})
        if swept:
            logger.info("Swept %d stale jobs", len(swept))
        return swept

    # -- Queries ---------------------------------------------------------------

    async def get_job(self, job_id: str) -> TransferJob | None:
        return await self.store.get_job(job_id)

    async def get_events(self, job_id: str) -> list[JobEvent]:
        return await self.store.list_job_events(job_id)

    async def list_jobs(self, query: JobQuery) -> tuple[list[TransferJob], int]:
        """List jobs, merged with audit-only actions shown as one-item jobs.

        Which sources are read depends on ``query.operation_type``: a job
        operation reads only jobs, an audit-only operation reads only the
        audit log, and no filter reads both. Merged results are ordered
        by ``query.sort_column`` and paginated after merging. Sorting by
        a non-time column reads every matching audit entry, since the
        audit log cannot order by job counters.

        Returns:
            A (page, total) tuple.
        """
        op = query.operation_type
        read_jobs = op is None or op in _JOB_OPERATIONS
        read_audit = op is None or op in _AUDIT_ONLY_OPERATIONS
        audit_status = {
            JobStatus.COMPLETED.value: AuditStatus.SUCCESS.value,
            AuditStatus.SUCCESS.value: AuditStatus.SUCCESS.value,
            JobStatus.FAILED.value: AuditStatus.FAILED.value,
        }.get(query.status or "")
        if query.status and audit_status is None:
            # Audit entries are only ever success or failed.
            read_audit = False
        if query.job_id_contains or query.min_errors:
            read_audit = False

        if read_jobs and not read_audit:
            return await self.store.list_jobs(query)

        window = query.offset + query.limit
        jobs: list[TransferJob] = []
        total = 0
        if read_jobs:
            page, count = await self.store.list_jobs(
                dataclasses.replace(query, limit=window, offset=0)
            )
            jobs.extend(page)
            total += count
        if read_audit:
            audit_query = AuditQuery(
                operation_type=op,
                container_name=query.container_name,
                status=audit_status,
                user_email=query.created_by,
                start=query.start,
                end=query.end,
                sort_order=query.sort_order,
                limit=window,
                offset=0,
            )
            entries, count = await self.store.list_audit_entries(audit_query)
            if query.sort_column not in _TIME_COLUMNS and count > len(entries):
                entries, count = await self.store.list_audit_entries(
                    dataclasses.replace(audit_query, limit=count)
                )
            jobs.extend(audit_entry_to_job(e) for e in entries)
            total += count

        column = query.sort_column
        jobs.sort(
            key=lambda j: (_sort_key(getattr(j, column)), j.started_at, j.job_id),
            reverse=query.descending,
        )
        return jobs[query.offset : query.offset + query.limit], total
