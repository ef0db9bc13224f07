"""In-memory metadata store for BucketOps.

Useful for testing and ephemeral deployments. Data is lost on restart.
"""

import dataclasses
from typing import Any

from bucketops.metadata.models import (
    AuditLogEntry,
    AuditQuery,
    AuditStatus,
    JobEvent,
    JobQuery,
    JobStatus,
    TransferJob,
    utc_now_iso,
)

_NON_TERMINAL = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


def _sort_key(value: Any) -> tuple[int, Any]:
    # NULLs sort first ascending, like SQLite.
    return (0, 0) if value is None else (1, value)


class MemoryMetadataStore:
    """In-memory metadata store using Python dicts and lists.

    Mirrors the SQLite store's guarded transitions and monotonic counters
    so tests can swap one for the other.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, TransferJob] = {}
        self._events: list[JobEvent] = []
        self._audit: list[AuditLogEntry] = []
        self._owners: dict[str, dict[str, str]] = {}
        self._closed = False

    async def init_db(self) -> None:
        self._closed = False

    async def close(self) -> None:
        self._jobs.clear()
        self._events.clear()
        self._audit.clear()
        self._owners.clear()
        self._closed = True

    async def ping(self) -> None:
        if self._closed:
            raise RuntimeError("metadata store closed")

    # -- Jobs ------------------------------------------------------------------

    async def insert_job(self, job: TransferJob) -> None:
        if job.job_id in self._jobs:
            raise KeyError(f"Job already exists: {job.job_id}")
        stored = dataclasses.replace(job, started_at=job.started_at or utc_now_iso())
        self._jobs[job.job_id] = stored

    async def transition_job(
        self,
        job_id: str,
        from_statuses: tuple[str, ...],
        to_status: str,
        *,
        completed_at: str | None = None,
        processed_items: int | None = None,
        error_count: int | None = None,
        error_message: str | None = None,
        percentage: float | None = None,
    ) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status not in from_statuses:
            return False
        job.status = to_status
        if completed_at is not None:
            job.completed_at = completed_at
        if processed_items is not None:
            job.processed_items = max(job.processed_items, processed_items)
        if error_count is not None:
            job.error_count = max(job.error_count, error_count)
        if error_message is not None:
            job.error_message = error_message
        if percentage is not None:
            job.percentage = max(job.percentage, percentage)
        return True

    async def update_job_progress(
        self,
        job_id: str,
        processed_items: int,
        error_count: int,
        total_items: int | None,
        percentage: float | None,
    ) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status not in _NON_TERMINAL:
            return
        job.processed_items = max(job.processed_items, processed_items)
        job.error_count = max(job.error_count, error_count)
        if total_items is not None:
            job.total_items = total_items
        if percentage is not None:
            job.percentage = max(job.percentage, percentage)

    async def set_job_metadata(self, job_id: str, metadata: dict[str, Any] | None) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.metadata = metadata

    async def get_job(self, job_id: str) -> TransferJob | None:
        job = self._jobs.get(job_id)
        return dataclasses.replace(job) if job is not None else None

    async def list_jobs(self, query: JobQuery) -> tuple[list[TransferJob], int]:
        status = {"success": JobStatus.COMPLETED.value}.get(query.status or "", query.status)
        matches = []
        for job in self._jobs.values():
            if status and job.status != status:
                continue
            if query.operation_type and job.operation_type != query.operation_type:
                continue
            if query.container_name and job.container_name != query.container_name:
                continue
            if query.created_by and job.created_by != query.created_by:
                continue
            if query.start and job.started_at < query.start:
                continue
            if query.end and job.started_at > query.end:
                continue
            if query.job_id_contains and query.job_id_contains not in job.job_id:
                continue
            if query.min_errors is not None and job.error_count < query.min_errors:
                continue
            matches.append(job)
        column = query.sort_column
        matches.sort(
            key=lambda j: (_sort_key(getattr(j, column)), j.job_id),
            reverse=query.descending,
        )
        page = matches[query.offset : query.offset + query.limit]
        return [dataclasses.replace(j) for j in page], len(matches)

    async def mark_stale_jobs(self, started_before: str, message: str) -> list[str]:
        now = utc_now_iso()
        stale = []
        for job in self._jobs.values():
            if job.status in _NON_TERMINAL and job.started_at < started_before:
                job.status = JobStatus.FAILED.value
                job.completed_at = now
                job.error_message = message
                stale.append(job.job_id)
        return stale

    async def insert_job_event(self, event: JobEvent) -> None:
        self._events.append(dataclasses.replace(event, id=len(self._events) + 1))

    async def list_job_events(self, job_id: str) -> list[JobEvent]:
        return [dataclasses.replace(e) for e in self._events if e.job_id == job_id]

    # -- Audit -----------------------------------------------------------------

    async def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        self._audit.append(
            dataclasses.replace(
                entry,
                id=len(self._audit) + 1,
                timestamp=entry.timestamp or utc_now_iso(),
            )
        )

    def _filter_audit(self, query: AuditQuery) -> list[AuditLogEntry]:
        matches = []
        for entry in self._audit:
            if query.operation_type and entry.operation_type != query.operation_type:
                continue
            if query.container_name and entry.container_name != query.container_name:
                continue
            if query.status and entry.status != query.status:
                continue
            if query.user_email and entry.user_email != query.user_email:
                continue
            if query.start and entry.timestamp < query.start:
                continue
            if query.end and entry.timestamp > query.end:
                continue
            matches.append(entry)
        return matches

    async def list_audit_entries(self, query: AuditQuery) -> tuple[list[AuditLogEntry], int]:
        matches = self._filter_audit(query)
        column = query.sort_column
        matches.sort(
            key=lambda e: (_sort_key(getattr(e, column)), e.id),
            reverse=query.descending,
        )
        page = matches[query.offset : query.offset + query.limit]
        return [dataclasses.replace(e) for e in page], len(matches)

    async def audit_summary(
        self,
        start: str | None = None,
        end: str | None = None,
        container_name: str | None = None,
    ) -> list[dict[str, Any]]:
        counts: dict[str, dict[str, Any]] = {}
        for entry in self._filter_audit(
            AuditQuery(start=start, end=end, container_name=container_name)
        ):
            row = counts.setdefault(
                entry.operation_type,
                {
                    "operation_type": entry.operation_type,
                    "count": 0,
                    "success_count": 0,
                    "failed_count": 0,
                },
            )
            row["count"] += 1
            if entry.status == AuditStatus.SUCCESS.value:
                row["success_count"] += 1
            elif entry.status == AuditStatus.FAILED.value:
                row["failed_count"] += 1
        return sorted(counts.values(), key=lambda r: (-r["count"], r["operation_type"]))

    # -- Container ownership ---------------------------------------------------

    async def set_container_owner(self, container_name: str, user_email: str) -> None:
        existing = self._owners.get(container_name)
        created_at = existing["created_at"] if existing else utc_now_iso()
        self._owners[container_name] = {"user_email": user_email, "created_at": created_at}

    async def get_container_owner(self, container_name: str) -> str | None:
        record = self._owners.get(container_name)
        return record["user_email"] if record else None

    async def delete_container_owner(self, container_name: str) -> None:
        self._owners.pop(container_name, None)

    async def rename_container_owner(self, old_name: str, new_name: str) -> None:
        record = self._owners.pop(old_name, None)
        if record is not None:
            self._owners[new_name] = record
