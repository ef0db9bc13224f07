"""Abstract metadata store protocol for BucketOps."""

from typing import Any, Protocol

from bucketops.metadata.models import (
    AuditLogEntry,
    AuditQuery,
    JobEvent,
    JobQuery,
    TransferJob,
)


class MetadataStore(Protocol):
    """Protocol defining the job, audit and ownership store.

    Job status transitions and progress counters are guarded inside the
    store so that concurrent or out-of-order writers cannot move a job
    backwards (see ``transition_job`` and ``update_job_progress``).
    """

    async def init_db(self) -> None:
        """Initialize the schema. Must be idempotent (safe on every startup)."""
        ...

    async def close(self) -> None:
        """Close the connection and release resources."""
        ...

    async def ping(self) -> None:
        """Raise if the store cannot serve queries."""
        ...

    # -- Jobs ------------------------------------------------------------------

    async def insert_job(self, job: TransferJob) -> None:
        """Insert a new job record."""
        ...

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
        """Move a job to ``to_status`` only if it is currently in ``from_statuses``.

        Counters passed here follow the same monotonic rules as
        ``update_job_progress``.

        Returns:
            True if a row was updated, False if the job was missing or in
            another state.
        """
        ...

    async def update_job_progress(
        self,
        job_id: str,
        processed_items: int,
        error_count: int,
        total_items: int | None,
        percentage: float | None,
    ) -> None:
        """Write progress counters for a running job.

        ``processed_items``, ``error_count`` and ``percentage`` never
        decrease. ``total_items`` is replaced when given.
        """
        ...

    async def set_job_metadata(self, job_id: str, metadata: dict[str, Any] | None) -> None:
        """Replace the operation-specific payload of a job."""
        ...

    async def get_job(self, job_id: str) -> TransferJob | None:
        """Fetch one job, or None."""
        ...

    async def list_jobs(self, query: JobQuery) -> tuple[list[TransferJob], int]:
        """List jobs matching the query.

        Returns:
            A (page, total matching) tuple.
        """
        ...

    async def mark_stale_jobs(self, started_before: str, message: str) -> list[str]:
        """Fail every non-terminal job started before the given timestamp.

        Returns:
            The ids of the jobs that were marked failed.
        """
        ...

    async def insert_job_event(self, event: JobEvent) -> None:
        """Append an event to a job's history."""
        ...

    async def list_job_events(self, job_id: str) -> list[JobEvent]:
        """Return a job's events in insertion order."""
        ...

    # -- Audit -----------------------------------------------------------------

    async def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append an audit entry."""
        ...

    async def list_audit_entries(self, query: AuditQuery) -> tuple[list[AuditLogEntry], int]:
        """List audit entries matching the query.

        Returns:
            A (page, total matching) tuple.
        """
        ...

    async def audit_summary(
        self,
        start: str | None = None,
        end: str | None = None,
        container_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Count entries per operation type with success/failed breakdown."""
        ...

    # -- Container ownership ---------------------------------------------------

    async def set_container_owner(self, container_name: str, user_email: str) -> None:
        """Record (or replace) the owner of a container."""
        ...

    async def get_container_owner(self, container_name: str) -> str | None:
        """Return the owner's identity, or None."""
        ...

    async def delete_container_owner(self, container_name: str) -> None:
        """Drop the ownership record of a container."""
        ...

    async def rename_container_owner(self, old_name: str, new_name: str) -> None:
        """Move the ownership record to a renamed container."""
        ...
