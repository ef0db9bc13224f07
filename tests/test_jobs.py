"""Tests for JobTracker lifecycle and job listings."""

import pytest

from bucketops.audit import AuditLogger
from bucketops.jobs import STALE_JOB_MESSAGE, JobTracker, compute_percentage
from bucketops.metadata.models import (
    AuditOperationType,
    AuditStatus,
    ContainerDeleteMetadata,
    JobEventType,
    JobOperationType,
    JobQuery,
    JobStatus,
)


class BrokenStore:
    """A metadata store whose every call raises."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise RuntimeError(f"{name} unavailable")

        return fail


@pytest.fixture
def tracker(metadata) -> JobTracker:
    return JobTracker(metadata)


class TestComputePercentage:
    """Tests for compute_percentage()."""

    @pytest.mark.parametrize(
        "processed,total,expected",
        [(0, None, None), (0, 0, None), (1, 4, 25.0), (1, 3, 33.33), (5, 4, 100.0)],
    )
    def test_values(self, processed, total, expected):
        assert compute_percentage(processed, total) == expected


class TestLifecycle:
    """Tests for create, update_progress and complete."""

    async def test_create_starts_running(self, tracker):
        job_id = await tracker.create(
            JobOperationType.BUCKET_DELETE, "box", "me@example.com", metadata=ContainerDeleteMetadata()
        )
        assert job_id.startswith("bucket_delete-")
        job = await tracker.get_job(job_id)
        assert job.status == JobStatus.RUNNING.value
        assert job.created_by == "me@example.com"
        assert job.metadata["kind"] == "ContainerDeleteMetadata"
        events = await tracker.get_events(job_id)
        assert [e.event_type for e in events] == ["started"]

    async def test_progress_is_monotonic(self, tracker):
        job_id = await tracker.create(JobOperationType.FOLDER_COPY, "box", "me")
        await tracker.update_progress(job_id, 6, 0, 10)
        await tracker.update_progress(job_id, 3, 0, 10)
        job = await tracker.get_job(job_id)
        assert job.processed_items == 6
        assert job.percentage == 60.0

    async def test_complete_once(self, tracker):
        job_id = await tracker.create(JobOperationType.FOLDER_COPY, "box", "me")
        assert await tracker.complete(job_id, JobStatus.COMPLETED, 4, 0, operation="folder_copy")
        assert not await tracker.complete(job_id, JobStatus.FAILED, 4, 1, error_message="late")

        job = await tracker.get_job(job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.percentage == 100.0
        assert job.completed_at is not None
        events = [e.event_type for e in await tracker.get_events(job_id)]
        assert events.count(JobEventType.COMPLETED.value) == 1
        assert JobEventType.FAILED.value not in events

    async def test_complete_requires_terminal_status(self, tracker):
        job_id = await tracker.create(JobOperationType.FOLDER_COPY, "box", "me")
        with pytest.raises(ValueError):
            await tracker.complete(job_id, JobStatus.RUNNING, 0, 0)

    async def test_failed_job_keeps_partial_percentage(self, tracker):
        job_id = await tracker.create(JobOperationType.FOLDER_COPY, "box", "me")
        await tracker.update_progress(job_id, 1, 0, 4)
        await tracker.complete(job_id, JobStatus.FAILED, 1, 0, error_message="listing broke")
        job = await tracker.get_job(job_id)
        assert job.percentage == 25.0
        assert job.error_message == "listing broke"

    async def test_store_failures_do_not_raise(self):
        tracker = JobTracker(BrokenStore())
        job_id = await tracker.create(JobOperationType.BULK_DELETE, "box", "me")
        assert job_id
        await tracker.update_progress(job_id, 1, 0, 1)
        await tracker.log_event(job_id, JobEventType.ERROR, {"key": "a"})
        await tracker.set_metadata(job_id, None)
        assert await tracker.complete(job_id, JobStatus.COMPLETED, 1, 0) is False
        assert await tracker.sweep_stale(60) == []

    async def test_events_carry_owner(self, tracker):
        job_id = await tracker.create(JobOperationType.FOLDER_COPY, "box", "me@example.com", total=2)
        await tracker.update_progress(job_id, 1, 0, 2)
        await tracker.log_event(job_id, JobEventType.ERROR, {"key": "a"})
        await tracker.complete(job_id, JobStatus.COMPLETED, 2, 1)
        events = await tracker.get_events(job_id)
        assert [e.event_type for e in events] == ["started", "progress", "error", "completed"]
        assert {e.user_email for e in events} == {"me@example.com"}

    async def test_owner_read_back_from_store(self, tracker, metadata):
        job_id = await tracker.create(JobOperationType.FOLDER_MOVE, "box", "me@example.com")
        other = JobTracker(metadata)
        await other.log_event(job_id, JobEventType.ERROR, {"key": "a"})
        await other.complete(job_id, JobStatus.FAILED, 0, 1, error_message="boom")
        events = await other.get_events(job_id)
        assert [e.user_email for e in events] == ["me@example.com"] * 3


class TestSweepStale:
    """Tests for sweep_stale()."""

    async def test_old_running_jobs_fail(self, tracker, metadata):
        job_id = await tracker.create(JobOperationType.BUCKET_RENAME, "box", "me")
        # a negative age puts the cutoff in the future
        swept = await tracker.sweep_stale(-60)
        assert swept == [job_id]
        job = await tracker.get_job(job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error_message == STALE_JOB_MESSAGE
        events = await tracker.get_events(job_id)
        assert events[-1].event_type == JobEventType.FAILED.value
        assert events[-1].user_email == "me"

    async def test_recent_jobs_survive(self, tracker):
        job_id = await tracker.create(JobOperationType.BUCKET_RENAME, "box", "me")
        assert await tracker.sweep_stale(3600) == []
        assert (await tracker.get_job(job_id)).status == JobStatus.RUNNING.value


class TestListJobs:
    """Tests for list_jobs() merging jobs with audit-only actions."""

    async def seed(self, tracker, metadata):
        audit = AuditLogger(metadata)
        job_id = await tracker.create(JobOperationType.BUCKET_DELETE, "box", "me@example.com")
        await tracker.complete(job_id, JobStatus.COMPLETED, 1, 0)
        await audit.record(AuditOperationType.FILE_UPLOAD, "me@example.com", container="box", key="a")
        await audit.record(
            AuditOperationType.FILE_RENAME, "you@example.com", AuditStatus.FAILED, container="box", key="b"
        )
        return job_id

    async def test_merged_listing(self, tracker, metadata):
        job_id = await self.seed(tracker, metadata)
        jobs, total = await tracker.list_jobs(JobQuery())
        assert total == 3
        ids = [j.job_id for j in jobs]
        assert job_id in ids
        assert sum(1 for i in ids if i.startswith("audit-")) == 2

        pseudo = next(j for j in jobs if j.operation_type == "file_rename")
        assert pseudo.status == JobStatus.FAILED.value
        assert pseudo.total_items == 1
        assert pseudo.created_by == "you@example.com"

    async def test_job_operation_reads_jobs_only(self, tracker, metadata):
        job_id = await self.seed(tracker, metadata)
        jobs, total = await tracker.list_jobs(JobQuery(operation_type="bucket_delete"))
        assert total == 1
        assert jobs[0].job_id == job_id

    async def test_audit_operation_reads_audit_only(self, tracker, metadata):
        await self.seed(tracker, metadata)
        jobs, total = await tracker.list_jobs(JobQuery(operation_type="file_upload"))
        assert total == 1
        assert jobs[0].operation_type == "file_upload"
        assert jobs[0].status == JobStatus.COMPLETED.value

    async def test_running_status_excludes_audit(self, tracker, metadata):
        await self.seed(tracker, metadata)
        running = await tracker.create(JobOperationType.FOLDER_MOVE, "box", "me")
        jobs, total = await tracker.list_jobs(JobQuery(status="running"))
        assert total == 1
        assert jobs[0].job_id == running

    async def test_pagination_after_merge(self, tracker, metadata):
        await self.seed(tracker, metadata)
        first, total = await tracker.list_jobs(JobQuery(limit=2, offset=0))
        second, _ = await tracker.list_jobs(JobQuery(limit=2, offset=2))
        assert total == 3
        assert len(first) == 2
        assert len(second) == 1
        assert {j.job_id for j in first}.isdisjoint(j.job_id for j in second)

    async def test_merged_sort_by_error_count(self, tracker, metadata):
        await self.seed(tracker, metadata)
        jobs, _ = await tracker.list_jobs(JobQuery(sort_by="error_count", sort_order="desc"))
        assert [j.error_count for j in jobs] == [1, 0, 0]
        assert jobs[0].operation_type == "file_rename"

        jobs, _ = await tracker.list_jobs(JobQuery(sort_by="error_count", sort_order="asc"))
        assert [j.error_count for j in jobs] == [0, 0, 1]

    async def test_non_time_sort_reads_past_window(self, tracker, metadata):
        audit = AuditLogger(metadata)
        await audit.record(
            AuditOperationType.FILE_DELETE, "me@example.com", AuditStatus.FAILED, container="box", key="x"
        )
        for key in ("a", "b", "c"):
            await audit.record(AuditOperationType.FILE_UPLOAD, "me@example.com", container="box", key=key)

        jobs, total = await tracker.list_jobs(JobQuery(sort_by="error_count", limit=1))
        assert total == 4
        assert jobs[0].operation_type == "file_delete"
        assert jobs[0].error_count == 1
