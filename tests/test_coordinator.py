"""Tests for BulkOperationCoordinator bulk operations.

The ``coordinator`` fixture pages three objects at a time and writes
progress every two items over a FlakyObjectStore.
"""

import io
import zipfile

import pytest

from conftest import seed

from bucketops.errors import (
    ConflictFailure,
    NotFoundFailure,
    ObjectStoreError,
    ValidationFailure,
)
from bucketops.metadata.models import (
    AuditOperationType,
    AuditQuery,
    JobEventType,
    JobOperationType,
    JobStatus,
    job_metadata_from_dict,
)
from bucketops.transfer.coordinator import FolderDeleteConfirmation, destination_key


def assert_accounting(report):
    assert report.succeeded + report.failed == report.attempted
    assert report.attempted <= report.enumerated


async def events_of(coordinator, job_id, event_type):
    events = await coordinator.jobs.get_events(job_id)
    return [e for e in events if e.event_type == event_type.value]


class TestDestinationKey:
    """Tests for destination_key()."""

    @pytest.mark.parametrize(
        "source,path,expected",
        [
            ("a/b.txt", "c/", "c/b.txt"),
            ("a/b.txt", "c", "c/b.txt"),
            ("a/b.txt", "", "b.txt"),
            ("a/b.txt", None, "b.txt"),
            ("b.txt", "/x/y/", "x/y/b.txt"),
        ],
    )
    def test_keeps_base_name(self, source, path, expected):
        assert destination_key(source, path) == expected


class TestForceDeleteContainer:
    """Tests for force_delete_container()."""

    async def test_deletes_everything(self, coordinator, store):
        await seed(store, "box", [f"k{i}" for i in range(7)])
        report = await coordinator.force_delete_container("box", "me@example.com")

        assert report.status == "completed"
        assert report.enumerated == 7
        assert report.succeeded == 7
        assert report.container_deleted is True
        assert not await store.container_exists("box")
        assert_accounting(report)

        job = await coordinator.jobs.get_job(report.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.operation_type == JobOperationType.BUCKET_DELETE.value
        assert job.processed_items == 7
        assert job.percentage == 100.0
        meta = job_metadata_from_dict(job.operation_type, job.metadata)
        assert meta.deleted_count == 7

    async def test_paces_between_pages(self, coordinator, store, pacer):
        await seed(store, "box", [f"k{i}" for i in range(7)])
        await coordinator.force_delete_container("box", "me")
        # pages of 3, 3, 1
        assert pacer.waits == 2

    async def test_partial_failure_keeps_container(self, coordinator, store):
        await seed(store, "box", ["a", "b", "c", "d"])
        store.fail_delete.add("b")
        report = await coordinator.force_delete_container("box", "me")

        assert report.status == "completed"
        assert report.failed == 1
        assert report.succeeded == 3
        assert report.container_deleted is False
        assert await store.container_exists("box")
        assert_accounting(report)

        errors = await events_of(coordinator, report.job_id, JobEventType.ERROR)
        assert [e.details["key"] for e in errors] == ["b"]
        job = await coordinator.jobs.get_job(report.job_id)
        assert job.error_count == 1
        assert job.status == JobStatus.COMPLETED.value

    async def test_enumeration_failure_fails_job(self, coordinator, store):
        await seed(store, "box", ["a"])
        store.fail_list = 1
        report = await coordinator.force_delete_container("box", "me")
        assert report.status == "failed"
        assert "injected list failure" in report.error
        job = await coordinator.jobs.get_job(report.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error_message == report.error

    async def test_missing_container(self, coordinator):
        with pytest.raises(NotFoundFailure):
            await coordinator.force_delete_container("ghost", "me")

    async def test_progress_events_and_monotonic_percentage(self, coordinator, store):
        await seed(store, "box", [f"k{i}" for i in range(7)])
        report = await coordinator.force_delete_container("box", "me")
        progress = await events_of(coordinator, report.job_id, JobEventType.PROGRESS)
        assert progress
        percentages = [e.details["percentage"] for e in progress]
        processed = [e.details["processed"] for e in progress]
        assert processed == sorted(processed)
        assert all(p is not None for p in percentages)
        # each page end carries the listing cursor
        assert any("cursor" in e.details for e in progress)

    async def test_audit_entry(self, coordinator, store, metadata):
        await seed(store, "box", ["a"])
        await coordinator.force_delete_container("box", "me@example.com")
        entries, total = await metadata.list_audit_entries(AuditQuery())
        assert total == 1
        assert entries[0].operation_type == "bucket_delete"
        assert entries[0].user_email == "me@example.com"
        assert entries[0].status == "success"


class TestRenameContainer:
    """Tests for rename_container()."""

    async def test_rename_preserves_objects(self, coordinator, store, metadata):
        await seed(store, "old-box", [f"dir/k{i}" for i in range(5)], content_type="image/png")
        await metadata.set_container_owner("old-box", "owner@example.com")

        report = await coordinator.rename_container("old-box", "new-box", "me")

        assert report.status == "completed"
        assert report.container_deleted is True
        assert not await store.container_exists("old-box")
        objects = store.containers["new-box"]
        assert len(objects) == 5
        assert all(e.content_type == "image/png" for e in objects.values())
        assert (await store.get("new-box", "dir/k3")).data == b"data:dir/k3"
        assert await metadata.get_container_owner("new-box") == "owner@example.com"
        assert await metadata.get_container_owner("old-box") is None
        # copy pass and delete pass are both counted
        assert report.enumerated == 10
        assert report.succeeded == 10
        assert_accounting(report)

    async def test_copy_failure_skips_teardown(self, coordinator, store):
        await seed(store, "old-box", ["a", "b", "c"])
        store.fail_get.add("b")

        report = await coordinator.rename_container("old-box", "new-box", "me")

        assert report.status == "completed"
        assert report.skipped_teardown is True
        assert report.failed == 1
        assert sorted(store.containers["old-box"]) == ["a", "b", "c"]
        assert sorted(store.containers["new-box"]) == ["a", "c"]
        job = await coordinator.jobs.get_job(report.job_id)
        meta = job_metadata_from_dict(job.operation_type, job.metadata)
        assert meta.source_retained is True
        assert meta.copy_failures == 1

    async def test_retry_after_barrier_is_a_conflict(self, coordinator, store):
        """The half-built destination must be cleared before a second attempt."""
        await seed(store, "old-box", ["a", "b"])
        store.fail_get.add("b")
        await coordinator.rename_container("old-box", "new-box", "me")
        store.fail_get.clear()

        with pytest.raises(ConflictFailure):
            await coordinator.rename_container("old-box", "new-box", "me")
        assert sorted(store.containers["old-box"]) == ["a", "b"]

    async def test_destination_exists(self, coordinator, store):
        await seed(store, "old-box", ["a"])
        await seed(store, "new-box", [])
        with pytest.raises(ConflictFailure):
            await coordinator.rename_container("old-box", "new-box", "me")

    async def test_same_name(self, coordinator, store):
        await seed(store, "old-box", ["a"])
        with pytest.raises(ValidationFailure):
            await coordinator.rename_container("old-box", "old-box", "me")

    async def test_setup_failure_fails_job(self, coordinator, store):
        await seed(store, "old-box", ["a"])

        async def refuse(name):
            raise ObjectStoreError("quota reached", status=403)

        store.create_container = refuse
        report = await coordinator.rename_container("old-box", "new-box", "me")
        assert report.status == "failed"
        assert "quota reached" in report.error
        assert await store.container_exists("old-box")


class TestTransferPrefix:
    """Tests for transfer_prefix() folder move and copy."""

    async def test_copy_keeps_relative_paths(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg", "photos/2024/b.jpg", "other/c.jpg"])
        await seed(store, "dest", [])
        report = await coordinator.transfer_prefix("box", "photos", "dest", "backup/photos", False, "me")

        assert report.status == "completed"
        assert report.succeeded == 2
        assert sorted(store.containers["dest"]) == ["backup/photos/2024/b.jpg", "backup/photos/a.jpg"]
        assert "photos/a.jpg" in store.containers["box"]

    async def test_move_removes_sources(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg", "photos/b.jpg", "photos/c.jpg", "photos/d.jpg"])
        report = await coordinator.transfer_prefix("box", "photos/", "box", "archive/", True, "me")

        assert report.succeeded == 4
        assert sorted(store.containers["box"]) == [
            "archive/a.jpg", "archive/b.jpg", "archive/c.jpg", "archive/d.jpg",
        ]
        job = await coordinator.jobs.get_job(report.job_id)
        assert job.operation_type == JobOperationType.FOLDER_MOVE.value

    async def test_rejects_identical_prefix(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg"])
        with pytest.raises(ValidationFailure):
            await coordinator.transfer_prefix("box", "photos", "box", "photos/", True, "me")

    async def test_rejects_nested_destination(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg"])
        with pytest.raises(ValidationFailure):
            await coordinator.transfer_prefix("box", "photos", "box", "photos/sub", True, "me")

    async def test_same_path_other_container_allowed(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg"])
        await seed(store, "dest", [])
        report = await coordinator.transfer_prefix("box", "photos", "dest", "photos", True, "me")
        assert report.succeeded == 1
        assert list(store.containers["dest"]) == ["photos/a.jpg"]

    async def test_overwrites_existing_destination(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg"])
        await seed(store, "dest", [])
        await store.put("dest", "photos/a.jpg", b"stale")
        await coordinator.transfer_prefix("box", "photos", "dest", "photos", False, "me")
        assert (await store.get("dest", "photos/a.jpg")).data == b"data:photos/a.jpg"

    async def test_missing_destination_container(self, coordinator, store):
        await seed(store, "box", ["photos/a.jpg"])
        with pytest.raises(NotFoundFailure):
            await coordinator.transfer_prefix("box", "photos", "ghost", "photos", False, "me")

    async def test_per_item_failure_continues(self, coordinator, store):
        await seed(store, "box", ["p/a", "p/b", "p/c", "p/d"])
        store.fail_put.add("q/b")
        report = await coordinator.transfer_prefix("box", "p", "box", "q", True, "me")
        assert report.status == "completed"
        assert report.failed == 1
        assert report.succeeded == 3
        assert "p/b" in store.containers["box"]
        assert_accounting(report)


class TestDeletePrefix:
    """Tests for delete_prefix() confirm-then-force."""

    async def test_without_force_only_counts(self, coordinator, store):
        keys = [f"docs/{i}.txt" for i in range(5)]
        await seed(store, "box", keys + ["keep.txt"])
        outcome = await coordinator.delete_prefix("box", "docs", False, "me")

        assert isinstance(outcome, FolderDeleteConfirmation)
        assert outcome.file_count == 5
        assert len(store.containers["box"]) == 6

    async def test_with_force_deletes_all(self, coordinator, store):
        keys = [f"docs/{i}.txt" for i in range(5)]
        await seed(store, "box", keys + ["keep.txt"])
        report = await coordinator.delete_prefix("box", "docs", True, "me")

        assert report.status == "completed"
        assert report.succeeded == 5
        assert list(store.containers["box"]) == ["keep.txt"]

    async def test_empty_folder_without_force(self, coordinator, store):
        await seed(store, "box", ["other"])
        report = await coordinator.delete_prefix("box", "empty", False, "me")
        assert report.status == "completed"
        assert report.enumerated == 0

    async def test_requires_path(self, coordinator, store):
        await seed(store, "box", [])
        with pytest.raises(ValidationFailure):
            await coordinator.delete_prefix("box", "/", True, "me")


class TestDeleteKeys:
    """Tests for delete_keys()."""

    async def test_deletes_listed_keys(self, coordinator, store, metadata):
        await seed(store, "box", ["a", "b", "c", "d", "e"])
        report = await coordinator.delete_keys("box", ["a", "c", "e", "a", "zzz"], "me")

        assert report.enumerated == 4
        assert report.succeeded == 4
        assert sorted(store.containers["box"]) == ["b", "d"]
        _, total = await metadata.list_audit_entries(AuditQuery(operation_type="file_delete"))
        assert total == 4

    async def test_empty_list(self, coordinator, store):
        await seed(store, "box", [])
        with pytest.raises(ValidationFailure):
            await coordinator.delete_keys("box", [], "me")


class TestExportArchive:
    """Tests for export_archive()."""

    async def test_single_container(self, coordinator, store):
        await seed(store, "box", ["a.txt", "dir/b.txt"])
        result = await coordinator.export_archive([("box", ["a.txt", "dir/b.txt"])], "me")

        archive = zipfile.ZipFile(io.BytesIO(result.archive))
        assert sorted(archive.namelist()) == ["a.txt", "dir/b.txt"]
        assert archive.read("dir/b.txt") == b"data:dir/b.txt"
        assert result.filename.startswith("box-") and result.filename.endswith(".zip")
        assert result.report.status == "completed"

    async def test_multi_container_folders(self, coordinator, store):
        await seed(store, "one", ["a.txt"])
        await seed(store, "two", ["b.txt"])
        result = await coordinator.export_archive([("one", ["a.txt"]), ("two", ["b.txt"])], "me")

        archive = zipfile.ZipFile(io.BytesIO(result.archive))
        assert sorted(archive.namelist()) == ["one/a.txt", "two/b.txt"]
        assert result.filename.startswith("buckets-")
        job = await coordinator.jobs.get_job(result.report.job_id)
        assert job.operation_type == JobOperationType.BULK_DOWNLOAD.value
        assert job.container_name == "one,two"

    async def test_failed_files_are_skipped(self, coordinator, store):
        await seed(store, "box", ["a.txt", "b.txt", "c.txt"])
        store.fail_get.add("b.txt")
        result = await coordinator.export_archive([("box", ["a.txt", "b.txt", "c.txt", "gone.txt"])], "me")

        archive = zipfile.ZipFile(io.BytesIO(result.archive))
        assert sorted(archive.namelist()) == ["a.txt", "c.txt"]
        assert result.report.failed == 2
        errors = await events_of(coordinator, result.report.job_id, JobEventType.ERROR)
        assert sorted(e.details["key"] for e in errors) == ["b.txt", "gone.txt"]

    async def test_nothing_selected(self, coordinator):
        with pytest.raises(ValidationFailure):
            await coordinator.export_archive([("box", [])], "me")


class TestCancellation:
    """Tests for cooperative cancellation between pages."""

    async def test_cancel_between_pages(self, coordinator, store, pacer):
        await seed(store, "box", [f"k{i}" for i in range(9)])

        async def cancel_running():
            pacer.waits += 1
            for job_id in coordinator.cancellations.running():
                coordinator.cancellations.cancel(job_id)

        pacer.wait = cancel_running
        report = await coordinator.force_delete_container("box", "me")

        assert report.status == "cancelled"
        assert report.enumerated == 3
        assert report.succeeded == 3
        assert len(store.containers["box"]) == 6
        job = await coordinator.jobs.get_job(report.job_id)
        assert job.status == JobStatus.CANCELLED.value
        assert report.job_id not in coordinator.cancellations


class TestRelocateObject:
    """Tests for single-object relocate_object()."""

    async def test_same_key_rejected_before_store_calls(self, coordinator):
        class Untouchable:
            def __getattr__(self, name):
                raise AssertionError(f"store.{name} called")

        coordinator.store = Untouchable()
        coordinator.executor.store = coordinator.store
        with pytest.raises(ValidationFailure):
            await coordinator.relocate_object(
                "box", "a/b.txt", "box", "a/b.txt", True, "me", AuditOperationType.FILE_MOVE,
            )

    async def test_conflict_unless_overwrite(self, coordinator, store):
        await seed(store, "box", ["a.txt"])
        await seed(store, "dest", ["a.txt"])
        with pytest.raises(ConflictFailure):
            await coordinator.relocate_object(
                "box", "a.txt", "dest", "a.txt", False, "me", AuditOperationType.FILE_COPY,
            )
        result = await coordinator.relocate_object(
            "box", "a.txt", "dest", "a.txt", False, "me", AuditOperationType.FILE_COPY, overwrite=True,
        )
        assert result.ok

    async def test_missing_source(self, coordinator, store):
        await seed(store, "box", [])
        with pytest.raises(NotFoundFailure):
            await coordinator.relocate_object(
                "box", "nope.txt", "box", "x/nope.txt", True, "me", AuditOperationType.FILE_MOVE,
            )
