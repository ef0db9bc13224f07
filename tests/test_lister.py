"""Tests for PaginatedLister termination and completeness."""

import pytest

from conftest import RecordingPacer, seed

from bucketops.errors import FatalEnumerationFailure
from bucketops.metadata.models import ListPage, ObjectRef
from bucketops.transfer.lister import PaginatedLister


class _StuckStore:
    """Reports truncated forever with the same cursor, then empty pages."""

    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = 0

    async def list(self, container, prefix="", cursor=None, page_size=100):
        self.calls += 1
        if self.pages:
            return self.pages.pop(0)
        return ListPage(items=[], next_cursor="again", truncated=True)


class TestPages:
    """Tests for PaginatedLister.pages()."""

    @pytest.mark.parametrize("count,page_size", [(0, 3), (1, 3), (3, 3), (7, 3), (10, 1), (5, 100)])
    async def test_union_equals_key_set(self, store, count, page_size):
        """Batches cover every key exactly once, in order, for any page size."""
        keys = [f"k{i:03d}" for i in range(count)]
        await seed(store, "box", keys)
        lister = PaginatedLister(store, page_size=page_size)
        seen = [obj.key for obj in await lister.collect("box")]
        assert seen == keys
        assert len(set(seen)) == len(seen)

    async def test_prefix_filter(self, store):
        await seed(store, "box", ["a/1", "a/2", "ab", "b/1", "a/sub/3"])
        lister = PaginatedLister(store, page_size=2)
        keys = [obj.key for obj in await lister.collect("box", "a/")]
        assert keys == ["a/1", "a/2", "a/sub/3"]

    async def test_batches_never_empty(self, store):
        await seed(store, "box", [f"k{i}" for i in range(6)])
        lister = PaginatedLister(store, page_size=3)
        batches = [batch async for batch in lister.pages("box")]
        assert [len(b) for b in batches] == [3, 3]

    async def test_stops_on_empty_truncated_page(self):
        """A store that claims more results but returns nothing still terminates."""
        stuck = _StuckStore([ListPage(items=[ObjectRef(key="x")], next_cursor="c1", truncated=True)])
        lister = PaginatedLister(stuck, page_size=1)
        keys = [obj.key for obj in await lister.collect("box")]
        assert keys == ["x"]
        assert stuck.calls == 2

    async def test_stops_when_truncated_without_cursor(self):
        stuck = _StuckStore([ListPage(items=[ObjectRef(key="x")], next_cursor=None, truncated=True)])
        lister = PaginatedLister(stuck, page_size=1)
        assert len(await lister.collect("box")) == 1
        assert stuck.calls == 1

    async def test_records_last_cursor(self, store):
        await seed(store, "box", ["a", "b", "c", "d"])
        lister = PaginatedLister(store, page_size=2)
        cursors = []
        async for _ in lister.pages("box"):
            cursors.append(lister.last_cursor)
        assert cursors[0] is not None
        assert cursors[-1] is None


class TestFailures:
    """Tests for listing failures and throttling."""

    async def test_missing_container_is_fatal(self, store):
        lister = PaginatedLister(store)
        with pytest.raises(FatalEnumerationFailure) as exc_info:
            await lister.collect("nope")
        assert exc_info.value.http_status == 502
        assert exc_info.value.details == {"container": "nope"}

    async def test_store_error_is_fatal(self, store):
        await seed(store, "box", ["a"])
        store.fail_list = 1
        with pytest.raises(FatalEnumerationFailure):
            await PaginatedLister(store).collect("box")

    async def test_throttled_page_is_retried(self, store):
        await seed(store, "box", ["a", "b"])
        store.throttle_list = 2
        pacer = RecordingPacer()
        lister = PaginatedLister(store, pacer=pacer, retry_attempts=3)
        keys = [obj.key for obj in await lister.collect("box")]
        assert keys == ["a", "b"]
        assert pacer.signals == [0.01, 0.01]
        assert pacer.waits == 2

    async def test_throttling_beyond_retries_is_fatal(self, store):
        await seed(store, "box", ["a"])
        store.throttle_list = 5
        lister = PaginatedLister(store, pacer=RecordingPacer(), retry_attempts=2)
        with pytest.raises(FatalEnumerationFailure):
            await lister.collect("box")
        assert store.list_calls == 3

    async def test_throttling_without_pacer_is_fatal(self, store):
        await seed(store, "box", ["a"])
        store.throttle_list = 1
        with pytest.raises(FatalEnumerationFailure):
            await PaginatedLister(store).collect("box")
