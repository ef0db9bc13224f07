"""Paginated enumeration of a container (optionally under a prefix)."""

import logging
from collections.abc import AsyncIterator

from bucketops.errors import FatalEnumerationFailure, ObjectStoreError, UpstreamThrottled
from bucketops.metadata.models import ObjectRef
from bucketops.storage.backend import ObjectStore
from bucketops.transfer.pacing import Pacer

logger = logging.getLogger(__name__)


class PaginatedLister:
    """Turns the store's cursor-based listing into a stream of batches.

    Termination rules, checked after every page:
        - the store reports the listing is not truncated, or
        - the page is empty, or
        - the page is truncated but carries no cursor.

    The last two guard against stores that report ``truncated`` forever;
    without them a bulk operation could loop on the same empty page.

    Attributes:
        store: The object store to list from.
        page_size: Items requested per page.
        retry_attempts: Retries for a throttled page before giving up.
        last_cursor: The cursor of the most recently fetched page.
    """

    def __init__(
        self,
        store: ObjectStore,
        page_size: int = 100,
        pacer: Pacer | None = None,
        retry_attempts: int = 3,
    ) -> None:
        self.store = store
        self.page_size = page_size
        self.pacer = pacer
        self.retry_attempts = retry_attempts
        self.last_cursor: str | None = None

    async def _fetch(self, container: str, prefix: str, cursor: str | None):
        attempt = 0
        while True:
            try:
                return await self.store.list(
                    container, prefix=prefix, cursor=cursor, page_size=self.page_size
                )
            except UpstreamThrottled as exc:
                attempt += 1
                if self.pacer is None or attempt > self.retry_attempts:
                    raise FatalEnumerationFailure(
                        container, f"Listing {container} throttled: {exc.message}"
                    ) from exc
                self.pacer.throttled(exc.retry_after)
                await self.pacer.wait()
            except ObjectStoreError as exc:
                raise FatalEnumerationFailure(
                    container, f"Failed to list objects in {container}: {exc.message}"
                ) from exc

    async def pages(self, container: str, prefix: str = "") -> AsyncIterator[list[ObjectRef]]:
        """Yield non-empty batches of objects in listing order.

        Pacing between pages is the caller's business; this iterator only
        waits when retrying a throttled page.

        Raises:
            FatalEnumerationFailure: If a listing call fails.
        """
        cursor: str | None = None
        self.last_cursor = None
        while True:
            page = await self._fetch(container, prefix, cursor)
            if not page.items:
                return
            self.last_cursor = page.next_cursor
            yield page.items
            if not page.truncated or not page.next_cursor:
                return
            cursor = page.next_cursor

    async def collect(self, container: str, prefix: str = "") -> list[ObjectRef]:
        """Enumerate everything into a list."""
        items: list[ObjectRef] = []
        async for batch in self.pages(container, prefix):
            items.extend(batch)
        return items
