"""Single-object transfer: read, write, then optionally delete the source."""

import logging
from dataclasses import dataclass

from bucketops.errors import ObjectNotFound, ObjectStoreError, UpstreamThrottled
from bucketops.metrics import record_transfer
from bucketops.storage.backend import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Transfer error kinds
SOURCE_NOT_FOUND = "SourceNotFound"
FETCH_FAILED = "FetchFailed"
WRITE_FAILED = "WriteFailed"
DELETE_FAILED = "DeleteFailed"


@dataclass
class TransferResult:
    """Outcome of one object transfer or delete.

    Attributes:
        ok: True if the destination holds the object (or the delete
            succeeded for delete-only passes).
        error: Error kind when ``ok`` is False.
        message: Human-readable failure description.
        size: Bytes transferred.
        content_type: Content type written to the destination.
        source_deleted: Whether the source was removed (moves only).
        throttled: The store signalled throttling during this transfer.
        retry_after: Throttling hint from the store, if any.
    """

    ok: bool
    error: str | None = None
    message: str | None = None
    size: int = 0
    content_type: str | None = None
    source_deleted: bool = False
    throttled: bool = False
    retry_after: float | None = None


class TransferExecutor:
    """Moves or copies one object. Never raises across its boundary.

    Order is fetch, write, then delete the source. The source is never
    deleted unless the write succeeded; a failed source delete after a
    successful write is logged and reported through ``source_deleted``
    but leaves ``ok`` True, since the destination already holds the data.
    """

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    async def transfer(
        self,
        src_container: str,
        src_key: str,
        dst_container: str,
        dst_key: str,
        delete_source: bool = False,
        operation: str = "transfer",
    ) -> TransferResult:
        """Copy ``src`` to ``dst``; remove ``src`` afterwards when asked.

        Args:
            src_container: Source container.
            src_key: Source key.
            dst_container: Destination container.
            dst_key: Destination key.
            delete_source: Delete the source after a successful write.
            operation: Label used for metrics and logs.

        Returns:
            A TransferResult describing the outcome.
        """
        try:
            obj = await self.store.get(src_container, src_key)
        except ObjectNotFound:
            record_transfer(operation, "failed")
            return TransferResult(
                ok=False,
                error=SOURCE_NOT_FOUND,
                message=f"Source object not found: {src_container}/{src_key}",
            )
        except Exception as exc:
            record_transfer(operation, "failed")
            return self._failure(FETCH_FAILED, exc)

        content_type = obj.content_type or DEFAULT_CONTENT_TYPE
        try:
            await self.store.put(dst_container, dst_key, obj.data, content_type=content_type)
        except Exception as exc:
            record_transfer(operation, "failed")
            return self._failure(WRITE_FAILED, exc)

        result = TransferResult(ok=True, size=obj.size, content_type=content_type)
        if delete_source:
            try:
                await self.store.delete(src_container, src_key)
                result.source_deleted = True
            except Exception as exc:
                logger.warning(
                    "Copied %s/%s to %s/%s but failed to delete source: %s",
                    src_container,
                    src_key,
                    dst_container,
                    dst_key,
                    exc,
                    extra={"operation": operation, "container": src_container},
                )
                if isinstance(exc, UpstreamThrottled):
                    result.throttled = True
                    result.retry_after = exc.retry_after
        record_transfer(operation, "succeeded")
        return result

    async def delete(self, container: str, key: str, operation: str = "delete") -> TransferResult:
        """Delete one object, reporting failure instead of raising."""
        try:
            await self.store.delete(container, key)
        except Exception as exc:
            record_transfer(operation, "failed")
            return self._failure(DELETE_FAILED, exc)
        record_transfer(operation, "succeeded")
        return TransferResult(ok=True)

    @staticmethod
    def _failure(kind: str, exc: Exception) -> TransferResult:
        throttled = isinstance(exc, UpstreamThrottled)
        if not isinstance(exc, ObjectStoreError):
            logger.exception("Unexpected error during %s", kind)
        return TransferResult(
            ok=False,
            error=kind,
            message=getattr(exc, "message", None) or str(exc),
            throttled=throttled,
            retry_after=exc.retry_after if throttled else None,
        )
