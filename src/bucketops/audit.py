"""Append-only audit trail of user-initiated actions."""

import logging
from typing import Any

from bucketops import metrics
from bucketops.metadata.models import (
    AuditLogEntry,
    AuditOperationType,
    AuditQuery,
    AuditStatus,
    utc_now_iso,
)
from bucketops.metadata.store import MetadataStore
from bucketops.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


class AuditLogger:
    """Records one entry per discrete externally visible action.

    ``record`` is best-effort: a store failure is logged and swallowed so
    that auditing never fails the action being audited. Successful actions
    are also announced to webhook subscribers under the operation name.
    """

    def __init__(self, store: MetadataStore, webhooks: WebhookDispatcher | None = None) -> None:
        self.store = store
        self.webhooks = webhooks

    async def record(
        self,
        operation: AuditOperationType,
        owner: str,
        status: AuditStatus = AuditStatus.SUCCESS,
        container: str | None = None,
        key: str | None = None,
        size_bytes: int | None = None,
        destination_container: str | None = None,
        destination_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = AuditLogEntry(
            operation_type=operation.value,
            user_email=owner,
            status=status.value,
            timestamp=utc_now_iso(),
            container_name=container,
            object_key=key,
            size_bytes=size_bytes,
            destination_container=destination_container,
            destination_key=destination_key,
            metadata=metadata,
        )
        try:
            await self.store.insert_audit_entry(entry)
        except Exception:
            logger.warning(
                "Failed to write audit entry for %s", operation.value,
                exc_info=True, extra={"operation": operation.value, "container": container},
            )
        else:
            metrics.record_audit(operation.value, status.value)
        if self.webhooks is not None and status is AuditStatus.SUCCESS:
            self.webhooks.trigger(
                operation.value,
                {
                    "container": container,
                    "key": key,
                    "destinationContainer": destination_container,
                    "destinationKey": destination_key,
                    "sizeBytes": size_bytes,
                    "user": owner,
                },
            )

    async def list_entries(self, query: AuditQuery) -> tuple[list[AuditLogEntry], int]:
        return await self.store.list_audit_entries(query)

    async def summary(
        self,
        start: str | None = None,
        end: str | None = None,
        container: str | None = None,
    ) -> dict[str, Any]:
        """Per-operation counts plus overall totals for a time range."""
        rows = await self.store.audit_summary(start=start, end=end, container_name=container)
        return {
            "operations": rows,
            "total": sum(r["count"] for r in rows),
            "success_count": sum(r["success_count"] for r in rows),
            "failed_count": sum(r["failed_count"] for r in rows),
        }
