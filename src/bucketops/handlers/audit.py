"""Audit trail request handlers for BucketOps."""

from fastapi import FastAPI, Request, Response

from bucketops.handlers.common import ok
from bucketops.handlers.jobs import pagination, parse_offset
from bucketops.metadata.models import AuditQuery
from bucketops.validation import parse_page_size

_DEFAULT_PAGE = 50


class AuditHandler:
    """Handles audit log queries.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def audit(self):
        return self.app.state.audit

    async def list_entries(self, request: Request) -> Response:
        """List audit entries.

        Implements: GET /audit

        Query parameters: ``operationType``, ``container``, ``status``,
        ``user``, ``startDate``, ``endDate``, ``sortBy``, ``sortOrder``,
        ``limit``, ``offset``.
        """
        params = request.query_params
        query = AuditQuery(
            operation_type=params.get("operationType") or None,
            container_name=params.get("container") or None,
            status=params.get("status") or None,
            user_email=params.get("user") or None,
            start=params.get("startDate") or None,
            end=params.get("endDate") or None,
            sort_by=params.get("sortBy") or "timestamp",
            sort_order=params.get("sortOrder") or "desc",
            limit=parse_page_size(params.get("limit"), _DEFAULT_PAGE),
            offset=parse_offset(params.get("offset")),
        )
        entries, total = await self.audit.list_entries(query)
        return ok(
            {
                "entries": [e.to_dict() for e in entries],
                "pagination": pagination(total, query.limit, query.offset),
            }
        )

    async def summary(self, request: Request) -> Response:
        """Per-operation counts for a time range.

        Implements: GET /audit/summary?startDate&endDate&container
        """
        params = request.query_params
        summary = await self.audit.summary(
            start=params.get("startDate") or None,
            end=params.get("endDate") or None,
            container=params.get("container") or None,
        )
        return ok({"summary": summary})
