"""Job history request handlers for BucketOps."""

import logging

from fastapi import FastAPI, Request, Response

from bucketops.errors import ConflictFailure, NotFoundFailure, ValidationFailure
from bucketops.handlers.common import ok
from bucketops.metadata.models import JobQuery, JobStatus
from bucketops.validation import parse_page_size

logger = logging.getLogger(__name__)

_DEFAULT_PAGE = 50


def parse_offset(value: str | None) -> int:
    if not value:
        return 0
    try:
        offset = int(value)
    except ValueError:
        raise ValidationFailure("offset must be an integer", details={"offset": value}) from None
    if offset < 0:
        raise ValidationFailure("offset must not be negative", details={"offset": value})
    return offset


def pagination(total: int, limit: int, offset: int) -> dict:
    return {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total}


class JobHandler:
    """Handles job listing, detail, events and cancellation.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def jobs(self):
        return self.app.state.jobs

    async def list_jobs(self, request: Request) -> Response:
        """List jobs, newest first by default.

        Implements: GET /jobs

        Query parameters: ``status``, ``operationType``, ``container``,
        ``createdBy``, ``startDate``, ``endDate``, ``jobId`` (substring),
        ``minErrors``, ``sortBy``, ``sortOrder``, ``limit``, ``offset``.
        Unknown ``sortBy`` values fall back to ``started_at``.
        """
        params = request.query_params
        min_errors = params.get("minErrors")
        try:
            min_errors_value = int(min_errors) if min_errors else None
        except ValueError:
            raise ValidationFailure("minErrors must be an integer") from None
        query = JobQuery(
            status=params.get("status") or None,
            operation_type=params.get("operationType") or None,
            container_name=params.get("container") or None,
            created_by=params.get("createdBy") or None,
            start=params.get("startDate") or None,
            end=params.get("endDate") or None,
            job_id_contains=params.get("jobId") or None,
            min_errors=min_errors_value,
            sort_by=params.get("sortBy") or "started_at",
            sort_order=params.get("sortOrder") or "desc",
            limit=parse_page_size(params.get("limit"), _DEFAULT_PAGE),
            offset=parse_offset(params.get("offset")),
        )
        jobs, total = await self.jobs.list_jobs(query)
        return ok(
            {
                "jobs": [job.to_dict() for job in jobs],
                "pagination": pagination(total, query.limit, query.offset),
            }
        )

    async def _require_job(self, job_id: str):
        job = await self.jobs.get_job(job_id)
        if job is None:
            raise NotFoundFailure(f"Job not found: {job_id}", details={"jobId": job_id})
        return job

    async def get_job(self, request: Request, job_id: str) -> Response:
        """Implements: GET /jobs/{id}"""
        job = await self._require_job(job_id)
        return ok({"job": job.to_dict()})

    async def get_events(self, request: Request, job_id: str) -> Response:
        """Implements: GET /jobs/{id}/events (oldest first)"""
        await self._require_job(job_id)
        events = await self.jobs.get_events(job_id)
        return ok({"jobId": job_id, "events": [e.to_dict() for e in events]})

    async def cancel_job(self, request: Request, job_id: str) -> Response:
        """Request cooperative cancellation of a running job.

        Implements: POST /jobs/{id}/cancel

        The job stops at its next page boundary and finishes as
        ``cancelled``; the response only acknowledges the request.
        """
        job = await self._require_job(job_id)
        if JobStatus(job.status).is_terminal:
            raise ConflictFailure(
                f"Job already {job.status}", details={"jobId": job_id, "status": job.status}
            )
        if not self.app.state.cancellations.cancel(job_id):
            raise ConflictFailure(
                "Job is not running in this process", details={"jobId": job_id}
            )
        logger.info("Cancellation requested for job %s", job_id, extra={"job_id": job_id})
        return ok({"jobId": job_id, "status": "cancelling"}, status=202)
