"""Helpers shared by the route handlers."""

import json
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from bucketops.errors import (
    BucketOpsError,
    ConflictFailure,
    ContainerAlreadyExists,
    ContainerNotEmpty,
    ContainerNotFound,
    NotFoundFailure,
    ObjectNotFound,
    ObjectStoreError,
    ValidationFailure,
)
from bucketops.transfer.coordinator import OperationReport


def get_identity(request: Request) -> str:
    """The caller identity set by the identity middleware."""
    return getattr(request.state, "identity", "") or ""


async def read_json(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object.

    Raises:
        ValidationFailure: If the body is missing, not JSON, or not an object.
    """
    body = await request.body()
    if not body:
        raise ValidationFailure("Request body is required")
    try:
        data = json.loads(body)
    except ValueError:
        raise ValidationFailure("Request body must be valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationFailure("Request body must be a JSON object")
    return data


def require_str(data: dict[str, Any], field: str) -> str:
    """Return a non-empty, stripped string field from a JSON body."""
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"{field} is required", details={"field": field})
    return value.strip()


def ok(payload: dict[str, Any] | None = None, status: int = 200) -> JSONResponse:
    """Render the success envelope."""
    return JSONResponse({"success": True, **(payload or {})}, status_code=status)


def report_response(report: OperationReport) -> Response:
    """Render a bulk operation report.

    Completed and cancelled operations return 200 with their counts; a
    failed operation returns 502 with the counts under ``details``.
    """
    body = report.to_dict()
    if report.status == "failed":
        return JSONResponse(
            {"error": report.error or "Operation failed", "code": "OperationFailed", "details": body},
            status_code=502,
        )
    success = report.status == "completed" and report.failed == 0 and report.error is None
    return JSONResponse({"success": success, **body})


def translate_store_error(exc: ObjectStoreError) -> BucketOpsError:
    """Map a store error that reached a handler onto an API error."""
    if isinstance(exc, ContainerNotFound):
        return NotFoundFailure(exc.message, details={"container": exc.container})
    if isinstance(exc, ObjectNotFound):
        return NotFoundFailure(exc.message, details={"container": exc.container, "key": exc.key})
    if isinstance(exc, (ContainerAlreadyExists, ContainerNotEmpty)):
        return ConflictFailure(exc.message, details={"container": exc.container})
    return BucketOpsError(
        code="UpstreamError",
        message=exc.message,
        http_status=exc.status if exc.status >= 400 else 502,
    )
