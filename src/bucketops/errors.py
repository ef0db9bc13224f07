"""Error definitions for BucketOps.

Two families live here. ``BucketOpsError`` subclasses are raised by
handlers and rendered as the JSON error envelope. ``ObjectStoreError``
subclasses are raised by object store backends and translated by the
transfer layer (or by the exception handler when one escapes a route).
"""

from typing import Any


class BucketOpsError(Exception):
    """An API error with code, message, and HTTP status.

    Attributes:
        code: Stable machine-readable error code (e.g. "NotFound").
        message: Human-readable error description.
        http_status: The HTTP status code to return.
        details: Optional structured payload included in the response body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 500,
        details: Any = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 500).
            details: Optional extra payload for the response body.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render the JSON error envelope."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


# -- Request-level errors -----------------------------------------------------


class ValidationFailure(BucketOpsError):
    """Malformed input, missing fields, or a disallowed parameter."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(
            code="ValidationFailure", message=message, http_status=400, details=details
        )


class Unauthorized(BucketOpsError):
    """No caller identity could be established."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(code="Unauthorized", message=message, http_status=401)


class Forbidden(BucketOpsError):
    """The request carried an invalid or expired signature."""

    def __init__(self, message: str = "Invalid or expired signature") -> None:
        super().__init__(code="Forbidden", message=message, http_status=403)


class NotFoundFailure(BucketOpsError):
    """The requested container, object, or job does not exist."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(
            code="NotFound", message=message, http_status=404, details=details
        )


class ConflictFailure(BucketOpsError):
    """The destination already exists."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(
            code="Conflict", message=message, http_status=409, details=details
        )


class RateLimitExceeded(BucketOpsError):
    """The caller exceeded the request quota of a rate-limit tier.

    Attributes:
        tier: The tier name (READ, WRITE, DELETE).
        limit: Requests allowed per period.
        period: Window length in seconds.
        retry_after: Seconds the caller should wait.
    """

    def __init__(self, tier: str, limit: int, period: int) -> None:
        super().__init__(
            code="RateLimitExceeded",
            message="Rate limit exceeded",
            http_status=429,
        )
        self.tier = tier
        self.limit = limit
        self.period = period
        self.retry_after = period

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "message": (
                f"Too many {self.tier} requests. "
                f"Limit: {self.limit} per {self.period} seconds"
            ),
            "tier": self.tier,
            "limit": self.limit,
            "period": self.period,
            "retryAfter": self.retry_after,
        }

    def headers(self) -> dict[str, str]:
        """Return the rate-limit response headers."""
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Period": str(self.period),
            "X-RateLimit-Tier": self.tier,
        }


class FatalEnumerationFailure(BucketOpsError):
    """Listing a container failed; the bulk operation cannot continue."""

    def __init__(self, container: str, message: str = "") -> None:
        super().__init__(
            code="EnumerationFailed",
            message=message or f"Failed to list objects in {container}",
            http_status=502,
            details={"container": container},
        )
        self.container = container


class InternalFailure(BucketOpsError):
    """Unexpected server-side error."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(code="InternalError", message=message, http_status=500)


# -- Object store errors ------------------------------------------------------


class ObjectStoreError(Exception):
    """A non-success response from the upstream object store.

    Attributes:
        status: HTTP-like status code reported by the store.
        message: Description of the failure.
    """

    def __init__(self, message: str, status: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class ObjectNotFound(ObjectStoreError):
    """The object does not exist."""

    def __init__(self, container: str, key: str) -> None:
        super().__init__(f"Object not found: {container}/{key}", status=404)
        self.container = container
        self.key = key


class ContainerNotFound(ObjectStoreError):
    """The container does not exist."""

    def __init__(self, container: str) -> None:
        super().__init__(f"Container not found: {container}", status=404)
        self.container = container


class ContainerAlreadyExists(ObjectStoreError):
    """A container with that name already exists."""

    def __init__(self, container: str) -> None:
        super().__init__(f"Container already exists: {container}", status=409)
        self.container = container


class ContainerNotEmpty(ObjectStoreError):
    """The container still holds objects."""

    def __init__(self, container: str) -> None:
        super().__init__(f"Container is not empty: {container}", status=409)
        self.container = container


class UpstreamThrottled(ObjectStoreError):
    """The store asked the caller to slow down.

    Attributes:
        retry_after: Suggested wait in seconds, when the store supplied one.
    """

    def __init__(self, message: str = "Upstream throttled", retry_after: float | None = None) -> None:
        super().__init__(message, status=429)
        self.retry_after = retry_after
