"""Cooperative cancellation for running bulk operations.

A bulk operation registers a token under its job id and polls it between
pages. ``POST /jobs/{id}/cancel`` flips the token; the operation stops at
the next page boundary and the job ends ``cancelled``.
"""

import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by user") -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class CancellationRegistry:
    """In-process map of job id to cancellation token.

    Entries exist only while an operation is running on this process.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def register(self, job_id: str) -> CancellationToken:
        token = CancellationToken()
        self._tokens[job_id] = token
        return token

    def release(self, job_id: str) -> None:
        self._tokens.pop(job_id, None)

    def cancel(self, job_id: str, reason: str = "cancelled by user") -> bool:
        """Signal a running job to stop.

        Returns:
            True if the job is running on this process, False otherwise.
        """
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel(reason)
        logger.info("Cancellation requested for job %s", job_id, extra={"job_id": job_id})
        return True

    def running(self) -> list[str]:
        return list(self._tokens)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._tokens
