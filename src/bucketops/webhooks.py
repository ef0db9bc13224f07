"""Outbound event notifications.

Subscriptions come from the ``webhooks`` config section. Each event is
POSTed as ``{"event", "timestamp", "data"}`` JSON to every enabled
endpoint subscribed to it. When an endpoint has a secret the body is
signed with HMAC-SHA256 and sent as ``X-Webhook-Signature: sha256=<hex>``.

Delivery is best-effort: failures are logged and counted, never raised
into the action that triggered them.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from bucketops import metrics
from bucketops.config import WebhookEndpoint, WebhooksConfig
from bucketops.metadata.models import utc_now_iso

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Webhook-Event"
SIGNATURE_HEADER = "X-Webhook-Signature"
USER_AGENT = "BucketOps-Webhook/0.1"


def sign_body(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@dataclass
class DeliveryResult:
    """Outcome of one POST to one endpoint."""

    endpoint: str
    success: bool
    status_code: int | None = None
    error: str | None = None


class WebhookDispatcher:
    """Fans events out to the configured endpoints.

    Attributes:
        endpoints: Every configured endpoint, enabled or not.
    """

    def __init__(
        self,
        endpoints: list[WebhookEndpoint],
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoints = list(endpoints)
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: WebhooksConfig) -> "WebhookDispatcher | None":
        """A dispatcher for ``config``, or None when nothing would be sent."""
        if not config.enabled or not any(e.enabled for e in config.endpoints):
            return None
        return cls(config.endpoints, timeout=config.timeout_seconds)

    def subscribers(self, event: str) -> list[WebhookEndpoint]:
        """Enabled endpoints for ``event``; an empty ``events`` list means all."""
        return [
            e for e in self.endpoints if e.enabled and (not e.events or event in e.events)
        ]

    async def send(
        self, endpoint: WebhookEndpoint, event: str, data: dict[str, Any]
    ) -> DeliveryResult:
        body = json.dumps(
            {"event": event, "timestamp": utc_now_iso(), "data": data},
            separators=(",", ":"),
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            EVENT_HEADER: event,
        }
        if endpoint.secret:
            headers[SIGNATURE_HEADER] = sign_body(endpoint.secret, body)

        try:
            response = await self._client.post(endpoint.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "Webhook %s failed for %s: %s", endpoint.name, event, exc,
                extra={"operation": event},
            )
            metrics.record_webhook(event, "error")
            return DeliveryResult(endpoint.name, False, error=str(exc))

        if not response.is_success:
            logger.warning(
                "Webhook %s returned HTTP %d for %s",
                endpoint.name, response.status_code, event,
                extra={"operation": event},
            )
            metrics.record_webhook(event, "rejected")
            return DeliveryResult(
                endpoint.name, False, response.status_code, f"HTTP {response.status_code}"
            )

        logger.debug("Webhook %s delivered %s", endpoint.name, event)
        metrics.record_webhook(event, "delivered")
        return DeliveryResult(endpoint.name, True, response.status_code)

    async def dispatch(self, event: str, data: dict[str, Any]) -> list[DeliveryResult]:
        """Deliver ``event`` to every subscriber concurrently and wait."""
        targets = self.subscribers(event)
        if not targets:
            return []
        return list(await asyncio.gather(*(self.send(e, event, data) for e in targets)))

    def trigger(self, event: str, data: dict[str, Any]) -> None:
        """Schedule delivery in the background and return immediately."""
        if not self.subscribers(event):
            return
        task = asyncio.get_running_loop().create_task(self.dispatch(event, data))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Webhook dispatch crashed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for every background delivery scheduled so far."""
        while self._pending:
            await asyncio.wait(set(self._pending))

    async def close(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()
