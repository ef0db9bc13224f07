"""Prometheus metrics definitions for BucketOps.

Custom metrics use the ``bucketops_`` prefix. HTTP-level metrics (request
count, latency, sizes) come from ``prometheus-fastapi-instrumentator``.

Counters reset on restart. When metrics are disabled the module-level
references stay ``None`` and the ``record_*`` helpers do nothing.
"""

from __future__ import annotations

from prometheus_client import Counter

_initialized: bool = False

# Per-object transfer outcomes (labels: operation, outcome)
transfer_objects_total: Counter | None = None

# Terminal job states (labels: operation, status)
jobs_total: Counter | None = None

# Rejected requests (labels: tier)
rate_limited_total: Counter | None = None

# Audit entries written (labels: operation, status)
audit_entries_total: Counter | None = None

# Webhook deliveries (labels: event, outcome)
webhook_deliveries_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors
    in the global registry.
    """
    global _initialized
    global transfer_objects_total, jobs_total, rate_limited_total, audit_entries_total
    global webhook_deliveries_total

    if _initialized:
        return

    transfer_objects_total = Counter(
        "bucketops_transfer_objects_total",
        "Objects processed by bulk and single transfers, by outcome",
        ["operation", "outcome"],
    )

    jobs_total = Counter(
        "bucketops_jobs_total",
        "Jobs reaching a terminal status",
        ["operation", "status"],
    )

    rate_limited_total = Counter(
        "bucketops_rate_limited_total",
        "Requests rejected by the rate limiter",
        ["tier"],
    )

    audit_entries_total = Counter(
        "bucketops_audit_entries_total",
        "Audit log entries written",
        ["operation", "status"],
    )

    webhook_deliveries_total = Counter(
        "bucketops_webhook_deliveries_total",
        "Outbound webhook POSTs, by event and outcome",
        ["event", "outcome"],
    )

    _initialized = True


def record_transfer(operation: str, outcome: str) -> None:
    if transfer_objects_total is not None:
        transfer_objects_total.labels(operation=operation, outcome=outcome).inc()


def record_job(operation: str, status: str) -> None:
    if jobs_total is not None:
        jobs_total.labels(operation=operation, status=status).inc()


def record_rate_limited(tier: str) -> None:
    if rate_limited_total is not None:
        rate_limited_total.labels(tier=tier).inc()


def record_audit(operation: str, status: str) -> None:
    if audit_entries_total is not None:
        audit_entries_total.labels(operation=operation, status=status).inc()


def record_webhook(event: str, outcome: str) -> None:
    if webhook_deliveries_total is not None:
        webhook_deliveries_total.labels(event=event, outcome=outcome).inc()
