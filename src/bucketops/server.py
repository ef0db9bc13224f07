"""FastAPI application factory and route setup for BucketOps."""

import logging
import secrets
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bucketops.audit import AuditLogger
from bucketops.cache import TTLCache
from bucketops.config import BucketOpsConfig
from bucketops.errors import BucketOpsError, InternalFailure, ObjectStoreError, Unauthorized
from bucketops.handlers.audit import AuditHandler
from bucketops.handlers.common import translate_store_error
from bucketops.handlers.containers import ContainerHandler
from bucketops.handlers.folders import FolderHandler
from bucketops.handlers.jobs import JobHandler
from bucketops.handlers.objects import DOWNLOAD_PREFIX, ObjectHandler
from bucketops.jobs import JobTracker
from bucketops.metadata import create_metadata_store
from bucketops.metadata.store import MetadataStore
from bucketops.ratelimit import RateLimiter
from bucketops.signing import URLSigner
from bucketops.storage.backend import ObjectStore
from bucketops.storage.local import LocalObjectStore
from bucketops.transfer.cancellation import CancellationRegistry
from bucketops.transfer.coordinator import BulkOperationCoordinator
from bucketops.transfer.pacing import Pacer, create_pacer
from bucketops.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus gauge in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


# Paths that skip identity and rate limiting
EXEMPT_PATHS = {"/health", "/healthz", "/readyz", "/metrics"}

# Paths to suppress from per-request logging
_QUIET_PATHS = {"/metrics", "/health", "/healthz", "/readyz"}


def _is_exempt(path: str) -> bool:
    return path in EXEMPT_PATHS or path.startswith(DOWNLOAD_PREFIX + "/")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: BucketOpsConfig) -> FastAPI:
    """Create and configure the BucketOps FastAPI application.

    The lifespan context manager opens the metadata store and object
    store, fails jobs orphaned by a previous process, and wires the
    services every handler reads from ``app.state``.

    Args:
        config: The loaded BucketOps configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        metadata = create_metadata_store(config.metadata)
        await metadata.init_db()

        storage = _create_object_store(config)
        await storage.init()

        webhooks = WebhookDispatcher.from_config(config.webhooks)
        attach_services(app, metadata, storage, webhooks=webhooks)
        await app.state.jobs.sweep_stale(config.metadata.stale_job_seconds)

        logger.info("Metadata store initialized: %s", config.metadata.engine)
        logger.info("Object store initialized: %s", config.storage.backend)
        if webhooks is not None:
            logger.info("Webhooks enabled: %d endpoint(s)", len(webhooks.endpoints))

        yield

        if webhooks is not None:
            await webhooks.close()
        await storage.close()
        await metadata.close()
        logger.info("Metadata store and object store closed")

    app = FastAPI(
        title="BucketOps API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app, config)

    if config.observability.metrics:
        import bucketops.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="bucketops").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


def attach_services(
    app: FastAPI,
    metadata: MetadataStore,
    storage: ObjectStore,
    pacer: Pacer | None = None,
    webhooks: WebhookDispatcher | None = None,
) -> None:
    """Build the per-process services on top of the two stores.

    Args:
        app: The application whose ``state`` receives the services.
        metadata: An initialized metadata store.
        storage: An initialized object store.
        pacer: Overrides the configured pacing strategy.
        webhooks: Receives job and audit events; None disables delivery.
    """
    config: BucketOpsConfig = app.state.config
    transfer = config.transfer
    if pacer is None:
        pacer = create_pacer(
            transfer.pacing,
            delay=transfer.page_delay_seconds,
            rate=transfer.token_rate,
            capacity=transfer.token_capacity,
        )

    jobs = JobTracker(metadata, webhooks=webhooks)
    audit = AuditLogger(metadata, webhooks=webhooks)
    cancellations = CancellationRegistry()

    app.state.metadata = metadata
    app.state.storage = storage
    app.state.jobs = jobs
    app.state.audit = audit
    app.state.pacer = pacer
    app.state.webhooks = webhooks
    app.state.cancellations = cancellations
    app.state.coordinator = BulkOperationCoordinator(
        storage,
        jobs,
        audit,
        pacer=pacer,
        cancellations=cancellations,
        page_size=transfer.page_size,
        progress_interval=transfer.progress_interval,
        list_retry_attempts=transfer.list_retry_attempts,
    )
    app.state.limiter = RateLimiter(config.rate_limit)
    app.state.signer = URLSigner(config.auth.url_signing_key, config.auth.signed_url_ttl_seconds)
    app.state.size_cache = TTLCache(transfer.size_cache_ttl_seconds)


def _create_object_store(config: BucketOpsConfig) -> ObjectStore:
    """Create an object store instance based on configuration.

    Supports 'local', 'memory' and 's3' backends.

    Raises:
        ValueError: If the backend is unknown or misconfigured.
    """
    backend = config.storage.backend
    if backend == "local":
        return LocalObjectStore(config.storage.local_root)
    elif backend == "memory":
        from bucketops.storage.memory import MemoryObjectStore

        return MemoryObjectStore()
    elif backend == "s3":
        try:
            from bucketops.storage.s3 import S3ObjectStore
        except ImportError as exc:
            raise ImportError(
                "aiobotocore is required for the S3 backend. "
                "Install with: pip install bucketops[s3]"
            ) from exc
        return S3ObjectStore(
            region=config.storage.s3_region,
            endpoint_url=config.storage.s3_endpoint_url,
            use_path_style=config.storage.s3_use_path_style,
            access_key_id=config.storage.s3_access_key_id,
            secret_access_key=config.storage.s3_secret_access_key,
        )
    else:
        raise ValueError(f"Unknown storage backend: {backend}")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(exc: BucketOpsError, request: Request) -> Response:
    headers = exc.headers() if hasattr(exc, "headers") else None
    if request.method == "HEAD":
        return Response(status_code=exc.http_status, headers=headers)
    return JSONResponse(exc.to_dict(), status_code=exc.http_status, headers=headers)


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(BucketOpsError)
    async def bucketops_error_handler(request: Request, exc: BucketOpsError) -> Response:
        """Render BucketOpsError as the JSON error envelope."""
        return _error_response(exc, request)

    @app.exception_handler(ObjectStoreError)
    async def store_error_handler(request: Request, exc: ObjectStoreError) -> Response:
        """Render a store error that escaped a handler by its status."""
        if exc.status >= 500:
            logger.warning("Object store error on %s: %s", request.url.path, exc.message)
        return _error_response(translate_store_error(exc), request)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI validation errors to a 400 ValidationFailure."""
        messages = []
        for err in exc.errors():
            loc = " -> ".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        combined = "; ".join(messages) or "Invalid request parameters"
        return JSONResponse(
            {"error": combined, "code": "ValidationFailure"},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        return _error_response(InternalFailure(), request)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI, config: BucketOpsConfig) -> None:
    """Register middleware on the FastAPI app.

    In FastAPI, middleware is registered in reverse order (last registered
    runs first). The execution order is: request log -> identity ->
    rate limit -> handler. Middleware cannot rely on the exception
    handlers, so errors raised here are rendered directly.
    """

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next) -> Response:
        """Enforce the per-identity quota of the request's tier."""
        cfg: BucketOpsConfig = app.state.config
        limiter = getattr(app.state, "limiter", None)
        if not cfg.rate_limit.enabled or limiter is None or _is_exempt(request.url.path):
            return await call_next(request)

        identity = getattr(request.state, "identity", "") or "anonymous"
        decision = await limiter.check_request(request.method, request.url.path, identity)
        if not decision.allowed:
            return _error_response(decision.to_error(), request)
        return await call_next(request)

    @app.middleware("http")
    async def identity_middleware(request: Request, call_next) -> Response:
        """Resolve the caller identity from the trusted proxy header.

        When auth is disabled, requests without the header run as the
        configured default identity.
        """
        cfg: BucketOpsConfig = app.state.config
        if _is_exempt(request.url.path):
            return await call_next(request)

        identity = request.headers.get(cfg.auth.identity_header, "").strip()
        if not identity:
            if cfg.auth.enabled:
                return _error_response(Unauthorized(), request)
            identity = cfg.auth.default_identity
        request.state.identity = identity
        return await call_next(request)

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next) -> Response:
        """Tag each request with an id and write one access log line."""
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["X-Request-Id"] = request_id

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                    "identity": getattr(request.state, "identity", None),
                },
            )

        return response


# ---------------------------------------------------------------------------
# Health check helpers
# ---------------------------------------------------------------------------


async def _check_metadata(app: FastAPI) -> dict:
    """Check the metadata store.

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    metadata = getattr(app.state, "metadata", None)
    if metadata is None:
        return {"status": "error", "error": "metadata store not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        await metadata.ping()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


async def _check_storage(app: FastAPI) -> dict:
    """Check the object store by listing containers.

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    storage = getattr(app.state, "storage", None)
    if storage is None:
        return {"status": "error", "error": "object store not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        await storage.list_containers()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: BucketOpsConfig) -> None:
    """Register all routes on the application.

    Routes with a fixed suffix after a ``{key:path}`` segment are
    registered before the plain object routes of the same method.
    """
    containers = ContainerHandler(app)
    objects = ObjectHandler(app)
    folders = FolderHandler(app)
    jobs = JobHandler(app)
    audit = AuditHandler(app)

    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check() -> Response:
        """Return health status.

        When health_check is enabled: check metadata and object store,
        return JSON with component checks and latency_ms.
        When disabled: return static ``{"status": "ok"}``.
        """
        if not health_check_enabled:
            return JSONResponse({"status": "ok"})

        meta_check = await _check_metadata(app)
        storage_check = await _check_storage(app)
        all_ok = meta_check["status"] == "ok" and storage_check["status"] == "ok"
        return JSONResponse(
            {
                "status": "ok" if all_ok else "degraded",
                "checks": {"metadata": meta_check, "storage": storage_check},
            },
            status_code=200 if all_ok else 503,
        )

    if health_check_enabled:

        @app.get("/healthz")
        async def healthz() -> Response:
            """Liveness check. Returns 200 with empty body."""
            return Response(status_code=200)

        @app.get("/readyz")
        async def readyz() -> Response:
            """Readiness check. 200 if both stores respond, 503 otherwise."""
            meta_check = await _check_metadata(app)
            storage_check = await _check_storage(app)
            all_ok = meta_check["status"] == "ok" and storage_check["status"] == "ok"
            return Response(status_code=200 if all_ok else 503)

    # Containers
    @app.get("/containers")
    async def list_containers(request: Request) -> Response:
        return await containers.list_containers(request)

    @app.post("/containers")
    async def create_container(request: Request) -> Response:
        return await containers.create_container(request)

    @app.delete("/containers/{name}")
    async def delete_container(name: str, request: Request) -> Response:
        return await containers.delete_container(request, name)

    @app.patch("/containers/{name}")
    async def rename_container(name: str, request: Request) -> Response:
        return await containers.rename_container(request, name)

    # Objects
    @app.get("/containers/{container}/objects")
    async def list_objects(container: str, request: Request) -> Response:
        return await objects.list_objects(request, container)

    @app.get("/containers/{container}/objects/{key:path}/signed-url")
    async def signed_url(container: str, key: str, request: Request) -> Response:
        return await objects.signed_url(request, container, key)

    @app.post("/containers/{container}/objects/{key:path}/move")
    async def move_object(container: str, key: str, request: Request) -> Response:
        return await objects.move_object(request, container, key)

    @app.post("/containers/{container}/objects/{key:path}/copy")
    async def copy_object(container: str, key: str, request: Request) -> Response:
        return await objects.copy_object(request, container, key)

    @app.patch("/containers/{container}/objects/{key:path}/rename")
    async def rename_object(container: str, key: str, request: Request) -> Response:
        return await objects.rename_object(request, container, key)

    @app.put("/containers/{container}/objects/{key:path}")
    async def put_object(container: str, key: str, request: Request) -> Response:
        return await objects.put_object(request, container, key)

    @app.delete("/containers/{container}/objects/{key:path}")
    async def delete_object(container: str, key: str, request: Request) -> Response:
        return await objects.delete_object(request, container, key)

    @app.get(DOWNLOAD_PREFIX + "/{container}/{key:path}")
    async def download(container: str, key: str, request: Request) -> Response:
        return await objects.download(request, container, key)

    @app.post("/containers/{container}/batch-delete")
    async def batch_delete(container: str, request: Request) -> Response:
        return await objects.batch_delete(request, container)

    @app.post("/containers/{container}/export")
    async def export_container(container: str, request: Request) -> Response:
        return await objects.export_container(request, container)

    @app.post("/export")
    async def export_many(request: Request) -> Response:
        return await objects.export_many(request)

    # Folders
    @app.post("/containers/{container}/folders")
    async def create_folder(container: str, request: Request) -> Response:
        return await folders.create_folder(request, container)

    @app.post("/containers/{container}/folders/rename")
    async def rename_folder(container: str, request: Request) -> Response:
        return await folders.rename_folder(request, container)

    @app.post("/containers/{container}/folders/{path:path}/move")
    async def move_folder(container: str, path: str, request: Request) -> Response:
        return await folders.move_folder(request, container, path)

    @app.post("/containers/{container}/folders/{path:path}/copy")
    async def copy_folder(container: str, path: str, request: Request) -> Response:
        return await folders.copy_folder(request, container, path)

    @app.delete("/containers/{container}/folders/{path:path}")
    async def delete_folder(container: str, path: str, request: Request) -> Response:
        return await folders.delete_folder(request, container, path)

    # Jobs
    @app.get("/jobs")
    async def list_jobs(request: Request) -> Response:
        return await jobs.list_jobs(request)

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str, request: Request) -> Response:
        return await jobs.get_job(request, job_id)

    @app.get("/jobs/{job_id}/events")
    async def get_job_events(job_id: str, request: Request) -> Response:
        return await jobs.get_events(request, job_id)

    @app.post("/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str, request: Request) -> Response:
        return await jobs.cancel_job(request, job_id)

    # Audit
    @app.get("/audit")
    async def list_audit(request: Request) -> Response:
        return await audit.list_entries(request)

    @app.get("/audit/summary")
    async def audit_summary(request: Request) -> Response:
        return await audit.summary(request)
