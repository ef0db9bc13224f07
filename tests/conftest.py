"""Shared pytest fixtures for BucketOps tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
gauges in the global prometheus_client registry).

The stores and services are attached to ``app.state`` per test instead
of running the full lifespan, so every test starts from empty stores.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from bucketops.audit import AuditLogger
from bucketops.config import (
    AuthConfig,
    BucketOpsConfig,
    MetadataConfig,
    RateLimitConfig,
    ServerConfig,
    StorageConfig,
    TransferConfig,
)
from bucketops.errors import ObjectStoreError, UpstreamThrottled
from bucketops.jobs import JobTracker
from bucketops.metadata.memory import MemoryMetadataStore
from bucketops.server import attach_services, create_app
from bucketops.storage.memory import MemoryObjectStore
from bucketops.transfer.cancellation import CancellationRegistry
from bucketops.transfer.coordinator import BulkOperationCoordinator
from bucketops.transfer.pacing import FixedDelayPacer


class FlakyObjectStore(MemoryObjectStore):
    """Memory store with per-key and per-call failure injection.

    Attributes:
        fail_get: Keys whose ``get`` raises.
        fail_put: Keys whose ``put`` raises.
        fail_delete: Keys whose ``delete`` raises.
        fail_list: Number of upcoming ``list`` calls that raise.
        throttle_list: Number of upcoming ``list`` calls that throttle.
        list_calls: Number of ``list`` calls made.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_get: set[str] = set()
        self.fail_put: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_list = 0
        self.throttle_list = 0
        self.list_calls = 0

    async def get(self, container, key):
        if key in self.fail_get:
            raise ObjectStoreError(f"injected get failure: {key}", status=500)
        return await super().get(container, key)

    async def put(self, container, key, data, content_type="application/octet-stream"):
        if key in self.fail_put:
            raise ObjectStoreError(f"injected put failure: {key}", status=500)
        return await super().put(container, key, data, content_type=content_type)

    async def delete(self, container, key):
        if key in self.fail_delete:
            raise ObjectStoreError(f"injected delete failure: {key}", status=500)
        await super().delete(container, key)

    async def list(self, container, prefix="", cursor=None, page_size=100):
        self.list_calls += 1
        if self.throttle_list:
            self.throttle_list -= 1
            raise UpstreamThrottled(retry_after=0.01)
        if self.fail_list:
            self.fail_list -= 1
            raise ObjectStoreError("injected list failure", status=500)
        return await super().list(container, prefix=prefix, cursor=cursor, page_size=page_size)


class RecordingPacer(FixedDelayPacer):
    """A pacer that never sleeps and counts its calls."""

    def __init__(self) -> None:
        super().__init__(delay=0.0)
        self.waits = 0
        self.signals: list[float | None] = []

    async def wait(self) -> None:
        self.waits += 1

    def throttled(self, retry_after: float | None = None) -> None:
        self.signals.append(retry_after)


async def seed(store: MemoryObjectStore, container: str, keys, content_type="text/plain") -> None:
    """Create ``container`` if needed and put one small object per key."""
    if not await store.container_exists(container):
        await store.create_container(container)
    for key in keys:
        await store.put(container, key, f"data:{key}".encode(), content_type=content_type)


@pytest.fixture(scope="session")
def config() -> BucketOpsConfig:
    """Test config: auth off, small pages, fast pacing, low delete quota."""
    return BucketOpsConfig(
        server=ServerConfig(host="127.0.0.1", port=8799),
        auth=AuthConfig(enabled=False, default_identity="tester@example.com", url_signing_key="test-key"),
        metadata=MetadataConfig(engine="memory"),
        storage=StorageConfig(backend="memory", hidden_containers=["internal-assets"]),
        transfer=TransferConfig(page_size=3, page_delay_seconds=0.0, progress_interval=2),
        rate_limit=RateLimitConfig(delete_limit=5, delete_period=60),
    )


@pytest.fixture(scope="session")
def app(config: BucketOpsConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
def store() -> FlakyObjectStore:
    return FlakyObjectStore()


@pytest.fixture
async def metadata():
    store = MemoryMetadataStore()
    await store.init_db()
    yield store
    await store.close()


@pytest.fixture
def pacer() -> RecordingPacer:
    return RecordingPacer()


@pytest.fixture
def coordinator(store, metadata, pacer) -> BulkOperationCoordinator:
    """A coordinator over the flaky store with pages of three objects."""
    return BulkOperationCoordinator(
        store,
        JobTracker(metadata),
        AuditLogger(metadata),
        pacer=pacer,
        cancellations=CancellationRegistry(),
        page_size=3,
        progress_interval=2,
    )


@pytest.fixture
async def client(app, store, metadata, pacer):
    """Async client whose app runs on fresh stores for this test only."""
    saved = dict(app.state._state)
    attach_services(app, metadata, store, pacer=pacer)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.state._state.clear()
    app.state._state.update(saved)
