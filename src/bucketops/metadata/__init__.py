"""Metadata store backends for BucketOps."""

from typing import TYPE_CHECKING

from bucketops.metadata.models import (
    AuditLogEntry,
    AuditQuery,
    JobEvent,
    JobQuery,
    ObjectRef,
    TransferJob,
)
from bucketops.metadata.store import MetadataStore

if TYPE_CHECKING:
    from bucketops.config import MetadataConfig

__all__ = [
    "AuditLogEntry",
    "AuditQuery",
    "create_metadata_store",
    "JobEvent",
    "JobQuery",
    "MetadataStore",
    "ObjectRef",
    "TransferJob",
]


def create_metadata_store(config: "MetadataConfig") -> MetadataStore:
    """Create a metadata store instance based on configuration.

    Args:
        config: The metadata configuration.

    Returns:
        A metadata store instance implementing the MetadataStore protocol.

    Raises:
        ValueError: If the engine is unknown.
    """
    engine = config.engine

    if engine == "sqlite":
        from bucketops.metadata.sqlite import SQLiteMetadataStore

        return SQLiteMetadataStore(config.sqlite_path)

    elif engine == "memory":
        from bucketops.metadata.memory import MemoryMetadataStore

        return MemoryMetadataStore()

    else:
        raise ValueError(f"Unknown metadata engine: {engine}")
