"""Configuration loading and Pydantic models for BucketOps."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8787
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30
    public_base_url: str = ""


class AuthConfig(BaseModel):
    """Caller identity and URL signing configuration.

    Identity is asserted by a trusted upstream proxy through a request
    header. When ``enabled`` is False, requests without the header run as
    ``default_identity``.
    """

    enabled: bool = False
    identity_header: str = "Cf-Access-Authenticated-User-Email"
    default_identity: str = "admin@localhost"
    url_signing_key: str = "change-me"
    signed_url_ttl_seconds: int = 0


class MetadataConfig(BaseModel):
    """Job, audit and ownership store configuration."""

    engine: str = "sqlite"
    sqlite_path: str = "./data/bucketops.db"
    stale_job_seconds: int = 3600


class StorageConfig(BaseModel):
    """Upstream object store configuration."""

    backend: str = "local"
    local_root: str = "./data/objects"
    s3_endpoint_url: str = ""
    s3_region: str = "auto"
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_use_path_style: bool = False
    hidden_containers: list[str] = Field(default_factory=list)


class TransferConfig(BaseModel):
    """Bulk transfer pacing and progress configuration."""

    page_size: int = Field(default=100, ge=1, le=1000)
    pacing: str = "fixed"
    page_delay_seconds: float = Field(default=0.3, ge=0)
    token_rate: float = Field(default=5.0, gt=0)
    token_capacity: float = Field(default=5.0, ge=1)
    progress_interval: int = Field(default=5, ge=1)
    list_retry_attempts: int = Field(default=3, ge=1)
    size_cache_ttl_seconds: int = Field(default=300, ge=0)


class RateLimitConfig(BaseModel):
    """Per-tier request quotas (requests per period in seconds)."""

    enabled: bool = True
    read_limit: int = 600
    read_period: int = 60
    write_limit: int = 200
    write_period: int = 60
    delete_limit: int = 60
    delete_period: int = 60


class ObservabilityConfig(BaseModel):
    """Metrics and health check toggles."""

    metrics: bool = True
    health_check: bool = True


class WebhookEndpoint(BaseModel):
    """One subscriber. An empty ``events`` list subscribes to every event."""

    name: str = "default"
    url: str
    secret: str | None = None
    events: list[str] = Field(default_factory=list)
    enabled: bool = True


class WebhooksConfig(BaseModel):
    """Outbound event notifications."""

    enabled: bool = True
    timeout_seconds: float = Field(default=5.0, gt=0)
    endpoints: list[WebhookEndpoint] = Field(default_factory=list)


class BucketOpsConfig(BaseModel):
    """Top-level BucketOps configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    webhooks: WebhooksConfig = Field(default_factory=WebhooksConfig)


def _pick(data: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    """Copy the keys present in ``data`` so Pydantic defaults fill the rest."""
    return {k: data[k] for k in keys if k in data}


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return _pick(
        data,
        ("host", "port", "log_level", "log_format", "shutdown_timeout", "public_base_url"),
    )


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data.

    Handles nested structure: auth.signing.key -> url_signing_key,
    auth.signing.ttl_seconds -> signed_url_ttl_seconds.
    """
    if data is None:
        return {}
    result = _pick(data, ("enabled", "identity_header", "default_identity"))
    signing = data.get("signing")
    if isinstance(signing, dict):
        if "key" in signing:
            result["url_signing_key"] = signing["key"]
        if "ttl_seconds" in signing:
            result["signed_url_ttl_seconds"] = signing["ttl_seconds"]
    return result


def _parse_metadata(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metadata section from YAML data.

    Handles nested structure: metadata.sqlite.path -> sqlite_path
    """
    if data is None:
        return {}
    result = _pick(data, ("engine", "stale_job_seconds"))
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict) and "path" in sqlite_section:
        result["sqlite_path"] = sqlite_section["path"]
    return result


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.local.root_dir -> local_root,
    storage.s3.endpoint_url -> s3_endpoint_url, etc.
    """
    if data is None:
        return {}

    result = _pick(data, ("backend", "hidden_containers"))

    local_section = data.get("local")
    if isinstance(local_section, dict) and "root_dir" in local_section:
        result["local_root"] = local_section["root_dir"]

    s3_section = data.get("s3")
    if isinstance(s3_section, dict):
        for key in ("endpoint_url", "region", "access_key_id", "secret_access_key", "use_path_style"):
            if key in s3_section:
                result[f"s3_{key}"] = s3_section[key]

    return result


def _parse_transfer(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the transfer section from YAML data.

    Handles nested structure: transfer.token_bucket.rate -> token_rate.
    """
    if data is None:
        return {}
    result = _pick(
        data,
        (
            "page_size",
            "pacing",
            "page_delay_seconds",
            "progress_interval",
            "list_retry_attempts",
            "size_cache_ttl_seconds",
        ),
    )
    bucket_section = data.get("token_bucket")
    if isinstance(bucket_section, dict):
        if "rate" in bucket_section:
            result["token_rate"] = bucket_section["rate"]
        if "capacity" in bucket_section:
            result["token_capacity"] = bucket_section["capacity"]
    return result


def _parse_rate_limit(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the rate_limit section from YAML data.

    Handles nested structure: rate_limit.read.limit -> read_limit.
    """
    if data is None:
        return {}
    result = _pick(data, ("enabled",))
    for tier in ("read", "write", "delete"):
        section = data.get(tier)
        if isinstance(section, dict):
            if "limit" in section:
                result[f"{tier}_limit"] = section["limit"]
            if "period" in section:
                result[f"{tier}_period"] = section["period"]
    return result


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return _pick(data, ("metrics", "health_check"))


def _parse_webhooks(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the webhooks section from YAML data.

    Each entry under webhooks.endpoints becomes a WebhookEndpoint; Pydantic
    rejects entries without a url.
    """
    if data is None:
        return {}
    result = _pick(data, ("enabled", "timeout_seconds"))
    endpoints = data.get("endpoints")
    if isinstance(endpoints, list):
        result["endpoints"] = [e for e in endpoints if isinstance(e, dict)]
    return result


def load_config(path: Path) -> BucketOpsConfig:
    """Load a BucketOpsConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated BucketOpsConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return BucketOpsConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        metadata=MetadataConfig(**_parse_metadata(raw.get("metadata"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        transfer=TransferConfig(**_parse_transfer(raw.get("transfer"))),
        rate_limit=RateLimitConfig(**_parse_rate_limit(raw.get("rate_limit"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
        webhooks=WebhooksConfig(**_parse_webhooks(raw.get("webhooks"))),
    )
