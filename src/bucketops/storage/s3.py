"""S3-compatible object store for BucketOps.

Maps containers one-to-one onto upstream buckets and talks to any
S3-compatible endpoint (AWS, R2, MinIO) via aiobotocore. Credentials come
from the config when given, otherwise from the standard AWS credential
chain (env vars, ~/.aws/credentials, IAM role, etc.).
"""

from __future__ import annotations

import logging

from aiobotocore.session import AioSession
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from bucketops.errors import (
    ContainerAlreadyExists,
    ContainerNotEmpty,
    ContainerNotFound,
    ObjectNotFound,
    ObjectStoreError,
    UpstreamThrottled,
)
from bucketops.metadata.models import ContainerInfo, ListPage, ObjectRef, StoredObject

logger = logging.getLogger(__name__)

_THROTTLE_CODES = ("SlowDown", "Throttling", "ThrottlingException", "TooManyRequests", "429")
_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _error_status(exc: ClientError) -> int:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500)


def _iso(value) -> str:
    if value is None:
        return ""
    return value.isoformat().replace("+00:00", "Z")


def _translate(exc: ClientError, container: str, key: str | None = None) -> ObjectStoreError:
    """Map a botocore ClientError to the store error hierarchy."""
    code = _error_code(exc)
    if code in _THROTTLE_CODES:
        headers = exc.response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
        retry_after = headers.get("retry-after")
        return UpstreamThrottled(
            f"Upstream throttled: {code}",
            retry_after=float(retry_after) if retry_after else None,
        )
    if code == "NoSuchBucket":
        return ContainerNotFound(container)
    if key is not None and code in _NOT_FOUND_CODES:
        return ObjectNotFound(container, key)
    if code in ("BucketAlreadyExists", "BucketAlreadyOwnedByYou"):
        return ContainerAlreadyExists(container)
    if code == "BucketNotEmpty":
        return ContainerNotEmpty(container)
    return ObjectStoreError(f"{code or 'UpstreamError'}: {exc}", status=_error_status(exc))


class S3ObjectStore:
    """Object store that proxies to an S3-compatible service.

    Attributes:
        region: Region name passed to the client ("auto" for R2).
        endpoint_url: Custom endpoint, empty for AWS.
        use_path_style: Force path-style addressing.
    """

    def __init__(
        self,
        region: str = "auto",
        endpoint_url: str = "",
        use_path_style: bool = False,
        access_key_id: str = "",
        secret_access_key: str = "",
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    async def init(self) -> None:
        """Create the aiobotocore S3 client."""
        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.use_path_style:
            client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})

        if self.access_key_id and self.secret_access_key:
            self._session.set_credentials(self.access_key_id, self.secret_access_key)
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        logger.info(
            "S3 object store initialized: endpoint=%s region=%s",
            self.endpoint_url or "aws",
            self.region,
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def put(
        self,
        container: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        try:
            resp = await self._client.put_object(
                Bucket=container, Key=key, Body=data, ContentType=content_type
            )
        except ClientError as e:
            raise _translate(e, container) from e
        return resp.get("ETag", "").strip('"')

    async def get(self, container: str, key: str) -> StoredObject:
        try:
            resp = await self._client.get_object(Bucket=container, Key=key)
        except ClientError as e:
            raise _translate(e, container, key) from e
        async with resp["Body"] as stream:
            data = await stream.read()
        return StoredObject(
            data=data,
            content_type=resp.get("ContentType") or "application/octet-stream",
            etag=resp.get("ETag", "").strip('"'),
        )

    async def head(self, container: str, key: str) -> ObjectRef | None:
        try:
            resp = await self._client.head_object(Bucket=container, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise _translate(e, container, key) from e
        return ObjectRef(
            key=key,
            size=resp.get("ContentLength", 0),
            last_modified=_iso(resp.get("LastModified")),
            content_type=resp.get("ContentType"),
            etag=resp.get("ETag", "").strip('"'),
        )

    async def delete(self, container: str, key: str) -> None:
        """Delete an object. S3 delete_object does not error on missing keys."""
        try:
            await self._client.delete_object(Bucket=container, Key=key)
        except ClientError as e:
            raise _translate(e, container, key) from e

    async def list(
        self,
        container: str,
        prefix: str = "",
        cursor: str | None = None,
        page_size: int = 100,
    ) -> ListPage:
        """List one page via ListObjectsV2; the cursor is the continuation token."""
        kwargs: dict = {"Bucket": container, "MaxKeys": page_size}
        if prefix:
            kwargs["Prefix"] = prefix
        if cursor:
            kwargs["ContinuationToken"] = cursor
        try:
            resp = await self._client.list_objects_v2(**kwargs)
        except ClientError as e:
            raise _translate(e, container) from e

        items = [
            ObjectRef(
                key=obj["Key"],
                size=obj.get("Size", 0),
                last_modified=_iso(obj.get("LastModified")),
                etag=obj.get("ETag", "").strip('"'),
            )
            for obj in resp.get("Contents", [])
        ]
        return ListPage(
            items=items,
            next_cursor=resp.get("NextContinuationToken"),
            truncated=bool(resp.get("IsTruncated", False)),
        )

    async def create_container(self, name: str) -> None:
        try:
            await self._client.create_bucket(Bucket=name)
        except ClientError as e:
            raise _translate(e, name) from e

    async def delete_container(self, name: str) -> None:
        try:
            await self._client.delete_bucket(Bucket=name)
        except ClientError as e:
            raise _translate(e, name) from e

    async def container_exists(self, name: str) -> bool:
        try:
            await self._client.head_bucket(Bucket=name)
            return True
        except ClientError as e:
            if _error_code(e) in ("404", "NoSuchBucket", "NotFound"):
                return False
            raise _translate(e, name) from e

    async def list_containers(self) -> list[ContainerInfo]:
        try:
            resp = await self._client.list_buckets()
        except ClientError as e:
            raise ObjectStoreError(f"Failed to list buckets: {e}", status=_error_status(e)) from e
        return sorted(
            (
                ContainerInfo(name=b["Name"], created_at=_iso(b.get("CreationDate")))
                for b in resp.get("Buckets", [])
            ),
            key=lambda c: c.name,
        )
