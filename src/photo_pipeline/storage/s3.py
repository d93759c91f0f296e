"""S3 object-store backend built on aioboto3."""

from __future__ import annotations

from typing import Any, Callable, List, Optional

import aioboto3

from ..core.error_handling import with_error_handling
from ..core.logging_config import get_logger

logger = get_logger("storage.s3")


class S3StorageAdapter:
    """Stores each key as an object in a single bucket.

    ``client_factory`` returns an async context manager yielding an S3
    client; by default a fresh aioboto3 client is opened per call so the
    adapter can be shared across jobs and event loops.
    """

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.bucket = bucket
        if client_factory is None:
            session = aioboto3.Session()
            client_factory = lambda: session.client("s3", region_name=region)  # noqa: E731
        self._client_factory = client_factory

    @with_error_handling
    async def get_file(self, key: str) -> bytes:
        async with self._client_factory() as s3_client:
            response = await s3_client.get_object(Bucket=self.bucket, Key=key)
            async with response["Body"] as stream:
                return await stream.read()

    @with_error_handling
    async def save_file(self, key: str, data: bytes, content_type: str) -> None:
        async with self._client_factory() as s3_client:
            await s3_client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        logger.debug(f"S3 file saved: {key} ({content_type}, {len(data)} bytes)")

    @with_error_handling
    async def list_files(self, prefix: str) -> List[str]:
        keys: List[str] = []
        async with self._client_factory() as s3_client:
            paginator = s3_client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        return keys
