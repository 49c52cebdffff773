"""S3 blob store."""

import asyncio
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from inkstream.core.aws import create_boto_client, error_code
from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import ConfigurationError, StorageError
from inkstream.storage.base import BlobStore


class S3BlobStore(BlobStore):
    """Blob store over a single S3 bucket; references are object keys."""

    def __init__(
        self,
        bucket: str | None = None,
        settings: Settings | None = None,
        client: Any | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._bucket = bucket or settings.blob_s3_bucket
        if not self._bucket:
            raise ConfigurationError("An S3 bucket is required for the s3 blob backend")
        self._client = client or create_boto_client("s3", settings)

    @property
    def bucket(self) -> str:
        """Bucket the store reads and writes."""
        return self._bucket

    async def get(self, ref: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=ref
            )
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            code = error_code(e)
            message = "Blob not found" if code in ("NoSuchKey", "404") else f"S3 error: {code}"
            raise StorageError(message, details={"bucket": self._bucket, "ref": ref}) from e
        except BotoCoreError as e:
            raise StorageError(
                f"S3 error: {e}", details={"bucket": self._bucket, "ref": ref}
            ) from e

    async def put(self, ref: str, data: bytes, content_type: str | None = None) -> str:
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": ref, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            await asyncio.to_thread(self._client.put_object, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Failed to write blob: {e}",
                details={"bucket": self._bucket, "ref": ref},
            ) from e
        return ref

    async def list_keys(self, prefix: str = "") -> list[str]:
        def scan() -> list[str]:
            paginator = self._client.get_paginator("list_objects_v2")
            keys = []
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return sorted(keys)

        try:
            return await asyncio.to_thread(scan)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Failed to list blobs: {e}",
                details={"bucket": self._bucket, "prefix": prefix},
            ) from e
