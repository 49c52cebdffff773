"""Textract-backed extraction and output collection."""

import asyncio
import json
import re
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from inkstream.core.aws import create_boto_client, error_code, is_throttling
from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import ConfigurationError, ExternalServiceError, ProcessingError
from inkstream.core.logging import get_logger
from inkstream.services.base import ExtractionService
from inkstream.storage.base import BlobStore

logger = get_logger(__name__)

ACCESS_CHECK_SUFFIX = ".s3_access_check"
_PART_NAME = re.compile(r"^[0-9]+$")


class TextractExtractionService(ExtractionService):
    """Starts asynchronous Textract text detection jobs.

    The job writes numbered result parts under
    ``<textract_output_prefix>/<jobId>/`` in the same bucket as the input.
    """

    name = "textract"

    def __init__(
        self,
        settings: Settings | None = None,
        bucket: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._bucket = bucket or self._settings.blob_s3_bucket
        if not self._bucket:
            raise ConfigurationError("Textract extraction requires an S3 bucket")
        self._client = client or create_boto_client("textract", self._settings)

    async def submit(self, document_ref: str) -> str:
        try:
            response = await asyncio.to_thread(
                self._client.start_document_text_detection,
                DocumentLocation={"S3Object": {"Bucket": self._bucket, "Name": document_ref}},
                OutputConfig={
                    "S3Bucket": self._bucket,
                    "S3Prefix": self._settings.textract_output_prefix,
                },
            )
        except ClientError as e:
            code = error_code(e)
            raise ExternalServiceError(
                f"Failed to start text detection: {code}",
                service=self.name,
                cause=e,
                details={"document_ref": document_ref, "code": code},
                retryable=is_throttling(e),
            ) from e
        except BotoCoreError as e:
            raise ExternalServiceError(
                f"Failed to start text detection: {e}",
                service=self.name,
                cause=e,
                details={"document_ref": document_ref},
                retryable=True,
            ) from e

        job_id = response.get("JobId") or ""
        logger.info("Started text detection", job_id=job_id, document_ref=document_ref)
        return job_id


class TextractOutputCollector:
    """Merges the numbered result parts of an extraction job.

    Parts arrive one at a time. The first part reports the document's page
    count; the merge runs when the part numbered with that count arrives,
    or on any part when the count is unknown.
    """

    def __init__(self, blob_store: BlobStore, settings: Settings | None = None) -> None:
        self._blobs = blob_store
        self._settings = settings or get_settings()

    @property
    def output_prefix(self) -> str:
        return self._settings.textract_output_prefix.rstrip("/")

    def parse_part_key(self, key: str) -> tuple[str, int] | None:
        """Return ``(job_id, part_number)`` for a result part key."""
        if key.endswith(ACCESS_CHECK_SUFFIX):
            return None
        prefix = f"{self.output_prefix}/"
        if not key.startswith(prefix):
            return None
        rest = key[len(prefix):].split("/")
        if len(rest) != 2 or not rest[0] or not _PART_NAME.match(rest[1]):
            return None
        return rest[0], int(rest[1])

    def merged_ref(self, job_id: str) -> str:
        return f"{self._settings.merged_output_prefix.rstrip('/')}/{job_id}/merged.json"

    async def _list_parts(self, job_id: str) -> list[str]:
        prefix = f"{self.output_prefix}/{job_id}/"
        keys = await self._blobs.list_keys(prefix)
        parts = [key for key in keys if _PART_NAME.match(key[len(prefix):])]
        return sorted(parts, key=lambda key: int(key[len(prefix):]))

    async def _load_part(self, key: str) -> dict[str, Any]:
        try:
            payload = json.loads(await self._blobs.get(key))
        except ValueError as e:
            raise ProcessingError(
                "Extraction output part is not valid JSON",
                cause=e,
                details={"key": key},
            ) from e
        if not isinstance(payload, dict):
            raise ProcessingError("Unexpected extraction output part", details={"key": key})
        return payload

    async def collect(self, job_id: str, part_number: int) -> str | None:
        """Merge the job's parts if ``part_number`` is the last one.

        Returns:
            Reference of the merged output, or None while parts are missing

        Raises:
            ProcessingError: If a part cannot be parsed
            StorageError: If parts cannot be read or the merge written
        """
        parts = await self._list_parts(job_id)
        if not parts:
            return None

        first = await self._load_part(parts[0])
        expected_pages = (first.get("DocumentMetadata") or {}).get("Pages") or 0
        if expected_pages and part_number != expected_pages:
            logger.debug(
                "Waiting for last extraction part",
                job_id=job_id,
                part=part_number,
                expected=expected_pages,
            )
            return None

        blocks: list[Any] = list(first.get("Blocks") or [])
        for key in parts[1:]:
            blocks.extend((await self._load_part(key)).get("Blocks") or [])

        merged_ref = self.merged_ref(job_id)
        await self._blobs.put(
            merged_ref,
            json.dumps({"Blocks": blocks}).encode("utf-8"),
            "application/json",
        )
        logger.info(
            "Merged extraction output",
            job_id=job_id,
            parts=len(parts),
            blocks=len(blocks),
            merged_ref=merged_ref,
        )
        return merged_ref
