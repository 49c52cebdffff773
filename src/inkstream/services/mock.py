"""Deterministic collaborators for tests and local runs."""

import json
from typing import Any

from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import ExternalServiceError, InkstreamError
from inkstream.services.base import ExtractionService, SpeechService, VoiceParams
from inkstream.storage.base import BlobStore


class MockExtractionService(ExtractionService):
    """Extraction service that issues sequential job ids.

    Results are not produced on their own: call ``emit_output`` to write
    the job's result parts, the way the real service drops them into the
    blob store when it finishes.
    """

    name = "mock-extraction"

    def __init__(
        self,
        blob_store: BlobStore,
        settings: Settings | None = None,
        transient_failures: int = 0,
        issue_job_ids: bool = True,
    ) -> None:
        """Initialize the mock.

        Args:
            blob_store: Store the documents are read from and parts written to
            settings: Application settings
            transient_failures: Number of leading submits that fail retryably
            issue_job_ids: Return an empty job id when False
        """
        self._blobs = blob_store
        self._settings = settings or get_settings()
        self._transient_failures = transient_failures
        self._issue_job_ids = issue_job_ids
        self.submissions: list[str] = []
        self.jobs: dict[str, str] = {}

    @property
    def call_count(self) -> int:
        return len(self.submissions)

    async def submit(self, document_ref: str) -> str:
        self.submissions.append(document_ref)
        if self._transient_failures > 0:
            self._transient_failures -= 1
            raise ExternalServiceError(
                "Rate exceeded",
                service=self.name,
                details={"document_ref": document_ref},
                retryable=True,
            )
        if not self._issue_job_ids:
            return ""

        job_id = f"mock-job-{len(self.jobs) + 1}"
        self.jobs[job_id] = document_ref
        return job_id

    async def emit_output(
        self,
        job_id: str,
        lines: list[str] | None = None,
        pages: int = 1,
    ) -> list[str]:
        """Write the job's numbered result parts and return their keys.

        Lines default to the submitted document's text, one block per line.
        """
        if lines is None:
            document = await self._blobs.get(self.jobs[job_id])
            lines = [line for line in document.decode("utf-8", errors="replace").splitlines()]

        pages = max(pages, 1)
        per_page = -(-len(lines) // pages) or 1
        prefix = self._settings.textract_output_prefix.rstrip("/")
        keys = []
        for number in range(1, pages + 1):
            page_lines = lines[(number - 1) * per_page : number * per_page]
            blocks: list[dict[str, Any]] = [{"BlockType": "PAGE", "Page": number}]
            blocks.extend(
                {"BlockType": "LINE", "Text": text, "Page": number} for text in page_lines
            )
            part: dict[str, Any] = {"JobStatus": "SUCCEEDED", "Blocks": blocks}
            if number == 1:
                part["DocumentMetadata"] = {"Pages": pages}
            key = f"{prefix}/{job_id}/{number}"
            await self._blobs.put(key, json.dumps(part).encode("utf-8"), "application/json")
            keys.append(key)
        return keys


class MockSpeechService(SpeechService):
    """Speech service that stores the text it was given as the audio."""

    name = "mock-speech"

    def __init__(self, blob_store: BlobStore, fail_with: InkstreamError | None = None) -> None:
        self._blobs = blob_store
        self._fail_with = fail_with
        self.calls: list[dict[str, str]] = []

    async def synthesize(self, text: str, voice: VoiceParams, output_ref: str) -> str:
        self.calls.append({"text": text, "language": voice.language, "output_ref": output_ref})
        if self._fail_with is not None:
            raise self._fail_with
        audio = f"[{voice.language}] {text}".encode("utf-8")
        return await self._blobs.put(output_ref, audio, "audio/mpeg")
