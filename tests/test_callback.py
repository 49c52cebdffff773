"""Tests for the callback bridge."""

import json
from datetime import timedelta

import pytest

from inkstream.core.config import Settings
from inkstream.core.exceptions import (
    ExternalServiceError,
    ProcessingError,
    WorkflowStateError,
)
from inkstream.models.jobs import JobOutcome, JobToken
from inkstream.models.workflow import utcnow
from inkstream.orchestration.callback import CallbackBridge
from inkstream.services.mock import MockExtractionService
from inkstream.services.textract import TextractOutputCollector
from inkstream.storage.memory import MemoryBlobStore, MemoryJobTokenStore


class RecordingHandler:
    """Resume handler that records its calls."""

    def __init__(self, raises: Exception | None = None) -> None:
        self.calls: list[tuple[JobToken, JobOutcome]] = []
        self.raises = raises

    async def __call__(self, token: JobToken, outcome: JobOutcome) -> None:
        self.calls.append((token, outcome))
        if self.raises is not None:
            raise self.raises


@pytest.fixture
def extraction(blob_store: MemoryBlobStore, settings: Settings) -> MockExtractionService:
    """Mock extraction service over the shared blob store."""
    return MockExtractionService(blob_store, settings)


@pytest.fixture
def handler() -> RecordingHandler:
    """Recording resume handler."""
    return RecordingHandler()


@pytest.fixture
def bridge(
    extraction: MockExtractionService,
    token_store: MemoryJobTokenStore,
    blob_store: MemoryBlobStore,
    settings: Settings,
    handler: RecordingHandler,
) -> CallbackBridge:
    """Bridge wired to the mock extraction service and a recording handler."""
    bridge = CallbackBridge(
        extraction,
        token_store,
        settings,
        collector=TextractOutputCollector(blob_store, settings),
    )
    bridge.set_resume_handler(handler)
    return bridge


async def suspend(
    bridge: CallbackBridge,
    blob_store: MemoryBlobStore,
    text: str = "line one\nline two",
) -> str:
    """Submit a document and persist its job token."""
    await blob_store.put_text("users/u1/uploads/doc.txt", text)
    job_id = await bridge.submit("users/u1/uploads/doc.txt")
    await bridge.persist_token(job_id, "extract_text:abc", "u1", "wf-1", "users/u1/uploads/doc.txt")
    return job_id


class TestSubmit:
    """Tests for job submission."""

    @pytest.mark.asyncio
    async def test_returns_job_id(
        self, bridge: CallbackBridge, extraction: MockExtractionService
    ) -> None:
        """Test a submission returns the service's job id."""
        job_id = await bridge.submit("users/u1/uploads/doc.pdf")
        assert job_id == "mock-job-1"
        assert extraction.jobs == {"mock-job-1": "users/u1/uploads/doc.pdf"}

    @pytest.mark.asyncio
    async def test_retries_transient_failures(
        self,
        blob_store: MemoryBlobStore,
        token_store: MemoryJobTokenStore,
        settings: Settings,
    ) -> None:
        """Test throttled submissions are retried."""
        extraction = MockExtractionService(blob_store, settings, transient_failures=2)
        bridge = CallbackBridge(extraction, token_store, settings)

        assert await bridge.submit("doc.pdf") == "mock-job-1"
        assert extraction.call_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self,
        blob_store: MemoryBlobStore,
        token_store: MemoryJobTokenStore,
        settings: Settings,
    ) -> None:
        """Test persistent throttling surfaces the service error."""
        extraction = MockExtractionService(blob_store, settings, transient_failures=10)
        bridge = CallbackBridge(extraction, token_store, settings)

        with pytest.raises(ExternalServiceError):
            await bridge.submit("doc.pdf")
        assert extraction.call_count == settings.retry_max_attempts

    @pytest.mark.asyncio
    async def test_missing_job_id(
        self,
        blob_store: MemoryBlobStore,
        token_store: MemoryJobTokenStore,
        settings: Settings,
    ) -> None:
        """Test an empty job id is a processing error."""
        extraction = MockExtractionService(blob_store, settings, issue_job_ids=False)
        bridge = CallbackBridge(extraction, token_store, settings)

        with pytest.raises(ProcessingError, match="no job id"):
            await bridge.submit("doc.pdf")
        assert extraction.call_count == 1


class TestResume:
    """Tests for resuming suspended workflows."""

    @pytest.mark.asyncio
    async def test_resume_consumes_token(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        token_store: MemoryJobTokenStore,
        handler: RecordingHandler,
    ) -> None:
        """Test a signal resumes the waiting workflow once."""
        job_id = await suspend(bridge, blob_store)
        outcome = JobOutcome.succeeded("merged.json")

        assert await bridge.resume(job_id, outcome) is True
        assert await bridge.resume(job_id, outcome) is False

        assert len(handler.calls) == 1
        token, received = handler.calls[0]
        assert token.workflow_id == "wf-1"
        assert token.resume_token == "extract_text:abc"
        assert received == outcome
        assert await token_store.get(job_id) is None

    @pytest.mark.asyncio
    async def test_unknown_job(self, bridge: CallbackBridge, handler: RecordingHandler) -> None:
        """Test signals for unknown jobs are ignored."""
        assert await bridge.resume("unknown", JobOutcome.failed("boom")) is False
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_workflow_that_cannot_move(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        handler: RecordingHandler,
    ) -> None:
        """Test a workflow refusing the resume is reported as not resumed."""
        handler.raises = WorkflowStateError("Workflow is already terminal", workflow_id="wf-1")
        job_id = await suspend(bridge, blob_store)

        assert await bridge.resume(job_id, JobOutcome.succeeded("merged.json")) is False

    @pytest.mark.asyncio
    async def test_requires_handler(
        self,
        extraction: MockExtractionService,
        token_store: MemoryJobTokenStore,
        settings: Settings,
    ) -> None:
        """Test resuming without a registered handler is an error."""
        bridge = CallbackBridge(extraction, token_store, settings)
        with pytest.raises(WorkflowStateError):
            await bridge.resume("job-1", JobOutcome.succeeded("merged.json"))


class TestHandleArtifact:
    """Tests for artifact-arrival signals."""

    @pytest.mark.asyncio
    async def test_single_part_job(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        extraction: MockExtractionService,
        handler: RecordingHandler,
    ) -> None:
        """Test a one-page job resumes with its merged output."""
        job_id = await suspend(bridge, blob_store)
        [key] = await extraction.emit_output(job_id)

        assert await bridge.handle_artifact(key) is True
        _, outcome = handler.calls[0]
        assert outcome.success is True
        assert outcome.artifact_ref == f"merged-textract-output/{job_id}/merged.json"

        merged = json.loads(await blob_store.get(outcome.artifact_ref))
        lines = [b["Text"] for b in merged["Blocks"] if b["BlockType"] == "LINE"]
        assert lines == ["line one", "line two"]

    @pytest.mark.asyncio
    async def test_waits_for_last_part(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        extraction: MockExtractionService,
        handler: RecordingHandler,
    ) -> None:
        """Test a multi-page job merges only when the last part arrives."""
        job_id = await suspend(bridge, blob_store, text="one\ntwo\nthree\nfour\nfive\nsix")
        keys = await extraction.emit_output(job_id, pages=3)

        assert await bridge.handle_artifact(keys[0]) is False
        assert await bridge.handle_artifact(keys[1]) is False
        assert handler.calls == []

        assert await bridge.handle_artifact(keys[2]) is True
        _, outcome = handler.calls[0]
        merged = json.loads(await blob_store.get(outcome.artifact_ref))
        lines = [b["Text"] for b in merged["Blocks"] if b["BlockType"] == "LINE"]
        assert lines == ["one", "two", "three", "four", "five", "six"]

    @pytest.mark.asyncio
    async def test_duplicate_arrival(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        extraction: MockExtractionService,
        handler: RecordingHandler,
    ) -> None:
        """Test the same part delivered twice resumes once."""
        job_id = await suspend(bridge, blob_store)
        [key] = await extraction.emit_output(job_id)

        assert await bridge.handle_artifact(key) is True
        assert await bridge.handle_artifact(key) is False
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key",
        [
            "textract-output/.s3_access_check",
            "textract-output/job-1/.s3_access_check",
            "textract-output/job-1/summary.json",
            "users/u1/uploads/doc.pdf",
            "textract-output/job-1",
        ],
    )
    async def test_ignores_other_objects(
        self, bridge: CallbackBridge, handler: RecordingHandler, key: str
    ) -> None:
        """Test objects that are not result parts are ignored."""
        assert await bridge.handle_artifact(key) is False
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_part_without_token(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        handler: RecordingHandler,
    ) -> None:
        """Test parts of jobs nobody waits on are ignored."""
        await blob_store.put("textract-output/orphan/1", b'{"Blocks": []}')
        assert await bridge.handle_artifact("textract-output/orphan/1") is False
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_corrupt_part_fails_workflow(
        self,
        bridge: CallbackBridge,
        blob_store: MemoryBlobStore,
        handler: RecordingHandler,
    ) -> None:
        """Test an unreadable part resumes the workflow with a failure."""
        job_id = await suspend(bridge, blob_store)
        key = f"textract-output/{job_id}/1"
        await blob_store.put(key, b"{not json")

        assert await bridge.handle_artifact(key) is True
        _, outcome = handler.calls[0]
        assert outcome.success is False
        assert outcome.describe_failure().startswith("Failed to collect extraction output: ")

    @pytest.mark.asyncio
    async def test_requires_collector(
        self,
        extraction: MockExtractionService,
        token_store: MemoryJobTokenStore,
        settings: Settings,
    ) -> None:
        """Test artifact signals need an output collector."""
        bridge = CallbackBridge(extraction, token_store, settings)
        with pytest.raises(WorkflowStateError):
            await bridge.handle_artifact("textract-output/job-1/1")


class TestReapExpired:
    """Tests for token expiry."""

    @pytest.mark.asyncio
    async def test_reaps_only_expired_tokens(
        self,
        bridge: CallbackBridge,
        token_store: MemoryJobTokenStore,
    ) -> None:
        """Test tokens past their TTL are deleted."""
        await bridge.persist_token("short", "extract_text:a", "u1", "wf-1", "doc", ttl_seconds=1)
        await bridge.persist_token("long", "extract_text:b", "u1", "wf-2", "doc")

        assert await bridge.reap_expired(utcnow() + timedelta(minutes=1)) == 1
        assert await token_store.get("short") is None
        assert await token_store.get("long") is not None
