"""Pytest configuration and fixtures."""

from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from inkstream.core.config import Settings
from inkstream.llm.mock import create_formatting_mock, create_translation_mock
from inkstream.models.workflow import WorkflowParameters
from inkstream.orchestration import (
    CallbackBridge,
    ExecutionRegistry,
    StepHandlers,
    TerminalEventReconciler,
    WorkflowOrchestrator,
)
from inkstream.runtime import Runtime
from inkstream.services import (
    FormattingService,
    MockExtractionService,
    MockSpeechService,
    TextractOutputCollector,
    TranslationService,
)
from inkstream.services.base import ExtractionService, SpeechService, TextTransformService
from inkstream.storage import MemoryBlobStore, MemoryJobTokenStore, MemoryWorkflowStore


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        debug=True,
        log_level="DEBUG",
        store_backend="memory",
        blob_backend="memory",
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        step_timeout_seconds=5.0,
    )


@pytest.fixture
def store() -> MemoryWorkflowStore:
    """Create an empty workflow store."""
    return MemoryWorkflowStore()


@pytest.fixture
def token_store() -> MemoryJobTokenStore:
    """Create an empty job token store."""
    return MemoryJobTokenStore()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    """Create an empty blob store."""
    return MemoryBlobStore()


@pytest.fixture
def sample_text() -> str:
    """Text of a small submitted document."""
    return """QUARTERLY REPORT
Revenue grew 12 percent over the previous quarter.
Operating costs were flat.
Outlook for next quarter remains positive."""


@pytest.fixture
def make_runtime(
    settings: Settings,
    store: MemoryWorkflowStore,
    token_store: MemoryJobTokenStore,
    blob_store: MemoryBlobStore,
) -> Callable[..., Runtime]:
    """Factory for a runtime over the memory stores with swappable collaborators."""

    def make(
        extraction: ExtractionService | None = None,
        speech: SpeechService | None = None,
        formatter: TextTransformService | None = None,
        translator: TextTransformService | None = None,
    ) -> Runtime:
        extraction = extraction or MockExtractionService(blob_store, settings)
        speech = speech or MockSpeechService(blob_store)
        formatter = formatter or FormattingService(create_formatting_mock(), settings)
        translator = translator or TranslationService(create_translation_mock(), settings)

        registry = ExecutionRegistry(settings, store=store)
        bridge = CallbackBridge(
            extraction,
            token_store,
            settings,
            collector=TextractOutputCollector(blob_store, settings),
        )
        handlers = StepHandlers(bridge, formatter, translator, speech, blob_store)
        orchestrator = WorkflowOrchestrator(store, bridge, handlers, registry, settings)
        reconciler = TerminalEventReconciler(store)
        registry.subscribe(reconciler.handle)
        return Runtime(
            settings=settings,
            store=store,
            tokens=token_store,
            blobs=blob_store,
            extraction=extraction,
            speech=speech,
            registry=registry,
            bridge=bridge,
            orchestrator=orchestrator,
            reconciler=reconciler,
        )

    return make


@pytest.fixture
def runtime(make_runtime: Callable[..., Runtime]) -> Runtime:
    """Runtime with all-mock collaborators."""
    return make_runtime()


RunWorkflow = Callable[..., Awaitable[str]]


@pytest.fixture
def run_workflow(runtime: Runtime, sample_text: str) -> RunWorkflow:
    """Submit a document and deliver its extraction output.

    The returned coroutine function starts a workflow, lets the mock
    extraction job finish and feeds every result part to the bridge. It
    drives the default runtime unless another one is passed in.
    """

    async def run(
        params: WorkflowParameters | dict[str, Any] | None = None,
        user_id: str = "u1",
        text: str | None = None,
        complete_extraction: bool = True,
        pages: int = 1,
        target: Runtime | None = None,
    ) -> str:
        target = target or runtime
        input_ref = f"users/{user_id}/uploads/report.txt"
        await target.blobs.put_text(input_ref, sample_text if text is None else text)

        jobs_before = set(target.extraction.jobs)
        workflow_id = await target.orchestrator.start_workflow(user_id, params, input_ref)

        if complete_extraction:
            for job_id in set(target.extraction.jobs) - jobs_before:
                for key in await target.extraction.emit_output(job_id, pages=pages):
                    await target.bridge.handle_artifact(key)
        return workflow_id

    return run
