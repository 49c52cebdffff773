"""Wiring of stores, services and orchestration components."""

from dataclasses import dataclass

from inkstream.core.config import Settings, get_settings
from inkstream.core.logging import get_logger
from inkstream.llm.client import BaseLLMClient
from inkstream.orchestration.callback import CallbackBridge
from inkstream.orchestration.engine import WorkflowOrchestrator
from inkstream.orchestration.executions import ExecutionRegistry
from inkstream.orchestration.handlers import StepHandlers
from inkstream.orchestration.reconciler import TerminalEventReconciler
from inkstream.services.base import ExtractionService, SpeechService
from inkstream.services.text import FormattingService, TranslationService
from inkstream.services.textract import TextractOutputCollector
from inkstream.storage.base import BlobStore, JobTokenStore, WorkflowStore
from inkstream.storage.factory import create_blob_store, create_token_store, create_workflow_store

logger = get_logger(__name__)


@dataclass
class Runtime:
    """A fully wired set of components."""

    settings: Settings
    store: WorkflowStore
    tokens: JobTokenStore
    blobs: BlobStore
    extraction: ExtractionService
    speech: SpeechService
    registry: ExecutionRegistry
    bridge: CallbackBridge
    orchestrator: WorkflowOrchestrator
    reconciler: TerminalEventReconciler


def build_runtime(
    settings: Settings | None = None,
    *,
    use_mocks: bool = False,
    store: WorkflowStore | None = None,
    tokens: JobTokenStore | None = None,
    blobs: BlobStore | None = None,
    llm_client: BaseLLMClient | None = None,
) -> Runtime:
    """Build the components for the configured backends.

    Args:
        settings: Application settings
        use_mocks: Use deterministic collaborators instead of AWS services
        store: Workflow store override
        tokens: Job token store override
        blobs: Blob store override
        llm_client: LLM client override for formatting and translation
    """
    settings = settings or get_settings()
    store = store or create_workflow_store(settings)
    tokens = tokens or create_token_store(settings)
    blobs = blobs or create_blob_store(settings)

    extraction: ExtractionService
    speech: SpeechService
    if use_mocks:
        from inkstream.llm.mock import create_formatting_mock, create_translation_mock
        from inkstream.services.mock import MockExtractionService, MockSpeechService

        extraction = MockExtractionService(blobs, settings)
        speech = MockSpeechService(blobs)
        formatter = FormattingService(llm_client or create_formatting_mock(), settings)
        translator = TranslationService(llm_client or create_translation_mock(), settings)
    else:
        from inkstream.llm.bedrock import BedrockClient
        from inkstream.services.polly import PollySpeechService
        from inkstream.services.textract import TextractExtractionService

        llm_client = llm_client or BedrockClient(settings)
        extraction = TextractExtractionService(settings)
        speech = PollySpeechService(blobs, settings)
        formatter = FormattingService(llm_client, settings)
        translator = TranslationService(llm_client, settings)

    registry = ExecutionRegistry(settings, store=store)
    bridge = CallbackBridge(
        extraction,
        tokens,
        settings,
        collector=TextractOutputCollector(blobs, settings),
    )
    handlers = StepHandlers(bridge, formatter, translator, speech, blobs)
    orchestrator = WorkflowOrchestrator(store, bridge, handlers, registry, settings)
    reconciler = TerminalEventReconciler(store)
    registry.subscribe(reconciler.handle)

    logger.debug(
        "Runtime built",
        store_backend=settings.store_backend,
        blob_backend=settings.blob_backend,
        mocks=use_mocks,
    )
    return Runtime(
        settings=settings,
        store=store,
        tokens=tokens,
        blobs=blobs,
        extraction=extraction,
        speech=speech,
        registry=registry,
        bridge=bridge,
        orchestrator=orchestrator,
        reconciler=reconciler,
    )
