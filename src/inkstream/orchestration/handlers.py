"""Step handlers: one coroutine per pipeline step."""

from collections.abc import Awaitable, Callable
from pathlib import PurePosixPath
from typing import Protocol

from inkstream.core.exceptions import InkstreamError, ProcessingError
from inkstream.core.logging import get_logger
from inkstream.models.workflow import DEFAULT_LANGUAGE
from inkstream.orchestration.steps import (
    EXTRACTED_TEXT,
    Continue,
    Fail,
    StepDefinition,
    StepName,
    StepOutcome,
    Suspend,
    WorkflowContext,
)
from inkstream.services.base import (
    SpeechService,
    TextTransformService,
    TransformParams,
    VoiceParams,
)
from inkstream.services.text import text_from_blocks
from inkstream.storage.base import BlobStore

logger = get_logger(__name__)


class JobSubmitter(Protocol):
    async def submit(self, document_ref: str) -> str: ...


def artifact_key(
    user_id: str,
    artifact_type: str,
    original_file: str,
    extension: str,
    language: str | None = None,
) -> str:
    """Blob key for an artifact derived from ``original_file``.

    Keys look like ``users/<userId>/<type>/<basename>[-<language>].<ext>``.
    """
    basename = PurePosixPath(original_file.replace("\\", "/")).stem or "document"
    suffix = f"-{language}" if language else ""
    return f"users/{user_id}/{artifact_type}/{basename}{suffix}.{extension}"


class StepHandlers:
    """Runs pipeline steps against the collaborator services.

    Each handler maps a context to an outcome. Errors raised by
    collaborators are turned into ``Fail`` outcomes by ``run``.
    """

    def __init__(
        self,
        submitter: JobSubmitter,
        formatter: TextTransformService,
        translator: TextTransformService,
        speech: SpeechService,
        blob_store: BlobStore,
    ) -> None:
        self._submitter = submitter
        self._formatter = formatter
        self._translator = translator
        self._speech = speech
        self._blobs = blob_store
        self._handlers: dict[StepName, Callable[[WorkflowContext], Awaitable[StepOutcome]]] = {
            StepName.EXTRACT_TEXT: self.extract_text,
            StepName.FORMAT_TEXT: self.format_text,
            StepName.TRANSLATE_TEXT: self.translate_text,
            StepName.CONVERT_TO_SPEECH: self.convert_to_speech,
        }

    async def run(self, step: StepDefinition, context: WorkflowContext) -> StepOutcome:
        """Run ``step`` and return its outcome."""
        handler = self._handlers[step.name]
        try:
            return await handler(context)
        except InkstreamError as e:
            return Fail(e)

    async def extract_text(self, context: WorkflowContext) -> StepOutcome:
        job_id = await self._submitter.submit(context.original_file)
        return Suspend(job_id=job_id, input_ref=context.original_file)

    async def format_text(self, context: WorkflowContext) -> StepOutcome:
        extracted_ref = context.artifacts.get(EXTRACTED_TEXT)
        if not extracted_ref:
            raise ProcessingError("No extraction output available for formatting")

        text = text_from_blocks(await self._blobs.get(extracted_ref))
        if not text.strip():
            raise ProcessingError(
                "No text content extracted from document",
                details={"extracted_ref": extracted_ref},
            )

        formatted = await self._formatter.transform(text)
        key = artifact_key(context.user_id, "formatted", context.original_file, "txt")
        await self._blobs.put_text(key, formatted)
        logger.info(
            "Formatted text stored",
            workflow_id=context.workflow_id,
            input_length=len(text),
            output_length=len(formatted),
            key=key,
        )
        return Continue({"formatted_text": key})

    async def translate_text(self, context: WorkflowContext) -> StepOutcome:
        formatted_ref = context.artifacts.get("formatted_text")
        if not formatted_ref:
            raise ProcessingError("No formatted text available for translation")

        text = await self._blobs.get_text(formatted_ref)
        if not text.strip():
            raise ProcessingError("Formatted text is empty", details={"ref": formatted_ref})

        language = context.parameters.target_language
        translated = await self._translator.transform(
            text, TransformParams(target_language=language)
        )
        key = artifact_key(context.user_id, "translated", context.original_file, "txt", language)
        await self._blobs.put_text(key, translated)
        logger.info(
            "Translated text stored",
            workflow_id=context.workflow_id,
            language=language,
            key=key,
        )
        return Continue({"translated_text": key})

    async def convert_to_speech(self, context: WorkflowContext) -> StepOutcome:
        # Prefer the translation, spoken in the target language
        if translated_ref := context.artifacts.get("translated_text"):
            source_ref = translated_ref
            language = context.parameters.target_language
        elif formatted_ref := context.artifacts.get("formatted_text"):
            source_ref = formatted_ref
            language = DEFAULT_LANGUAGE
        else:
            raise ProcessingError("No text content for speech synthesis")

        text = await self._blobs.get_text(source_ref)
        if not text.strip():
            raise ProcessingError("No text content for speech synthesis", details={"ref": source_ref})

        suffix = language if translated_ref else None
        key = artifact_key(context.user_id, "audio", context.original_file, "mp3", suffix)
        audio_ref = await self._speech.synthesize(text, VoiceParams(language=language), key)
        logger.info(
            "Speech stored",
            workflow_id=context.workflow_id,
            language=language,
            key=audio_ref,
        )
        return Continue({"audio_file": audio_ref})
