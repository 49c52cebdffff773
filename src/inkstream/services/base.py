"""Collaborator interfaces consumed by the orchestration core."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from inkstream.models.workflow import DEFAULT_LANGUAGE


@dataclass(frozen=True)
class VoiceParams:
    """Voice selection for speech synthesis."""

    language: str = DEFAULT_LANGUAGE


@dataclass(frozen=True)
class TransformParams:
    """Parameters of a text transform."""

    target_language: str | None = None


class ExtractionService(ABC):
    """Asynchronous text extraction."""

    name: str = "extraction"

    @abstractmethod
    async def submit(self, document_ref: str) -> str:
        """Start an extraction job for ``document_ref``.

        Returns:
            The external job id; may be empty if the service accepted the
            call without issuing one

        Raises:
            ExternalServiceError: If the job could not be started
        """
        ...


class TextTransformService(ABC):
    """Synchronous text-to-text transform."""

    name: str = "transform"

    @abstractmethod
    async def transform(self, text: str, params: TransformParams | None = None) -> str:
        """Transform ``text``.

        Raises:
            ExternalServiceError: If the transform backend fails
        """
        ...


class SpeechService(ABC):
    """Text-to-speech synthesis."""

    name: str = "speech"

    @abstractmethod
    async def synthesize(self, text: str, voice: VoiceParams, output_ref: str) -> str:
        """Synthesize ``text`` and store the audio at ``output_ref``.

        Returns:
            Reference of the stored audio

        Raises:
            ExternalServiceError: If synthesis fails
        """
        ...
