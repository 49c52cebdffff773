"""Amazon Polly speech synthesis."""

import asyncio
import re
from typing import Any, NamedTuple

from botocore.exceptions import BotoCoreError, ClientError

from inkstream.core.aws import create_boto_client, error_code, is_throttling
from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import ExternalServiceError, ProcessingError
from inkstream.core.logging import get_logger
from inkstream.models.workflow import DEFAULT_LANGUAGE
from inkstream.services.base import SpeechService, VoiceParams
from inkstream.storage.base import BlobStore

logger = get_logger(__name__)

MAX_CHUNK_CHARS = 3000


class Voice(NamedTuple):
    voice_id: str
    engine: str


VOICES: dict[str, Voice] = {
    "english": Voice("Joanna", "neural"),
    "spanish": Voice("Lucia", "neural"),
    "french": Voice("Lea", "neural"),
    "german": Voice("Vicki", "neural"),
    "italian": Voice("Bianca", "neural"),
    "portuguese": Voice("Ines", "neural"),
    "russian": Voice("Tatyana", "standard"),
    "chinese": Voice("Zhiyu", "neural"),
    "japanese": Voice("Takumi", "neural"),
    "korean": Voice("Seoyeon", "neural"),
    "arabic": Voice("Hala", "neural"),
    "hindi": Voice("Kajal", "neural"),
    "dutch": Voice("Laura", "neural"),
    "polish": Voice("Ola", "neural"),
    "swedish": Voice("Elin", "neural"),
    "norwegian": Voice("Ida", "neural"),
    "danish": Voice("Sofie", "neural"),
    "finnish": Voice("Suvi", "neural"),
    "turkish": Voice("Burcu", "neural"),
}


def voice_for(language: str | None) -> Voice:
    """Voice for ``language``, falling back to the english voice."""
    return VOICES.get((language or DEFAULT_LANGUAGE).lower(), VOICES[DEFAULT_LANGUAGE])


def split_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split text into chunks of at most ``max_chars``.

    Splits prefer sentence ends, then whitespace, and only cut through a
    word when it is longer than a whole chunk.
    """
    chunks: list[str] = []
    remaining = text.strip()
    while len(remaining) > max_chars:
        window = remaining[:max_chars]
        cut = max(
            (m.end() for m in re.finditer(r"[.!?]\s", window)),
            default=0,
        )
        if cut == 0:
            cut = window.rfind(" ") + 1
        if cut <= 0:
            cut = max_chars
        chunks.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    if remaining:
        chunks.append(remaining)
    return chunks


class PollySpeechService(SpeechService):
    """Synthesizes mp3 audio with Polly and stores it in the blob store."""

    name = "polly"

    def __init__(
        self,
        blob_store: BlobStore,
        settings: Settings | None = None,
        client: Any | None = None,
    ) -> None:
        self._blobs = blob_store
        self._settings = settings or get_settings()
        self._client = client or create_boto_client("polly", self._settings)

    async def _synthesize_chunk(self, text: str, voice: Voice) -> bytes:
        try:
            response = await asyncio.to_thread(
                self._client.synthesize_speech,
                Text=text,
                OutputFormat="mp3",
                VoiceId=voice.voice_id,
                Engine=voice.engine,
            )
            return await asyncio.to_thread(response["AudioStream"].read)
        except ClientError as e:
            code = error_code(e)
            raise ExternalServiceError(
                f"Speech synthesis failed: {code}",
                service=self.name,
                cause=e,
                details={"voice": voice.voice_id, "code": code},
                retryable=is_throttling(e),
            ) from e
        except BotoCoreError as e:
            raise ExternalServiceError(
                f"Speech synthesis failed: {e}",
                service=self.name,
                cause=e,
                details={"voice": voice.voice_id},
            ) from e

    async def synthesize(self, text: str, voice: VoiceParams, output_ref: str) -> str:
        chunks = split_text(text)
        if not chunks:
            raise ProcessingError("No text content for speech synthesis")

        selected = voice_for(voice.language)
        logger.info(
            "Synthesizing speech",
            voice=selected.voice_id,
            language=voice.language,
            chunks=len(chunks),
        )

        audio = bytearray()
        for chunk in chunks:
            audio.extend(await self._synthesize_chunk(chunk, selected))

        return await self._blobs.put(output_ref, bytes(audio), "audio/mpeg")
