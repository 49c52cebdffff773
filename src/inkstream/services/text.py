"""LLM-backed formatting and translation services."""

import json
import math
from abc import abstractmethod

from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import ExternalServiceError, LLMError, ProcessingError
from inkstream.core.logging import get_logger
from inkstream.llm.client import BaseLLMClient, LLMMessage
from inkstream.models.workflow import DEFAULT_LANGUAGE
from inkstream.services.base import TextTransformService, TransformParams

logger = get_logger(__name__)

MIN_OUTPUT_TOKENS = 1000
MAX_OUTPUT_TOKENS = 6000
TRANSFORM_TEMPERATURE = 0.1

FORMAT_PROMPT = """I have extracted text from a document. Please format and organize this text to improve readability.

Consider:
- Fixing any formatting issues
- Organizing into logical paragraphs
- Correcting obvious OCR errors
- Adding section headers where appropriate
- Preserving the key information
{note}
Here's the extracted text:

<document>
{text}
</document>"""

TRANSLATE_PROMPT = """Translate the following text into {language}. Maintain the original formatting, paragraph structure, and any section headers.
Please provide only the translated content without explanations or additional comments.
{note}
Here's the text to translate:

<document>
{text}
</document>"""

TRUNCATION_NOTE = (
    "\nNote: The text was truncated due to length limitations. "
    "Please process what is provided.\n"
)


def estimate_max_tokens(text: str) -> int:
    """Output token budget for transforming ``text``.

    Roughly four characters per input token, plus twenty percent headroom,
    clamped to [1000, 6000].
    """
    estimated_input_tokens = math.ceil(len(text) / 4)
    return int(min(max(estimated_input_tokens * 1.2, MIN_OUTPUT_TOKENS), MAX_OUTPUT_TOKENS))


def normalize_language_name(language: str | None) -> str:
    """Title-case a language name for use in prompts."""
    language = (language or DEFAULT_LANGUAGE).strip()
    return language[:1].upper() + language[1:].lower()


def text_from_blocks(data: bytes | str) -> str:
    """Join the LINE blocks of an extraction result with newlines.

    Raises:
        ProcessingError: If the payload is not extraction output
    """
    try:
        payload = json.loads(data)
    except (TypeError, ValueError) as e:
        raise ProcessingError("Extraction output is not valid JSON", cause=e) from e

    blocks = payload.get("Blocks") if isinstance(payload, dict) else None
    if not isinstance(blocks, list):
        raise ProcessingError("No Blocks in extraction output")

    return "\n".join(
        block.get("Text", "")
        for block in blocks
        if isinstance(block, dict) and block.get("BlockType") == "LINE"
    )


class LLMTextService(TextTransformService):
    """Text transform that prompts an LLM."""

    name = "llm"

    def __init__(
        self,
        llm_client: BaseLLMClient,
        settings: Settings | None = None,
    ) -> None:
        self._llm = llm_client
        self._settings = settings or get_settings()

    def _truncate(self, text: str) -> tuple[str, bool]:
        limit = self._settings.transform_max_chars
        if len(text) <= limit:
            return text, False
        logger.info(
            "Truncating oversized input",
            service=self.name,
            original_length=len(text),
            max_chars=limit,
        )
        return text[:limit], True

    @abstractmethod
    def build_prompt(self, text: str, note: str, params: TransformParams) -> str:
        """Prompt asking the model to transform ``text``."""
        ...

    async def transform(self, text: str, params: TransformParams | None = None) -> str:
        params = params or TransformParams()
        processed, truncated = self._truncate(text)
        prompt = self.build_prompt(processed, TRUNCATION_NOTE if truncated else "", params)
        max_tokens = estimate_max_tokens(text)

        logger.debug(
            "Running text transform",
            service=self.name,
            input_length=len(text),
            max_tokens=max_tokens,
        )

        try:
            response = await self._llm.generate(
                [LLMMessage.user(prompt)],
                max_tokens=max_tokens,
                temperature=TRANSFORM_TEMPERATURE,
            )
        except LLMError as e:
            raise ExternalServiceError(
                f"{self.name} failed: {e.message}",
                service=self.name,
                cause=e,
                details=e.details,
                retryable=e.retryable,
            ) from e

        if response.truncated:
            logger.warning(
                "Transform output hit the token ceiling",
                service=self.name,
                max_tokens=max_tokens,
            )
        return response.content.strip()


class FormattingService(LLMTextService):
    """Tidies extracted text into readable paragraphs and sections."""

    name = "formatting"

    def build_prompt(self, text: str, note: str, params: TransformParams) -> str:
        return FORMAT_PROMPT.format(note=note, text=text)


class TranslationService(LLMTextService):
    """Translates text into the requested language."""

    name = "translation"

    def build_prompt(self, text: str, note: str, params: TransformParams) -> str:
        language = normalize_language_name(params.target_language)
        return TRANSLATE_PROMPT.format(language=language, note=note, text=text)
