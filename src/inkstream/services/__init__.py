"""Collaborator services: extraction, text transforms and speech."""

from inkstream.services.base import (
    ExtractionService,
    SpeechService,
    TextTransformService,
    TransformParams,
    VoiceParams,
)
from inkstream.services.mock import MockExtractionService, MockSpeechService
from inkstream.services.polly import PollySpeechService
from inkstream.services.text import (
    FormattingService,
    TranslationService,
    estimate_max_tokens,
    text_from_blocks,
)
from inkstream.services.textract import TextractExtractionService, TextractOutputCollector

__all__ = [
    "ExtractionService",
    "TextTransformService",
    "SpeechService",
    "TransformParams",
    "VoiceParams",
    "FormattingService",
    "TranslationService",
    "TextractExtractionService",
    "TextractOutputCollector",
    "PollySpeechService",
    "MockExtractionService",
    "MockSpeechService",
    "estimate_max_tokens",
    "text_from_blocks",
]
