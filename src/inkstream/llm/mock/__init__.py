"""Mock LLM client for testing."""

from inkstream.llm.mock.client import (
    MockLLMClient,
    MockResponse,
    create_formatting_mock,
    create_translation_mock,
    echo_document,
)

__all__ = [
    "MockLLMClient",
    "MockResponse",
    "create_formatting_mock",
    "create_translation_mock",
    "echo_document",
]
