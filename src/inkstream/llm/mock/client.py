"""Mock LLM client for deterministic testing."""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from inkstream.core.exceptions import LLMError
from inkstream.llm.client import BaseLLMClient, LLMMessage, LLMResponse


@dataclass
class MockResponse:
    """A mock response configuration."""

    content: str
    input_tokens: int = 100
    output_tokens: int = 50
    latency_ms: float = 100.0
    stop_reason: str = "end_turn"


ResponseGenerator = Callable[[list[LLMMessage]], MockResponse]


class MockLLMClient(BaseLLMClient):
    """Mock LLM client for testing with deterministic responses."""

    def __init__(
        self,
        default_response: str | MockResponse | None = None,
        responses: dict[str, MockResponse] | None = None,
        response_generator: ResponseGenerator | None = None,
        fail_with: LLMError | None = None,
    ) -> None:
        """Initialize mock client.

        Args:
            default_response: Default response for any message
            responses: Map of regex patterns to responses
            response_generator: Function to generate responses dynamically
            fail_with: Error raised by every call
        """
        self._default_response = default_response or MockResponse(
            content="Mock response"
        )
        self._responses = responses or {}
        self._response_generator = response_generator
        self._fail_with = fail_with
        self._call_history: list[dict[str, Any]] = []

    @property
    def model_id(self) -> str:
        """Get the model identifier."""
        return "mock-model"

    @property
    def call_history(self) -> list[dict[str, Any]]:
        """Get history of all calls made."""
        return self._call_history

    def add_response(self, pattern: str, response: MockResponse) -> None:
        """Add a response for a specific message pattern."""
        self._responses[pattern] = response

    def fail_with(self, error: LLMError | None) -> None:
        """Make every following call raise ``error``; None to stop."""
        self._fail_with = error

    def clear_history(self) -> None:
        """Clear call history."""
        self._call_history.clear()

    def _find_response(self, messages: list[LLMMessage]) -> MockResponse:
        """Find matching response for messages."""
        if self._response_generator:
            return self._response_generator(messages)

        last_message = messages[-1].content if messages else ""
        for pattern, response in self._responses.items():
            if re.search(pattern, last_message, re.IGNORECASE):
                return response

        if isinstance(self._default_response, str):
            return MockResponse(content=self._default_response)
        return self._default_response

    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        system: str | None = None,
        stop_sequences: list[str] | None = None,
    ) -> LLMResponse:
        """Generate a mock response."""
        self._call_history.append({
            "messages": [m.to_dict() for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "stop_sequences": stop_sequences,
        })

        if self._fail_with is not None:
            raise self._fail_with

        mock_resp = self._find_response(messages)
        return LLMResponse(
            content=mock_resp.content,
            model=self.model_id,
            input_tokens=mock_resp.input_tokens,
            output_tokens=mock_resp.output_tokens,
            latency_ms=mock_resp.latency_ms,
            stop_reason=mock_resp.stop_reason,
        )


_DOCUMENT_PATTERN = re.compile(r"<document>\n?(.*?)\n?</document>", re.DOTALL)


def echo_document(prefix: str) -> ResponseGenerator:
    """Build a generator that answers with the prompt's document, prefixed.

    Prompts wrap their input in ``<document>`` tags; the generated response
    is ``prefix`` followed by that input, which keeps pipeline tests
    deterministic without canned text per document.
    """

    def generate(messages: list[LLMMessage]) -> MockResponse:
        last_message = messages[-1].content if messages else ""
        match = _DOCUMENT_PATTERN.search(last_message)
        body = match.group(1) if match else last_message
        return MockResponse(content=f"{prefix}{body}")

    return generate


def create_formatting_mock() -> MockLLMClient:
    """Create a mock client that returns documents as formatted text."""
    return MockLLMClient(response_generator=echo_document("# Formatted\n\n"))


def create_translation_mock() -> MockLLMClient:
    """Create a mock client that returns documents as translated text."""
    return MockLLMClient(response_generator=echo_document("[translated] "))
