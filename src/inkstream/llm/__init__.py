"""LLM client abstractions."""

from inkstream.llm.client import BaseLLMClient, LLMMessage, LLMResponse, MessageRole

__all__ = [
    "BaseLLMClient",
    "LLMResponse",
    "LLMMessage",
    "MessageRole",
]
