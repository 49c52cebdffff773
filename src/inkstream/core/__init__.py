"""Core utilities for Inkstream."""

from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InkstreamError,
    LLMError,
    ProcessingError,
    StorageError,
    ValidationError,
    WorkflowExistsError,
    WorkflowStateError,
)
from inkstream.core.logging import configure_logging, get_logger
from inkstream.core.retry import RetryConfig, retry_async, with_retry

__all__ = [
    "Settings",
    "get_settings",
    "InkstreamError",
    "ConfigurationError",
    "ValidationError",
    "ExternalServiceError",
    "ProcessingError",
    "StorageError",
    "WorkflowStateError",
    "WorkflowExistsError",
    "LLMError",
    "configure_logging",
    "get_logger",
    "RetryConfig",
    "retry_async",
    "with_retry",
]
