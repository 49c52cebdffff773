"""Custom exceptions for Inkstream."""

from typing import Any


class InkstreamError(Exception):
    """Base exception for all Inkstream errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ConfigurationError(InkstreamError):
    """Raised when there's a configuration problem."""

    pass


class ValidationError(InkstreamError):
    """Raised for malformed input or queries. Never retried."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field


class ExternalServiceError(InkstreamError):
    """Raised when a collaborator call fails."""

    def __init__(
        self,
        message: str,
        service: str,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
        *,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, details)
        self.service = service
        self.cause = cause
        self.retryable = retryable


class ProcessingError(InkstreamError):
    """Raised when a step has no usable input."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.cause = cause


class StorageError(InkstreamError):
    """Raised when storage operations fail."""

    pass


class WorkflowStateError(InkstreamError):
    """Raised when an illegal workflow transition is attempted."""

    def __init__(
        self,
        message: str,
        workflow_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.workflow_id = workflow_id


class WorkflowExistsError(WorkflowStateError):
    """Raised when a (user_id, workflow_id) pair is created twice."""

    pass


class LLMError(InkstreamError):
    """Raised when LLM operations fail."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, details)
        self.retryable = retryable
