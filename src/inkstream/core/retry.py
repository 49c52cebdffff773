"""Retry utilities with exponential backoff."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import ParamSpec, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from inkstream.core.config import Settings
from inkstream.core.logging import get_logger

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable_exceptions: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (Exception,)
    )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    ) -> "RetryConfig":
        """Build a config from application settings."""
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            retryable_exceptions=retryable_exceptions,
        )

    def should_retry(self, exception: BaseException) -> bool:
        """Check if an exception should trigger a retry."""
        if not isinstance(exception, self.retryable_exceptions):
            return False

        # Errors that know whether they are transient decide for themselves
        if hasattr(exception, "retryable"):
            return bool(exception.retryable)

        return True

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(self.should_retry),
            reraise=True,
        )


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for async functions with retry logic."""
    retry_config = config or RetryConfig()

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await retry_async(lambda: func(*args, **kwargs), retry_config)

        return wrapper

    return decorator


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
) -> T:
    """Execute an async function with retry logic."""
    if config is None:
        config = RetryConfig()

    attempt = 0

    async for attempt_info in config._retrying():
        with attempt_info:
            attempt += 1
            if attempt > 1:
                logger.info(
                    "Retrying operation",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                )
            return await func()

    raise RuntimeError("Unexpected retry exit")
