"""Structured logging built on structlog."""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

from inkstream.core.config import Settings, get_settings

# boto3 and friends log every HTTP round trip at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = (
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
)


def _drop_formatter_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove ProcessorFormatter bookkeeping keys from the output."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and stdlib logging from settings.

    Args:
        settings: Application settings (log level and format)
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_format == "json":
        renderer: list[Any] = [
            _drop_formatter_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [
            _drop_formatter_fields,
            structlog.dev.ConsoleRenderer(colors=settings.debug),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(processors=renderer, foreign_pre_chain=shared_processors)
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally bound to initial context.

    Args:
        name: Logger name (typically __name__)
        **context: Key-value pairs attached to every event

    Returns:
        Bound structlog logger
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger
