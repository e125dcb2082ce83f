"""
Structured logging configuration using structlog.

- JSON logging for production
- Correlation IDs so one crawl can be followed across sources and jobs
- Sensitive data filtering (API keys, tokens)
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor

# Context variable for tracking correlation IDs across async boundaries
_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set correlation ID for the current context.

    Args:
        correlation_id: Custom correlation ID. If None, generates a new UUID.

    Returns:
        The correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id_var.set(None)


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add correlation ID to all log entries."""
    correlation_id = get_correlation_id()
    if "correlation_id" not in event_dict:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def filter_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Filter sensitive data from logs (API keys, webhook tokens, etc.)."""
    sensitive_keys = {
        "password",
        "api_key",
        "openai_api_key",
        "secret",
        "token",
        "authorization",
    }

    for key in sensitive_keys:
        if key in event_dict:
            event_dict[key] = "***REDACTED***"

    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to every log entry."""
    from regwatch import __version__

    event_dict["app"] = "regwatch"
    event_dict["version"] = __version__
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    dev_mode: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Whether to output JSON logs (recommended for production)
        dev_mode: Whether to use development-friendly output
    """
    shared_processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
        add_app_context,
        filter_sensitive_data,
    ]

    if json_logs:
        # Production: JSON output for log aggregation
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    elif dev_mode:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    logging.getLogger().setLevel(getattr(logging, log_level.upper()))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("crawl_completed", source_id=3, new_updates=2)
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


class LogPerformance:
    """
    Context manager for logging performance metrics.

    Exceptions listed in ``expected_errors`` end the operation normally
    (for example a cancellation) and are logged at info level as
    ``<operation>_interrupted`` instead of as a failure.

    Usage:
        with LogPerformance("extraction", logger, source_id=3):
            # ... expensive operation
            pass
    """

    def __init__(
        self,
        operation: str,
        logger: structlog.stdlib.BoundLogger,
        expected_errors: tuple[type[BaseException], ...] = (),
        **context: Any,
    ):
        self.operation = operation
        self.logger = logger
        self.expected_errors = expected_errors
        self.context = context
        self.start_time: float = 0

    def __enter__(self) -> "LogPerformance":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation}_started", **self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration = time.perf_counter() - self.start_time

        if exc_type is None:
            self.logger.info(
                f"{self.operation}_completed",
                duration_ms=round(duration * 1000, 2),
                operation=self.operation,
                **self.context,
            )
        elif self.expected_errors and issubclass(exc_type, self.expected_errors):
            self.logger.info(
                f"{self.operation}_interrupted",
                duration_ms=round(duration * 1000, 2),
                operation=self.operation,
                reason=exc_type.__name__,
                **self.context,
            )
        else:
            self.logger.error(
                f"{self.operation}_failed",
                duration_ms=round(duration * 1000, 2),
                operation=self.operation,
                error=str(exc_val),
                error_type=exc_type.__name__ if exc_type else None,
                **self.context,
            )


def log_update_persisted(
    logger: structlog.stdlib.BoundLogger,
    update_id: int,
    source_id: int,
    title: str,
    update_type: str | None,
) -> None:
    """Log update creation for audit trail."""
    logger.info(
        "regulatory_update_persisted",
        action="create",
        resource="regulatory_update",
        update_id=update_id,
        source_id=source_id,
        title=title[:120],
        update_type=update_type,
    )


def log_job_finalized(
    logger: structlog.stdlib.BoundLogger,
    job_id: int,
    source_id: int,
    status: str,
    execution_time_ms: int | None,
) -> None:
    """Log crawler job finalization for audit trail."""
    logger.info(
        "crawler_job_finalized",
        action="finalize",
        resource="crawler_job",
        job_id=job_id,
        source_id=source_id,
        status=status,
        execution_time_ms=execution_time_ms,
    )


# Initialize logging on module import
configure_logging()
