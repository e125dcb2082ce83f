"""Standardized exception hierarchy for regwatch.

All exceptions carry a human-readable message plus structured context so
they can be logged with structlog without losing detail.

Usage:
    from regwatch.exceptions import FetchError, JobStateError

    try:
        page = await fetcher.fetch(url, options)
    except FetchError as e:
        logger.error("fetch_failed", error=str(e), context=e.context)
"""

from __future__ import annotations

from typing import Any


class RegwatchError(Exception):
    """Base exception for all regwatch errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Format exception with context for logging."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(RegwatchError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if setting:
            context["setting"] = setting
        super().__init__(message, context=context, **kwargs)


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(RegwatchError):
    """Base class for database-related errors."""


class RecordNotFoundError(DatabaseError):
    """Raised when a requested database record does not exist."""

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        record_id: Any = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if model:
            context["model"] = model
        if record_id is not None:
            context["record_id"] = record_id
        super().__init__(message, context=context, **kwargs)


class DatabaseIntegrityError(DatabaseError):
    """Raised when a database constraint is violated.

    The crawler hits this when two crawls race on the same
    (title, source_url) pair.
    """


# =============================================================================
# Crawler Errors
# =============================================================================


class CrawlerError(RegwatchError):
    """Base class for crawl pipeline errors."""


class JobStateError(CrawlerError):
    """Raised when a crawler job transition is not allowed."""

    def __init__(
        self,
        message: str,
        *,
        job_id: int | None = None,
        current_status: str | None = None,
        target_status: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if job_id is not None:
            context["job_id"] = job_id
        if current_status:
            context["current_status"] = current_status
        if target_status:
            context["target_status"] = target_status
        super().__init__(message, context=context, **kwargs)


class CrawlCancelledError(CrawlerError):
    """Raised inside the pipeline when its job was cancelled externally.

    Attributes:
        persisted: Updates committed before the cancellation was observed
    """

    def __init__(self, message: str, *, persisted: list[Any] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.persisted: list[Any] = list(persisted or [])


class ExtractionError(CrawlerError):
    """Raised when a strategy cannot produce candidates at all."""


# =============================================================================
# Network Errors
# =============================================================================


class NetworkError(RegwatchError):
    """Base class for network-related errors."""


class FetchError(NetworkError):
    """Raised when a page cannot be fetched (network error, non-2xx status)."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if url:
            context["url"] = url
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context, **kwargs)
        self.url = url
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Raised when a page fetch exceeds its timeout."""


# =============================================================================
# AI Errors
# =============================================================================


class AIError(RegwatchError):
    """Base class for AI-related errors."""


class ClassificationError(AIError):
    """Raised when the content classifier fails or returns malformed data."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if provider:
            context["provider"] = provider
        super().__init__(message, context=context, **kwargs)
