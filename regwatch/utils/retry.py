"""Retry logic with exponential backoff and jitter.

Used by the fetch layer to ride out transient transport errors. Retries are
never applied to downstream notifications, which are best-effort.

Usage:
    response = await retry_async(
        lambda: client.get(url),
        config=fetch_retry_config(attempts=2),
    )
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TypeVar

import httpx

from regwatch.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Base delay in seconds before first retry (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 60.0)
        backoff_factor: Exponential backoff multiplier (default: 2.0)
        jitter: Whether to add random jitter to delays (default: True)
        jitter_range: Range for jitter as fraction of delay (default: 0.1 = ±10%)
        retryable_exceptions: Tuple of exception types to retry (default: all)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if not 0 <= self.jitter_range <= 1:
            raise ValueError("jitter_range must be between 0 and 1")

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given retry attempt (0-indexed)."""
        delay = min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int], Awaitable[None]] | None = None,
) -> T:
    """Retry an async function with exponential backoff.

    Args:
        func: Async function to retry (takes no arguments)
        config: Retry configuration (uses defaults if None)
        on_retry: Optional callback called before each retry

    Returns:
        The return value of func() on success

    Raises:
        The last exception if all retries are exhausted, or immediately for
        exceptions outside ``config.retryable_exceptions``.
    """
    config = config or RetryConfig()
    last_exception: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return await func()

        except Exception as e:
            last_exception = e

            if not isinstance(e, config.retryable_exceptions):
                logger.debug(
                    "retry_skipped_non_retryable_exception",
                    exception_type=type(e).__name__,
                    error=str(e),
                )
                raise

            if attempt >= config.max_retries:
                logger.warning(
                    "retry_exhausted",
                    attempts=attempt + 1,
                    exception=type(e).__name__,
                    error=str(e),
                )
                raise

            delay = config.calculate_delay(attempt)

            logger.info(
                "retry_attempt",
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
                exception=type(e).__name__,
                error=str(e),
            )

            if on_retry:
                try:
                    await on_retry(e, attempt + 1)
                except Exception as callback_error:
                    logger.warning("retry_callback_failed", error=str(callback_error))

            await asyncio.sleep(delay)

    # Unreachable, keeps the type checker happy
    if last_exception:
        raise last_exception
    raise RuntimeError("retry_async: unexpected code path")


# Connection-level failures retried by page fetches; timeouts are never retried
TRANSIENT_NETWORK_ERRORS: tuple[type[Exception], ...] = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)

# Fast retries for transient network errors during page fetches
NETWORK_RETRY = RetryConfig(
    max_retries=2,
    base_delay=0.5,
    max_delay=5.0,
    backoff_factor=2.0,
    retryable_exceptions=TRANSIENT_NETWORK_ERRORS,
)


def fetch_retry_config(attempts: int | None = None) -> RetryConfig:
    """Network retry policy for one page fetch.

    Args:
        attempts: Retries allowed after the first request; ``None`` keeps
            the ``NETWORK_RETRY`` default, 0 disables retrying
    """
    if attempts is None:
        return NETWORK_RETRY
    return replace(NETWORK_RETRY, max_retries=attempts)
