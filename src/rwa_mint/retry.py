"""
Retry utilities with exponential backoff.

Only ledger submission retries: uploads are join-all and never retried
inside an attempt, and signature requests are bounded by a deadline
instead.

Usage:
    from rwa_mint.retry import retry_async, submission_retry_config

    receipt = await retry_async(ledger.mint, collection_id, signed_tx,
                                config=submission_retry_config())
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, ParamSpec, Type, TypeVar

from .constants import RetryDefaults
from .exceptions import ReceiptMissingSerial, SubmissionError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (0 means no retries)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Maximum jitter factor (0.0-1.0) added to delays
        retryable_exceptions: Exception types that trigger retries
        non_retryable_exceptions: Exception types that are never retried
    """

    max_retries: int = RetryDefaults.DEFAULT_MAX_RETRIES
    base_delay: float = RetryDefaults.DEFAULT_BASE_DELAY
    max_delay: float = RetryDefaults.DEFAULT_MAX_DELAY
    exponential_base: float = RetryDefaults.DEFAULT_EXPONENTIAL_BASE
    jitter: float = RetryDefaults.DEFAULT_JITTER
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[BaseException], ...] = ()
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None

    def calculate_delay(self, attempt: int) -> float:
        """Exponential backoff with optional jitter for a 0-based attempt."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def should_retry(self, exception: BaseException) -> bool:
        # Non-retryable takes precedence
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


@dataclass
class RetryStats:
    """Statistics about retry execution."""

    attempts: int = 0
    total_delay: float = 0.0
    success: bool = False
    last_exception: Optional[BaseException] = None


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        stats: Statistics about the retry attempts
        original_exception: The last exception that was raised
    """

    def __init__(
        self,
        message: str,
        stats: RetryStats,
        original_exception: BaseException,
    ) -> None:
        super().__init__(message)
        self.stats = stats
        self.original_exception = original_exception


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    config: Optional[RetryConfig] = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute an async function with retry logic.

    Cancellation is never retried: `asyncio.CancelledError` is a
    BaseException and propagates immediately.

    Raises:
        RetryExhausted: If all retry attempts fail
    """
    if config is None:
        config = RetryConfig()

    stats = RetryStats()
    last_exception: Optional[BaseException] = None

    for attempt in range(config.max_retries + 1):
        stats.attempts = attempt + 1

        try:
            result = await func(*args, **kwargs)
            stats.success = True
            return result

        except Exception as e:
            last_exception = e
            stats.last_exception = e

            if not config.should_retry(e):
                logger.debug(
                    f"Exception {type(e).__name__} is not retryable, raising immediately"
                )
                raise

            if attempt >= config.max_retries:
                break

            delay = config.calculate_delay(attempt)
            stats.total_delay += delay

            logger.warning(
                f"Retry {attempt + 1}/{config.max_retries} for "
                f"{getattr(func, '__name__', repr(func))} after {type(e).__name__}: {e}. "
                f"Waiting {delay:.2f}s"
            )

            if config.on_retry:
                config.on_retry(attempt + 1, e, delay)

            await asyncio.sleep(delay)

    raise RetryExhausted(
        f"All {config.max_retries + 1} attempts failed for "
        f"{getattr(func, '__name__', repr(func))}",
        stats=stats,
        original_exception=last_exception,
    ) from last_exception


def submission_retry_config(
    max_retries: int = RetryDefaults.SUBMISSION_MAX_RETRIES,
    base_delay: float = RetryDefaults.SUBMISSION_BASE_DELAY,
    max_delay: float = RetryDefaults.SUBMISSION_MAX_DELAY,
) -> RetryConfig:
    """Retry policy for ledger submission: only SubmissionError is retried."""
    return RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        jitter=0.1,
        retryable_exceptions=(SubmissionError,),
        non_retryable_exceptions=(ReceiptMissingSerial,),
    )


__all__ = [
    "RetryConfig",
    "RetryStats",
    "RetryExhausted",
    "retry_async",
    "submission_retry_config",
]
