"""Retry pattern with exponential backoff.

Used by the Record Store gateway to retry transient failures on reads and
writes before degrading to the local cache.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import (
    Any,
    Callable,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ExceptionTypes = Union[Type[Exception], Tuple[Type[Exception], ...]]


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay between retries in seconds.
        backoff_multiplier: Multiplier for exponential backoff.
        jitter: Random jitter as a fraction of the delay (0-1).
        retryable_exceptions: Exception types that should trigger retry.
        non_retryable_exceptions: Exception types that never retry.
        on_retry: Callback invoked as on_retry(attempt, exception, delay).
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: ExceptionTypes = (Exception,)
    non_retryable_exceptions: ExceptionTypes = ()
    on_retry: Optional[Callable[[int, Exception, float], None]] = None

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number.

        Args:
            attempt: Current attempt number (1-indexed).

        Returns:
            Delay in seconds with exponential backoff and jitter.
        """
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))

        return delay

    def should_retry(self, exception: Exception) -> bool:
        """Determine if an exception should trigger a retry."""
        if self.non_retryable_exceptions and isinstance(
            exception, self.non_retryable_exceptions
        ):
            return False
        return isinstance(exception, self.retryable_exceptions)


def async_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_multiplier: float = 2.0,
    jitter: float = 0.1,
    retryable_exceptions: ExceptionTypes = (Exception,),
    non_retryable_exceptions: ExceptionTypes = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    config: Optional[RetryConfig] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for async functions with retry logic.

    Usage:
        @async_retry(max_attempts=3, base_delay=0.2)
        async def load_roster():
            ...

        # Or with a config object built at runtime:
        guarded = async_retry(config=RetryConfig(max_attempts=5))(load_roster)

    Args:
        max_attempts: Maximum attempts.
        base_delay: Initial delay between retries.
        max_delay: Maximum delay cap.
        backoff_multiplier: Exponential backoff multiplier.
        jitter: Random jitter factor (0-1).
        retryable_exceptions: Exceptions that trigger retry.
        non_retryable_exceptions: Exceptions that don't retry.
        on_retry: Callback on each retry.
        config: Optional RetryConfig object (overrides other params).

    Returns:
        Decorated async function. Raises RetryExhausted once attempts run out.
    """
    retry_config = config or RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        backoff_multiplier=backoff_multiplier,
        jitter=jitter,
        retryable_exceptions=retryable_exceptions,
        non_retryable_exceptions=non_retryable_exceptions,
        on_retry=on_retry,
    )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Optional[Exception] = None

            for attempt in range(1, retry_config.max_attempts + 1):
                try:
                    return await func(*args, **kwargs)

                except Exception as e:
                    last_exception = e

                    if not retry_config.should_retry(e):
                        raise

                    if attempt >= retry_config.max_attempts:
                        logger.warning(
                            f"Retry exhausted for {func.__name__} "
                            f"after {attempt} attempts: {e}"
                        )
                        raise RetryExhausted(
                            f"Retry exhausted after {attempt} attempts",
                            attempts=attempt,
                            last_exception=e,
                        ) from e

                    delay = retry_config.calculate_delay(attempt)

                    logger.info(
                        f"Retry {attempt}/{retry_config.max_attempts} "
                        f"for {func.__name__} in {delay:.2f}s: {e}"
                    )

                    if retry_config.on_retry:
                        retry_config.on_retry(attempt, e, delay)

                    await asyncio.sleep(delay)

            raise RetryExhausted(
                f"Retry exhausted after {retry_config.max_attempts} attempts",
                attempts=retry_config.max_attempts,
                last_exception=last_exception,
            )

        return wrapper
    return decorator
