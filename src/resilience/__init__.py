"""Resilience patterns for Record Store calls.

Provides retry logic with exponential backoff and jitter.
"""

from .retry import (
    async_retry,
    RetryConfig,
    RetryExhausted,
)

__all__ = [
    "async_retry",
    "RetryConfig",
    "RetryExhausted",
]
