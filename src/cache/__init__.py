"""Cache layer for the connection lifecycle service.

Provides the Redis client wrapper and the device-scoped local cache that
mirrors Record Store state and journals unconfirmed writes.
"""

from .redis_client import (
    RedisClient,
    get_redis_client,
    close_redis_client,
    redis_health_check,
)

from .local_cache import (
    LocalCache,
    PendingWrite,
    PendingWriteKind,
)

__all__ = [
    # Redis Client
    "RedisClient",
    "get_redis_client",
    "close_redis_client",
    "redis_health_check",
    # Local Cache
    "LocalCache",
    "PendingWrite",
    "PendingWriteKind",
]
