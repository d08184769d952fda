"""Async Redis client wrapper.

Provides a high-level async interface to Redis with connection pooling,
JSON serialization and key prefixing. Every operation logs and swallows
Redis errors: callers get None/False/empty results instead of exceptions,
because nothing stored here is authoritative.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Union

import redis.asyncio as redis

from config.settings import RedisSettings, get_settings

logger = logging.getLogger(__name__)

# Global client instance
_redis_client: Optional["RedisClient"] = None


class RedisClient:
    """Async Redis client with connection pooling.

    Usage:
        client = RedisClient()
        await client.connect()

        await client.set("key", {"data": "value"}, ttl=3600)
        data = await client.get("key")

        await client.hset("hash", "field", {"data": "value"})
        fields = await client.hgetall("hash")

        await client.close()
    """

    def __init__(
        self,
        settings: Optional[RedisSettings] = None,
        client: Optional[redis.Redis] = None,
    ):
        """Initialize Redis client.

        Args:
            settings: Redis settings. Uses default if not provided.
            client: Already-configured redis client to wrap instead of
                opening a pool on connect().
        """
        self.settings = settings or get_settings().redis
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = client
        self._connected = client is not None

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """Establish connection to Redis.

        Creates a connection pool and tests connectivity.
        """
        if self._connected:
            return

        try:
            self._pool = redis.ConnectionPool.from_url(
                self.settings.url,
                max_connections=self.settings.max_connections,
                decode_responses=True,
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_connect_timeout,
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()
            self._connected = True
            logger.info(
                f"Connected to Redis at {self.settings.host}:{self.settings.port}"
            )

        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._connected = False
            raise

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.disconnect()
            self._pool = None

        self._connected = False
        logger.info("Redis connection closed")

    async def ping(self) -> bool:
        """Check Redis connectivity.

        Returns:
            True if Redis is responsive.
        """
        if not self._client:
            return False

        try:
            return bool(await self._client.ping())
        except Exception:
            return False

    def _key(self, key: str) -> str:
        prefix = self.settings.key_prefix
        return f"{prefix}{key}" if prefix else key

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, data: Optional[str]) -> Any:
        if data is None:
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            return data

    # String operations

    async def get(self, key: str) -> Any:
        """Get a value by key.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found.
        """
        if not self._client:
            return None

        try:
            data = await self._client.get(self._key(key))
            return self._deserialize(data)
        except Exception as e:
            logger.warning(f"Redis GET error for {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[Union[int, timedelta]] = None,
    ) -> bool:
        """Set a value with optional TTL.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: Time-to-live in seconds or timedelta. 0 means no expiry.

        Returns:
            True if successful.
        """
        if not self._client:
            return False

        try:
            if ttl is None:
                ttl = self.settings.default_ttl

            if isinstance(ttl, timedelta):
                ttl = int(ttl.total_seconds())

            await self._client.set(self._key(key), self._serialize(value), ex=ttl or None)
            return True

        except Exception as e:
            logger.warning(f"Redis SET error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if key was deleted.
        """
        if not self._client:
            return False

        try:
            result = await self._client.delete(self._key(key))
            return result > 0
        except Exception as e:
            logger.warning(f"Redis DELETE error for {key}: {e}")
            return False

    # Hash operations

    async def hset(self, name: str, key: str, value: Any) -> bool:
        """Set a field in a hash.

        Returns:
            True if successful.
        """
        if not self._client:
            return False

        try:
            await self._client.hset(self._key(name), key, self._serialize(value))
            return True
        except Exception as e:
            logger.warning(f"Redis HSET error for {name}:{key}: {e}")
            return False

    async def hgetall(self, name: str) -> Dict[str, Any]:
        """Get all fields from a hash.

        Returns:
            Dict of field names to values.
        """
        if not self._client:
            return {}

        try:
            data = await self._client.hgetall(self._key(name))
            return {k: self._deserialize(v) for k, v in data.items()}
        except Exception as e:
            logger.warning(f"Redis HGETALL error for {name}: {e}")
            return {}

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete fields from a hash.

        Returns:
            Number of fields deleted.
        """
        if not self._client or not keys:
            return 0

        try:
            return await self._client.hdel(self._key(name), *keys)
        except Exception as e:
            logger.warning(f"Redis HDEL error for {name}: {e}")
            return 0


async def get_redis_client() -> RedisClient:
    """Get or create the global Redis client.

    Returns:
        Connected RedisClient instance.
    """
    global _redis_client

    if _redis_client is None:
        client = RedisClient()
        await client.connect()
        _redis_client = client

    return _redis_client


async def close_redis_client() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client:
        await _redis_client.close()
        _redis_client = None


async def redis_health_check(client: Optional[RedisClient] = None) -> Dict[str, Any]:
    """Perform Redis health check.

    Returns:
        Health check result dict.
    """
    try:
        client = client or await get_redis_client()
        is_healthy = await client.ping()

        return {
            "status": "healthy" if is_healthy else "unhealthy",
            "connected": client.is_connected,
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "connected": False,
            "error": str(e),
        }
