"""Async Redis client wrapper.

Provides a high-level async interface to Redis with connection pooling,
JSON serialization, and the atomic set-if-absent and compare-and-delete
primitives used by the batch lock.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Union

from redis.asyncio import ConnectionPool, Redis

from config.settings import RedisSettings, get_settings

logger = logging.getLogger(__name__)

# Deletes KEYS[1] only when it still holds ARGV[1]
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Global client instance
_redis_client: Optional["RedisClient"] = None


class RedisClient:
    """Async Redis client with connection pooling.

    Usage:
        client = RedisClient()
        await client.connect()

        await client.set("key", {"data": "value"}, ttl=3600)
        data = await client.get("key")

        acquired = await client.set_if_absent("lock", "owner", ttl=120)

        await client.close()

    A ``ttl`` of ``0`` stores the value without expiry.
    """

    def __init__(self, settings: Optional[RedisSettings] = None, client: Optional[Redis] = None):
        """Initialize Redis client.

        Args:
            settings: Redis settings. Uses default if not provided.
            client: Pre-built redis client (tests inject a fake here).
        """
        self.settings = settings or get_settings().redis
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client
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
            self._pool = ConnectionPool.from_url(
                self.settings.url,
                max_connections=self.settings.max_connections,
                decode_responses=True,
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_connect_timeout,
            )
            self._client = Redis(connection_pool=self._pool)

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
        """Check Redis connectivity."""
        if not self._client:
            return False

        try:
            return await self._client.ping()
        except Exception:
            return False

    def _key(self, key: str) -> str:
        prefix = self.settings.key_prefix
        return f"{prefix}{key}" if prefix else key

    def _ttl_seconds(self, ttl: Optional[Union[int, timedelta]]) -> Optional[int]:
        if ttl is None:
            return self.settings.default_ttl
        if isinstance(ttl, timedelta):
            ttl = int(ttl.total_seconds())
        return ttl or None

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, data: Optional[str]) -> Any:
        if data is None:
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            return data

    async def get(self, key: str) -> Any:
        """Get a value by key.

        Args:
            key: Cache key.

        Returns:
            Stored value or None if not found.
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
            value: Value to store.
            ttl: Time-to-live in seconds or timedelta, ``0`` for no expiry.

        Returns:
            True if successful.
        """
        if not self._client:
            return False

        try:
            await self._client.set(
                self._key(key), self._serialize(value), ex=self._ttl_seconds(ttl)
            )
            return True
        except Exception as e:
            logger.warning(f"Redis SET error for {key}: {e}")
            return False

    async def set_if_absent(
        self,
        key: str,
        value: Any,
        ttl: Union[int, timedelta],
    ) -> bool:
        """Atomically set a value only when the key does not exist (SET NX EX).

        Args:
            key: Key to claim.
            value: Value to store.
            ttl: Expiry of the claim.

        Returns:
            True if this call created the key.
        """
        if not self._client:
            return False

        try:
            result = await self._client.set(
                self._key(key), self._serialize(value), ex=self._ttl_seconds(ttl), nx=True
            )
            return bool(result)
        except Exception as e:
            logger.warning(f"Redis SETNX error for {key}: {e}")
            return False

    async def delete_if_equals(self, key: str, value: Any) -> bool:
        """Atomically delete a key only while it still holds ``value``.

        Returns:
            True if this call deleted the key.
        """
        if not self._client:
            return False

        try:
            result = await self._client.eval(
                COMPARE_AND_DELETE_SCRIPT, 1, self._key(key), self._serialize(value)
            )
            return bool(result)
        except Exception as e:
            logger.warning(f"Redis compare-and-delete error for {key}: {e}")
            return False


async def get_redis_client() -> RedisClient:
    """Get or create the global Redis client.

    Returns:
        Connected RedisClient instance.
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = RedisClient()
        await _redis_client.connect()

    return _redis_client


async def close_redis_client() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client:
        await _redis_client.close()
        _redis_client = None


async def redis_health_check() -> Dict[str, Any]:
    """Perform Redis health check.

    Returns:
        Health check result dict.
    """
    try:
        client = await get_redis_client()
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
