"""Shared key/value layer: Redis client and advisory locks."""

from .redis_client import (
    RedisClient,
    get_redis_client,
    close_redis_client,
    redis_health_check,
)
from .advisory_lock import (
    AdvisoryLock,
    RedisAdvisoryLock,
    InMemoryAdvisoryLock,
)

__all__ = [
    # Redis Client
    "RedisClient",
    "get_redis_client",
    "close_redis_client",
    "redis_health_check",
    # Locks
    "AdvisoryLock",
    "RedisAdvisoryLock",
    "InMemoryAdvisoryLock",
]
