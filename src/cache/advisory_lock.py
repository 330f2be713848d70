"""Advisory locks for single-flight background work.

A lock is a key with an expiry in a shared store. ``acquire`` never blocks:
it either claims the key or reports that someone else holds it. The TTL
bounds how long a crashed holder can keep others out.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional, Protocol, Tuple

from .redis_client import RedisClient

logger = logging.getLogger(__name__)


class AdvisoryLock(Protocol):
    """Non-blocking mutual exclusion keyed by name."""

    async def acquire(self, key: str, ttl: int) -> bool:
        ...

    async def release(self, key: str) -> None:
        ...


class RedisAdvisoryLock:
    """Advisory lock backed by Redis ``SET NX EX``.

    Each instance writes its own owner token, and ``release`` only deletes
    the key while it still carries that token, so a holder whose TTL lapsed
    cannot drop a lock that was re-acquired by another worker.
    """

    def __init__(self, client: RedisClient):
        self.client = client
        self._tokens: Dict[str, str] = {}

    async def acquire(self, key: str, ttl: int) -> bool:
        token = uuid.uuid4().hex
        acquired = await self.client.set_if_absent(key, token, ttl=ttl)
        if acquired:
            self._tokens[key] = token
        return acquired

    async def release(self, key: str) -> None:
        token = self._tokens.pop(key, None)
        if token is None:
            return

        if not await self.client.delete_if_equals(key, token):
            logger.warning(f"Lock {key} expired before release")


class InMemoryAdvisoryLock:
    """Process-local advisory lock with the same expiry and ownership semantics.

    Used for single-process deployments and tests. Instances given the same
    ``held`` dict share one key space, each with its own owner tokens.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        held: Optional[Dict[str, Tuple[str, float]]] = None,
    ):
        self._clock = clock or time.monotonic
        self._held: Dict[str, Tuple[str, float]] = held if held is not None else {}
        self._tokens: Dict[str, str] = {}

    def is_held(self, key: str) -> bool:
        entry = self._held.get(key)
        return entry is not None and entry[1] > self._clock()

    async def acquire(self, key: str, ttl: int) -> bool:
        if self.is_held(key):
            return False
        token = uuid.uuid4().hex
        self._held[key] = (token, self._clock() + ttl)
        self._tokens[key] = token
        return True

    async def release(self, key: str) -> None:
        token = self._tokens.pop(key, None)
        entry = self._held.get(key)
        if token is None:
            return
        if entry is None or entry[0] != token:
            logger.warning(f"Lock {key} expired before release")
            return
        del self._held[key]
