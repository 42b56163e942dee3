"""
Key/TTL cache backends for the revocation deny-list.

Two interchangeable implementations share one async API:
InMemoryCache for single-process deployments and tests, RedisCache for
multi-instance deployments. Values are JSON-encoded so both behave the same.
"""

import asyncio
import json
import math
import time
from collections.abc import Callable
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.config import Settings
from utils.logging import get_logger

logger = get_logger(__name__)


class CacheError(Exception):
    """Cache backend unreachable or returned an unusable value."""


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def ttl(self, key: str) -> int | None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryCache:
    """
    Process-local cache with per-key expiry.
    Expired keys are removed lazily on access. `clock` returns seconds and is
    injectable so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> tuple[str, float] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._clock() >= entry[1]:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        """Return value if key exists and not expired."""
        async with self._lock:
            entry = self._live_entry(key)
        return json.loads(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        async with self._lock:
            self._data[key] = (json.dumps(value), self._clock() + ttl_seconds)

    async def delete(self, key: str) -> bool:
        """Remove key; return True if it existed."""
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def ttl(self, key: str) -> int | None:
        """Remaining seconds for key, None if absent."""
        async with self._lock:
            entry = self._live_entry(key)
        if entry is None:
            return None
        return math.ceil(entry[1] - self._clock())

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()


class RedisCache:
    """Redis-backed cache. Maps every RedisError to CacheError."""

    def __init__(self, client: Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(Redis.from_url(url, decode_responses=True, socket_timeout=2.0))

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            raise CacheError(f"get failed for {key}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CacheError(f"unparseable value for {key}") from e

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        try:
            await self._redis.setex(key, ttl_seconds, json.dumps(value))
        except RedisError as e:
            raise CacheError(f"set failed for {key}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(key))
        except RedisError as e:
            raise CacheError(f"delete failed for {key}") from e

    async def ttl(self, key: str) -> int | None:
        try:
            remaining = await self._redis.ttl(key)
        except RedisError as e:
            raise CacheError(f"ttl failed for {key}") from e
        # -2: no such key, -1: key without expiry
        return None if remaining < 0 else remaining

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            logger.warning("cache_ping_failed")
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def create_cache(settings: Settings) -> CacheBackend:
    """Redis when REDIS_URL is configured, otherwise process memory."""
    if settings.REDIS_URL:
        logger.info("cache_backend", extra={"backend": "redis"})
        return RedisCache.from_url(settings.REDIS_URL)
    logger.info("cache_backend", extra={"backend": "memory"})
    return InMemoryCache()
