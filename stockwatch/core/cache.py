"""
Fast key-value cache used for drop-signal de-duplication.

Two implementations share the same small async interface:

- RedisCache: shared across processes, used when REDIS_URL is configured
- MemoryCache: process-local cachetools TLRUCache with per-key TTL

Usage:
    cache = build_cache(settings.REDIS_URL)
    if await cache.set_if_absent(key, "1", ttl_seconds=600):
        ...  # first writer inside the window
"""

import threading
import time
from typing import Callable, Optional, Protocol

import redis.asyncio as redis
from cachetools import TLRUCache

from stockwatch.core.logging_config import get_logger

logger = get_logger(__name__)


class KeyValueCache(Protocol):
    async def exists(self, key: str) -> bool: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


def _expires_at(_key, entry, now):
    """TLRUCache time-to-use: each entry carries its own TTL."""
    _value, ttl_seconds = entry
    return now + ttl_seconds


class MemoryCache:
    """Process-local TTL cache. ``timer`` is injectable for tests."""

    def __init__(self, maxsize: int = 50_000, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=timer)
        self._lock = threading.Lock()

    async def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._cache[key] = (value, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if key in self._cache:
                return False
            self._cache[key] = (value, ttl_seconds)
            return True

    async def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    async def close(self) -> None:
        with self._lock:
            self._cache.clear()


class RedisCache:
    """Redis-backed cache. Connects lazily on first use."""

    def __init__(self, redis_url: str, key_prefix: str = "stockwatch:"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
            logger.info("Redis cache client created", redis_url=self.redis_url)
        return self._redis

    async def exists(self, key: str) -> bool:
        return bool(await self._client().exists(f"{self.key_prefix}{key}"))

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client().set(f"{self.key_prefix}{key}", value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        # SET NX returns None when the key is already held
        return bool(await self._client().set(f"{self.key_prefix}{key}", value, ex=ttl_seconds, nx=True))

    async def delete(self, key: str) -> None:
        await self._client().delete(f"{self.key_prefix}{key}")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis cache connection closed")


def build_cache(redis_url: str = "") -> KeyValueCache:
    if redis_url:
        return RedisCache(redis_url)
    logger.info("REDIS_URL not set, using in-process dedup cache")
    return MemoryCache()
