"""
Key-value caches for persisted queries and data sources.

The pipeline only needs async ``get``/``set``; any object with those
methods can be plugged in.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Optional, Protocol, runtime_checkable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueCache(Protocol):
    """Async string cache supplied by the host."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...


class InMemoryLRUCache:
    """
    Bounded in-process cache with optional per-entry TTL.

    Usage:
        cache = InMemoryLRUCache(max_entries=1000)
        await cache.set("apq:abc", "{ hello }", ttl=300)
        query = await cache.get("apq:abc")
    """

    def __init__(self, max_entries: int = 1000):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[str, Optional[float]]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._entries[key] = (value, expires_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache evicted: {evicted}")

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()


class RedisKeyValueCache:
    """
    Redis-backed cache that owns its connection.

    Read errors are logged and reported as a miss; write errors are
    logged and re-raised so callers decide whether they matter.

    Usage:
        cache = RedisKeyValueCache("redis://redis:6379", prefix="graphpipe")
        await cache.connect()
        ...
        await cache.close()

    An already built ``redis.asyncio`` client can be passed as ``client``
    instead of a URL; the cache then leaves closing it to the caller.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "graphpipe",
        *,
        client: Optional[aioredis.Redis] = None,
    ):
        if redis_url is None and client is None:
            raise ValueError("redis_url or client is required")
        self.redis_url = redis_url
        self.prefix = prefix
        self._redis = client
        self._owns_client = client is None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        if self._redis is not None:
            return
        logger.info(f"Connecting persisted query cache to Redis: {self.redis_url}")
        self._redis = aioredis.from_url(self.redis_url, decode_responses=True)

    async def close(self) -> None:
        if self._redis is None or not self._owns_client:
            return
        await self._redis.aclose()
        self._redis = None
        logger.info("Persisted query cache disconnected from Redis")

    def _make_key(self, key: str) -> str:
        """Build full cache key with prefix"""
        return f"{self.prefix}:{key}" if self.prefix else key

    def _connection(self) -> aioredis.Redis:
        if self._redis is None:
            raise ConnectionError("Redis cache used before connect()")
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        full_key = self._make_key(key)
        try:
            return await self._connection().get(full_key)
        except Exception as e:
            logger.warning(f"Cache read error for {full_key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        full_key = self._make_key(key)
        try:
            await self._connection().set(full_key, value, ex=ttl)
        except Exception as e:
            logger.warning(f"Cache write error for {full_key}: {e}")
            raise
        logger.debug(f"Cached {full_key} (TTL: {ttl}s)")

    async def delete(self, key: str) -> bool:
        full_key = self._make_key(key)
        try:
            return bool(await self._connection().delete(full_key))
        except Exception as e:
            logger.error(f"Cache delete error for {full_key}: {e}")
            return False
