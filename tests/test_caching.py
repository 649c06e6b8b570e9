"""
Tests for the key-value caches.
"""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from graphpipe import InMemoryLRUCache, KeyValueCache, RedisKeyValueCache
from graphpipe.caching import cache as cache_module


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.store = {}
        self.calls = []

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.calls.append(("set", key, value, ex))
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value
        return True

    async def delete(self, *keys):
        if self.fail:
            raise ConnectionError("redis down")
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def aclose(self):
        self.calls.append(("aclose",))


def test_caches_satisfy_protocol():
    assert isinstance(InMemoryLRUCache(), KeyValueCache)
    assert isinstance(RedisKeyValueCache(client=FakeRedis()), KeyValueCache)


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryLRUCache(max_entries=0)


async def test_get_set_delete():
    cache = InMemoryLRUCache()

    assert await cache.get("missing") is None
    await cache.set("a", "1")
    assert await cache.get("a") == "1"
    assert await cache.delete("a")
    assert not await cache.delete("a")
    assert await cache.get("a") is None


async def test_least_recently_used_is_evicted():
    cache = InMemoryLRUCache(max_entries=2)
    await cache.set("a", "1")
    await cache.set("b", "2")
    await cache.get("a")

    await cache.set("c", "3")

    assert len(cache) == 2
    assert await cache.get("b") is None
    assert await cache.get("a") == "1"
    assert await cache.get("c") == "3"


async def test_entries_expire(monkeypatch):
    now = [100.0]
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
    cache = InMemoryLRUCache()

    await cache.set("short", "1", ttl=10)
    await cache.set("forever", "2")

    now[0] = 109.0
    assert await cache.get("short") == "1"

    now[0] = 111.0
    assert await cache.get("short") is None
    assert await cache.get("forever") == "2"
    assert len(cache) == 1


async def test_redis_cache_prefixes_keys():
    client = FakeRedis()
    cache = RedisKeyValueCache(prefix="test", client=client)

    await cache.set("apq:abc", "{ hello }", ttl=60)

    assert client.calls == [("set", "test:apq:abc", "{ hello }", 60)]
    assert await cache.get("apq:abc") == "{ hello }"
    assert await cache.delete("apq:abc")


async def test_redis_read_errors_are_misses(caplog):
    cache = RedisKeyValueCache(client=FakeRedis(fail=True))

    with caplog.at_level(logging.WARNING, logger="graphpipe.caching.cache"):
        assert await cache.get("key") is None
        assert not await cache.delete("key")

    assert "Cache read error" in caplog.text


async def test_redis_write_errors_propagate():
    cache = RedisKeyValueCache(client=FakeRedis(fail=True))

    with pytest.raises(ConnectionError):
        await cache.set("key", "value")


def test_redis_cache_needs_url_or_client():
    with pytest.raises(ValueError):
        RedisKeyValueCache()


async def test_redis_cache_unconnected(caplog):
    cache = RedisKeyValueCache("redis://localhost:6379")

    assert not cache.connected
    with caplog.at_level(logging.WARNING, logger="graphpipe.caching.cache"):
        assert await cache.get("key") is None
    assert "used before connect()" in caplog.text
    with pytest.raises(ConnectionError):
        await cache.set("key", "value")


async def test_redis_cache_connect_and_close(monkeypatch):
    redis = FakeRedis()
    urls = []

    def from_url(url, **kwargs):
        urls.append((url, kwargs))
        return redis

    monkeypatch.setattr(cache_module, "aioredis", SimpleNamespace(from_url=from_url))
    cache = RedisKeyValueCache("redis://cache:6379/1")

    await cache.connect()
    await cache.connect()
    assert cache.connected
    assert urls == [("redis://cache:6379/1", {"decode_responses": True})]

    await cache.set("apq:abc", "{ hello }")
    assert redis.store == {"graphpipe:apq:abc": "{ hello }"}

    await cache.close()
    assert not cache.connected
    assert redis.calls[-1] == ("aclose",)


async def test_redis_cache_leaves_given_client_open():
    redis = FakeRedis()
    cache = RedisKeyValueCache(client=redis)

    await cache.close()

    assert cache.connected
    assert ("aclose",) not in redis.calls
