"""
Tests for automatic persisted query resolution.
"""

from __future__ import annotations

import hashlib
import logging

import pytest

from graphpipe import (
    GraphQLRequest,
    InMemoryLRUCache,
    InvalidRequestError,
    PersistedQueryNotFoundError,
    PersistedQueryNotSupportedError,
    PersistedQueryOptions,
)
from graphpipe.core.persisted_queries import (
    APQ_CACHE_PREFIX,
    compute_query_hash,
    resolve_query,
    wait_for_pending_writes,
)

QUERY = "{ hello }"
QUERY_HASH = hashlib.sha256(QUERY.encode("utf-8")).hexdigest()


def hint(sha: str = QUERY_HASH, version: int = 1) -> dict:
    return {"persistedQuery": {"version": version, "sha256Hash": sha}}


class FailingCache:
    async def get(self, key):
        return None

    async def set(self, key, value, ttl=None):
        raise ConnectionError("cache down")

    async def delete(self, key):
        return False


def test_compute_query_hash_is_sha256_hex():
    assert compute_query_hash(QUERY) == QUERY_HASH
    assert len(QUERY_HASH) == 64


async def test_plain_query_is_hashed():
    resolved = await resolve_query(GraphQLRequest(query=QUERY))

    assert resolved.query == QUERY
    assert resolved.query_hash == QUERY_HASH
    assert not resolved.hit
    assert not resolved.register


async def test_missing_query_is_rejected():
    with pytest.raises(InvalidRequestError, match="Must provide query string."):
        await resolve_query(GraphQLRequest())


async def test_hint_without_cache_is_not_supported():
    request = GraphQLRequest(extensions=hint())

    with pytest.raises(PersistedQueryNotSupportedError):
        await resolve_query(request)
    with pytest.raises(PersistedQueryNotSupportedError):
        await resolve_query(request, PersistedQueryOptions(cache=None))


async def test_unsupported_version(cache):
    request = GraphQLRequest(extensions=hint(version=2))

    with pytest.raises(InvalidRequestError, match="Unsupported persisted query version"):
        await resolve_query(request, PersistedQueryOptions(cache=cache))


async def test_malformed_envelope(cache):
    request = GraphQLRequest(extensions={"persistedQuery": {"version": 1}})

    with pytest.raises(InvalidRequestError):
        await resolve_query(request, PersistedQueryOptions(cache=cache))


async def test_malformed_envelope_without_cache_is_not_supported():
    request = GraphQLRequest(query=QUERY, extensions={"persistedQuery": {"version": 1}})

    with pytest.raises(PersistedQueryNotSupportedError):
        await resolve_query(request)


async def test_unknown_hash_is_not_found(cache):
    request = GraphQLRequest(extensions=hint())

    with pytest.raises(PersistedQueryNotFoundError):
        await resolve_query(request, PersistedQueryOptions(cache=cache))


async def test_hash_mismatch(cache):
    request = GraphQLRequest(query="{ greeting }", extensions=hint())

    with pytest.raises(InvalidRequestError, match="provided sha does not match query"):
        await resolve_query(request, PersistedQueryOptions(cache=cache))
    await wait_for_pending_writes()
    assert await cache.get(f"{APQ_CACHE_PREFIX}{QUERY_HASH}") is None


async def test_register_then_hit(cache):
    options = PersistedQueryOptions(cache=cache, ttl=300)

    registered = await resolve_query(GraphQLRequest(query=QUERY, extensions=hint()), options)
    assert registered.register
    assert not registered.hit
    assert registered.query_hash == QUERY_HASH

    await wait_for_pending_writes()
    assert await cache.get(f"{APQ_CACHE_PREFIX}{QUERY_HASH}") == QUERY

    hit = await resolve_query(GraphQLRequest(extensions=hint()), options)
    assert hit.hit
    assert hit.query == QUERY
    assert hit.query_hash == QUERY_HASH


async def test_registration_failure_is_logged(caplog):
    options = PersistedQueryOptions(cache=FailingCache())

    with caplog.at_level(logging.WARNING, logger="graphpipe.core.persisted_queries"):
        resolved = await resolve_query(GraphQLRequest(query=QUERY, extensions=hint()), options)
        await wait_for_pending_writes()

    assert resolved.register
    assert "registration failed" in caplog.text


async def test_deleted_registration_is_not_found():
    cache = InMemoryLRUCache()
    key = f"{APQ_CACHE_PREFIX}{QUERY_HASH}"
    await cache.set(key, QUERY)
    await cache.delete(key)

    with pytest.raises(PersistedQueryNotFoundError):
        await resolve_query(GraphQLRequest(extensions=hint()), PersistedQueryOptions(cache=cache))
