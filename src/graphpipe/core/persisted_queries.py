"""
Automatic persisted queries (APQ).

Clients send only a SHA-256 hash on repeat requests; the query text is
recovered from a cache keyed by that hash. The hash of every query also
becomes the request's ``query_hash``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import (
    InvalidRequestError,
    PersistedQueryNotFoundError,
    PersistedQueryNotSupportedError,
)
from .request_types import GraphQLRequest, PersistedQueryHint

if TYPE_CHECKING:
    from ..caching.cache import KeyValueCache

logger = logging.getLogger(__name__)

APQ_CACHE_PREFIX = "apq:"
SUPPORTED_VERSION = 1

# Registrations in flight; held so tasks are not garbage collected early
_pending_writes: set[asyncio.Task] = set()


@dataclass(frozen=True)
class PersistedQueryOptions:
    """
    Persisted-query configuration.

    Args:
        cache: Store for query texts (None disables persisted queries)
        ttl: Seconds to keep registered queries (None = no expiry)
    """
    cache: Optional["KeyValueCache"] = None
    ttl: Optional[int] = None


@dataclass(frozen=True)
class ResolvedQuery:
    """Outcome of query resolution."""
    query: str
    query_hash: str
    hit: bool = False
    register: bool = False


def compute_query_hash(query: str) -> str:
    """SHA-256 hex digest of the raw query text."""
    return hashlib.sha256(query.encode("utf-8")).hexdigest()


def _raw_hint(request: GraphQLRequest) -> Any:
    return (request.extensions or {}).get("persistedQuery")


def _parse_hint(raw: Any) -> PersistedQueryHint:
    try:
        return PersistedQueryHint.model_validate(raw)
    except PydanticValidationError:
        raise InvalidRequestError("Invalid persisted query envelope")


async def resolve_query(
    request: GraphQLRequest,
    options: Optional[PersistedQueryOptions] = None,
) -> ResolvedQuery:
    """
    Produce the final query text and its hash.

    Raises:
        InvalidRequestError: No query, unsupported version, or hash mismatch
        PersistedQueryNotSupportedError: Hint sent but no cache configured
        PersistedQueryNotFoundError: Hash unknown and no query text sent
    """
    raw_hint = _raw_hint(request)
    query = request.query

    if raw_hint is None:
        if not query:
            raise InvalidRequestError("Must provide query string.")
        return ResolvedQuery(query=query, query_hash=compute_query_hash(query))

    if options is None or options.cache is None:
        raise PersistedQueryNotSupportedError()

    hint = _parse_hint(raw_hint)

    if hint.version != SUPPORTED_VERSION:
        raise InvalidRequestError("Unsupported persisted query version")

    query_hash = hint.sha256_hash
    cache_key = f"{APQ_CACHE_PREFIX}{query_hash}"

    if query is None:
        cached = await options.cache.get(cache_key)
        if not cached:
            raise PersistedQueryNotFoundError()
        logger.debug(f"Persisted query HIT: {query_hash}")
        return ResolvedQuery(query=cached, query_hash=query_hash, hit=True)

    if compute_query_hash(query) != query_hash:
        raise InvalidRequestError("provided sha does not match query")

    register_query(options, cache_key, query)
    return ResolvedQuery(query=query, query_hash=query_hash, register=True)


def register_query(options: PersistedQueryOptions, cache_key: str, query: str) -> asyncio.Task:
    """
    Store a query text in the background.

    The request never waits for the write; failures are logged only.
    """
    task = asyncio.create_task(_write(options, cache_key, query))
    _pending_writes.add(task)
    task.add_done_callback(_pending_writes.discard)
    return task


async def _write(options: PersistedQueryOptions, cache_key: str, query: str) -> None:
    try:
        await options.cache.set(cache_key, query, ttl=options.ttl)
        logger.debug(f"Persisted query registered: {cache_key}")
    except Exception as e:
        logger.warning(f"Persisted query registration failed for {cache_key}: {e}")


async def wait_for_pending_writes() -> None:
    """Wait for every in-flight registration (used at shutdown and in tests)."""
    while _pending_writes:
        await asyncio.gather(*list(_pending_writes))
