"""
Caching module - key-value stores for persisted queries and data sources.
"""

from __future__ import annotations

from .cache import InMemoryLRUCache, KeyValueCache, RedisKeyValueCache

__all__ = [
    "KeyValueCache",
    "InMemoryLRUCache",
    "RedisKeyValueCache",
]
