"""
API module - FastAPI endpoints.
"""

from __future__ import annotations

from .router import (
    QueryOnlyPlugin,
    collect_deferred,
    create_graphql_router,
    multipart_stream,
    status_code_for,
)

__all__ = [
    "create_graphql_router",
    "QueryOnlyPlugin",
    "multipart_stream",
    "collect_deferred",
    "status_code_for",
]
