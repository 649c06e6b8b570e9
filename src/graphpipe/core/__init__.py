"""
Core module - request/response types, errors, persisted queries and validation.
"""

from __future__ import annotations

from .context import PipelineStage, RequestContext
from .directives import GraphQLDeferDirective, ensure_defer_directive
from .errors import (
    ConfigurationError,
    DataSourceError,
    ErrorKind,
    GraphPipeError,
    InvalidRequestError,
    PersistedQueryNotFoundError,
    PersistedQueryNotSupportedError,
)
from .formatting import format_errors, format_graphql_error
from .persisted_queries import (
    APQ_CACHE_PREFIX,
    PersistedQueryOptions,
    ResolvedQuery,
    compute_query_hash,
    resolve_query,
    wait_for_pending_writes,
)
from .request_types import (
    DeferredGraphQLResponse,
    ExecutionPatch,
    FormattedError,
    GraphQLRequest,
    GraphQLResponse,
    HttpRequestMeta,
    HttpResponseMeta,
    PersistedQueryHint,
    PipelineResponse,
    is_deferred_graphql_response,
)
from .validation import CannotDeferNonNullableFields, build_validation_rules

__all__ = [
    # Context
    "RequestContext",
    "PipelineStage",
    # Directives
    "GraphQLDeferDirective",
    "ensure_defer_directive",
    # Errors
    "GraphPipeError",
    "ErrorKind",
    "InvalidRequestError",
    "PersistedQueryNotSupportedError",
    "PersistedQueryNotFoundError",
    "ConfigurationError",
    "DataSourceError",
    # Formatting
    "format_graphql_error",
    "format_errors",
    # Persisted queries
    "APQ_CACHE_PREFIX",
    "PersistedQueryOptions",
    "ResolvedQuery",
    "compute_query_hash",
    "resolve_query",
    "wait_for_pending_writes",
    # Request/response types
    "GraphQLRequest",
    "HttpRequestMeta",
    "PersistedQueryHint",
    "GraphQLResponse",
    "HttpResponseMeta",
    "FormattedError",
    "ExecutionPatch",
    "DeferredGraphQLResponse",
    "PipelineResponse",
    "is_deferred_graphql_response",
    # Validation
    "CannotDeferNonNullableFields",
    "build_validation_rules",
]
