"""
GraphPipe - GraphQL request pipeline for Python servers.

Takes a GraphQL request from raw text to a response:
- Automatic persisted queries (APQ) backed by Redis or memory
- Parsing, validation and execution via graphql-core
- Incremental delivery of @defer fields
- Extension and plugin hooks around every stage

Usage:
    from graphql import build_schema
    from graphpipe import GraphQLServer

    server = GraphQLServer(schema=build_schema("type Query { hello: String }"))
    app = server.app

Or drive the pipeline directly:
    from graphpipe import GraphQLRequest, RequestContext, RequestPipelineConfig
    from graphpipe import process_graphql_request

    config = RequestPipelineConfig(schema=schema)
    ctx = RequestContext(request=GraphQLRequest(query="{ hello }"))
    response = await process_graphql_request(config, ctx)
"""

from __future__ import annotations

from .api import QueryOnlyPlugin, create_graphql_router
from .caching import InMemoryLRUCache, KeyValueCache, RedisKeyValueCache
from .core import (
    ConfigurationError,
    DataSourceError,
    DeferredGraphQLResponse,
    ErrorKind,
    ExecutionPatch,
    FormattedError,
    GraphPipeError,
    GraphQLRequest,
    GraphQLResponse,
    HttpRequestMeta,
    HttpResponseMeta,
    InvalidRequestError,
    PersistedQueryNotFoundError,
    PersistedQueryNotSupportedError,
    PersistedQueryOptions,
    PipelineResponse,
    PipelineStage,
    RequestContext,
    is_deferred_graphql_response,
)
from .runtime import (
    CacheControlExtension,
    CacheControlOptions,
    DataSource,
    DataSourceConfig,
    GraphQLExtension,
    HTTPDataSource,
    RequestListener,
    RequestPipeline,
    RequestPipelineConfig,
    ServerPlugin,
    TracingExtension,
    process_graphql_request,
)
from .server import GraphQLServer
from .settings import GraphPipeSettings, load_settings

__version__ = "0.1.0"

__all__ = [
    # Server
    "GraphQLServer",
    "create_graphql_router",
    "QueryOnlyPlugin",
    "GraphPipeSettings",
    "load_settings",
    # Pipeline
    "RequestPipelineConfig",
    "RequestPipeline",
    "process_graphql_request",
    "RequestContext",
    "PipelineStage",
    # Request/response types
    "GraphQLRequest",
    "HttpRequestMeta",
    "GraphQLResponse",
    "HttpResponseMeta",
    "FormattedError",
    "ExecutionPatch",
    "DeferredGraphQLResponse",
    "PipelineResponse",
    "is_deferred_graphql_response",
    # Hooks
    "GraphQLExtension",
    "TracingExtension",
    "CacheControlExtension",
    "CacheControlOptions",
    "ServerPlugin",
    "RequestListener",
    "DataSource",
    "DataSourceConfig",
    "HTTPDataSource",
    # Persisted queries and caching
    "PersistedQueryOptions",
    "KeyValueCache",
    "InMemoryLRUCache",
    "RedisKeyValueCache",
    # Errors
    "GraphPipeError",
    "ErrorKind",
    "InvalidRequestError",
    "PersistedQueryNotSupportedError",
    "PersistedQueryNotFoundError",
    "ConfigurationError",
    "DataSourceError",
]
