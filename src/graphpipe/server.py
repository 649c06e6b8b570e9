"""
GraphQL server - main entry point for serving a schema over HTTP.

Usage:
    from graphql import build_schema
    from graphpipe import GraphQLServer

    server = GraphQLServer(
        schema=build_schema("type Query { hello: String }"),
        root_value={"hello": lambda info: "world"},
    )

    app = server.app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional, Sequence, Type

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from graphql import GraphQLFieldResolver, GraphQLSchema
from graphql.validation import ASTValidationRule

from .api import create_graphql_router
from .api.router import ContextFactory
from .caching import InMemoryLRUCache, KeyValueCache, RedisKeyValueCache
from .core.formatting import FormatErrorFn
from .core.persisted_queries import PersistedQueryOptions, wait_for_pending_writes
from .runtime.cache_control import CacheControlOptions
from .runtime.datasources import DataSourcesFactory
from .runtime.dispatcher import ServerPlugin
from .runtime.extensions import GraphQLExtension
from .runtime.pipeline import FormatResponseFn, RequestPipelineConfig
from .settings import GraphPipeSettings

logger = logging.getLogger(__name__)


class GraphQLServer:
    """
    GraphQL server built on the request pipeline.

    Features:
    - Persisted queries backed by Redis (when redis_url is set) or memory
    - Optional tracing and cache-control extensions
    - @defer streaming over multipart/mixed
    - Provides FastAPI app with the GraphQL endpoint and /health
    """

    def __init__(
        self,
        schema: GraphQLSchema,
        *,
        settings: Optional[GraphPipeSettings] = None,
        root_value: Any = None,
        plugins: Sequence[ServerPlugin] = (),
        extensions: Sequence[Callable[[], GraphQLExtension]] = (),
        data_sources: Optional[DataSourcesFactory] = None,
        validation_rules: Optional[Sequence[Type[ASTValidationRule]]] = None,
        field_resolver: Optional[GraphQLFieldResolver] = None,
        format_error: Optional[FormatErrorFn] = None,
        format_response: Optional[FormatResponseFn] = None,
        context_factory: Optional[ContextFactory] = None,
        cache: Optional[KeyValueCache] = None,
        title: str = "GraphQL Server",
    ):
        """
        Initialize server.

        Args:
            schema: Executable GraphQL schema
            settings: Server settings (default: from environment)
            root_value: Root value or callable taking the parsed document
            plugins: Request pipeline plugins
            extensions: Factories for per-request extensions
            data_sources: Factory for per-request data sources
            validation_rules: Extra validation rules
            field_resolver: Default field resolver
            format_error: Transform for formatted errors
            format_response: Transform for responses
            context_factory: Builds the resolver context from the HTTP request
            cache: Cache for persisted queries and data sources
                (default: Redis when redis_url is set, else in-memory)
            title: FastAPI app title
        """
        self.settings = settings or GraphPipeSettings()
        self.title = title
        self.cache = cache if cache is not None else self._default_cache()

        persisted_queries = None
        if self.settings.persisted_queries:
            persisted_queries = PersistedQueryOptions(
                cache=self.cache,
                ttl=self.settings.persisted_query_ttl,
            )

        cache_control = None
        if self.settings.cache_control_default_max_age is not None:
            cache_control = CacheControlOptions(
                default_max_age=self.settings.cache_control_default_max_age,
            )

        self.config = RequestPipelineConfig(
            schema=schema,
            root_value=root_value,
            validation_rules=validation_rules,
            field_resolver=field_resolver,
            data_sources=data_sources,
            extensions=tuple(extensions),
            tracing=self.settings.tracing,
            persisted_queries=persisted_queries,
            cache_control=cache_control,
            format_error=format_error,
            format_response=format_response,
            plugins=tuple(plugins),
            enable_defer=self.settings.enable_defer,
            debug=self.settings.debug,
        )
        self.context_factory = context_factory

        # Create FastAPI app
        self.app = self._create_app()
        self.app.state.graphql_server = self

    def _default_cache(self) -> KeyValueCache:
        if self.settings.redis_url:
            return RedisKeyValueCache(self.settings.redis_url)
        return InMemoryLRUCache(max_entries=self.settings.persisted_query_max_entries)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Connect the cache on startup; flush pending writes on shutdown."""
        redis_cache = self.cache if isinstance(self.cache, RedisKeyValueCache) else None
        if redis_cache is not None:
            await redis_cache.connect()
        try:
            yield
        finally:
            await wait_for_pending_writes()
            if redis_cache is not None:
                await redis_cache.close()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        app = FastAPI(
            title=self.title,
            description="GraphQL request pipeline",
            lifespan=self._lifespan,
        )

        # CORS
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        app.include_router(
            create_graphql_router(
                self.config,
                path=self.settings.graphql_path,
                context_factory=self.context_factory,
                cache=self.cache,
            )
        )

        # Health check
        @app.get("/health")
        async def health():
            return {"status": "ok"}

        logger.info(f"GraphQL endpoint mounted at {self.settings.graphql_path}")
        return app
