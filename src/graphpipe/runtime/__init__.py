"""
Runtime module - request pipeline and its instrumentation.
"""

from __future__ import annotations

from .cache_control import CacheControlExtension, CacheControlOptions, CacheScope
from .datasources import DataSource, DataSourceConfig, HTTPDataSource, initialize_data_sources
from .dispatcher import Dispatcher, RequestListener, ServerPlugin
from .execute import (
    DeferredExecutionResult,
    ExecutionArgs,
    ExecutionPatchResult,
    execute,
    is_deferred_execution_result,
)
from .extensions import ExtensionStack, GraphQLExtension
from .pipeline import RequestPipeline, RequestPipelineConfig, process_graphql_request
from .tracing import TracingExtension

__all__ = [
    "RequestPipelineConfig",
    "RequestPipeline",
    "process_graphql_request",
    "ExecutionArgs",
    "ExecutionPatchResult",
    "DeferredExecutionResult",
    "execute",
    "is_deferred_execution_result",
    "GraphQLExtension",
    "ExtensionStack",
    "TracingExtension",
    "CacheControlExtension",
    "CacheControlOptions",
    "CacheScope",
    "ServerPlugin",
    "RequestListener",
    "Dispatcher",
    "DataSource",
    "DataSourceConfig",
    "HTTPDataSource",
    "initialize_data_sources",
]
