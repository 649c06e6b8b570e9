"""
Custom exceptions for the graphpipe request pipeline.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """
    Error classification carried in ``extensions.code`` of formatted errors.

    Applications may use their own string codes as well; these are the
    kinds the pipeline itself produces.
    """
    SYNTAX = "GRAPHQL_PARSE_FAILED"
    VALIDATION = "GRAPHQL_VALIDATION_FAILED"
    PERSISTED_QUERY_NOT_SUPPORTED = "PERSISTED_QUERY_NOT_SUPPORTED"
    PERSISTED_QUERY_NOT_FOUND = "PERSISTED_QUERY_NOT_FOUND"
    INVALID_REQUEST = "BAD_REQUEST"
    INTERNAL = "INTERNAL_SERVER_ERROR"


class GraphPipeError(Exception):
    """Base exception for all graphpipe errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, extensions: Optional[dict[str, Any]] = None):
        self.message = message
        self.extensions = extensions or {}
        super().__init__(message)


class InvalidRequestError(GraphPipeError):
    """Raised when the request envelope is malformed."""

    kind = ErrorKind.INVALID_REQUEST


class PersistedQueryNotSupportedError(GraphPipeError):
    """Raised when a persisted query is sent to a server without a cache."""

    kind = ErrorKind.PERSISTED_QUERY_NOT_SUPPORTED

    def __init__(self):
        super().__init__("PersistedQueryNotSupported")


class PersistedQueryNotFoundError(GraphPipeError):
    """Raised when a persisted query hash is unknown and no query text was sent."""

    kind = ErrorKind.PERSISTED_QUERY_NOT_FOUND

    def __init__(self):
        super().__init__("PersistedQueryNotFound")


class DataSourceError(GraphPipeError):
    """Raised when a backend call made by a data source fails."""

    def __init__(self, url: str, status_code: int, message: str):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Request to '{url}' returned {status_code}: {message}")


class ConfigurationError(GraphPipeError):
    """
    Raised when the pipeline is misconfigured.

    Never converted into a response; it is meant to fail loudly.
    """
    pass
