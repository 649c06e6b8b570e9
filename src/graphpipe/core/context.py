"""
Request context for query processing.

Holds everything known about a single request as it moves through the
pipeline. Fields are filled in stage by stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from graphql import DocumentNode, OperationDefinitionNode

from .request_types import GraphQLRequest, GraphQLResponse, HttpResponseMeta

if TYPE_CHECKING:
    from ..caching.cache import KeyValueCache


class PipelineStage(str, Enum):
    """Pipeline states in the order they are entered."""
    INITIALIZED = "initialized"
    RESOLVE_QUERY = "resolve_query"
    PARSE = "parse"
    VALIDATE = "validate"
    RESOLVE_OPERATION = "resolve_operation"
    EXECUTE = "execute"
    FORMAT = "format"
    SEND = "send"
    SENT = "sent"
    ERROR_SENT = "error_sent"


@dataclass
class RequestContext:
    """
    Mutable, request-scoped state owned by the pipeline.

    Contains:
    - request: The immutable client request
    - response: Response under construction (transport metadata survives)
    - context: Application context bag handed to resolvers
    - cache: Key-value cache available to data sources

    Populated while the request runs:
    - query_hash: SHA-256 of the query text (before parsing)
    - document: Parsed document (after parsing)
    - operation / operation_name: Selected operation (after validation)
    """
    request: GraphQLRequest
    response: Optional[GraphQLResponse] = None
    context: Any = field(default_factory=dict)
    cache: Optional["KeyValueCache"] = None
    query_hash: Optional[str] = None
    document: Optional[DocumentNode] = None
    operation: Optional[OperationDefinitionNode] = None
    operation_name: Optional[str] = None
    persisted_query_hit: bool = False
    persisted_query_register: bool = False
    stage: PipelineStage = PipelineStage.INITIALIZED
    _operation_resolved: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        """Start with an empty response so transport metadata has a home."""
        if self.response is None:
            self.response = GraphQLResponse(http=HttpResponseMeta())

    def set_document(self, document: DocumentNode) -> None:
        if self.document is not None:
            raise RuntimeError("Document already set for this request")
        self.document = document

    def set_operation(self, operation: Optional[OperationDefinitionNode]) -> None:
        """
        Record the resolved operation.

        Anonymous operations get ``operation_name = None``.
        """
        if self._operation_resolved:
            raise RuntimeError("Operation already resolved for this request")
        self._operation_resolved = True
        self.operation = operation
        self.operation_name = operation.name.value if operation and operation.name else None

    @property
    def operation_resolved(self) -> bool:
        return self._operation_resolved
