"""
Pydantic models for GraphQL requests and responses.

These define the wire shape of incoming requests and the response variants
produced by the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ..runtime.extensions import ExtensionStack


# --- Request types (from client) ---

class HttpRequestMeta(BaseModel):
    """Transport details of the incoming request."""
    method: str = "POST"
    url: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)


class PersistedQueryHint(BaseModel):
    """
    Automatic persisted query envelope.

    Example:
    {"persistedQuery": {"version": 1, "sha256Hash": "ecf4edb4..."}}
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: int
    sha256_hash: str = Field(alias="sha256Hash")


class GraphQLRequest(BaseModel):
    """
    GraphQL request as sent by the client.

    Example:
    {
        "query": "query Hero($id: ID!) { hero(id: $id) { name } }",
        "operationName": "Hero",
        "variables": {"id": "1"},
        "extensions": {"persistedQuery": {"version": 1, "sha256Hash": "..."}}
    }
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    query: Optional[str] = None
    operation_name: Optional[str] = Field(default=None, alias="operationName")
    variables: Optional[dict[str, Any]] = None
    extensions: Optional[dict[str, Any]] = None
    http: Optional[HttpRequestMeta] = None


# --- Response types ---

class HttpResponseMeta(BaseModel):
    """Transport details of the outgoing response, preserved across overwrites."""
    status_code: Optional[int] = None
    headers: dict[str, str] = Field(default_factory=dict)


class FormattedError(BaseModel):
    """
    Error as delivered to the client.

    ``extensions["code"]`` carries the error kind.
    """
    message: str
    locations: Optional[list[dict[str, int]]] = None
    path: Optional[list[Union[str, int]]] = None
    extensions: dict[str, Any] = Field(default_factory=dict)

    @property
    def kind(self) -> Optional[str]:
        return self.extensions.get("code")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message}
        if self.locations:
            payload["locations"] = self.locations
        if self.path:
            payload["path"] = self.path
        if self.extensions:
            payload["extensions"] = self.extensions
        return payload


class GraphQLResponse(BaseModel):
    """Complete (non-deferred) GraphQL response."""
    data: Optional[dict[str, Any]] = None
    errors: Optional[list[FormattedError]] = None
    extensions: Optional[dict[str, Any]] = None
    http: Optional[HttpResponseMeta] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape (transport metadata excluded)."""
        payload: dict[str, Any] = {}
        if self.errors:
            payload["errors"] = [error.to_dict() for error in self.errors]
        if self.data is not None:
            payload["data"] = self.data
        if self.extensions:
            payload["extensions"] = self.extensions
        return payload


class ExecutionPatch(BaseModel):
    """A deferred field's value delivered after the initial response."""
    path: list[Union[str, int]]
    data: Any = None
    errors: Optional[list[FormattedError]] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path, "data": self.data}
        if self.errors:
            payload["errors"] = [error.to_dict() for error in self.errors]
        return payload


@dataclass
class DeferredGraphQLResponse:
    """
    Initial response plus a lazy stream of patches for deferred fields.

    The stream ends the request's instrumentation scope when it is drained
    or closed. Transports that abandon the stream must call ``aclose()``.
    """
    initial_response: GraphQLResponse
    deferred_patches: AsyncIterator[ExecutionPatch]
    on_request_end: Callable[[], None]
    extension_stack: "ExtensionStack"

    async def aclose(self) -> None:
        """Stop consuming patches, cancelling deferred work still in flight."""
        aclose = getattr(self.deferred_patches, "aclose", None)
        if aclose is not None:
            await aclose()
        self.on_request_end()


PipelineResponse = Union[GraphQLResponse, DeferredGraphQLResponse]


def is_deferred_graphql_response(response: PipelineResponse) -> bool:
    """Check which response variant the pipeline produced."""
    return isinstance(response, DeferredGraphQLResponse)
