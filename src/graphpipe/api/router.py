"""
FastAPI binding for the request pipeline.

Endpoints (path configurable, default /graphql):
- POST /graphql - JSON body {"query", "operationName", "variables", "extensions"}
- GET  /graphql - same fields as query parameters (variables/extensions JSON-encoded)

Deferred responses stream as multipart/mixed when the client accepts it;
otherwise patches are folded into a single JSON response.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from inspect import isawaitable
from typing import Any, AsyncIterator, Callable, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from graphql import OperationType
from pydantic import ValidationError as PydanticValidationError

from ..caching.cache import KeyValueCache
from ..core.context import RequestContext
from ..core.errors import ErrorKind, InvalidRequestError
from ..core.request_types import (
    DeferredGraphQLResponse,
    GraphQLRequest,
    GraphQLResponse,
    HttpRequestMeta,
)
from ..runtime.dispatcher import RequestListener, ServerPlugin
from ..runtime.pipeline import RequestPipelineConfig, process_graphql_request

logger = logging.getLogger(__name__)

MULTIPART_MEDIA_TYPE = 'multipart/mixed; boundary="-"; deferSpec=20220824'
PART_HEADER = b"\r\n---\r\nContent-Type: application/json; charset=utf-8\r\n\r\n"
CLOSING_DELIMITER = b"\r\n-----\r\n"

# Errors the client is expected to recover from by retrying
RETRYABLE_KINDS = {
    ErrorKind.PERSISTED_QUERY_NOT_FOUND.value,
    ErrorKind.PERSISTED_QUERY_NOT_SUPPORTED.value,
}

ContextFactory = Callable[[Request], Any]


class _QueryOnlyListener(RequestListener):
    async def did_resolve_operation(self, request_context: RequestContext) -> None:
        operation = request_context.operation
        if operation is not None and operation.operation != OperationType.QUERY:
            raise InvalidRequestError(
                f"GET supports only query operations, not {operation.operation.value}"
            )


class QueryOnlyPlugin(ServerPlugin):
    """Rejects mutations and subscriptions sent over GET."""

    def request_did_start(self, request_context: RequestContext) -> Optional[RequestListener]:
        http = request_context.request.http
        if http is not None and http.method.upper() == "GET":
            return _QueryOnlyListener()
        return None


def status_code_for(response: GraphQLResponse) -> int:
    """
    HTTP status for a complete response.

    Responses without data are client errors, except persisted-query
    misses which clients answer by resending the full query.
    """
    if response.http is not None and response.http.status_code:
        return response.http.status_code
    if response.data is None and response.errors:
        if all(error.kind in RETRYABLE_KINDS for error in response.errors):
            return 200
        return 400
    return 200


def apply_patch(data: dict[str, Any], path: list[Any], value: Any) -> None:
    """Write a deferred value into response data at ``path``."""
    target: Any = data
    for segment in path[:-1]:
        target = target[segment]
    target[path[-1]] = value


def _encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


async def multipart_stream(response: DeferredGraphQLResponse) -> AsyncIterator[bytes]:
    """Initial response followed by one part per patch."""
    try:
        initial = response.initial_response.to_dict()
        initial["hasNext"] = True
        yield PART_HEADER + _encode(initial)
        async for patch in response.deferred_patches:
            part = patch.to_dict()
            part["hasNext"] = True
            yield PART_HEADER + _encode(part)
        yield PART_HEADER + _encode({"hasNext": False})
        yield CLOSING_DELIMITER
    finally:
        await response.aclose()


async def collect_deferred(response: DeferredGraphQLResponse) -> GraphQLResponse:
    """Drain the patch stream into one complete response."""
    initial = response.initial_response
    data = dict(initial.data) if initial.data is not None else None
    errors = list(initial.errors or [])
    try:
        async for patch in response.deferred_patches:
            if data is not None:
                try:
                    apply_patch(data, patch.path, patch.data)
                except (KeyError, IndexError, TypeError):
                    logger.warning(f"Could not apply deferred patch at {patch.path}")
            errors.extend(patch.errors or [])
    finally:
        await response.aclose()
    return initial.model_copy(update={"data": data, "errors": errors or None})


def create_graphql_router(
    config: RequestPipelineConfig,
    *,
    path: str = "/graphql",
    context_factory: Optional[ContextFactory] = None,
    cache: Optional[KeyValueCache] = None,
) -> APIRouter:
    """
    Create a router serving the pipeline over HTTP.

    Args:
        config: Pipeline configuration
        path: URL path for GET and POST
        context_factory: Builds the resolver context from the HTTP request
            (may be async); defaults to {"request": request}
        cache: Cache handed to data sources (defaults to the APQ cache)

    Returns:
        Configured FastAPI router
    """
    router = APIRouter()
    get_config = replace(config, plugins=(*config.plugins, QueryOnlyPlugin()))
    if cache is None and config.persisted_queries is not None:
        cache = config.persisted_queries.cache

    async def build_context(http_request: Request) -> Any:
        if context_factory is None:
            return {"request": http_request}
        context = context_factory(http_request)
        if isawaitable(context):
            context = await context
        return context

    async def run(http_request: Request, payload: dict[str, Any], pipeline_config) -> Response:
        meta = HttpRequestMeta(
            method=http_request.method,
            url=str(http_request.url),
            headers=dict(http_request.headers),
        )
        try:
            graphql_request = GraphQLRequest.model_validate({**payload, "http": meta})
        except PydanticValidationError as e:
            raise HTTPException(status_code=400, detail={"error": str(e)})

        request_context = RequestContext(
            request=graphql_request,
            context=await build_context(http_request),
            cache=cache,
        )
        response = await process_graphql_request(pipeline_config, request_context)

        if isinstance(response, DeferredGraphQLResponse):
            headers = dict(response.initial_response.http.headers) if response.initial_response.http else {}
            if "multipart/mixed" in http_request.headers.get("accept", ""):
                return StreamingResponse(
                    multipart_stream(response),
                    media_type=MULTIPART_MEDIA_TYPE,
                    headers=headers,
                )
            response = await collect_deferred(response)

        headers = dict(response.http.headers) if response.http else {}
        return JSONResponse(
            content=response.to_dict(),
            status_code=status_code_for(response),
            headers=headers,
        )

    @router.post(path)
    async def graphql_post(request: Request) -> Response:
        """Execute a GraphQL request sent as a JSON body."""
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail={"error": "POST body must be valid JSON"})
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail={"error": "POST body must be a JSON object"})
        return await run(request, body, config)

    @router.get(path)
    async def graphql_get(request: Request) -> Response:
        """Execute a GraphQL query sent as query parameters."""
        params = request.query_params
        payload: dict[str, Any] = {
            "query": params.get("query"),
            "operationName": params.get("operationName"),
        }
        for name in ("variables", "extensions"):
            raw = params.get(name)
            if raw is None:
                continue
            try:
                payload[name] = json.loads(raw)
            except ValueError:
                raise HTTPException(status_code=400, detail={"error": f"'{name}' must be valid JSON"})
        return await run(request, payload, get_config)

    return router
