"""
Request pipeline - drives a GraphQL request from raw text to response.

Stages, in order:
    resolve query -> parse -> validate -> resolve operation -> execute
    -> format -> send

Each stage is wrapped by the plugin dispatcher (outer) and the extension
stack (inner). The first failing stage short-circuits to an error
response; every response, success or failure, leaves through the same
send step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Sequence, Type, Union

from graphql import (
    DocumentNode,
    GraphQLError,
    GraphQLFieldResolver,
    GraphQLSchema,
    get_operation_ast,
    parse as graphql_parse,
    validate as graphql_validate,
)
from graphql.validation import ASTValidationRule

from ..core.context import PipelineStage, RequestContext
from ..core.directives import ensure_defer_directive
from ..core.errors import ErrorKind
from ..core.formatting import FormatErrorFn, format_errors
from ..core.persisted_queries import PersistedQueryOptions, resolve_query
from ..core.request_types import (
    DeferredGraphQLResponse,
    ExecutionPatch,
    GraphQLResponse,
    HttpResponseMeta,
    PipelineResponse,
)
from ..core.validation import build_validation_rules
from .cache_control import CacheControlExtension, CacheControlOptions
from .datasources import DataSourcesFactory, initialize_data_sources
from .dispatcher import Dispatcher, ServerPlugin
from .execute import (
    DeferredExecutionResult,
    ExecutionArgs,
    ExecutionPatchResult,
    execute,
    is_deferred_execution_result,
)
from .extensions import EndHandler, ExtensionStack, GraphQLExtension
from .tracing import TracingExtension

logger = logging.getLogger(__name__)

FormatResponseFn = Callable[[GraphQLResponse, dict[str, Any]], GraphQLResponse]


@dataclass(frozen=True)
class RequestPipelineConfig:
    """
    Immutable configuration shared by every request.

    Args:
        schema: Executable schema (``@defer`` is added when missing)
        root_value: Root value, or a callable taking the parsed document
        validation_rules: Extra rules run after the built-in ones
        field_resolver: Default field resolver for the engine
        data_sources: Factory returning this request's data sources
        extensions: Factories creating per-request extensions
        tracing: Add the tracing extension
        persisted_queries: Persisted-query options (None disables APQ)
        cache_control: Cache-control options (None disables the extension)
        format_error: Transform applied to every formatted error
        format_response: Transform applied to ``(response, {"context": ...})``
        plugins: Plugins asked for a listener on every request
        enable_defer: Honour ``@defer`` in query operations
        debug: Include stacktraces in error extensions
    """
    schema: GraphQLSchema
    root_value: Any = None
    validation_rules: Optional[Sequence[Type[ASTValidationRule]]] = None
    field_resolver: Optional[GraphQLFieldResolver] = None
    data_sources: Optional[DataSourcesFactory] = None
    extensions: Sequence[Callable[[], GraphQLExtension]] = ()
    tracing: bool = False
    persisted_queries: Optional[PersistedQueryOptions] = None
    cache_control: Optional[CacheControlOptions] = None
    format_error: Optional[FormatErrorFn] = None
    format_response: Optional[FormatResponseFn] = None
    plugins: Sequence[ServerPlugin] = ()
    enable_defer: bool = False
    debug: bool = False

    def __post_init__(self):
        object.__setattr__(self, "schema", ensure_defer_directive(self.schema))


async def process_graphql_request(
    config: RequestPipelineConfig,
    request_context: RequestContext,
) -> PipelineResponse:
    """
    Run one request through the pipeline.

    Returns:
        GraphQLResponse, or DeferredGraphQLResponse when fields were deferred

    Raises:
        ConfigurationError: Misconfiguration detected for this request
    """
    pipeline = RequestPipeline(config, request_context)
    return await pipeline.run()


def _once(callback: Callable[[], None]) -> Callable[[], None]:
    called = False

    def wrapper() -> None:
        nonlocal called
        if called:
            return
        called = True
        callback()

    return wrapper


class RequestPipeline:
    """
    Per-request orchestrator.

    Owns one extension stack and one dispatcher; neither outlives the
    request.

    Usage:
        pipeline = RequestPipeline(config, RequestContext(request=request))
        response = await pipeline.run()
    """

    def __init__(self, config: RequestPipelineConfig, request_context: RequestContext):
        self.config = config
        self.request_context = request_context
        self.extension_stack = self._initialize_extension_stack()
        self.dispatcher = Dispatcher.for_request(config.plugins, request_context)
        self._failed = False

    def _initialize_extension_stack(self) -> ExtensionStack:
        extensions = [factory() for factory in self.config.extensions]
        if self.config.tracing:
            extensions.append(TracingExtension())
        if self.config.cache_control is not None:
            extensions.append(CacheControlExtension(self.config.cache_control))
        return ExtensionStack(extensions)

    async def run(self) -> PipelineResponse:
        ctx = self.request_context
        await initialize_data_sources(self.config.data_sources, ctx)

        ctx.stage = PipelineStage.RESOLVE_QUERY
        try:
            resolved = await resolve_query(ctx.request, self.config.persisted_queries)
        except Exception as error:
            logger.debug(f"Query resolution failed: {error}")
            return await self._send_error_response([error])

        ctx.query_hash = resolved.query_hash
        ctx.persisted_query_hit = resolved.hit
        ctx.persisted_query_register = resolved.register

        request = ctx.request
        request_did_end = self.extension_stack.request_did_start(
            request=request.http,
            query_string=request.query,
            operation_name=request.operation_name,
            variables=request.variables,
            extensions=request.extensions,
            persisted_query_hit=resolved.hit,
            persisted_query_register=resolved.register,
            context=ctx.context,
            request_context=ctx,
        )

        response: Optional[PipelineResponse] = None
        try:
            response = await self._process(resolved.query, request_did_end)
            return response
        finally:
            # A deferred response ends the request when its patch stream ends
            if not isinstance(response, DeferredGraphQLResponse):
                request_did_end()

    async def _process(self, query: str, request_did_end: EndHandler) -> PipelineResponse:
        ctx = self.request_context
        request = ctx.request

        ctx.stage = PipelineStage.PARSE
        parsing_did_end = self.dispatcher.invoke_did_start_hook("parsing_did_start", ctx)
        try:
            document = self._parse(query)
        except Exception as error:
            logger.debug(f"Parsing failed: {error}")
            parsing_did_end(error)
            kind = ErrorKind.SYNTAX if isinstance(error, GraphQLError) else None
            return await self._send_error_response([error], kind)
        parsing_did_end()
        ctx.set_document(document)

        ctx.stage = PipelineStage.VALIDATE
        validation_did_end = self.dispatcher.invoke_did_start_hook("validation_did_start", ctx)
        try:
            validation_errors = self._validate(document)
        except Exception as error:
            logger.debug(f"Validation failed: {error}")
            validation_did_end(error)
            return await self._send_error_response([error])
        if validation_errors:
            validation_did_end(*validation_errors)
            return await self._send_error_response(validation_errors, ErrorKind.VALIDATION)
        validation_did_end()

        ctx.stage = PipelineStage.RESOLVE_OPERATION
        try:
            ctx.set_operation(get_operation_ast(document, request.operation_name))
            await self.dispatcher.invoke_hook_async("did_resolve_operation", ctx)
        except Exception as error:
            logger.debug(f"Operation resolution failed: {error}")
            return await self._send_error_response([error])

        ctx.stage = PipelineStage.EXECUTE
        execution_did_end = self.dispatcher.invoke_did_start_hook("execution_did_start", ctx)
        try:
            result = await self._execute(document)
            ctx.stage = PipelineStage.FORMAT
            output = self._format_result(result, request_did_end)
        except Exception as error:
            logger.debug(f"Execution failed: {error}")
            execution_did_end(error)
            return await self._send_error_response([error])
        execution_did_end()

        try:
            return await self._send_response(output)
        except Exception as error:
            logger.debug(f"Sending response failed: {error}")
            return await self._send_error_response([error])

    # --- Engine calls, wrapped by the extension stack ---

    def _parse(self, query: str) -> DocumentNode:
        parsing_did_end = self.extension_stack.parsing_did_start(query_string=query)
        try:
            document = graphql_parse(query)
        except Exception as error:
            parsing_did_end(error)
            raise
        parsing_did_end()
        return document

    def _validate(self, document: DocumentNode) -> list[GraphQLError]:
        rules = build_validation_rules(self.config.validation_rules)
        validation_did_end = self.extension_stack.validation_did_start(document=document)
        try:
            errors = graphql_validate(self.config.schema, document, rules)
        except Exception as error:
            validation_did_end(error)
            raise
        validation_did_end(*errors)
        return errors

    async def _execute(self, document: DocumentNode) -> Any:
        config = self.config
        request = self.request_context.request
        root_value = config.root_value(document) if callable(config.root_value) else config.root_value

        execution_args = ExecutionArgs(
            schema=config.schema,
            document=document,
            root_value=root_value,
            context_value=self.request_context.context,
            variable_values=request.variables,
            operation_name=request.operation_name,
            field_resolver=config.field_resolver,
            middleware=self.extension_stack.as_middleware(),
            enable_defer=config.enable_defer,
        )

        execution_did_end = self.extension_stack.execution_did_start(execution_args=execution_args)
        try:
            result = await execute(execution_args)
        except Exception as error:
            execution_did_end(error)
            raise
        execution_did_end()
        return result

    # --- Formatting and sending ---

    def _format_errors(
        self,
        errors: Optional[Iterable[BaseException]],
        kind: Optional[Union[ErrorKind, str]] = None,
    ) -> list:
        return format_errors(
            errors or (),
            kind,
            debug=self.config.debug,
            format_error=self.config.format_error,
        )

    def _format_result(self, result: Any, request_did_end: EndHandler) -> PipelineResponse:
        patches: Optional[AsyncIterator[ExecutionPatchResult]] = None
        if is_deferred_execution_result(result):
            deferred: DeferredExecutionResult = result
            result, patches = deferred.initial_result, deferred.deferred_patches

        response = GraphQLResponse(
            data=result.data,
            errors=self._format_errors(result.errors) or None,
        )

        formatted_extensions = self.extension_stack.format()
        if formatted_extensions:
            response.extensions = formatted_extensions

        if self.config.format_response is not None:
            response = self.config.format_response(
                response, {"context": self.request_context.context}
            )

        if patches is None:
            return response

        on_request_end = _once(request_did_end)
        return DeferredGraphQLResponse(
            initial_response=response,
            deferred_patches=self._format_patches(patches, on_request_end),
            on_request_end=on_request_end,
            extension_stack=self.extension_stack,
        )

    async def _format_patches(
        self,
        patches: AsyncIterator[ExecutionPatchResult],
        on_request_end: Callable[[], None],
    ) -> AsyncIterator[ExecutionPatch]:
        try:
            async for patch in patches:
                yield ExecutionPatch(
                    path=patch.path,
                    data=patch.data,
                    errors=self._format_errors(patch.errors) or None,
                )
        finally:
            await patches.aclose()
            on_request_end()

    def _merge(self, response: GraphQLResponse) -> GraphQLResponse:
        """Overwrite errors/data/extensions, keeping everything else (e.g. http)."""
        current = self.request_context.response or GraphQLResponse(http=HttpResponseMeta())
        return current.model_copy(
            update={
                "errors": response.errors,
                "data": response.data,
                "extensions": response.extensions,
            }
        )

    async def _send_response(self, output: PipelineResponse) -> PipelineResponse:
        ctx = self.request_context
        ctx.stage = PipelineStage.SEND

        if isinstance(output, DeferredGraphQLResponse):
            initial_response = self.extension_stack.will_send_response(
                self._merge(output.initial_response), ctx.context
            )
            output.initial_response = initial_response
            ctx.response = initial_response
            ctx.stage = PipelineStage.SENT
            return output

        ctx.response = self.extension_stack.will_send_response(self._merge(output), ctx.context)
        await self.dispatcher.invoke_hook_async("will_send_response", ctx)
        ctx.stage = PipelineStage.ERROR_SENT if self._failed else PipelineStage.SENT
        return ctx.response

    async def _send_error_response(
        self,
        errors: Sequence[BaseException],
        kind: Optional[Union[ErrorKind, str]] = None,
    ) -> GraphQLResponse:
        self._failed = True
        return await self._send_response(GraphQLResponse(errors=self._format_errors(errors, kind)))
