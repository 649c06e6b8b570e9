"""
Extension stack - legacy per-request instrumentation.

Extensions are created per request from factories and observe stage
boundaries. Every did-start hook may return an end callback; the stack
fans calls out in registration order and end callbacks back in reverse.
"""

from __future__ import annotations

from inspect import isawaitable
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from graphql import DocumentNode, GraphQLResolveInfo

from ..core.request_types import GraphQLResponse, HttpRequestMeta

if TYPE_CHECKING:
    from ..core.context import RequestContext
    from .execute import ExecutionArgs


EndHandler = Callable[..., None]
ResolveEndHandler = Callable[[Optional[BaseException], Any], None]


class GraphQLExtension:
    """
    Base class for extensions.

    Override any subset of the hooks. Did-start hooks return an end
    callback (or None); ``format`` returns ``(name, value)`` to contribute
    to the response's ``extensions`` map.
    """

    def request_did_start(
        self,
        *,
        request: Optional[HttpRequestMeta],
        query_string: Optional[str],
        operation_name: Optional[str],
        variables: Optional[dict[str, Any]],
        extensions: Optional[dict[str, Any]],
        persisted_query_hit: bool,
        persisted_query_register: bool,
        context: Any,
        request_context: "RequestContext",
    ) -> Optional[EndHandler]:
        return None

    def parsing_did_start(self, *, query_string: str) -> Optional[EndHandler]:
        return None

    def validation_did_start(self, *, document: DocumentNode) -> Optional[EndHandler]:
        return None

    def execution_did_start(self, *, execution_args: "ExecutionArgs") -> Optional[EndHandler]:
        return None

    def will_resolve_field(
        self,
        source: Any,
        args: dict[str, Any],
        context: Any,
        info: GraphQLResolveInfo,
    ) -> Optional[ResolveEndHandler]:
        return None

    def will_send_response(
        self, *, response: GraphQLResponse, context: Any
    ) -> Optional[GraphQLResponse]:
        return None

    def format(self) -> Optional[tuple[str, Any]]:
        return None


def _overrides(extension: GraphQLExtension, hook: str) -> bool:
    base = getattr(GraphQLExtension, hook, None)
    return getattr(type(extension), hook, None) is not base


class ExtensionStack:
    """
    Ordered collection of per-request extensions.

    Usage:
        stack = ExtensionStack([TracingExtension()])
        parsing_did_end = stack.parsing_did_start(query_string=query)
        try:
            document = parse(query)
        finally:
            parsing_did_end()
    """

    def __init__(self, extensions: Sequence[GraphQLExtension]):
        self.extensions = list(extensions)
        self._field_extensions = [
            ext for ext in self.extensions if _overrides(ext, "will_resolve_field")
        ]

    def __len__(self) -> int:
        return len(self.extensions)

    def request_did_start(self, **kwargs: Any) -> EndHandler:
        return self._handle_did_start(lambda ext: ext.request_did_start(**kwargs))

    def parsing_did_start(self, *, query_string: str) -> EndHandler:
        return self._handle_did_start(lambda ext: ext.parsing_did_start(query_string=query_string))

    def validation_did_start(self, *, document: DocumentNode) -> EndHandler:
        return self._handle_did_start(lambda ext: ext.validation_did_start(document=document))

    def execution_did_start(self, *, execution_args: "ExecutionArgs") -> EndHandler:
        return self._handle_did_start(
            lambda ext: ext.execution_did_start(execution_args=execution_args)
        )

    def _handle_did_start(
        self, call: Callable[[GraphQLExtension], Optional[EndHandler]]
    ) -> EndHandler:
        end_handlers: list[EndHandler] = []
        for extension in self.extensions:
            end_handler = call(extension)
            if end_handler is not None:
                end_handlers.append(end_handler)

        def did_end(*errors: BaseException) -> None:
            for end_handler in reversed(end_handlers):
                end_handler(*errors)

        return did_end

    def will_resolve_field(
        self,
        source: Any,
        args: dict[str, Any],
        context: Any,
        info: GraphQLResolveInfo,
    ) -> ResolveEndHandler:
        end_handlers = []
        for extension in self._field_extensions:
            end_handler = extension.will_resolve_field(source, args, context, info)
            if end_handler is not None:
                end_handlers.append(end_handler)

        def did_resolve(error: Optional[BaseException], result: Any) -> None:
            for end_handler in reversed(end_handlers):
                end_handler(error, result)

        return did_resolve

    def will_send_response(self, response: GraphQLResponse, context: Any) -> GraphQLResponse:
        """Let each extension (last registered first) observe or replace the response."""
        for extension in reversed(self.extensions):
            replacement = extension.will_send_response(response=response, context=context)
            if replacement is not None:
                response = replacement
        return response

    def format(self) -> dict[str, Any]:
        """Merge every extension's output into one ``extensions`` map."""
        formatted: dict[str, Any] = {}
        for extension in self.extensions:
            output = extension.format()
            if output is None:
                continue
            name, value = output
            formatted[name] = value
        return formatted

    def as_middleware(self) -> Optional[list[Callable]]:
        """
        Expose ``will_resolve_field`` to the engine as graphql-core middleware.

        Returns None when no extension observes fields.
        """
        if not self._field_extensions:
            return None

        stack = self

        def resolve(next_, root, info: GraphQLResolveInfo, **args):
            did_resolve = stack.will_resolve_field(root, args, info.context, info)
            try:
                result = next_(root, info, **args)
            except Exception as error:
                did_resolve(error, None)
                raise

            if isawaitable(result):
                async def await_result():
                    try:
                        value = await result
                    except Exception as error:
                        did_resolve(error, None)
                        raise
                    did_resolve(None, value)
                    return value

                return await_result()

            did_resolve(None, result)
            return result

        return [resolve]
