"""
Deferred execution - wraps graphql-core's execute with ``@defer`` support.

Handles:
- Inlining fragment spreads so every deferred field has a single position
- Executing the document without deferred fields for the initial result
- Executing each deferred field on its own and turning the result into
  patches addressed by response path

A deferred field is re-executed along its ancestor path only, so parent
resolvers on that path run once more. Deferral applies to query operations;
``@defer`` inside an already deferred field is resolved with its parent.
"""

from __future__ import annotations

import asyncio
import logging
from copy import copy
from dataclasses import dataclass, field
from inspect import isawaitable
from typing import Any, AsyncIterator, Callable, Iterator, Optional, Union

from graphql import (
    DocumentNode,
    ExecutionResult,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLError,
    GraphQLFieldResolver,
    GraphQLSchema,
    InlineFragmentNode,
    OperationDefinitionNode,
    OperationType,
    SelectionNode,
    SelectionSetNode,
    execute as graphql_execute,
    get_operation_ast,
)
from graphql.execution.values import get_directive_values, get_variable_values

from ..core.directives import GraphQLDeferDirective

logger = logging.getLogger(__name__)


@dataclass
class ExecutionArgs:
    """Arguments for one execution of a document."""
    schema: GraphQLSchema
    document: DocumentNode
    root_value: Any = None
    context_value: Any = None
    variable_values: Optional[dict[str, Any]] = None
    operation_name: Optional[str] = None
    field_resolver: Optional[GraphQLFieldResolver] = None
    middleware: Optional[list[Callable]] = None
    enable_defer: bool = False


@dataclass
class ExecutionPatchResult:
    """Value of one deferred field at a concrete response path."""
    path: list[Union[str, int]]
    data: Any = None
    errors: Optional[list[GraphQLError]] = None


@dataclass
class DeferredExecutionResult:
    """Initial result plus a lazy, single-pass stream of patches."""
    initial_result: ExecutionResult
    deferred_patches: AsyncIterator[ExecutionPatchResult]


def is_deferred_execution_result(result: Any) -> bool:
    return isinstance(result, DeferredExecutionResult)


@dataclass
class DeferredField:
    """A deferred field and the selections leading to it from the operation root."""
    chain: list[SelectionNode] = field(default_factory=list)

    @property
    def node(self) -> FieldNode:
        return self.chain[-1]

    @property
    def keys(self) -> list[str]:
        """Response keys along the chain (inline fragments add none)."""
        return [_response_key(node) for node in self.chain if isinstance(node, FieldNode)]


async def execute(args: ExecutionArgs) -> Union[ExecutionResult, DeferredExecutionResult]:
    """
    Execute a document, splitting off deferred fields when enabled.

    Returns:
        ExecutionResult when nothing is deferred, else DeferredExecutionResult
    """
    operation = get_operation_ast(args.document, args.operation_name)
    if operation is None:
        # Let the engine report the missing or ambiguous operation
        return await _run(args, args.document)

    fragments = {
        definition.name.value: definition
        for definition in args.document.definitions
        if isinstance(definition, FragmentDefinitionNode)
    }
    selection_set = _inline_fragments(operation.selection_set, fragments)

    deferred: list[DeferredField] = []
    if args.enable_defer and operation.operation == OperationType.QUERY:
        coerced = get_variable_values(
            args.schema, operation.variable_definitions or (), args.variable_values or {}
        )
        # A list means the variables are invalid; the engine reports that below
        if isinstance(coerced, dict):
            _collect_deferred(selection_set, [], coerced, deferred)

    removed = {id(deferred_field.node) for deferred_field in deferred}
    initial_document = _document_for(operation, _rewrite(selection_set, removed))
    initial_result = await _run(args, initial_document)

    if not deferred:
        return initial_result

    logger.debug(f"Deferring {len(deferred)} field(s)")
    return DeferredExecutionResult(
        initial_result=initial_result,
        deferred_patches=_deferred_patches(args, operation, deferred),
    )


async def _run(args: ExecutionArgs, document: DocumentNode) -> ExecutionResult:
    result = graphql_execute(
        args.schema,
        document,
        root_value=args.root_value,
        context_value=args.context_value,
        variable_values=args.variable_values,
        operation_name=args.operation_name,
        field_resolver=args.field_resolver,
        middleware=args.middleware,
    )
    if isawaitable(result):
        result = await result
    return result


async def _deferred_patches(
    args: ExecutionArgs,
    operation: OperationDefinitionNode,
    deferred: list[DeferredField],
) -> AsyncIterator[ExecutionPatchResult]:
    """
    Yield patches as deferred fields settle.

    Work starts on first iteration. Closing the iterator early cancels
    whatever is still running.
    """
    tasks = [
        asyncio.ensure_future(_resolve_deferred(args, operation, deferred_field))
        for deferred_field in deferred
    ]
    try:
        for next_done in asyncio.as_completed(tasks):
            for patch in await next_done:
                yield patch
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


async def _resolve_deferred(
    args: ExecutionArgs,
    operation: OperationDefinitionNode,
    deferred_field: DeferredField,
) -> list[ExecutionPatchResult]:
    document = _document_for(operation, _prune(deferred_field.chain))
    result = await _run(args, document)
    return _extract_patches(result, deferred_field.keys)


def _extract_patches(result: ExecutionResult, keys: list[str]) -> list[ExecutionPatchResult]:
    """
    Turn a deferred re-execution result into patches.

    A null ancestor ends the walk early and produces a null patch at the
    path reached. Errors not located under any patch go on the last one,
    so a deferred field always reports its errors.
    """
    errors = list(result.errors or ())
    if result.data is None:
        return [ExecutionPatchResult(path=list(keys), data=None, errors=errors or None)]

    patches = []
    placed: set[int] = set()
    for path, value in _walk(result.data, keys, []):
        patch_errors = [
            error for error in errors
            if error.path is not None and list(error.path[: len(path)]) == path
        ]
        placed.update(id(error) for error in patch_errors)
        patches.append(ExecutionPatchResult(path=path, data=value, errors=patch_errors or None))

    unplaced = [error for error in errors if id(error) not in placed]
    if not unplaced:
        return patches
    if not patches:
        return [ExecutionPatchResult(path=list(keys), data=None, errors=unplaced)]
    last = patches[-1]
    last.errors = [*(last.errors or ()), *unplaced]
    return patches


def _walk(value: Any, keys: list[str], path: list[Union[str, int]]) -> Iterator[tuple[list, Any]]:
    """Follow response keys through the data, fanning out over lists."""
    if value is None:
        # Null ancestor on replay
        yield path, None
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            yield from _walk(item, keys, [*path, index])
        return
    if not isinstance(value, dict):
        return

    key, rest = keys[0], keys[1:]
    if key not in value:
        return
    if not rest:
        yield [*path, key], value[key]
        return
    yield from _walk(value[key], rest, [*path, key])


# --- AST rewriting ---

def _response_key(node: FieldNode) -> str:
    return node.alias.value if node.alias else node.name.value


def _is_deferred(node: FieldNode, variable_values: Optional[dict[str, Any]]) -> bool:
    if not node.directives:
        return False
    values = get_directive_values(GraphQLDeferDirective, node, variable_values)
    return values is not None and values.get("if", True) is not False


def _inline_fragments(
    selection_set: SelectionSetNode,
    fragments: dict[str, FragmentDefinitionNode],
    visited: tuple[str, ...] = (),
) -> SelectionSetNode:
    """Copy a selection set, replacing fragment spreads with inline fragments."""
    selections: list[SelectionNode] = []
    for selection in selection_set.selections:
        if isinstance(selection, FragmentSpreadNode):
            name = selection.name.value
            fragment = fragments.get(name)
            if fragment is None or name in visited:
                continue
            selections.append(
                InlineFragmentNode(
                    type_condition=fragment.type_condition,
                    directives=selection.directives,
                    selection_set=_inline_fragments(
                        fragment.selection_set, fragments, (*visited, name)
                    ),
                )
            )
            continue

        node = copy(selection)
        if node.selection_set is not None:
            node.selection_set = _inline_fragments(node.selection_set, fragments, visited)
        selections.append(node)
    return SelectionSetNode(selections=tuple(selections))


def _collect_deferred(
    selection_set: SelectionSetNode,
    ancestors: list[SelectionNode],
    variable_values: Optional[dict[str, Any]],
    found: list[DeferredField],
) -> None:
    for selection in selection_set.selections:
        chain = [*ancestors, selection]
        if isinstance(selection, FieldNode) and _is_deferred(selection, variable_values):
            found.append(DeferredField(chain=chain))
            continue
        if selection.selection_set is not None:
            _collect_deferred(selection.selection_set, chain, variable_values, found)


def _strip_defer(node: SelectionNode, removed: set[int]) -> SelectionNode:
    node = copy(node)
    if isinstance(node, FieldNode) and node.directives:
        node.directives = tuple(
            directive for directive in node.directives
            if directive.name.value != GraphQLDeferDirective.name
        )
    if node.selection_set is not None:
        node.selection_set = _rewrite(node.selection_set, removed)
    return node


def _rewrite(selection_set: SelectionSetNode, removed: set[int]) -> SelectionSetNode:
    """Drop the removed selections and every remaining ``@defer``."""
    return SelectionSetNode(
        selections=tuple(
            _strip_defer(selection, removed)
            for selection in selection_set.selections
            if id(selection) not in removed
        )
    )


def _prune(chain: list[SelectionNode]) -> SelectionSetNode:
    """Keep only the path from the operation root down to the deferred field."""
    node = _strip_defer(chain[-1], set())
    for ancestor in reversed(chain[:-1]):
        parent = copy(ancestor)
        parent.selection_set = SelectionSetNode(selections=(node,))
        node = parent
    return SelectionSetNode(selections=(node,))


def _document_for(
    operation: OperationDefinitionNode, selection_set: SelectionSetNode
) -> DocumentNode:
    operation = copy(operation)
    operation.selection_set = selection_set
    return DocumentNode(definitions=(operation,))
