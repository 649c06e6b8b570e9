"""
Cache-control extension - collects per-field cache hints.

Hints come from ``@cacheControl(maxAge: Int, scope: CacheControlScope)`` on
field definitions or object types in SDL-built schemas, or from
``extensions={"cacheControl": {"maxAge": 60, "scope": "PUBLIC"}}`` on
code-first fields and types. Field hints win over type hints.

Root fields and fields returning composite types without a hint get the
default max age; scalar fields without a hint inherit from their parent.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from graphql import (
    GraphQLResolveInfo,
    get_named_type,
    is_composite_type,
    value_from_ast_untyped,
)

from ..core.request_types import GraphQLResponse
from .extensions import GraphQLExtension, ResolveEndHandler

DIRECTIVE_NAME = "cacheControl"


class CacheScope(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


@dataclass(frozen=True)
class CacheControlOptions:
    """
    Cache-control configuration.

    Args:
        default_max_age: Max age for root and composite fields without a hint
        calculate_http_headers: Set a Cache-Control header on the response
        strip_formatted_extensions: Keep hints out of ``extensions``
    """
    default_max_age: int = 0
    calculate_http_headers: bool = True
    strip_formatted_extensions: bool = False


@dataclass
class CacheHint:
    max_age: Optional[int] = None
    scope: Optional[CacheScope] = None

    @property
    def empty(self) -> bool:
        return self.max_age is None and self.scope is None


@dataclass(frozen=True)
class CachePolicy:
    max_age: int
    scope: CacheScope

    def header_value(self) -> str:
        return f"max-age={self.max_age}, {self.scope.value.lower()}"


def _hint_from_mapping(raw: Any) -> CacheHint:
    if not isinstance(raw, dict):
        return CacheHint()
    scope = raw.get("scope")
    return CacheHint(
        max_age=raw.get("maxAge", raw.get("max_age")),
        scope=CacheScope(scope) if scope else None,
    )


def _hint_from_definition(definition: Any) -> CacheHint:
    """Read a hint from a schema element's extensions or SDL directive."""
    extensions = getattr(definition, "extensions", None) or {}
    if DIRECTIVE_NAME in extensions:
        return _hint_from_mapping(extensions[DIRECTIVE_NAME])

    ast_node = getattr(definition, "ast_node", None)
    for directive in getattr(ast_node, "directives", None) or ():
        if directive.name.value != DIRECTIVE_NAME:
            continue
        values = {
            argument.name.value: value_from_ast_untyped(argument.value)
            for argument in directive.arguments or ()
        }
        return _hint_from_mapping(values)
    return CacheHint()


class CacheControlExtension(GraphQLExtension):
    """Collects cache hints while fields resolve and derives a cache policy."""

    def __init__(self, options: Optional[CacheControlOptions] = None):
        self.options = options or CacheControlOptions()
        self.hints: list[tuple[list[Any], CacheHint]] = []

    def will_resolve_field(
        self,
        source: Any,
        args: dict[str, Any],
        context: Any,
        info: GraphQLResolveInfo,
    ) -> Optional[ResolveEndHandler]:
        field_def = info.parent_type.fields.get(info.field_name)
        hint = CacheHint()

        target_type = get_named_type(info.return_type)
        if is_composite_type(target_type):
            hint = _hint_from_definition(target_type)

        field_hint = _hint_from_definition(field_def)
        if field_hint.max_age is not None:
            hint.max_age = field_hint.max_age
        if field_hint.scope is not None:
            hint.scope = field_hint.scope

        is_root = info.path.prev is None
        if hint.max_age is None and (is_root or is_composite_type(target_type)):
            hint.max_age = self.options.default_max_age

        if not hint.empty:
            self.add_hint(list(info.path.as_list()), hint)
        return None

    def add_hint(self, path: list[Any], hint: CacheHint) -> None:
        self.hints.append((path, hint))

    def compute_overall_policy(self) -> Optional[CachePolicy]:
        """Lowest max age wins; any private hint makes the policy private."""
        lowest_max_age: Optional[int] = None
        scope = CacheScope.PUBLIC

        for _path, hint in self.hints:
            if hint.max_age is not None:
                if lowest_max_age is None or hint.max_age < lowest_max_age:
                    lowest_max_age = hint.max_age
            if hint.scope == CacheScope.PRIVATE:
                scope = CacheScope.PRIVATE

        if lowest_max_age is None:
            return None
        return CachePolicy(max_age=lowest_max_age, scope=scope)

    def will_send_response(
        self, *, response: GraphQLResponse, context: Any
    ) -> Optional[GraphQLResponse]:
        if not self.options.calculate_http_headers or response.http is None or response.errors:
            return None

        policy = self.compute_overall_policy()
        if policy is not None and policy.max_age > 0:
            response.http.headers["Cache-Control"] = policy.header_value()
        return None

    def format(self) -> Optional[tuple[str, Any]]:
        if self.options.strip_formatted_extensions:
            return None

        hints = []
        for path, hint in self.hints:
            entry: dict[str, Any] = {"path": path}
            if hint.max_age is not None:
                entry["maxAge"] = hint.max_age
            if hint.scope is not None:
                entry["scope"] = hint.scope.value
            hints.append(entry)
        return "cacheControl", {"version": 1, "hints": hints}
