"""
Validation rules applied to every document.

The engine's specified rules run first, followed by the pipeline's own
rules and then any rules supplied by the application.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Type

from graphql import FieldNode, GraphQLError, is_non_null_type, specified_rules
from graphql.validation import ASTValidationRule, ValidationRule

from .directives import GraphQLDeferDirective


class CannotDeferNonNullableFields(ValidationRule):
    """
    Rejects ``@defer`` on fields whose type is non-nullable.

    A deferred field is absent from the initial response, which a
    non-nullable field cannot be.
    """

    def enter_field(self, node: FieldNode, *_args: Any) -> None:
        if not _is_deferred(node):
            return

        field_def = self.context.get_field_def()
        if field_def is None or not is_non_null_type(field_def.type):
            return

        parent_type = self.context.get_parent_type()
        parent_name = parent_type.name if parent_type else "?"
        self.report_error(
            GraphQLError(
                f"@defer cannot be applied on non-nullable field"
                f" {parent_name}.{node.name.value}.",
                node,
            )
        )


def _is_deferred(node: FieldNode) -> bool:
    return any(
        directive.name.value == GraphQLDeferDirective.name
        for directive in node.directives or ()
    )


def build_validation_rules(
    custom_rules: Optional[Sequence[Type[ASTValidationRule]]] = None,
) -> list[Type[ASTValidationRule]]:
    """Fixed rule set plus any custom rules, in that order."""
    rules: list[Type[ASTValidationRule]] = [*specified_rules, CannotDeferNonNullableFields]
    if custom_rules:
        rules.extend(custom_rules)
    return rules
