"""
Directives understood by the pipeline.
"""

from __future__ import annotations

from graphql import (
    DirectiveLocation,
    GraphQLArgument,
    GraphQLBoolean,
    GraphQLDirective,
    GraphQLSchema,
)


GraphQLDeferDirective = GraphQLDirective(
    name="defer",
    locations=[DirectiveLocation.FIELD],
    args={
        "if": GraphQLArgument(
            GraphQLBoolean,
            default_value=True,
            description="Deferred when true.",
        ),
    },
    description="Delivers the field after the initial response.",
)


def has_defer_directive(schema: GraphQLSchema) -> bool:
    directive = schema.get_directive("defer")
    return directive is not None and DirectiveLocation.FIELD in directive.locations


def ensure_defer_directive(schema: GraphQLSchema) -> GraphQLSchema:
    """
    Return a schema that knows the ``@defer`` field directive.

    The given schema is returned unchanged when it already declares one.
    """
    if has_defer_directive(schema):
        return schema

    kwargs = schema.to_kwargs()
    directives = [d for d in schema.directives if d.name != "defer"]
    kwargs["directives"] = (*directives, GraphQLDeferDirective)
    return GraphQLSchema(**kwargs)
