"""
Shared fixtures: a small schema with resolvers, pipeline helpers.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from graphql import GraphQLError, build_schema

from graphpipe import (
    GraphQLRequest,
    InMemoryLRUCache,
    RequestContext,
    RequestPipelineConfig,
    process_graphql_request,
)

SDL = """
enum CacheControlScope {
  PUBLIC
  PRIVATE
}

directive @cacheControl(maxAge: Int, scope: CacheControlScope) on FIELD_DEFINITION | OBJECT

type Query {
  hello: String @cacheControl(maxAge: 60)
  greeting(name: String!): String
  user: User
  requiredUser: User!
  users: [User]
  boom: String
  forbidden: String
  slow: String
}

type Mutation {
  rename(name: String!): String
}

type User @cacheControl(maxAge: 30) {
  id: ID!
  name: String
  email: String!
  secret: String @cacheControl(maxAge: 10, scope: PRIVATE)
  friends: [User]
}
"""

GRACE = {"id": "2", "name": "Grace", "email": "grace@example.com", "secret": "s2", "friends": []}
ADA = {"id": "1", "name": "Ada", "email": "ada@example.com", "secret": "s1", "friends": [GRACE]}
ALAN = {"id": "3", "name": "Alan", "email": "alan@example.com", "secret": "s3", "friends": [ADA]}


def _boom(info):
    raise ValueError("kaboom")


def _forbidden(info):
    raise GraphQLError("Not allowed", extensions={"code": "FORBIDDEN"})


async def _slow(info):
    await asyncio.sleep(0.01)
    return "done"


def make_root_value(**overrides: Any) -> dict[str, Any]:
    root = {
        "hello": lambda info: "world",
        "greeting": lambda info, name: f"Hello, {name}!",
        "user": lambda info: ADA,
        "requiredUser": lambda info: ADA,
        "users": lambda info: [ADA, ALAN],
        "boom": _boom,
        "forbidden": _forbidden,
        "slow": _slow,
        "rename": lambda info, name: name,
    }
    root.update(overrides)
    return root


@pytest.fixture
def schema():
    return build_schema(SDL)


@pytest.fixture
def root_value():
    return make_root_value()


@pytest.fixture
def cache():
    return InMemoryLRUCache(max_entries=100)


@pytest.fixture
def make_config(schema, root_value):
    """Build a pipeline config over the test schema."""

    def factory(**kwargs: Any) -> RequestPipelineConfig:
        kwargs.setdefault("root_value", root_value)
        return RequestPipelineConfig(schema=schema, **kwargs)

    return factory


def make_context(query: str | None = None, **kwargs: Any) -> RequestContext:
    """Request context for a request with the given query and request fields."""
    context_kwargs = {
        key: kwargs.pop(key) for key in ("context", "cache") if key in kwargs
    }
    request = GraphQLRequest(query=query, **kwargs)
    return RequestContext(request=request, **context_kwargs)


async def run(config: RequestPipelineConfig, query: str | None = None, **kwargs: Any):
    """Run a request through the pipeline, returning (response, request_context)."""
    request_context = make_context(query, **kwargs)
    response = await process_graphql_request(config, request_context)
    return response, request_context


async def drain(response) -> list:
    """Consume a deferred response's patches."""
    return [patch async for patch in response.deferred_patches]
