"""
Tests for @defer: execution splitting, patches and request lifetime.
"""

from __future__ import annotations

import asyncio

import pytest
from graphql import ExecutionResult, parse

from graphpipe import DeferredGraphQLResponse, ErrorKind, GraphQLExtension, GraphQLResponse
from graphpipe.core.directives import ensure_defer_directive, has_defer_directive
from graphpipe.runtime.execute import (
    DeferredExecutionResult,
    ExecutionArgs,
    execute,
    is_deferred_execution_result,
)

from conftest import drain, make_root_value, run


class RequestEndExtension(GraphQLExtension):
    def __init__(self, events):
        self.events = events

    def request_did_start(self, **kwargs):
        return lambda *errors: self.events.append("request_end")


def test_defer_directive_added_once(schema):
    assert not has_defer_directive(schema)

    with_defer = ensure_defer_directive(schema)

    assert has_defer_directive(with_defer)
    assert ensure_defer_directive(with_defer) is with_defer
    assert with_defer.query_type.fields.keys() == schema.query_type.fields.keys()


# --- Execution adapter ---

async def test_execute_splits_deferred_fields(schema, root_value):
    document = parse("{ hello user { id friends @defer { name } } }")
    args = ExecutionArgs(
        schema=ensure_defer_directive(schema),
        document=document,
        root_value=root_value,
        enable_defer=True,
    )

    result = await execute(args)

    assert is_deferred_execution_result(result)
    assert isinstance(result, DeferredExecutionResult)
    assert result.initial_result.data == {"hello": "world", "user": {"id": "1"}}

    patches = [patch async for patch in result.deferred_patches]
    assert len(patches) == 1
    assert patches[0].path == ["user", "friends"]
    assert patches[0].data == [{"name": "Grace"}]
    assert patches[0].errors is None


async def test_execute_without_defer_returns_plain_result(schema, root_value):
    document = parse("{ hello user { friends @defer { name } } }")
    args = ExecutionArgs(schema=ensure_defer_directive(schema), document=document, root_value=root_value)

    result = await execute(args)

    assert isinstance(result, ExecutionResult)
    assert result.data == {"hello": "world", "user": {"friends": [{"name": "Grace"}]}}


# --- Through the pipeline ---

async def test_deferred_response(make_config):
    response, ctx = await run(
        make_config(enable_defer=True), "{ hello user { id name friends @defer { name } } }"
    )

    assert isinstance(response, DeferredGraphQLResponse)
    assert response.initial_response.data == {
        "hello": "world",
        "user": {"id": "1", "name": "Ada"},
    }
    assert ctx.response is response.initial_response

    patches = await drain(response)
    assert [(patch.path, patch.data) for patch in patches] == [
        (["user", "friends"], [{"name": "Grace"}]),
    ]


async def test_deferred_root_field(make_config):
    response, _ = await run(make_config(enable_defer=True), "{ hello user @defer { name } }")

    assert response.initial_response.data == {"hello": "world"}
    patches = await drain(response)
    assert [(patch.path, patch.data) for patch in patches] == [(["user"], {"name": "Ada"})]


async def test_deferred_field_in_list(make_config):
    response, _ = await run(
        make_config(enable_defer=True), "{ users { id friends @defer { name } } }"
    )

    assert response.initial_response.data == {"users": [{"id": "1"}, {"id": "3"}]}
    patches = await drain(response)
    assert [(patch.path, patch.data) for patch in patches] == [
        (["users", 0, "friends"], [{"name": "Grace"}]),
        (["users", 1, "friends"], [{"name": "Ada"}]),
    ]


async def test_deferred_field_in_fragment(make_config):
    query = """
        query { user { ...UserParts } }
        fragment UserParts on User { id name @defer }
    """
    response, _ = await run(make_config(enable_defer=True), query)

    assert response.initial_response.data == {"user": {"id": "1"}}
    patches = await drain(response)
    assert [(patch.path, patch.data) for patch in patches] == [(["user", "name"], "Ada")]


async def test_deferred_field_error_goes_to_patch(make_config):
    response, _ = await run(make_config(enable_defer=True), "{ hello boom @defer }")

    assert response.initial_response.data == {"hello": "world"}
    assert response.initial_response.errors is None

    patches = await drain(response)
    assert len(patches) == 1
    assert patches[0].path == ["boom"]
    assert patches[0].data is None
    assert patches[0].errors[0].message == "kaboom"
    assert patches[0].errors[0].kind == ErrorKind.INTERNAL.value


async def test_null_ancestor_on_replay_still_yields_patch(make_config):
    calls = []

    def user(info):
        calls.append(info.field_name)
        if len(calls) > 1:
            raise ValueError("user lookup failed")
        return {"id": "1", "name": "Ada"}

    config = make_config(enable_defer=True, root_value=make_root_value(user=user))
    response, _ = await run(config, "{ user { id name @defer } }")

    assert response.initial_response.data == {"user": {"id": "1"}}

    patches = await drain(response)
    assert len(patches) == 1
    assert patches[0].path == ["user"]
    assert patches[0].data is None
    assert patches[0].errors[0].message == "user lookup failed"
    assert patches[0].errors[0].path == ["user"]


async def test_defer_if_false(make_config):
    response, _ = await run(make_config(enable_defer=True), "{ hello user @defer(if: false) { name } }")

    assert isinstance(response, GraphQLResponse)
    assert response.data == {"hello": "world", "user": {"name": "Ada"}}


async def test_defer_if_variable(make_config):
    query = "query Q($later: Boolean) { hello user @defer(if: $later) { name } }"

    now, _ = await run(make_config(enable_defer=True), query, variables={"later": False})
    later, _ = await run(make_config(enable_defer=True), query, variables={"later": True})

    assert isinstance(now, GraphQLResponse)
    assert isinstance(later, DeferredGraphQLResponse)
    await later.aclose()


async def test_defer_if_uses_variable_default(make_config):
    query = "query Q($later: Boolean = false) { user { id name @defer(if: $later) } }"

    response, _ = await run(make_config(enable_defer=True), query)

    assert isinstance(response, GraphQLResponse)
    assert response.data == {"user": {"id": "1", "name": "Ada"}}


async def test_defer_if_variable_default_overridden(make_config):
    query = "query Q($later: Boolean = false) { user { id name @defer(if: $later) } }"

    response, _ = await run(make_config(enable_defer=True), query, variables={"later": True})

    assert isinstance(response, DeferredGraphQLResponse)
    assert response.initial_response.data == {"user": {"id": "1"}}
    patches = await drain(response)
    assert [(patch.path, patch.data) for patch in patches] == [(["user", "name"], "Ada")]


async def test_defer_disabled(make_config):
    response, _ = await run(make_config(), "{ hello user @defer { name } }")

    assert isinstance(response, GraphQLResponse)
    assert response.data == {"hello": "world", "user": {"name": "Ada"}}


async def test_defer_ignored_for_mutations(make_config):
    response, _ = await run(make_config(enable_defer=True), 'mutation { rename(name: "x") @defer }')

    assert isinstance(response, GraphQLResponse)
    assert response.data == {"rename": "x"}


async def test_defer_on_non_nullable_field_is_invalid(make_config):
    response, _ = await run(make_config(enable_defer=True), "{ user { email @defer } }")

    assert isinstance(response, GraphQLResponse)
    assert response.errors[0].kind == ErrorKind.VALIDATION.value
    assert response.errors[0].message == (
        "@defer cannot be applied on non-nullable field User.email."
    )


async def test_request_ends_after_patches(make_config):
    events = []
    config = make_config(enable_defer=True, extensions=[lambda: RequestEndExtension(events)])

    response, _ = await run(config, "{ hello slow @defer }")
    assert events == []

    patches = await drain(response)
    assert [(patch.path, patch.data) for patch in patches] == [(["slow"], "done")]
    assert events == ["request_end"]

    await response.aclose()
    assert events == ["request_end"]


async def test_closing_stream_cancels_deferred_work(make_config):
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def slow(info):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    events = []
    config = make_config(
        enable_defer=True,
        root_value=make_root_value(slow=slow),
        extensions=[lambda: RequestEndExtension(events)],
    )
    response, _ = await run(config, "{ hello slow @defer }")

    async def first_patch():
        return await response.deferred_patches.__anext__()

    consumer = asyncio.create_task(first_patch())
    await asyncio.wait_for(started.wait(), timeout=1)
    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer

    await response.aclose()
    await asyncio.wait_for(cancelled.wait(), timeout=1)
    assert events == ["request_end"]


async def test_abandoned_stream_ends_request_on_close(make_config):
    events = []
    config = make_config(enable_defer=True, extensions=[lambda: RequestEndExtension(events)])
    response, _ = await run(config, "{ hello user @defer { name } }")

    await response.aclose()

    assert events == ["request_end"]
