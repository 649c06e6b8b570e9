"""
Tests for the plugin dispatcher.
"""

from __future__ import annotations

import asyncio

import pytest

from graphpipe import RequestListener, ServerPlugin
from graphpipe.runtime.dispatcher import Dispatcher

from conftest import make_context


class Listener(RequestListener):
    def __init__(self, name, events, fail=False, delay=0.0):
        self.name = name
        self.events = events
        self.fail = fail
        self.delay = delay

    def parsing_did_start(self, request_context):
        self.events.append((self.name, "start"))
        return lambda *errors: self.events.append((self.name, "end", errors))

    async def did_resolve_operation(self, request_context):
        await asyncio.sleep(self.delay)
        self.events.append((self.name, "resolved"))
        if self.fail:
            raise RuntimeError(f"{self.name} failed")


class OnlyResolve:
    def __init__(self, events):
        self.events = events

    def did_resolve_operation(self, request_context):
        self.events.append(("plain", "resolved"))


class Plugin(ServerPlugin):
    def __init__(self, listener):
        self.listener = listener

    def request_did_start(self, request_context):
        return self.listener


def test_for_request_skips_plugins_without_listener():
    events = []
    listener = Listener("a", events)
    plugins = [Plugin(None), Plugin(listener), ServerPlugin()]

    dispatcher = Dispatcher.for_request(plugins, make_context("{ hello }"))

    assert dispatcher.listeners == [listener]


def test_did_start_end_callbacks_in_registration_order():
    events = []
    dispatcher = Dispatcher([Listener("a", events), Listener("b", events)])
    error = ValueError("bad")

    did_end = dispatcher.invoke_did_start_hook("parsing_did_start", make_context("{ hello }"))
    did_end(error)

    assert events == [
        ("a", "start"),
        ("b", "start"),
        ("a", "end", (error,)),
        ("b", "end", (error,)),
    ]


def test_did_start_without_handlers_is_noop():
    did_end = Dispatcher([]).invoke_did_start_hook("validation_did_start", make_context("{ hello }"))

    did_end()


async def test_async_hooks_run_sequentially():
    events = []
    dispatcher = Dispatcher([
        Listener("slow", events, delay=0.02),
        Listener("fast", events),
        OnlyResolve(events),
    ])

    await dispatcher.invoke_hook_async("did_resolve_operation", make_context("{ hello }"))

    assert events == [("slow", "resolved"), ("fast", "resolved"), ("plain", "resolved")]


async def test_async_hook_failure_skips_remaining():
    events = []
    dispatcher = Dispatcher([Listener("a", events, fail=True), Listener("b", events)])

    with pytest.raises(RuntimeError, match="a failed"):
        await dispatcher.invoke_hook_async("did_resolve_operation", make_context("{ hello }"))

    assert events == [("a", "resolved")]


async def test_unknown_hooks_are_rejected():
    dispatcher = Dispatcher([])

    with pytest.raises(ValueError):
        dispatcher.invoke_did_start_hook("did_resolve_operation")
    with pytest.raises(ValueError):
        await dispatcher.invoke_hook_async("parsing_did_start")
    with pytest.raises(ValueError):
        dispatcher.handlers_for("nope")
