"""
Plugin dispatcher - fans lifecycle hooks out to per-request listeners.

Plugins opt into a request by returning a listener from
``request_did_start``. The dispatcher collects each listener's hooks once,
at construction, and invokes them in registration order.
"""

from __future__ import annotations

from inspect import isawaitable
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

if TYPE_CHECKING:
    from ..core.context import RequestContext

DidEndHook = Callable[..., None]

DID_START_HOOKS = ("parsing_did_start", "validation_did_start", "execution_did_start")
ASYNC_HOOKS = ("did_resolve_operation", "will_send_response")


class RequestListener:
    """
    Per-request listener returned by a plugin.

    Subclasses override any subset of the hooks. Did-start hooks may return
    a callback taking an optional error; async hooks may be coroutines.

    Usage:
        class Timing(RequestListener):
            def parsing_did_start(self, request_context):
                started = time.monotonic()
                return lambda *errors: print(time.monotonic() - started)
    """

    def parsing_did_start(self, request_context: "RequestContext") -> Optional[DidEndHook]:
        return None

    def validation_did_start(self, request_context: "RequestContext") -> Optional[DidEndHook]:
        return None

    def execution_did_start(self, request_context: "RequestContext") -> Optional[DidEndHook]:
        return None

    async def did_resolve_operation(self, request_context: "RequestContext") -> None:
        return None

    async def will_send_response(self, request_context: "RequestContext") -> None:
        return None


class ServerPlugin:
    """
    Base class for plugins.

    Plugins are long-lived (often shared across requests); listeners are
    created fresh for each request.
    """

    def request_did_start(self, request_context: "RequestContext") -> Optional[RequestListener]:
        return None


class Dispatcher:
    """
    Invokes hooks across listeners.

    Did-start hooks: every handler runs, and one aggregate end callback
    calls the collected end callbacks in registration order.

    Async hooks: handlers run one after another; the first failure
    propagates and the remaining handlers are skipped.
    """

    def __init__(self, listeners: Sequence[Any]):
        self.listeners = list(listeners)
        self._handlers: dict[str, list[Callable]] = {
            hook: [] for hook in (*DID_START_HOOKS, *ASYNC_HOOKS)
        }
        for listener in self.listeners:
            for hook, handlers in self._handlers.items():
                handler = getattr(listener, hook, None)
                if callable(handler):
                    handlers.append(handler)

    @classmethod
    def for_request(
        cls, plugins: Sequence[ServerPlugin], request_context: "RequestContext"
    ) -> Dispatcher:
        """Ask every plugin for a listener; plugins returning None are skipped."""
        listeners = []
        for plugin in plugins:
            request_did_start = getattr(plugin, "request_did_start", None)
            if request_did_start is None:
                continue
            listener = request_did_start(request_context)
            if listener:
                listeners.append(listener)
        return cls(listeners)

    def handlers_for(self, hook: str) -> list[Callable]:
        try:
            return self._handlers[hook]
        except KeyError:
            raise ValueError(f"Unknown hook '{hook}'")

    def invoke_did_start_hook(self, hook: str, *args: Any) -> DidEndHook:
        if hook not in DID_START_HOOKS:
            raise ValueError(f"'{hook}' is not a did-start hook")

        did_end_hooks: list[DidEndHook] = []
        for handler in self.handlers_for(hook):
            did_end = handler(*args)
            if did_end is not None:
                did_end_hooks.append(did_end)

        def did_end_all(*errors: Any) -> None:
            for did_end in did_end_hooks:
                did_end(*errors)

        return did_end_all

    async def invoke_hook_async(self, hook: str, *args: Any) -> None:
        if hook not in ASYNC_HOOKS:
            raise ValueError(f"'{hook}' is not an async hook")

        for handler in self.handlers_for(hook):
            result = handler(*args)
            if isawaitable(result):
                await result
