"""TopicRegistry — per-type handler sets with isolated fan-out.

Shared by the broker (local handlers) and by every client context (local
re-dispatch of the single transport subscription).

Each type maps to an insertion-ordered dict used as an ordered set:
registering the same handler twice is a no-op, removal is O(1), and
dispatch runs handlers in registration order.  The key is the function the
caller registered, or ``(_ONCE, handler)`` for a ``once`` registration, so
``on(t, h)`` and ``once(t, h)`` are independent entries.  The value is what
actually runs (the handler itself, or the self-removing ``once`` wrapper).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Hashable

from ipcbus.core.errors import ErrorCode
from ipcbus.models.envelopes import Envelope

logger = logging.getLogger(__name__)

Handler = Callable[[Envelope], Any]
Unsubscribe = Callable[[], None]

# Marks the key of a ``once`` registration.
_ONCE = object()


class TopicRegistry:
    """Maps event type -> ordered set of handlers.

    Parameters
    ----------
    name:
        Label used in log lines (e.g. ``"broker"`` or a client identity).
    """

    def __init__(self, name: str = "registry") -> None:
        self._name = name
        self._handlers: dict[str, dict[Hashable, Handler]] = {}
        self._tasks: set[asyncio.Future[Any]] = set()

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def on(self, event_type: str, handler: Handler) -> Unsubscribe:
        """Register *handler* for *event_type*; return an idempotent unsubscribe."""
        return self._add(event_type, handler, handler)

    def once(self, event_type: str, handler: Handler) -> Unsubscribe:
        """Register *handler* to run at most once.

        The wrapper removes itself before invoking *handler*, and a fired
        flag guards against a second delivery from a dispatch snapshot that
        was already in progress.  It is keyed apart from any ``on``
        registration of the same handler; registering the same handler
        ``once`` twice before it fires is a no-op.
        """
        key = (_ONCE, handler)
        fired = False

        def _once(envelope: Envelope) -> Any:
            nonlocal fired
            if fired:
                return None
            fired = True
            self._discard(event_type, key, _once)
            return handler(envelope)

        return self._add(event_type, key, _once)

    def off(self, event_type: str, handler: Handler | None = None) -> None:
        """Remove *handler* from *event_type*, or every handler if omitted.

        Removes both the ``on`` and the ``once`` registration of *handler*.
        """
        if handler is None:
            self._handlers.pop(event_type, None)
            return
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        handlers.pop(handler, None)
        handlers.pop((_ONCE, handler), None)
        if not handlers:
            del self._handlers[event_type]

    def clear(self) -> None:
        self._handlers.clear()

    def handlers(self, event_type: str) -> list[Handler]:
        """Registered handlers for *event_type*, in registration order."""
        return [_handler_of(key) for key in self._handlers.get(event_type, {})]

    def count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, {}))

    @property
    def types(self) -> list[str]:
        return list(self._handlers)

    def _add(self, event_type: str, key: Hashable, runner: Handler) -> Unsubscribe:
        handlers = self._handlers.setdefault(event_type, {})
        if key not in handlers:
            handlers[key] = runner
        installed = handlers[key]

        def _unsubscribe() -> None:
            self._discard(event_type, key, installed)

        return _unsubscribe

    def _discard(self, event_type: str, key: Hashable, runner: Handler) -> None:
        # Only remove the exact registration this closure created.
        handlers = self._handlers.get(event_type)
        if handlers is None or handlers.get(key) is not runner:
            return
        del handlers[key]
        if not handlers:
            del self._handlers[event_type]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, envelope: Envelope) -> int:
        """Invoke every handler registered for ``envelope.type``.

        Handlers run synchronously in registration order over a snapshot,
        so subscription changes made by a handler take effect for the next
        envelope.  A handler exception is logged and never reaches sibling
        handlers or the caller.  A handler that returns an awaitable has it
        scheduled on the running loop.

        Returns the number of handlers invoked.
        """
        snapshot = list(self._handlers.get(envelope.type, {}).values())
        for runner in snapshot:
            try:
                result = runner(envelope)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "[%s] %s: handler %s failed for %s (%s)",
                    self._name,
                    ErrorCode.HANDLER_FAILURE.value,
                    _describe(runner),
                    envelope.type,
                    envelope.id,
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(result, envelope, runner)
        return len(snapshot)

    def _schedule(self, awaitable: Any, envelope: Envelope, runner: Handler) -> None:
        try:
            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error(
                "[%s] async handler %s for %s needs a running event loop",
                self._name,
                _describe(runner),
                envelope.type,
            )
            return

        self._tasks.add(task)

        def _done(fut: asyncio.Future[Any]) -> None:
            self._tasks.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error(
                    "[%s] %s: async handler %s failed for %s (%s)",
                    self._name,
                    ErrorCode.HANDLER_FAILURE.value,
                    _describe(runner),
                    envelope.type,
                    envelope.id,
                    exc_info=exc,
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()


def _handler_of(key: Hashable) -> Handler:
    if isinstance(key, tuple) and len(key) == 2 and key[0] is _ONCE:
        return key[1]
    return key  # type: ignore[return-value]


def _describe(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)
