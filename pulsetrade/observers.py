"""Observer registry — fan-out of events to subscribed handlers.

Handlers are stored by subscription id.  Each ``subscribe`` returns a
``Subscription`` token whose ``unsubscribe()`` removes exactly that entry.
Every handler runs behind its own error boundary, so one failing handler
never blocks delivery to the others.  Coroutine handlers are scheduled as
tasks on the running loop; their failures are logged when they complete.
"""

import asyncio
import inspect
import itertools
import logging
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger("pulsetrade.observers")

T = TypeVar("T")


class Subscription:
    """Opaque token returned by :meth:`ObserverRegistry.subscribe`."""

    def __init__(self, registry: "ObserverRegistry", token: int) -> None:
        self._registry = registry
        self._token = token

    @property
    def active(self) -> bool:
        """``True`` until :meth:`unsubscribe` has been called."""
        return self._registry._has(self._token)

    def unsubscribe(self) -> None:
        """Remove the handler.  Safe to call more than once."""
        self._registry._remove(self._token)


class ObserverRegistry(Generic[T]):
    """Mapping of subscription id → handler with isolated delivery."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._handlers: dict[int, Callable[[T], Any]] = {}
        self._ids = itertools.count(1)
        self._pending: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Callable[[T], Any]) -> Subscription:
        token = next(self._ids)
        self._handlers[token] = handler
        return Subscription(self, token)

    def publish(self, event: T) -> None:
        """Deliver *event* to every handler registered at call time."""
        for handler in list(self._handlers.values()):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception:
                logger.exception("%s handler %r failed", self._name, handler)

    def clear(self) -> None:
        self._handlers.clear()

    # ── Internals ────────────────────────────────────────────────────────

    def _has(self, token: int) -> bool:
        return token in self._handlers

    def _remove(self, token: int) -> None:
        self._handlers.pop(token, None)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "%s async handler failed: %s", self._name, exc, exc_info=exc,
            )
