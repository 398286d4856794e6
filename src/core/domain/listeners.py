"""In-process listener registry with disposable subscriptions."""

import inspect
from collections.abc import Awaitable, Callable
from itertools import count
from typing import Any, cast

from loguru import logger

ListenerErrorHook = Callable[[Callable[..., Any], Exception], None]


def _listener_name(listener: Callable[..., Any]) -> str:
    return getattr(listener, "__qualname__", None) or listener.__class__.__name__


class Subscription:
    """Handle returned by ``ListenerRegistry.subscribe``.

    ``unsubscribe()`` may be called any number of times; only the first call
    has an effect.
    """

    def __init__(self, registry: "ListenerRegistry[Any]", token: int) -> None:
        self._registry = registry
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._registry._remove(self._token)

    def __call__(self) -> None:
        self.unsubscribe()


class ListenerRegistry[T]:
    """Ordered set of listeners notified with a single value per publish.

    Listeners may be plain functions or coroutine functions. They run in
    registration order; an exception raised by one listener is logged and
    handed to ``on_error`` without stopping delivery to the rest.
    """

    def __init__(self, on_error: ListenerErrorHook | None = None) -> None:
        self._listeners: dict[int, Callable[[T], Awaitable[None] | None]] = {}
        self._tokens = count()
        self._on_error = on_error

    def subscribe(self, listener: Callable[[T], Awaitable[None] | None]) -> Subscription:
        token = next(self._tokens)
        self._listeners[token] = listener
        logger.debug(f"Subscribed listener {_listener_name(listener)} (#{token})")
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        listener = self._listeners.pop(token, None)
        if listener is not None:
            logger.debug(f"Unsubscribed listener {_listener_name(listener)} (#{token})")

    async def publish(self, value: T) -> int:
        """Deliver ``value`` to every listener; return how many succeeded."""
        # Snapshot so listeners may subscribe/unsubscribe while being notified.
        listeners = list(self._listeners.items())
        delivered = 0
        for token, listener in listeners:
            if token not in self._listeners:
                continue
            try:
                result = listener(value)
                if inspect.isawaitable(result):
                    await cast(Awaitable[None], result)
                delivered += 1
            except Exception as e:
                logger.error(f"Error in listener {_listener_name(listener)}: {e}")
                if self._on_error is not None:
                    self._on_error(listener, e)
        return delivered

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
