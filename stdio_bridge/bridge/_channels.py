# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Channel publish/subscribe routing for one side of a bridge."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable

from stdio_bridge.bridge._common import BridgeClosedError, Listener
from stdio_bridge.bridge._debug import fmt_value, wire_channel_logger

__all__ = ["ChannelRouter"]

_logger = logging.getLogger("stdio_bridge.channels")


class ChannelRouter:
    """Delivers received channel payloads to listeners and one-shot waiters.

    Listeners are called in subscription order.  Waiters created by
    :meth:`next_message` receive only messages dispatched after they were
    created; nothing is buffered for channels with no subscriber.
    """

    __slots__ = ("_closed", "_listener_tasks", "_listeners", "_waiters")

    def __init__(self) -> None:
        """Initialize with no subscriptions."""
        self._listeners: dict[str, list[Listener]] = {}
        self._waiters: dict[str, list[asyncio.Future[str]]] = {}
        self._listener_tasks: set[asyncio.Future[object]] = set()
        self._closed = False

    def subscribe(self, channel: str, listener: Listener) -> None:
        """Append ``listener`` to the channel's listener list."""
        self._listeners.setdefault(channel, []).append(listener)

    def unsubscribe(self, channel: str, listener: Listener) -> bool:
        """Remove the first registration of ``listener`` on ``channel``."""
        listeners = self._listeners.get(channel)
        if not listeners or listener not in listeners:
            return False
        listeners.remove(listener)
        if not listeners:
            del self._listeners[channel]
        return True

    def listeners(self, channel: str) -> tuple[Listener, ...]:
        """Current listeners of ``channel`` in delivery order."""
        return tuple(self._listeners.get(channel, ()))

    def next_message(self, channel: str) -> asyncio.Future[str]:
        """Return a future settled by the next payload dispatched on ``channel``.

        Raises:
            BridgeClosedError: If the router has already been closed.

        """
        if self._closed:
            raise BridgeClosedError(f"Cannot receive on '{channel}': bridge is closed")
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(channel, []).append(future)
        future.add_done_callback(lambda f: self._forget_waiter(channel, f))
        return future

    def waiting(self, channel: str) -> int:
        """Number of unsettled waiters on ``channel``."""
        return len(self._waiters.get(channel, ()))

    def _forget_waiter(self, channel: str, future: asyncio.Future[str]) -> None:
        if not future.cancelled():
            return
        waiters = self._waiters.get(channel)
        if waiters and future in waiters:
            waiters.remove(future)
            if not waiters:
                del self._waiters[channel]

    def dispatch(self, channel: str, payload: str) -> int:
        """Deliver ``payload`` to every listener and waiter of ``channel``.

        A listener that raises is logged and skipped; it never stops delivery
        to later listeners.

        Returns:
            Number of listeners and waiters the payload was delivered to.

        """
        delivered = 0
        for listener in tuple(self._listeners.get(channel, ())):
            try:
                result = listener(payload)
            except Exception:
                _logger.exception("Channel listener failed", extra={"channel": channel})
                continue
            if inspect.isawaitable(result):
                self._track(channel, result)
            delivered += 1
        for waiter in self._waiters.pop(channel, []):
            if not waiter.done():
                waiter.set_result(payload)
                delivered += 1
        if wire_channel_logger.isEnabledFor(logging.DEBUG):
            wire_channel_logger.debug(
                "Channel message: channel=%s, payload=%s, delivered=%d", channel, fmt_value(payload), delivered
            )
        return delivered

    def close(self) -> None:
        """Fail outstanding waiters with :class:`BridgeClosedError`; idempotent."""
        self._closed = True
        waiters, self._waiters = self._waiters, {}
        for channel, futures in waiters.items():
            for future in futures:
                if not future.done():
                    future.set_exception(BridgeClosedError(f"Bridge closed while receiving on '{channel}'"))

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    def _track(self, channel: str, awaitable: Awaitable[object]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._listener_tasks.add(task)

        def _done(t: asyncio.Future[object]) -> None:
            self._listener_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                _logger.error("Channel listener failed", exc_info=t.exception(), extra={"channel": channel})

        task.add_done_callback(_done)
