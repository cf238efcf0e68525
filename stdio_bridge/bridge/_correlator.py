# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Pending-call table that turns Response frames into settled futures."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable

from stdio_bridge.bridge._debug import wire_call_logger

__all__ = ["CallCorrelator", "generate_call_id"]


def generate_call_id() -> str:
    """Generate a random 128-bit call identifier (UUID4 text form)."""
    return str(uuid.uuid4())


class CallCorrelator:
    """Tracks in-flight calls and settles each one at most once.

    Not thread-safe: all methods must run on the event loop that owns the
    bridge.  Each bridge instance has its own correlator.
    """

    __slots__ = ("_id_factory", "_pending")

    def __init__(self, id_factory: Callable[[], str] = generate_call_id) -> None:
        """Initialize with an empty table and an identifier factory."""
        self._pending: dict[str, asyncio.Future[str]] = {}
        self._id_factory = id_factory

    def __len__(self) -> int:
        """Number of pending calls."""
        return len(self._pending)

    def __contains__(self, call_id: object) -> bool:
        """Whether ``call_id`` is still pending."""
        return call_id in self._pending

    def issue(self) -> tuple[str, asyncio.Future[str]]:
        """Record a new pending call.

        Must be called from a coroutine running on the bridge's loop.

        Returns:
            The call identifier and the future its response will settle.

        """
        call_id = self._id_factory()
        while call_id in self._pending:
            call_id = self._id_factory()
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        if wire_call_logger.isEnabledFor(logging.DEBUG):
            wire_call_logger.debug("Call issued: id=%s, pending=%d", call_id, len(self._pending))
        return call_id, future

    def resolve(self, call_id: str, value: str) -> bool:
        """Settle ``call_id`` with ``value``.

        Returns:
            ``True`` when a pending call was settled; ``False`` for unknown,
            duplicate, or late identifiers (no other effect).

        """
        future = self._pending.pop(call_id, None)
        if future is None or future.done():
            if wire_call_logger.isEnabledFor(logging.DEBUG):
                wire_call_logger.debug("Discarding unmatched response: id=%s", call_id)
            return False
        future.set_result(value)
        if wire_call_logger.isEnabledFor(logging.DEBUG):
            wire_call_logger.debug("Call resolved: id=%s, pending=%d", call_id, len(self._pending))
        return True

    def reject(self, call_id: str, exc: BaseException) -> bool:
        """Fail ``call_id`` with ``exc``; same at-most-once rules as :meth:`resolve`."""
        future = self._pending.pop(call_id, None)
        if future is None or future.done():
            if wire_call_logger.isEnabledFor(logging.DEBUG):
                wire_call_logger.debug("Discarding unmatched error response: id=%s", call_id)
            return False
        future.set_exception(exc)
        return True

    def discard(self, call_id: str) -> bool:
        """Forget ``call_id`` without settling it (caller timed out or was cancelled)."""
        future = self._pending.pop(call_id, None)
        if future is None:
            return False
        if not future.done():
            future.cancel()
        return True

    def abandon_all(self) -> int:
        """Drop every pending call without settling it.

        Returns:
            The number of calls dropped.

        """
        count = len(self._pending)
        self._pending.clear()
        return count
