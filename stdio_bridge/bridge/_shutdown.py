# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Per-bridge shutdown state machine."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from stdio_bridge.bridge._debug import wire_transport_logger

__all__ = ["BridgeState", "ShutdownCoordinator"]


class BridgeState(Enum):
    """Lifecycle of one bridge instance.

    Members:
        OPEN: Initial state; calls and channel traffic flow normally.
        SHUTDOWN_REQUESTED: A ShutdownRequest was sent or received.
        CLOSED: The underlying stream has terminated.  Terminal.

    """

    OPEN = "open"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    CLOSED = "closed"


class ShutdownCoordinator:
    """Tracks ``OPEN -> SHUTDOWN_REQUESTED -> CLOSED`` and wakes waiters on close."""

    __slots__ = ("_closed", "_name", "_state")

    def __init__(self, name: str = "bridge") -> None:
        """Initialize in the ``OPEN`` state."""
        self._name = name
        self._state = BridgeState.OPEN
        self._closed = asyncio.Event()

    @property
    def state(self) -> BridgeState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Whether no shutdown has been requested yet."""
        return self._state is BridgeState.OPEN

    @property
    def is_closed(self) -> bool:
        """Whether stream termination has been observed."""
        return self._state is BridgeState.CLOSED

    def request_shutdown(self) -> bool:
        """Move ``OPEN -> SHUTDOWN_REQUESTED``.

        Returns:
            ``True`` if this call performed the transition.

        """
        if self._state is not BridgeState.OPEN:
            return False
        self._state = BridgeState.SHUTDOWN_REQUESTED
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("%s: shutdown requested", self._name)
        return True

    def mark_closed(self) -> bool:
        """Move to ``CLOSED`` from any state and wake every waiter.

        Returns:
            ``True`` if this call performed the transition.

        """
        if self._state is BridgeState.CLOSED:
            return False
        self._state = BridgeState.CLOSED
        self._closed.set()
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("%s: closed", self._name)
        return True

    async def wait_closed(self, timeout: float | None = None) -> None:
        """Suspend until ``CLOSED``.

        Raises:
            TimeoutError: If *timeout* elapses first.

        """
        if timeout is None:
            await self._closed.wait()
        else:
            await asyncio.wait_for(self._closed.wait(), timeout)
