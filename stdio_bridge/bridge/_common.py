# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Constants, errors, and shared type aliases for the bridge."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

# ---------------------------------------------------------------------------
# Loggers
# ---------------------------------------------------------------------------

_host_logger = logging.getLogger("stdio_bridge.host")
_worker_logger = logging.getLogger("stdio_bridge.worker")

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Listener: TypeAlias = Callable[[str], object]
"""Channel listener: receives the raw text payload, may return an awaitable."""

SyncHandler: TypeAlias = Callable[[list[Any], Any], object]
"""Worker handler called as ``handler(args, context)``."""

AsyncHandler: TypeAlias = Callable[[list[Any], Any], Awaitable[object]]
"""Coroutine worker handler called as ``await handler(args, context)``."""


def to_wire_text(value: object) -> str:
    """Render a Python value as frame text (``None`` becomes ``""``)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BridgeError(Exception):
    """Base class for all bridge errors."""


class BridgeClosedError(BridgeError):
    """Raised when sending or receiving through a bridge that has closed."""


class UnknownFunctionError(BridgeError, LookupError):
    """Raised on the host when no Registration frame has announced a name."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        """Initialize with the missing name and the names currently known."""
        self.name = name
        self.available = sorted(available or [])
        super().__init__(f"Unknown function '{name}'. Registered functions: {self.available}")


class BridgeRemoteError(BridgeError):
    """Raised on the host when the worker reports a failed call."""

    def __init__(self, error_type: str, error_message: str, *, call_id: str = "") -> None:
        """Initialize with error details from the worker."""
        self.error_type = error_type
        self.error_message = error_message
        self.call_id = call_id
        super().__init__(f"{error_type}: {error_message}")


class FrameEncodingError(BridgeError, ValueError):
    """Raised when a value cannot be represented in the wire grammar."""
