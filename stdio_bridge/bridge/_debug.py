"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``stdio_bridge.wire.*`` hierarchy and
formatting helpers for frames.  Enabling
``logging.getLogger("stdio_bridge.wire").setLevel(logging.DEBUG)`` gives
full visibility into what flows over the wire, which is the quickest way
to debug a peer written in another language.

All formatting helpers return ``str`` and never log directly.
They are designed to be called inside ``isEnabledFor`` guards so
there is zero overhead when debug logging is disabled.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stdio_bridge.bridge._wire import Frame

# ---------------------------------------------------------------------------
# Logger hierarchy: stdio_bridge.wire.*
# ---------------------------------------------------------------------------

wire_frame_logger = logging.getLogger("stdio_bridge.wire.frame")
"""Frame encoding / decoding, including dropped frames."""

wire_call_logger = logging.getLogger("stdio_bridge.wire.call")
"""Call issue / dispatch / resolution."""

wire_channel_logger = logging.getLogger("stdio_bridge.wire.channel")
"""Channel publish / delivery."""

wire_transport_logger = logging.getLogger("stdio_bridge.wire.transport")
"""Transport lifecycle (pipe, subprocess, stdio)."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 80
"""Maximum repr length for individual values in fmt_value / fmt_args."""


def fmt_value(value: str) -> str:
    """Format one text value as a truncated repr.

    Returns:
        ``"'hello'"`` or ``"'aaaa...'"`` for values past the length limit.

    """
    if len(value) > _MAX_VALUE_LEN:
        return repr(value[:_MAX_VALUE_LEN]) + "..."
    return repr(value)


def fmt_args(args: Sequence[str]) -> str:
    """Format call arguments compactly.

    Returns:
        ``"['10', '20']"`` with long values truncated, ``"[]"`` when empty.

    """
    return "[" + ", ".join(fmt_value(a) for a in args) + "]"


def fmt_frame(frame: Frame) -> str:
    """Format a decoded frame.

    Returns:
        ``"Call(name='add', id='...', args=['10', '20'])"`` and similar,
        one form per frame type.

    """
    from stdio_bridge.bridge._wire import (
        Call,
        ChannelMessage,
        ErrorResponse,
        Registration,
        Response,
    )

    if isinstance(frame, Registration):
        return f"Registration(name={frame.name!r})"
    if isinstance(frame, Call):
        return f"Call(name={frame.name!r}, id={frame.call_id!r}, args={fmt_args(frame.args)})"
    if isinstance(frame, Response):
        return f"Response(id={frame.call_id!r}, value={fmt_value(frame.value)})"
    if isinstance(frame, ErrorResponse):
        return f"ErrorResponse(id={frame.call_id!r}, type={frame.error_type!r}, message={fmt_value(frame.message)})"
    if isinstance(frame, ChannelMessage):
        return f"ChannelMessage(channel={frame.channel!r}, payload={fmt_value(frame.payload)})"
    return type(frame).__name__ + "()"
