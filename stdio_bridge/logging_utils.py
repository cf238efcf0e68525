# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Structured logging helpers.

Provides :class:`BridgeJsonFormatter`, a :class:`logging.Formatter` subclass
that serializes log records as single-line JSON objects, and
:func:`configure_stderr_logging` for worker processes.  A worker's stdout
carries bridge frames, so its logs must go to stderr.

This module is **not** auto-imported by ``stdio_bridge``; import it explicitly::

    from stdio_bridge.logging_utils import configure_stderr_logging
"""

from __future__ import annotations

import json
import logging
import sys

__all__ = ["BridgeJsonFormatter", "configure_stderr_logging"]

# Anything not in this set was injected via ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class BridgeJsonFormatter(logging.Formatter):
    """JSON formatter that emits all structured extra fields.

    Standard fields (``timestamp``, ``level``, ``logger``, ``message``) are
    always present and cannot be overwritten by extra fields of the same
    name.  Every other non-default attribute on the record, such as the
    ``function`` and ``call_id`` the worker attaches to handler failures, is
    emitted as an additional key.

    Non-serializable values are coerced to strings via ``default=str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            **{k: v for k, v in record.__dict__.items() if k not in _DEFAULT_RECORD_ATTRS and k not in _RESERVED_KEYS},
        }
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)


def configure_stderr_logging(level: int | str = logging.INFO, *, json_format: bool = False) -> logging.Handler:
    """Route ``stdio_bridge`` logs to stderr.

    Installs one stream handler on the ``stdio_bridge`` logger; calling it
    again replaces the handler rather than adding another.

    Args:
        level: Level for the ``stdio_bridge`` logger.
        json_format: Use :class:`BridgeJsonFormatter` instead of plain text.

    Returns:
        The installed handler.

    """
    logger = logging.getLogger("stdio_bridge")
    for existing in list(logger.handlers):
        if getattr(existing, "_stdio_bridge_stderr", False):
            logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(BridgeJsonFormatter() if json_format else logging.Formatter(_TEXT_FORMAT))
    handler._stdio_bridge_stderr = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler
