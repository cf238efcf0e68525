# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Bridge configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

__all__ = ["BridgeConfig"]

_TRUE_VALUES = ("1", "true", "yes")


def _env_float(environ: Mapping[str, str], key: str) -> float | None:
    raw = environ.get(key, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


def _env_int(environ: Mapping[str, str], key: str) -> int | None:
    raw = environ.get(key, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class BridgeConfig:
    """Tunables shared by host and worker bridges.

    Attributes:
        call_timeout: Default seconds a host call waits for its response.
            ``None`` waits forever, which is the protocol's own behaviour:
            a call to an unknown function never resolves.
        shutdown_timeout: Seconds to wait for the peer (host side) or for
            in-flight async handlers (worker side) during shutdown.
        report_errors: Worker answers handler exceptions and unknown
            functions with an ``fnerror`` frame instead of staying silent.
        read_chunk_size: Maximum bytes read from the stream per iteration.

    """

    call_timeout: float | None = None
    shutdown_timeout: float = 10.0
    report_errors: bool = False
    read_chunk_size: int = 65536

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ValueError(f"call_timeout must be positive, got {self.call_timeout}")
        if self.shutdown_timeout < 0:
            raise ValueError(f"shutdown_timeout must be non-negative, got {self.shutdown_timeout}")
        if self.read_chunk_size <= 0:
            raise ValueError(f"read_chunk_size must be positive, got {self.read_chunk_size}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        """Build a config from ``STDIO_BRIDGE_*`` environment variables.

        Unset variables keep their defaults.  Recognized variables:
        ``STDIO_BRIDGE_CALL_TIMEOUT``, ``STDIO_BRIDGE_SHUTDOWN_TIMEOUT``,
        ``STDIO_BRIDGE_REPORT_ERRORS`` and ``STDIO_BRIDGE_READ_CHUNK_SIZE``.

        Raises:
            ValueError: On unparseable or out-of-range values.

        """
        env = os.environ if environ is None else environ
        defaults = cls()
        shutdown_timeout = _env_float(env, "STDIO_BRIDGE_SHUTDOWN_TIMEOUT")
        chunk = _env_int(env, "STDIO_BRIDGE_READ_CHUNK_SIZE")
        report = env.get("STDIO_BRIDGE_REPORT_ERRORS", "").strip().lower()
        return cls(
            call_timeout=_env_float(env, "STDIO_BRIDGE_CALL_TIMEOUT"),
            shutdown_timeout=defaults.shutdown_timeout if shutdown_timeout is None else shutdown_timeout,
            report_errors=report in _TRUE_VALUES if report else defaults.report_errors,
            read_chunk_size=defaults.read_chunk_size if chunk is None else chunk,
        )
