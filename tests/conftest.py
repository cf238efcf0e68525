"""Shared test fixtures for stdio-bridge tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_SERVE_FIXTURE = str(Path(__file__).parent / "serve_fixture_pipe.py")


def _worker_cmd() -> list[str]:
    """Return the command to launch the fixture worker subprocess."""
    return [sys.executable, _SERVE_FIXTURE]


@pytest.fixture
def worker_cmd() -> list[str]:
    """Command that spawns the fixture worker."""
    return _worker_cmd()


@pytest.fixture(autouse=True)
def _clean_bridge_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ambient ``STDIO_BRIDGE_*`` variables out of spawned workers."""
    for key in (
        "STDIO_BRIDGE_CALL_TIMEOUT",
        "STDIO_BRIDGE_SHUTDOWN_TIMEOUT",
        "STDIO_BRIDGE_REPORT_ERRORS",
        "STDIO_BRIDGE_READ_CHUNK_SIZE",
    ):
        monkeypatch.delenv(key, raising=False)
