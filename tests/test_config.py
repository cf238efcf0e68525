# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for BridgeConfig."""

from __future__ import annotations

import dataclasses

import pytest

from stdio_bridge import BridgeConfig


def test_defaults() -> None:
    """Defaults match the protocol's own behaviour."""
    config = BridgeConfig()
    assert config.call_timeout is None
    assert config.shutdown_timeout == 10.0
    assert config.report_errors is False
    assert config.read_chunk_size == 65536


def test_frozen() -> None:
    """Configs are immutable."""
    with pytest.raises(dataclasses.FrozenInstanceError):
        BridgeConfig().report_errors = True  # type: ignore[misc]


@pytest.mark.parametrize(
    ("kwargs", "match"),
    [
        ({"call_timeout": 0}, "call_timeout"),
        ({"call_timeout": -1.0}, "call_timeout"),
        ({"shutdown_timeout": -0.5}, "shutdown_timeout"),
        ({"read_chunk_size": 0}, "read_chunk_size"),
    ],
)
def test_validation(kwargs: dict[str, float], match: str) -> None:
    """Out-of-range values raise ValueError."""
    with pytest.raises(ValueError, match=match):
        BridgeConfig(**kwargs)  # type: ignore[arg-type]


def test_from_env_empty() -> None:
    """No variables gives the defaults."""
    assert BridgeConfig.from_env({}) == BridgeConfig()


def test_from_env_all() -> None:
    """Every variable is honoured."""
    config = BridgeConfig.from_env(
        {
            "STDIO_BRIDGE_CALL_TIMEOUT": "2.5",
            "STDIO_BRIDGE_SHUTDOWN_TIMEOUT": "1",
            "STDIO_BRIDGE_REPORT_ERRORS": "TRUE",
            "STDIO_BRIDGE_READ_CHUNK_SIZE": "1024",
        }
    )
    assert config == BridgeConfig(call_timeout=2.5, shutdown_timeout=1.0, report_errors=True, read_chunk_size=1024)


@pytest.mark.parametrize("value", ["0", "false", "no", "off"])
def test_from_env_report_errors_false(value: str) -> None:
    """Anything other than 1/true/yes disables error reporting."""
    assert BridgeConfig.from_env({"STDIO_BRIDGE_REPORT_ERRORS": value}).report_errors is False


def test_from_env_bad_number() -> None:
    """Unparseable numbers name the variable."""
    with pytest.raises(ValueError, match="STDIO_BRIDGE_CALL_TIMEOUT"):
        BridgeConfig.from_env({"STDIO_BRIDGE_CALL_TIMEOUT": "soon"})


def test_from_env_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without an explicit mapping, os.environ is used."""
    monkeypatch.setenv("STDIO_BRIDGE_SHUTDOWN_TIMEOUT", "3")
    assert BridgeConfig.from_env().shutdown_timeout == 3.0


def test_from_env_bad_integer() -> None:
    """The chunk size must be an integer."""
    with pytest.raises(ValueError, match="STDIO_BRIDGE_READ_CHUNK_SIZE"):
        BridgeConfig.from_env({"STDIO_BRIDGE_READ_CHUNK_SIZE": "1.5"})
