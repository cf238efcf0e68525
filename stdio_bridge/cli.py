# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for stdio-bridge workers.

Spawns a worker, waits for its registrations, and calls a function, lists
the registered functions, or exchanges channel messages.

Usage::

    stdio-bridge --cmd "python worker.py" functions
    stdio-bridge --cmd "python worker.py" call add 10 20
    stdio-bridge --cmd "python worker.py" send channel_foo hello
    stdio-bridge --cmd "python worker.py" listen channel_a --count 3

"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, TypeVar

import typer

from stdio_bridge.bridge import (
    BridgeConfig,
    BridgeError,
    BridgeRemoteError,
    HostBridge,
    StderrMode,
    UnknownFunctionError,
    connect,
)
from stdio_bridge.logging_utils import configure_stderr_logging

# ---------------------------------------------------------------------------
# Output format enum
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    text = "text"
    json = "json"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    cmd: str | None = None
    timeout: float | None = None
    wait: float = 1.0
    format: OutputFormat = OutputFormat.text
    verbose: bool = False


app = typer.Typer(
    name="stdio-bridge",
    help="Talk to a stdio-bridge worker process.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    cmd: Annotated[str | None, typer.Option("--cmd", "-c", help="Worker command")] = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", "-t", help="Seconds to wait for a call or message")
    ] = None,
    wait: Annotated[float, typer.Option("--wait", "-w", help="Seconds to wait for worker registrations")] = 1.0,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.text,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show worker stderr and bridge logs")] = False,
) -> None:
    """Configure the worker command and output options."""
    if timeout is not None and timeout <= 0:
        raise typer.BadParameter("--timeout must be positive")
    if wait < 0:
        raise typer.BadParameter("--wait must not be negative")
    ctx.obj = _CliConfig(cmd=cmd, timeout=timeout, wait=wait, format=fmt, verbose=verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_json(data: object) -> None:
    """Print a single-line JSON document to stdout."""
    typer.echo(json.dumps(data, default=str))


def _emit_remote_error(e: BridgeRemoteError) -> None:
    """Write a BridgeRemoteError to stderr as JSON."""
    err = {"type": e.error_type, "message": e.error_message, "call_id": e.call_id}
    typer.echo(json.dumps({"error": err}, default=str), err=True)


def _ensure_cmd(config: _CliConfig) -> list[str]:
    """Validate and split the worker command."""
    if not config.cmd:
        raise typer.BadParameter("--cmd is required")
    argv = shlex.split(config.cmd)
    if not argv:
        raise typer.BadParameter("--cmd must not be empty")
    return argv


@asynccontextmanager
async def _open_bridge(config: _CliConfig) -> AsyncIterator[HostBridge]:
    """Spawn the worker and yield a started host bridge."""
    argv = _ensure_cmd(config)
    if config.verbose:
        configure_stderr_logging(logging.DEBUG)
    bridge_config = BridgeConfig(call_timeout=config.timeout)
    stderr = StderrMode.INHERIT if config.verbose else StderrMode.DEVNULL
    async with connect(argv, config=bridge_config, stderr=stderr) as host:
        yield host


T = TypeVar("T")


def _run(config: _CliConfig, coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine, mapping bridge failures to exit code 1."""
    try:
        return asyncio.run(coro)
    except BridgeRemoteError as e:
        _emit_remote_error(e)
        raise typer.Exit(1) from None
    except UnknownFunctionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except TimeoutError:
        typer.echo(f"Error: timed out after {config.timeout}s", err=True)
        raise typer.Exit(1) from None
    except (BridgeError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# functions command
# ---------------------------------------------------------------------------


async def _list_functions(config: _CliConfig) -> list[str]:
    async with _open_bridge(config) as host:
        await asyncio.sleep(config.wait)
        return sorted(host.functions)


@app.command()
def functions(ctx: typer.Context) -> None:
    """List the functions the worker registers."""
    config: _CliConfig = ctx.obj
    _ensure_cmd(config)
    names: list[str] = _run(config, _list_functions(config))
    if config.format == OutputFormat.json:
        _print_json({"functions": names})
    else:
        for name in names:
            typer.echo(name)


# ---------------------------------------------------------------------------
# call command
# ---------------------------------------------------------------------------


async def _call(config: _CliConfig, name: str, args: list[str]) -> str:
    async with _open_bridge(config) as host:
        try:
            proxy = await host.wait_for_function(name, timeout=config.wait)
        except TimeoutError:
            raise UnknownFunctionError(name, list(host.functions)) from None
        return await proxy(*args)


@app.command()
def call(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Function name")],
    args: Annotated[list[str] | None, typer.Argument(help="Arguments, sent as text")] = None,
) -> None:
    """Call a worker function and print its result.

    Without ``--timeout`` a call the worker never answers waits forever,
    which is what the protocol does for handler failures.
    """
    config: _CliConfig = ctx.obj
    _ensure_cmd(config)
    values = args or []
    result: str = _run(config, _call(config, name, values))
    if config.format == OutputFormat.json:
        _print_json({"function": name, "args": values, "result": result})
    else:
        typer.echo(result)


# ---------------------------------------------------------------------------
# send command
# ---------------------------------------------------------------------------


async def _send(config: _CliConfig, channel: str, data: str) -> None:
    async with _open_bridge(config) as host:
        # Give the worker time to subscribe; channel delivery is not retroactive.
        await asyncio.sleep(config.wait)
        host.send(channel, data)


@app.command()
def send(
    ctx: typer.Context,
    channel: Annotated[str, typer.Argument(help="Channel name")],
    data: Annotated[str, typer.Argument(help="Message payload")],
) -> None:
    """Publish one message to the worker on a channel."""
    config: _CliConfig = ctx.obj
    _ensure_cmd(config)
    _run(config, _send(config, channel, data))
    if config.format == OutputFormat.json:
        _print_json({"channel": channel, "sent": data})


# ---------------------------------------------------------------------------
# listen command
# ---------------------------------------------------------------------------


async def _listen(config: _CliConfig, channel: str, count: int) -> list[str]:
    received: asyncio.Queue[str] = asyncio.Queue()
    messages: list[str] = []
    async with _open_bridge(config) as host:
        host.on(channel, received.put_nowait)
        for _ in range(count):
            if config.timeout is None:
                messages.append(await received.get())
            else:
                messages.append(await asyncio.wait_for(received.get(), config.timeout))
            if config.format == OutputFormat.json:
                _print_json({"channel": channel, "payload": messages[-1]})
            else:
                typer.echo(messages[-1])
    return messages


@app.command()
def listen(
    ctx: typer.Context,
    channel: Annotated[str, typer.Argument(help="Channel name")],
    count: Annotated[int, typer.Option("--count", "-n", min=1, help="Messages to print before exiting")] = 1,
) -> None:
    """Print messages the worker publishes on a channel."""
    config: _CliConfig = ctx.obj
    _ensure_cmd(config)
    _run(config, _listen(config, channel, count))
