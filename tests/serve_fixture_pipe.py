# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Subprocess worker entry point for bridge fixture tests.

Run directly: ``python tests/serve_fixture_pipe.py``.  Configuration comes
from ``STDIO_BRIDGE_*`` environment variables, so tests can switch on
``STDIO_BRIDGE_REPORT_ERRORS`` without a second script.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from stdio_bridge import WorkerBridge, run_worker
from stdio_bridge.logging_utils import configure_stderr_logging

_background: set[asyncio.Task[None]] = set()


def addition(params: list[int], _: Any) -> int:
    """Sum integer arguments."""
    return sum(params)


async def find_longer(params: list[str], context: Any) -> str:
    """Return the longest argument; ties go to the first."""
    await asyncio.sleep(0)
    return max(params, key=len) if params else str(context)


async def slow_echo(params: list[str], _: Any) -> str:
    """Sleep ``params[0]`` seconds, then return ``params[1]``."""
    await asyncio.sleep(float(params[0]))
    return params[1]


def fail(params: list[str], _: Any) -> str:
    """Always raise."""
    raise ValueError(f"boom: {params}")


def setup(bridge: WorkerBridge) -> None:
    """Register fixture functions and channel behaviour."""
    bridge.register("addition", addition, convert=int)
    bridge.register_async("find_longer", find_longer, "no arguments")
    bridge.register_async("slow_echo", slow_echo)
    bridge.register("join", lambda params, _: "|".join(params))
    bridge.register("count", lambda params, _: len(params))
    bridge.register("multiline", lambda params, _: "first\nsecond\nthird")
    bridge.register("nothing", lambda params, _: None)
    bridge.register("fail", fail)

    async def wait_message(params: list[str], _: Any) -> str:
        return await bridge.receive(params[0])

    bridge.register_async("wait_message", wait_message)

    bridge.on("ping", lambda payload: bridge.send("pong", payload))
    bridge.on("control", lambda payload: bridge.close() if payload == "exit" else None)

    async def ticker() -> None:
        n = 0
        while bridge.send("ticks", f"tick-{n}"):
            n += 1
            await asyncio.sleep(0.05)

    _background.add(asyncio.get_running_loop().create_task(ticker()))


def main() -> None:
    """Serve the fixture worker over stdin/stdout."""
    configure_stderr_logging(logging.WARNING)
    run_worker(setup)


if __name__ == "__main__":
    main()
