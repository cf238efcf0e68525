"""Worker process that exposes two functions and talks on two channels.

Spawned by ``host.py``; it is not meant to be run by hand because its
stdout carries bridge frames.

Run the host (which spawns this automatically)::

    python examples/host.py
"""

from __future__ import annotations

import logging
from typing import Any

from stdio_bridge import WorkerBridge, run_worker
from stdio_bridge.logging_utils import configure_stderr_logging


def add(params: list[int], _: Any) -> int:
    """Add every argument."""
    return sum(params)


async def find_longer(params: list[str], pass_data: Any) -> str:
    """Return the longer of two strings."""
    logging.getLogger("examples.worker").info("find_longer called with context %r", pass_data)
    return params[0] if len(params[0]) >= len(params[1]) else params[1]


async def setup(bridge: WorkerBridge) -> None:
    """Register functions, then answer the host's greeting."""
    bridge.register("addition", add, convert=int)
    bridge.register_async("find_longer", find_longer, "Variable to pass to the function")
    greeting = await bridge.receive("channel_a")
    bridge.send("channel_foo", f"bar (got {greeting!r})")


def main() -> None:
    """Serve over stdin/stdout, logging to stderr."""
    configure_stderr_logging(logging.INFO)
    run_worker(setup)


if __name__ == "__main__":
    main()
