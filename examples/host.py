"""Host that spawns ``worker.py`` and uses its functions and channels.

Uses ``stdio_bridge.connect()``, which launches the worker as a child
process and talks to it over its stdin/stdout.

Run::

    python examples/host.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from stdio_bridge import BridgeConfig, connect

_HERE = Path(__file__).resolve().parent


async def main() -> None:
    """Spawn the worker, call its functions, and exchange channel messages."""
    cmd = [sys.executable, str(_HERE / "worker.py")]
    config = BridgeConfig(call_timeout=5.0)

    async with connect(cmd, config=config) as bridge:
        addition = await bridge.wait_for_function("addition", timeout=5.0)
        find_longer = await bridge.wait_for_function("find_longer", timeout=5.0)

        print(f"addition(10, 20)                 = {await addition(10, 20)}")
        print(f"find_longer('foo', 'longer_foo') = {await find_longer('foo', 'longer_foo')}")

        reply: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        bridge.on("channel_foo", reply.set_result)
        bridge.send("channel_a", "Sent this from the host!")
        print(f"channel_foo                      = {await asyncio.wait_for(reply, 5.0)}")


if __name__ == "__main__":
    asyncio.run(main())
