# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Host/worker bridge over a worker process's stdin/stdout.

The worker registers functions by name; the host materializes one awaitable
proxy per registered name and calls it.  Both sides publish and subscribe to
named channels over the same stream.

Wire Protocol
-------------
UTF-8 text.  Host -> worker frames are ``\\n``-terminated lines.  Worker ->
host frames end with ``[_bridgeendline]`` followed by ``\\n``, so worker
values may contain line breaks.

**Registration** (worker -> host)::

    fnregister_<name>

**Call** (host -> worker)::

    function__bridge_name[<name>]_end_name_bridge_id[<id>]_end_id_bridge_arg[<arg1>]_end_arg
    param_<id>_<arg2>
    param_<id>_<argN>[bridgeendline]

The final value carries ``[bridgeendline]``; a call with no arguments sends
``noarg`` as ``<arg1>``.

**Response** (worker -> host)::

    fnresponse_<id>_<value>
    fnerror_<id>_<ErrorType>:<message>     (only with report_errors)

**Channels**::

    torust__bridge_name[<channel>]_end_name<payload>     host -> worker
    tonode__bridge_name[<channel>]_end_name<payload>     worker -> host

**Shutdown**: the host sends ``[bridgeexit]_``; the worker sends
``_bridge_exit`` and the host acknowledges with ``[bridgeexit]_``.  The
worker exits after processing the request, and the host observes that as
end of stream.

Unknown frames are ignored.  There is no cancellation frame: a call to an
unknown function, or one whose handler fails without ``report_errors``,
never resolves.  Callers impose their own timeouts.

"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeAlias

from stdio_bridge.bridge._common import (
    AsyncHandler,
    BridgeClosedError,
    BridgeError,
    BridgeRemoteError,
    FrameEncodingError,
    Listener,
    SyncHandler,
    UnknownFunctionError,
)
from stdio_bridge.bridge._config import BridgeConfig
from stdio_bridge.bridge._host import HostBridge, RemoteFunction
from stdio_bridge.bridge._shutdown import BridgeState
from stdio_bridge.bridge._transport import (
    BridgeTransport,
    PipeTransport,
    StderrMode,
    SubprocessTransport,
    make_pipe_pair,
    open_stdio_transport,
)
from stdio_bridge.bridge._worker import HandlerRegistration, WorkerBridge

__all__ = [
    "AsyncHandler",
    "BridgeClosedError",
    "BridgeConfig",
    "BridgeError",
    "BridgeRemoteError",
    "BridgeState",
    "BridgeTransport",
    "FrameEncodingError",
    "HandlerRegistration",
    "HostBridge",
    "Listener",
    "PipeTransport",
    "RemoteFunction",
    "StderrMode",
    "SubprocessTransport",
    "SyncHandler",
    "UnknownFunctionError",
    "WorkerBridge",
    "WorkerSetup",
    "connect",
    "make_pipe_pair",
    "open_stdio_transport",
    "run_worker",
    "serve_pipe",
    "serve_stdio",
]

WorkerSetup: TypeAlias = Callable[[WorkerBridge], Awaitable[object] | object]
"""Registers handlers on a freshly started worker bridge; may be async."""


async def _run_setup(setup: WorkerSetup, bridge: WorkerBridge) -> None:
    result = setup(bridge)
    if inspect.isawaitable(result):
        await result


async def serve_stdio(setup: WorkerSetup, *, config: BridgeConfig | None = None) -> None:
    """Run a worker bridge over stdin/stdout until it closes.

    Starts the bridge, runs *setup* (which registers handlers and may await
    channel traffic), then waits for shutdown.
    """
    transport = await open_stdio_transport()
    bridge = WorkerBridge(transport, config=config)
    await bridge.start()
    await _run_setup(setup, bridge)
    await bridge.wait_until_closed()


def run_worker(setup: WorkerSetup, *, config: BridgeConfig | None = None) -> None:
    """Serve a worker over stdin/stdout.

    This is the recommended entry point for worker processes::

        def setup(bridge: WorkerBridge) -> None:
            bridge.register("add", lambda args, _: sum(args), convert=int)

        if __name__ == "__main__":
            run_worker(setup)

    Args:
        setup: Called with the started bridge; may be a coroutine function.
        config: Bridge configuration.  Defaults to
            :meth:`BridgeConfig.from_env`.

    """
    asyncio.run(serve_stdio(setup, config=config if config is not None else BridgeConfig.from_env()))


@contextlib.asynccontextmanager
async def connect(
    cmd: list[str],
    *,
    config: BridgeConfig | None = None,
    stderr: StderrMode = StderrMode.INHERIT,
    stderr_logger: logging.Logger | None = None,
) -> AsyncIterator[HostBridge]:
    """Spawn a worker and yield a started host bridge.

    On exit the bridge requests shutdown, waits for the worker to exit (up to
    ``config.shutdown_timeout``), and reaps the process.

    Args:
        cmd: Command to spawn the worker.
        config: Bridge configuration.
        stderr: How to handle the child's stderr stream (see :class:`StderrMode`).
        stderr_logger: Logger for ``StderrMode.PIPE`` output; ignored for
            other modes.  Defaults to
            ``logging.getLogger("stdio_bridge.subprocess.stderr")``.

    Yields:
        The host bridge.  Await :meth:`HostBridge.wait_for_function` before
        the first call.

    """
    transport = await SubprocessTransport.spawn(cmd, stderr=stderr, stderr_logger=stderr_logger)
    bridge = HostBridge(transport, config=config)
    try:
        await bridge.start()
        yield bridge
    finally:
        await bridge.aclose()


@contextlib.asynccontextmanager
async def serve_pipe(
    setup: WorkerSetup,
    *,
    config: BridgeConfig | None = None,
    worker_config: BridgeConfig | None = None,
) -> AsyncIterator[tuple[HostBridge, WorkerBridge]]:
    """Run a worker bridge in-process and yield ``(host, worker)``.

    Useful for tests and demos, no subprocess needed.  Every function
    registered by *setup* is known to the host before this yields.

    Args:
        setup: Registers handlers on the worker bridge; may be async.
        config: Host configuration (also used for the worker unless
            *worker_config* is given).
        worker_config: Worker configuration.

    """
    host_transport, worker_transport = make_pipe_pair()
    worker = WorkerBridge(worker_transport, config=worker_config or config)
    await worker.start()
    host = HostBridge(host_transport, config=config)
    await host.start()
    try:
        await _run_setup(setup, worker)
        for name in list(worker.functions):
            await host.wait_for_function(name, timeout=host.config.shutdown_timeout)
        yield host, worker
    finally:
        await host.aclose()
        await worker.wait_until_closed()
