# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Host side of the bridge: proxies for worker functions and channel access."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from types import MappingProxyType, TracebackType

from stdio_bridge.bridge._channels import ChannelRouter
from stdio_bridge.bridge._common import (
    BridgeClosedError,
    BridgeRemoteError,
    Listener,
    UnknownFunctionError,
    _host_logger,
    to_wire_text,
)
from stdio_bridge.bridge._config import BridgeConfig
from stdio_bridge.bridge._correlator import CallCorrelator
from stdio_bridge.bridge._debug import fmt_args, fmt_frame, wire_call_logger, wire_frame_logger
from stdio_bridge.bridge._shutdown import BridgeState, ShutdownCoordinator
from stdio_bridge.bridge._transport import BridgeTransport, FrameWriter
from stdio_bridge.bridge._wire import (
    Call,
    ChannelMessage,
    ErrorResponse,
    Frame,
    HostFrameDecoder,
    Registration,
    Response,
    ShutdownAck,
    ShutdownRequest,
    encode_host_frame,
)

__all__ = ["HostBridge", "RemoteFunction"]


class RemoteFunction:
    """Awaitable proxy for one function registered by the worker.

    Calling it sends a Call frame and returns the worker's result as text::

        total = await bridge.function("add")(10, 20)   # "30"

    """

    __slots__ = ("_bridge", "name")

    def __init__(self, bridge: HostBridge, name: str) -> None:
        """Bind the proxy to a bridge and a registered name."""
        self._bridge = bridge
        self.name = name

    async def __call__(self, *args: object, timeout: float | None = None) -> str:
        """Invoke the worker function; see :meth:`HostBridge.call`."""
        return await self._bridge._invoke(self.name, args, timeout)

    def __repr__(self) -> str:
        """Show the bound function name."""
        return f"RemoteFunction({self.name!r})"


class HostBridge:
    """Host end of a bridge bound to one worker's stdin/stdout.

    Function proxies appear in :attr:`functions` as the worker's Registration
    frames arrive; there is no snapshot, so a function registered late is
    picked up whenever its frame is read.  Use :meth:`wait_for_function`
    before the first call.

    Not thread-safe: use it from the event loop it was started on.  Each
    instance owns its own proxy table, pending-call table and listeners, so
    one host process may run any number of bridges side by side.
    """

    def __init__(self, transport: BridgeTransport, *, config: BridgeConfig | None = None) -> None:
        """Initialize over *transport*; call :meth:`start` to begin reading."""
        self._transport = transport
        self._config = config or BridgeConfig()
        self._writer = FrameWriter(transport.writer, encode_host_frame)
        self._decoder = HostFrameDecoder()
        self._correlator = CallCorrelator()
        self._router = ChannelRouter()
        self._shutdown = ShutdownCoordinator("host")
        self._functions: dict[str, RemoteFunction] = {}
        self._registered: dict[str, asyncio.Event] = {}
        self._read_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> HostBridge:
        """Start the frame read loop; idempotent."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop(), name="stdio-bridge-host-reader")
        return self

    async def __aenter__(self) -> HostBridge:
        """Start the bridge."""
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Request shutdown and wait for the worker to go away."""
        await self.aclose()

    @property
    def config(self) -> BridgeConfig:
        """Configuration in effect."""
        return self._config

    @property
    def state(self) -> BridgeState:
        """Current lifecycle state."""
        return self._shutdown.state

    def is_closed(self) -> bool:
        """Whether the worker's stream has been observed to end."""
        return self._shutdown.is_closed

    def close(self) -> bool:
        """Send a ShutdownRequest and return immediately.

        Does not wait for the worker to exit; use :meth:`wait_closed`.

        Returns:
            ``True`` if a request was written.

        """
        if self._shutdown.is_closed:
            return False
        self._shutdown.request_shutdown()
        sent = self._writer.send_nowait(ShutdownRequest())
        if sent:
            _host_logger.debug("Shutdown requested by host")
        return sent

    async def wait_closed(self, timeout: float | None = None) -> None:
        """Suspend until the worker's stream has ended.

        Raises:
            TimeoutError: If *timeout* elapses first.

        """
        await self._shutdown.wait_closed(timeout)

    async def aclose(self, timeout: float | None = None) -> None:
        """Request shutdown, wait for stream closure, then release the transport.

        Waits at most *timeout* (default ``config.shutdown_timeout``) seconds
        for the worker before closing the transport regardless.
        """
        wait = self._config.shutdown_timeout if timeout is None else timeout
        self.close()
        if self._read_task is not None:
            try:
                await self._shutdown.wait_closed(wait)
            except TimeoutError:
                _host_logger.warning("Worker did not close within %.1fs", wait)
        await self._transport.close()
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
        self._finish()

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    @property
    def functions(self) -> Mapping[str, RemoteFunction]:
        """Read-only view of the registered function proxies."""
        return MappingProxyType(self._functions)

    @property
    def pending_calls(self) -> int:
        """Number of calls still waiting for a response."""
        return len(self._correlator)

    def function(self, name: str) -> RemoteFunction:
        """Return the proxy for *name*.

        Raises:
            UnknownFunctionError: If no Registration frame for *name* has arrived.

        """
        proxy = self._functions.get(name)
        if proxy is None:
            raise UnknownFunctionError(name, list(self._functions))
        return proxy

    async def wait_for_function(self, name: str, timeout: float | None = None) -> RemoteFunction:
        """Wait until the worker registers *name* and return its proxy.

        Raises:
            TimeoutError: If *timeout* elapses first.
            BridgeClosedError: If the bridge closes before the registration.

        """
        if name in self._functions:
            return self._functions[name]
        if self._shutdown.is_closed:
            raise BridgeClosedError(f"Bridge closed before '{name}' was registered")
        event = self._registered.setdefault(name, asyncio.Event())
        if timeout is None:
            await event.wait()
        else:
            await asyncio.wait_for(event.wait(), timeout)
        if name not in self._functions:
            raise BridgeClosedError(f"Bridge closed before '{name}' was registered")
        return self._functions[name]

    async def call(self, name: str, *args: object, timeout: float | None = None) -> str:
        """Call worker function *name* and return its result as text.

        Arguments are sent as text (``str()`` of each value).  The protocol
        has no cancellation: on timeout the pending entry is discarded so a
        late response has no effect.

        Args:
            name: Registered function name.
            *args: Positional arguments.
            timeout: Seconds to wait; defaults to ``config.call_timeout``
                (``None`` waits forever).

        Raises:
            UnknownFunctionError: If *name* is not registered.
            BridgeClosedError: If the bridge is closed.
            BridgeRemoteError: If the worker reports the call failed.
            TimeoutError: If *timeout* elapses first.

        """
        return await self.function(name)(*args, timeout=timeout)

    async def _invoke(self, name: str, args: tuple[object, ...], timeout: float | None) -> str:
        if self._shutdown.is_closed:
            raise BridgeClosedError(f"Cannot call '{name}': bridge is closed")
        wire_args = tuple(to_wire_text(a) for a in args)
        call_id, future = self._correlator.issue()
        try:
            if wire_call_logger.isEnabledFor(logging.DEBUG):
                wire_call_logger.debug("Call: name=%s, id=%s, args=%s", name, call_id, fmt_args(wire_args))
            if not await self._writer.send(Call(name, call_id, wire_args)):
                raise BridgeClosedError(f"Cannot call '{name}': worker stream is closed")
            effective = self._config.call_timeout if timeout is None else timeout
            if effective is None:
                return await future
            return await asyncio.wait_for(future, effective)
        finally:
            self._correlator.discard(call_id)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def send(self, channel: str, data: object) -> None:
        """Publish *data* (as text) to the worker on *channel*; fire-and-forget.

        Raises:
            BridgeClosedError: If the bridge is closed.

        """
        if self._shutdown.is_closed or not self._writer.send_nowait(ChannelMessage(channel, to_wire_text(data))):
            raise BridgeClosedError(f"Cannot send on '{channel}': bridge is closed")

    def on(self, channel: str, listener: Listener) -> None:
        """Subscribe *listener* to worker messages on *channel*."""
        self._router.subscribe(channel, listener)

    def off(self, channel: str, listener: Listener) -> bool:
        """Unsubscribe *listener*; returns ``False`` if it was not subscribed."""
        return self._router.unsubscribe(channel, listener)

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        reader = self._transport.reader
        try:
            while data := await reader.read(self._config.read_chunk_size):
                for frame in self._decoder.feed(data):
                    self._dispatch(frame)
        except ConnectionError:
            _host_logger.debug("Worker stream failed", exc_info=True)
        finally:
            self._finish()

    def _finish(self) -> None:
        if not self._shutdown.mark_closed():
            return
        self._router.close()
        for event in self._registered.values():
            event.set()
        abandoned = self._correlator.abandon_all()
        if abandoned:
            _host_logger.warning("Bridge closed with %d call(s) still pending; they will never resolve", abandoned)
        _host_logger.debug("Host bridge closed")

    def _dispatch(self, frame: Frame) -> None:
        if wire_frame_logger.isEnabledFor(logging.DEBUG):
            wire_frame_logger.debug("Host received: %s", fmt_frame(frame))
        if isinstance(frame, Response):
            self._correlator.resolve(frame.call_id, frame.value)
        elif isinstance(frame, ErrorResponse):
            self._correlator.reject(
                frame.call_id, BridgeRemoteError(frame.error_type, frame.message, call_id=frame.call_id)
            )
        elif isinstance(frame, ChannelMessage):
            self._router.dispatch(frame.channel, frame.payload)
        elif isinstance(frame, Registration):
            self._functions[frame.name] = RemoteFunction(self, frame.name)
            event = self._registered.pop(frame.name, None)
            if event is not None:
                event.set()
            _host_logger.debug("Worker registered function: %s", frame.name)
        elif isinstance(frame, ShutdownRequest):
            self._shutdown.request_shutdown()
            self._writer.send_nowait(ShutdownAck())
            _host_logger.debug("Shutdown requested by worker")
