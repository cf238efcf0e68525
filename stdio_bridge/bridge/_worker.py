# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Worker side of the bridge: handler registration, dispatch, and channels."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from stdio_bridge.bridge._channels import ChannelRouter
from stdio_bridge.bridge._common import (
    AsyncHandler,
    BridgeClosedError,
    FrameEncodingError,
    Listener,
    SyncHandler,
    _worker_logger,
    to_wire_text,
)
from stdio_bridge.bridge._config import BridgeConfig
from stdio_bridge.bridge._debug import fmt_args, fmt_frame, wire_call_logger, wire_frame_logger
from stdio_bridge.bridge._shutdown import BridgeState, ShutdownCoordinator
from stdio_bridge.bridge._transport import BridgeTransport, FrameWriter
from stdio_bridge.bridge._wire import (
    WORKER_END_OF_FRAME,
    Call,
    ChannelMessage,
    ErrorResponse,
    Frame,
    Registration,
    Response,
    ShutdownRequest,
    WorkerFrameDecoder,
    encode_worker_frame,
)

__all__ = ["HandlerRegistration", "WorkerBridge"]


@dataclass(frozen=True, slots=True)
class HandlerRegistration:
    """One function exposed to the host.

    Attributes:
        name: Name the host calls.
        handler: Called as ``handler(args, context)``; awaited when
            ``is_async`` is set.
        is_async: Dispatch as an independent task instead of inline.
        context: Fixed value passed to every invocation.
        convert: Optional per-argument conversion from wire text
            (e.g. ``int``); a conversion error counts as a handler failure.

    """

    name: str
    handler: SyncHandler | AsyncHandler
    is_async: bool
    context: Any = None
    convert: Callable[[str], Any] | None = None

    def arguments(self, raw: tuple[str, ...]) -> list[Any]:
        """Convert raw wire arguments for the handler."""
        if self.convert is None:
            return list(raw)
        return [self.convert(value) for value in raw]


class WorkerBridge:
    """Worker end of a bridge, normally bound to this process's stdin/stdout.

    Synchronous handlers run inline on the read loop and should be short.
    Asynchronous handlers run as independent tasks, so slow calls never stall
    other calls or channel traffic, and responses may be written out of call
    order.

    Create one per worker process, owned by the entry point (see
    :func:`stdio_bridge.run_worker`).
    """

    def __init__(self, transport: BridgeTransport, *, config: BridgeConfig | None = None) -> None:
        """Initialize over *transport*; call :meth:`start` to begin reading."""
        self._transport = transport
        self._config = config or BridgeConfig()
        self._writer = FrameWriter(transport.writer, encode_worker_frame)
        self._decoder = WorkerFrameDecoder()
        self._router = ChannelRouter()
        self._shutdown = ShutdownCoordinator("worker")
        self._handlers: dict[str, HandlerRegistration] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._read_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> WorkerBridge:
        """Start the frame read loop; idempotent."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop(), name="stdio-bridge-worker-reader")
        return self

    @property
    def config(self) -> BridgeConfig:
        """Configuration in effect."""
        return self._config

    @property
    def state(self) -> BridgeState:
        """Current lifecycle state."""
        return self._shutdown.state

    def is_closed(self) -> bool:
        """Whether the bridge has shut down."""
        return self._shutdown.is_closed

    async def wait_until_closed(self) -> None:
        """Suspend until the host requests shutdown or the stream ends."""
        await self._shutdown.wait_closed()

    async def close(self, timeout: float | None = None) -> None:
        """Ask the host to shut down and wait until the bridge is closed.

        Raises:
            TimeoutError: If the host does not acknowledge within *timeout*.

        """
        if self._shutdown.is_closed:
            return
        if self._shutdown.request_shutdown():
            _worker_logger.debug("Shutdown requested by worker")
            await self._writer.send(ShutdownRequest())
        await self._shutdown.wait_closed(timeout)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def functions(self) -> Mapping[str, HandlerRegistration]:
        """Read-only view of the registered handlers."""
        return MappingProxyType(self._handlers)

    def register(
        self,
        name: str,
        handler: SyncHandler,
        context: Any = None,
        *,
        convert: Callable[[str], Any] | None = None,
    ) -> None:
        """Expose a synchronous *handler* as *name*.

        The handler is called as ``handler(args, context)`` and its return
        value is sent back as text.  Registering an existing name replaces it.

        Raises:
            TypeError: If *handler* is a coroutine function.
            BridgeClosedError: If the bridge is closed.

        """
        if inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler for '{name}' is a coroutine function; use register_async()")
        self._register(HandlerRegistration(name, handler, False, context, convert))

    def register_async(
        self,
        name: str,
        handler: AsyncHandler,
        context: Any = None,
        *,
        convert: Callable[[str], Any] | None = None,
    ) -> None:
        """Expose an asynchronous *handler* as *name*.

        Same wire registration as :meth:`register`; each call runs as its own
        task.

        Raises:
            BridgeClosedError: If the bridge is closed.

        """
        self._register(HandlerRegistration(name, handler, True, context, convert))

    def _register(self, registration: HandlerRegistration) -> None:
        if self._shutdown.is_closed:
            raise BridgeClosedError(f"Cannot register '{registration.name}': bridge is closed")
        frame = Registration(registration.name)
        self._writer.send_nowait(frame)
        self._handlers[registration.name] = registration
        _worker_logger.debug("Registered %s function: %s", "async" if registration.is_async else "sync", frame.name)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def send(self, channel: str, data: object) -> bool:
        """Publish *data* (as text) to the host on *channel*.

        Returns:
            ``False`` if the bridge is closed, ``True`` once the frame is queued.

        """
        if self._shutdown.is_closed:
            return False
        return self._writer.send_nowait(ChannelMessage(channel, to_wire_text(data)))

    async def receive(self, channel: str) -> str:
        """Wait for the next host message on *channel*.

        Raises:
            BridgeClosedError: If the bridge is or becomes closed first.

        """
        return await self._router.next_message(channel)

    def on(self, channel: str, listener: Listener) -> None:
        """Subscribe *listener* to host messages on *channel*."""
        self._router.subscribe(channel, listener)

    def off(self, channel: str, listener: Listener) -> bool:
        """Unsubscribe *listener*; returns ``False`` if it was not subscribed."""
        return self._router.unsubscribe(channel, listener)

    # ------------------------------------------------------------------
    # Read loop and dispatch
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        reader = self._transport.reader
        try:
            while data := await reader.read(self._config.read_chunk_size):
                if await self._process(self._decoder.feed(data)):
                    break
        except ConnectionError:
            _worker_logger.debug("Host stream failed", exc_info=True)
        finally:
            await self._finish()

    async def _process(self, frames: list[Frame]) -> bool:
        """Dispatch decoded frames; returns ``True`` once shutdown was requested."""
        for frame in frames:
            if wire_frame_logger.isEnabledFor(logging.DEBUG):
                wire_frame_logger.debug("Worker received: %s", fmt_frame(frame))
            if isinstance(frame, Call):
                await self._dispatch_call(frame)
            elif isinstance(frame, ChannelMessage):
                self._router.dispatch(frame.channel, frame.payload)
            elif isinstance(frame, ShutdownRequest):
                self._shutdown.request_shutdown()
                _worker_logger.debug("Shutdown requested by host")
                return True
        return False

    async def _dispatch_call(self, call: Call) -> None:
        registration = self._handlers.get(call.name)
        if registration is None:
            _worker_logger.debug("Dropping call to unregistered function: %s", call.name)
            if self._config.report_errors:
                await self._writer.send(
                    ErrorResponse(call.call_id, "UnknownFunctionError", f"Unknown function '{call.name}'")
                )
            return
        if wire_call_logger.isEnabledFor(logging.DEBUG):
            wire_call_logger.debug("Dispatch: name=%s, id=%s, args=%s", call.name, call.call_id, fmt_args(call.args))
        if registration.is_async:
            task = asyncio.create_task(self._run_async(registration, call), name=f"stdio-bridge-call-{call.name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return
        try:
            result = registration.handler(registration.arguments(call.args), registration.context)
        except Exception as exc:
            await self._handler_failed(registration, call, exc)
            return
        await self._respond(registration, call, result)

    async def _run_async(self, registration: HandlerRegistration, call: Call) -> None:
        try:
            result = await registration.handler(registration.arguments(call.args), registration.context)  # type: ignore[misc]
        except Exception as exc:
            await self._handler_failed(registration, call, exc)
            return
        await self._respond(registration, call, result)

    async def _respond(self, registration: HandlerRegistration, call: Call, result: object) -> None:
        try:
            frame = Response(call.call_id, to_wire_text(result))
            await self._writer.send(frame)
        except FrameEncodingError as exc:
            await self._handler_failed(registration, call, exc)
            return
        if wire_call_logger.isEnabledFor(logging.DEBUG):
            wire_call_logger.debug("Responded: name=%s, id=%s", call.name, call.call_id)

    async def _handler_failed(self, registration: HandlerRegistration, call: Call, exc: Exception) -> None:
        _worker_logger.error(
            "Handler for '%s' failed",
            registration.name,
            exc_info=exc,
            extra={"function": registration.name, "call_id": call.call_id},
        )
        if self._config.report_errors:
            message = str(exc).replace(WORKER_END_OF_FRAME, "")
            await self._writer.send(ErrorResponse(call.call_id, type(exc).__name__, message))

    async def _finish(self) -> None:
        if self._shutdown.is_closed:
            return
        self._shutdown.request_shutdown()
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=self._config.shutdown_timeout)
            for task in pending:
                task.cancel()
            if pending:
                _worker_logger.warning("Cancelled %d in-flight call(s) at shutdown", len(pending))
                await asyncio.gather(*pending, return_exceptions=True)
        self._router.close()
        try:
            await self._transport.close()
        finally:
            self._shutdown.mark_closed()
        _worker_logger.debug("Worker bridge closed")
