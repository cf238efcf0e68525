# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Transport protocol and implementations."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
from collections.abc import Callable
from enum import Enum
from typing import Protocol, runtime_checkable

from stdio_bridge.bridge._debug import wire_transport_logger
from stdio_bridge.bridge._wire import Frame

_logger = logging.getLogger("stdio_bridge.transport")

# ---------------------------------------------------------------------------
# Transport protocols
# ---------------------------------------------------------------------------


class ByteSink(Protocol):
    """Write half of a transport; ``asyncio.StreamWriter`` satisfies it."""

    def write(self, data: bytes) -> None:
        """Queue bytes for writing."""
        ...

    async def drain(self) -> None:
        """Wait until the write buffer has been flushed far enough."""
        ...

    def close(self) -> None:
        """Close the write half."""
        ...

    def is_closing(self) -> bool:
        """Whether the write half is closed or closing."""
        ...

    async def wait_closed(self) -> None:
        """Wait until the write half is fully closed."""
        ...


@runtime_checkable
class BridgeTransport(Protocol):
    """Bidirectional byte stream transport."""

    @property
    def reader(self) -> asyncio.StreamReader:
        """Readable byte stream."""
        ...

    @property
    def writer(self) -> ByteSink:
        """Writable byte stream."""
        ...

    async def close(self) -> None:
        """Close the transport."""
        ...


# ---------------------------------------------------------------------------
# PipeTransport + make_pipe_pair
# ---------------------------------------------------------------------------


class _MemorySink:
    """Write half that feeds an in-process ``StreamReader`` directly."""

    __slots__ = ("_closed", "_target")

    def __init__(self, target: asyncio.StreamReader) -> None:
        self._target = target
        self._closed = False

    def write(self, data: bytes) -> None:
        # Writes after close are dropped, matching a pipe whose reader went away.
        if self._closed or not data:
            return
        self._target.feed_data(data)

    async def drain(self) -> None:
        if self._closed:
            raise ConnectionResetError("Connection lost")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._target.feed_eof()

    def is_closing(self) -> bool:
        return self._closed

    async def wait_closed(self) -> None:
        return None


class PipeTransport:
    """Transport backed by an asyncio reader and a write sink."""

    __slots__ = ("_reader", "_writer")

    def __init__(self, reader: asyncio.StreamReader, writer: ByteSink) -> None:
        """Initialize with reader and writer streams."""
        self._reader = reader
        self._writer = writer

    @property
    def reader(self) -> asyncio.StreamReader:
        """Readable byte stream."""
        return self._reader

    @property
    def writer(self) -> ByteSink:
        """Writable byte stream."""
        return self._writer

    async def close(self) -> None:
        """Close the write half; the peer observes end of stream."""
        self._writer.close()
        with contextlib.suppress(ConnectionError):
            await self._writer.wait_closed()


def make_pipe_pair() -> tuple[PipeTransport, PipeTransport]:
    """Create connected host/worker transports in the current process.

    Must be called from a coroutine.  Returns (host_transport, worker_transport).
    Closing one side's writer delivers end of stream to the other side's reader.
    """
    to_worker = asyncio.StreamReader()
    to_host = asyncio.StreamReader()
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("make_pipe_pair: in-memory host/worker pair created")
    host = PipeTransport(to_host, _MemorySink(to_worker))
    worker = PipeTransport(to_worker, _MemorySink(to_host))
    return host, worker


# ---------------------------------------------------------------------------
# SubprocessTransport
# ---------------------------------------------------------------------------


class StderrMode(Enum):
    """How to handle child process stderr in SubprocessTransport.

    Members:
        INHERIT: Child stderr goes to parent's stderr (default).
        PIPE: Parent drains child stderr in a background task and
            forwards each line to a ``logging.Logger``.
        DEVNULL: Child stderr discarded at OS level.
    """

    INHERIT = "inherit"
    PIPE = "pipe"
    DEVNULL = "devnull"


async def _drain_stderr(pipe: asyncio.StreamReader, logger: logging.Logger) -> None:
    """Forward child stderr line-by-line to *logger*."""
    try:
        while raw_line := await pipe.readline():
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.info(line)
    except (OSError, ValueError):
        pass


class SubprocessTransport:
    """Transport that communicates with a child process over stdin/stdout.

    Create with :meth:`spawn`.  The reader is the child's stdout, the writer
    the child's stdin.  Closing the transport closes stdin (the child sees
    EOF), waits for the child to exit and kills it if it does not.
    """

    __slots__ = ("_closed", "_proc", "_stderr_task")

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        stderr_task: asyncio.Task[None] | None = None,
    ) -> None:
        """Wrap an already-spawned process; prefer :meth:`spawn`."""
        if proc.stdin is None or proc.stdout is None:
            raise ValueError("Process must be spawned with stdin=PIPE and stdout=PIPE")
        self._proc = proc
        self._stderr_task = stderr_task
        self._closed = False

    @classmethod
    async def spawn(
        cls,
        cmd: list[str],
        *,
        stderr: StderrMode = StderrMode.INHERIT,
        stderr_logger: logging.Logger | None = None,
    ) -> SubprocessTransport:
        """Spawn *cmd* and wire its stdin/stdout as the transport.

        Args:
            cmd: Command to spawn.
            stderr: How to handle the child's stderr stream.
            stderr_logger: Logger for ``StderrMode.PIPE`` output.
                Defaults to ``logging.getLogger("stdio_bridge.subprocess.stderr")``.

        """
        if not cmd:
            raise ValueError("cmd must not be empty")
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("SubprocessTransport spawn: cmd=%s, stderr=%s", cmd, stderr.value)

        if stderr == StderrMode.DEVNULL:
            stderr_arg: int | None = asyncio.subprocess.DEVNULL
        elif stderr == StderrMode.PIPE:
            stderr_arg = asyncio.subprocess.PIPE
        else:
            stderr_arg = None

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=stderr_arg,
        )
        stderr_task: asyncio.Task[None] | None = None
        if stderr == StderrMode.PIPE:
            assert proc.stderr is not None
            if stderr_logger is None:
                stderr_logger = logging.getLogger("stdio_bridge.subprocess.stderr")
            stderr_task = asyncio.create_task(_drain_stderr(proc.stderr, stderr_logger))
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("SubprocessTransport spawned: pid=%d", proc.pid)
        return cls(proc, stderr_task)

    @property
    def proc(self) -> asyncio.subprocess.Process:
        """The underlying asyncio process."""
        return self._proc

    @property
    def pid(self) -> int:
        """Child process id."""
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        """Child exit code, or ``None`` while it is running."""
        return self._proc.returncode

    @property
    def reader(self) -> asyncio.StreamReader:
        """Readable byte stream (child's stdout)."""
        assert self._proc.stdout is not None
        return self._proc.stdout

    @property
    def writer(self) -> ByteSink:
        """Writable byte stream (child's stdin)."""
        assert self._proc.stdin is not None
        return self._proc.stdin

    async def wait(self) -> int:
        """Wait for the child to exit and return its exit code."""
        return await self._proc.wait()

    async def close(self, timeout: float = 10.0) -> None:
        """Close stdin (sends EOF), wait for exit, kill after *timeout* seconds."""
        if self._closed:
            return
        self._closed = True
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("SubprocessTransport closing: pid=%d", self._proc.pid)
        stdin = self._proc.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()
            with contextlib.suppress(ConnectionError):
                await stdin.wait_closed()
        try:
            await asyncio.wait_for(self._proc.wait(), timeout)
        except TimeoutError:
            _logger.warning("Worker did not exit within %.1fs, killing pid=%d", timeout, self._proc.pid)
            with contextlib.suppress(ProcessLookupError):
                self._proc.kill()
            await self._proc.wait()
        if self._stderr_task is not None:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stderr_task, 5)
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug(
                "SubprocessTransport closed: pid=%d, exit_code=%s", self._proc.pid, self._proc.returncode
            )


# ---------------------------------------------------------------------------
# Worker-side stdio
# ---------------------------------------------------------------------------


async def open_stdio_transport() -> PipeTransport:
    """Wrap this process's stdin/stdout as an asyncio transport.

    This is the worker-side entry point for subprocess mode.  Uses
    ``closefd=False`` so the original stdio descriptors are not closed on
    exit.  Nothing else in the worker may write to stdout: it carries frames.

    Emits a diagnostic warning to stderr when stdin or stdout is connected
    to a terminal, since the process expects to be driven by a host.
    """
    if sys.stdin.isatty() or sys.stdout.isatty():
        sys.stderr.write(
            "WARNING: This process communicates with its host over stdin/stdout "
            "and is not intended to be run interactively.\n"
            "It should be launched as a subprocess by a host bridge "
            "(e.g. stdio_bridge.connect()).\n"
        )
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        os.fdopen(sys.stdin.fileno(), "rb", closefd=False),
    )
    # StreamReaderProtocol (with its own unused reader) gives the writer a
    # close waiter, so StreamWriter.wait_closed() works on the pipe.
    w_transport, w_protocol = await loop.connect_write_pipe(
        lambda: asyncio.StreamReaderProtocol(asyncio.StreamReader()),
        os.fdopen(sys.stdout.fileno(), "wb", buffering=0, closefd=False),
    )
    writer = asyncio.StreamWriter(w_transport, w_protocol, None, loop)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("open_stdio_transport: pid=%d", os.getpid())
    return PipeTransport(reader, writer)


# ---------------------------------------------------------------------------
# FrameWriter
# ---------------------------------------------------------------------------


class FrameWriter:
    """Single writer for one bridge direction.

    Each frame is written with one ``write()`` call, so frames never
    interleave; :meth:`send` additionally serializes ``drain()`` behind a lock.
    """

    __slots__ = ("_encode", "_lock", "_sink")

    def __init__(self, sink: ByteSink, encode: Callable[[Frame], bytes]) -> None:
        """Initialize with the write half and the direction's frame encoder."""
        self._sink = sink
        self._encode = encode
        self._lock = asyncio.Lock()

    def send_nowait(self, frame: Frame) -> bool:
        """Encode and queue *frame* without waiting for the buffer to drain.

        Returns:
            ``False`` if the sink is already closed.

        Raises:
            FrameEncodingError: If *frame* cannot be encoded.

        """
        data = self._encode(frame)
        if self._sink.is_closing():
            return False
        self._sink.write(data)
        return True

    async def send(self, frame: Frame) -> bool:
        """Encode, write and drain *frame*.

        Returns:
            ``False`` if the sink is closed or the peer went away.

        Raises:
            FrameEncodingError: If *frame* cannot be encoded.

        """
        async with self._lock:
            if not self.send_nowait(frame):
                return False
            try:
                await self._sink.drain()
            except ConnectionError:
                if wire_transport_logger.isEnabledFor(logging.DEBUG):
                    wire_transport_logger.debug("Peer went away while writing", exc_info=True)
                return False
        return True
