# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Frame types, wire encoding, and incremental stream decoders."""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field
from typing import TypeAlias

from stdio_bridge.bridge._common import FrameEncodingError
from stdio_bridge.bridge._debug import fmt_frame, fmt_value, wire_frame_logger

__all__ = [
    "END_OF_VALUE",
    "NO_ARG",
    "WORKER_END_OF_FRAME",
    "Call",
    "ChannelMessage",
    "ErrorResponse",
    "Frame",
    "HostFrameDecoder",
    "Registration",
    "Response",
    "ShutdownAck",
    "ShutdownRequest",
    "WorkerFrameDecoder",
    "decode_worker_frame",
    "encode_host_frame",
    "encode_worker_frame",
]

# ---------------------------------------------------------------------------
# Wire constants
# ---------------------------------------------------------------------------

END_OF_VALUE = "[bridgeendline]"
"""Suffix on the final value of a host -> worker call."""

WORKER_END_OF_FRAME = "[_bridgeendline]"
"""Terminator after every worker -> host frame."""

NO_ARG = "noarg"
"""Placeholder first argument for calls without arguments."""

_HOST_SHUTDOWN = "[bridgeexit]_"
_WORKER_SHUTDOWN = "_bridge_exit"

_REGISTER_PREFIX = "fnregister_"
_RESPONSE_PREFIX = "fnresponse_"
_ERROR_PREFIX = "fnerror_"
_CALL_PREFIX = "function__bridge_name["
_CALL_ID_OPEN = "]_end_name_bridge_id["
_CALL_ARG_OPEN = "]_end_id_bridge_arg["
_CALL_ARG_CLOSE = "]_end_arg"
_PARAM_PREFIX = "param_"
_TO_WORKER_PREFIX = "torust__bridge_name["
_TO_HOST_PREFIX = "tonode__bridge_name["
_CHANNEL_CLOSE = "]_end_name"

# Line starts the worker decoder treats as a new frame, even mid-call.
_HOST_LINE_PREFIXES = (_CALL_PREFIX, _PARAM_PREFIX, _TO_WORKER_PREFIX)


# ---------------------------------------------------------------------------
# Frame types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Registration:
    """Worker announces that ``name`` can be called."""

    name: str


@dataclass(frozen=True, slots=True)
class Call:
    """Host invokes ``name`` with text arguments, correlated by ``call_id``."""

    name: str
    call_id: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Response:
    """Worker returns the text result of call ``call_id``."""

    call_id: str
    value: str


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """Worker reports that call ``call_id`` failed.

    Additive extension: only sent when the worker opts in with
    ``BridgeConfig.report_errors``.
    """

    call_id: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class ChannelMessage:
    """Fire-and-forget payload published on ``channel``."""

    channel: str
    payload: str


@dataclass(frozen=True, slots=True)
class ShutdownRequest:
    """Either side asks the other to terminate."""


@dataclass(frozen=True, slots=True)
class ShutdownAck:
    """Host acknowledges a worker-initiated shutdown."""


Frame: TypeAlias = Registration | Call | Response | ErrorResponse | ChannelMessage | ShutdownRequest | ShutdownAck


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _check_token(kind: str, value: str, *forbidden: str) -> None:
    """Reject a name-like token that would break the frame grammar."""
    if "\n" in value or "\r" in value:
        raise FrameEncodingError(f"{kind} must not contain line breaks: {value!r}")
    for needle in forbidden:
        if needle in value:
            raise FrameEncodingError(f"{kind} must not contain {needle!r}: {value!r}")


def _check_argument(index: int, value: str) -> None:
    """Reject an argument whose text would be read back as frame syntax.

    Lines of the first argument are joined until the argument closer shows
    up, so only that closer matters there.  Later arguments continue on
    plain lines, which must not look like the start of another frame.
    """
    if END_OF_VALUE in value:
        raise FrameEncodingError(f"Argument {index} must not contain {END_OF_VALUE!r}: {value!r}")
    first, *embedded = value.split("\n")
    if index == 0:
        if any(_CALL_ARG_CLOSE in line for line in [first, *embedded][:-1]):
            raise FrameEncodingError(f"Argument 0 must not contain {_CALL_ARG_CLOSE!r} before its last line")
        return
    for line in embedded:
        if line.startswith(_HOST_LINE_PREFIXES) or line.strip() == _HOST_SHUTDOWN:
            raise FrameEncodingError(f"Argument {index} has a line that reads as a frame: {line!r}")


def _encode_call(frame: Call) -> str:
    _check_token("Function name", frame.name, _CALL_ID_OPEN, _CHANNEL_CLOSE)
    _check_token("Call id", frame.call_id, "_", "]")
    args = frame.args
    if len(args) > 1 and args[0] == NO_ARG:
        raise FrameEncodingError(f"The first of several arguments cannot be the placeholder {NO_ARG!r}")
    for index, value in enumerate(args):
        _check_argument(index, value)
    if not args:
        first = NO_ARG
    elif len(args) == 1:
        first = args[0] + END_OF_VALUE
    else:
        first = args[0]
    lines = [f"{_CALL_PREFIX}{frame.name}{_CALL_ID_OPEN}{frame.call_id}{_CALL_ARG_OPEN}{first}{_CALL_ARG_CLOSE}"]
    last = len(args) - 1
    for index in range(1, len(args)):
        value = args[index] + END_OF_VALUE if index == last else args[index]
        lines.append(f"{_PARAM_PREFIX}{frame.call_id}_{value}")
    return "".join(line + "\n" for line in lines)


def encode_host_frame(frame: Frame) -> bytes:
    """Encode a host -> worker frame.

    Raises:
        FrameEncodingError: If the frame type does not travel host -> worker
            or a value cannot be represented.

    """
    if isinstance(frame, Call):
        text = _encode_call(frame)
    elif isinstance(frame, ChannelMessage):
        _check_token("Channel name", frame.channel, _CHANNEL_CLOSE)
        _check_token("Channel payload", frame.payload)
        text = f"{_TO_WORKER_PREFIX}{frame.channel}{_CHANNEL_CLOSE}{frame.payload}\n"
    elif isinstance(frame, (ShutdownRequest, ShutdownAck)):
        text = _HOST_SHUTDOWN + "\n"
    else:
        raise FrameEncodingError(f"{type(frame).__name__} is not a host -> worker frame")
    if wire_frame_logger.isEnabledFor(logging.DEBUG):
        wire_frame_logger.debug("Encode host frame: %s", fmt_frame(frame))
    return text.encode("utf-8")


def encode_worker_frame(frame: Frame) -> bytes:
    """Encode a worker -> host frame, including its terminator.

    Raises:
        FrameEncodingError: If the frame type does not travel worker -> host
            or a value cannot be represented.

    """
    if isinstance(frame, Registration):
        _check_token("Function name", frame.name, _CALL_ID_OPEN, _CHANNEL_CLOSE)
        body = _REGISTER_PREFIX + frame.name
    elif isinstance(frame, Response):
        _check_token("Call id", frame.call_id, "_")
        body = f"{_RESPONSE_PREFIX}{frame.call_id}_{frame.value}"
    elif isinstance(frame, ErrorResponse):
        _check_token("Call id", frame.call_id, "_")
        _check_token("Error type", frame.error_type, ":")
        body = f"{_ERROR_PREFIX}{frame.call_id}_{frame.error_type}:{frame.message}"
    elif isinstance(frame, ChannelMessage):
        _check_token("Channel name", frame.channel, _CHANNEL_CLOSE)
        body = f"{_TO_HOST_PREFIX}{frame.channel}{_CHANNEL_CLOSE}{frame.payload}"
    elif isinstance(frame, ShutdownRequest):
        body = _WORKER_SHUTDOWN
    else:
        raise FrameEncodingError(f"{type(frame).__name__} is not a worker -> host frame")
    if WORKER_END_OF_FRAME in body:
        raise FrameEncodingError(f"Frame text must not contain {WORKER_END_OF_FRAME!r}")
    if wire_frame_logger.isEnabledFor(logging.DEBUG):
        wire_frame_logger.debug("Encode worker frame: %s", fmt_frame(frame))
    return (body + WORKER_END_OF_FRAME + "\n").encode("utf-8")


# ---------------------------------------------------------------------------
# Decoding: worker -> host
# ---------------------------------------------------------------------------


def decode_worker_frame(text: str) -> Frame | None:
    """Parse the body of one worker -> host frame.

    Returns:
        The decoded frame, or ``None`` for unknown or malformed text.

    """
    if text.startswith(_REGISTER_PREFIX):
        return Registration(text[len(_REGISTER_PREFIX) :])
    if text.startswith(_RESPONSE_PREFIX):
        call_id, sep, value = text[len(_RESPONSE_PREFIX) :].partition("_")
        if sep:
            return Response(call_id, value)
        return None
    if text.startswith(_ERROR_PREFIX):
        call_id, sep, rest = text[len(_ERROR_PREFIX) :].partition("_")
        error_type, colon, message = rest.partition(":")
        if sep and colon:
            return ErrorResponse(call_id, error_type, message)
        return None
    if text.startswith(_TO_HOST_PREFIX):
        channel, sep, payload = text[len(_TO_HOST_PREFIX) :].partition(_CHANNEL_CLOSE)
        if sep:
            return ChannelMessage(channel, payload)
        return None
    if text in (_WORKER_SHUTDOWN, _HOST_SHUTDOWN):
        return ShutdownRequest()
    return None


class HostFrameDecoder:
    """Incremental decoder for the worker's stdout, used by the host.

    Every worker frame ends with :data:`WORKER_END_OF_FRAME`, so values may
    contain line breaks.  Several frames may arrive in one read, and one
    frame may be split across reads.
    """

    __slots__ = ("_buffer", "_text")

    def __init__(self) -> None:
        """Initialize with an empty buffer."""
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[Frame]:
        """Consume raw bytes and return every frame they complete."""
        self._buffer += self._text.decode(data)
        *complete, self._buffer = self._buffer.split(WORKER_END_OF_FRAME)
        frames: list[Frame] = []
        for chunk in complete:
            body = chunk.lstrip("\r\n")
            frame = decode_worker_frame(body)
            if frame is None:
                if wire_frame_logger.isEnabledFor(logging.DEBUG):
                    wire_frame_logger.debug("Dropping unrecognized worker frame: %s", fmt_value(body))
                continue
            frames.append(frame)
        return frames

    @property
    def pending_text(self) -> str:
        """Text received after the last complete frame."""
        return self._buffer


# ---------------------------------------------------------------------------
# Decoding: host -> worker
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _PartialCall:
    name: str
    args: list[str] = field(default_factory=list)


class WorkerFrameDecoder:
    """Incremental line decoder for the worker's stdin.

    Host frames are newline terminated.  A multi-argument call is spread over
    a primary line and ``param_`` continuation lines and is only emitted once
    its final value (suffixed with :data:`END_OF_VALUE`) arrives.  While a call
    is being assembled, a line without a known prefix continues the current
    argument across an embedded line break.

    Carriage returns inside argument text are kept; a trailing one is only
    ignored on control lines and after the end-of-value marker.
    """

    __slots__ = ("_buffer", "_open_call", "_open_primary", "_partials", "_text")

    def __init__(self) -> None:
        """Initialize with no partial state."""
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._partials: dict[str, _PartialCall] = {}
        self._open_call: str | None = None
        self._open_primary: str | None = None

    def feed(self, data: bytes) -> list[Frame]:
        """Consume raw bytes and return every frame they complete."""
        self._buffer += self._text.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        frames: list[Frame] = []
        for line in lines:
            frame = self._decode_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def assembling(self) -> int:
        """Number of calls still waiting for continuation lines."""
        return len(self._partials)

    def _decode_line(self, line: str) -> Frame | None:
        if self._open_primary is not None:
            combined = self._open_primary + "\n" + line
            if _CALL_ARG_CLOSE not in combined:
                self._open_primary = combined
                return None
            self._open_primary = None
            return self._decode_primary(combined)

        if line.startswith(_CALL_PREFIX):
            self._open_call = None
            if _CALL_ARG_CLOSE not in line:
                self._open_primary = line
                return None
            return self._decode_primary(line)

        if line.startswith(_PARAM_PREFIX):
            call_id, sep, value = line[len(_PARAM_PREFIX) :].partition("_")
            if sep and call_id in self._partials:
                self._partials[call_id].args.append(value)
                return self._maybe_complete(call_id)

        if line.startswith(_TO_WORKER_PREFIX):
            channel, sep, payload = line[len(_TO_WORKER_PREFIX) :].partition(_CHANNEL_CLOSE)
            if sep:
                self._open_call = None
                return ChannelMessage(channel, payload.removesuffix("\r"))

        if line.strip() == _HOST_SHUTDOWN:
            self._open_call = None
            return ShutdownRequest()

        open_call = self._open_call
        if open_call is not None and open_call in self._partials:
            self._partials[open_call].args[-1] += "\n" + line
            return self._maybe_complete(open_call)

        if line and wire_frame_logger.isEnabledFor(logging.DEBUG):
            wire_frame_logger.debug("Dropping unrecognized host line: %s", fmt_value(line))
        return None

    def _decode_primary(self, text: str) -> Frame | None:
        body = text[len(_CALL_PREFIX) :]
        name, sep_id, rest = body.partition(_CALL_ID_OPEN)
        call_id, sep_arg, rest = rest.partition(_CALL_ARG_OPEN)
        close = rest.rfind(_CALL_ARG_CLOSE)
        if not sep_id or not sep_arg or close < 0:
            if wire_frame_logger.isEnabledFor(logging.DEBUG):
                wire_frame_logger.debug("Dropping malformed call line: %s", fmt_value(text))
            return None
        first = rest[:close]
        if first == NO_ARG:
            return Call(name, call_id, ())
        if first.endswith(END_OF_VALUE):
            return Call(name, call_id, (first.removesuffix(END_OF_VALUE),))
        self._partials[call_id] = _PartialCall(name, [first])
        self._open_call = call_id
        return None

    def _maybe_complete(self, call_id: str) -> Frame | None:
        partial = self._partials[call_id]
        # A CRLF line ending shows up as "\r" after the marker.
        value = partial.args[-1].removesuffix("\r")
        if not value.endswith(END_OF_VALUE):
            self._open_call = call_id
            return None
        del self._partials[call_id]
        self._open_call = None
        partial.args[-1] = value.removesuffix(END_OF_VALUE)
        return Call(partial.name, call_id, tuple(partial.args))
