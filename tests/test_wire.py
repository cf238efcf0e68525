# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for frame encoding and the incremental decoders."""

from __future__ import annotations

import pytest

from stdio_bridge.bridge._common import FrameEncodingError
from stdio_bridge.bridge._wire import (
    Call,
    ChannelMessage,
    ErrorResponse,
    HostFrameDecoder,
    Registration,
    Response,
    ShutdownAck,
    ShutdownRequest,
    WorkerFrameDecoder,
    decode_worker_frame,
    encode_host_frame,
    encode_worker_frame,
)

# ---------------------------------------------------------------------------
# Host -> worker encoding
# ---------------------------------------------------------------------------


class TestEncodeHostFrame:
    """Tests for encode_host_frame."""

    def test_call_without_arguments_sends_placeholder(self) -> None:
        """A zero-argument call still carries the noarg token."""
        data = encode_host_frame(Call("ping", "abc"))
        assert data == b"function__bridge_name[ping]_end_name_bridge_id[abc]_end_id_bridge_arg[noarg]_end_arg\n"

    def test_call_with_one_argument(self) -> None:
        """The only value carries the end-of-value marker on the primary line."""
        data = encode_host_frame(Call("echo", "abc", ("hi",)))
        assert data == (
            b"function__bridge_name[echo]_end_name_bridge_id[abc]_end_id_bridge_arg[hi[bridgeendline]]_end_arg\n"
        )

    def test_call_with_several_arguments(self) -> None:
        """Remaining arguments go on param_ lines; the last one is marked."""
        data = encode_host_frame(Call("addition", "abc", ("10", "20", "30")))
        assert data.decode().splitlines() == [
            "function__bridge_name[addition]_end_name_bridge_id[abc]_end_id_bridge_arg[10]_end_arg",
            "param_abc_20",
            "param_abc_30[bridgeendline]",
        ]

    def test_channel_message(self) -> None:
        """Host channel messages use the torust prefix."""
        assert encode_host_frame(ChannelMessage("channel_a", "hello")) == b"torust__bridge_name[channel_a]_end_namehello\n"

    @pytest.mark.parametrize("frame", [ShutdownRequest(), ShutdownAck()])
    def test_shutdown(self, frame: ShutdownRequest | ShutdownAck) -> None:
        """Shutdown request and acknowledgement share one encoding."""
        assert encode_host_frame(frame) == b"[bridgeexit]_\n"

    def test_worker_only_frame_rejected(self) -> None:
        """Response frames never travel host -> worker."""
        with pytest.raises(FrameEncodingError, match="not a host -> worker frame"):
            encode_host_frame(Response("abc", "1"))

    def test_call_id_with_underscore_rejected(self) -> None:
        """Call ids are delimited by underscores on continuation lines."""
        with pytest.raises(FrameEncodingError, match="Call id"):
            encode_host_frame(Call("f", "a_b", ("1",)))

    def test_name_with_line_break_rejected(self) -> None:
        """Names are single-line tokens."""
        with pytest.raises(FrameEncodingError, match="line breaks"):
            encode_host_frame(Call("bad\nname", "abc"))

    def test_name_with_closer_rejected(self) -> None:
        """A name containing the id opener would be parsed ambiguously."""
        with pytest.raises(FrameEncodingError):
            encode_host_frame(Call("x]_end_name_bridge_id[y", "abc"))

    def test_placeholder_first_of_many_rejected(self) -> None:
        """A literal noarg first argument is indistinguishable from no arguments."""
        with pytest.raises(FrameEncodingError, match="noarg"):
            encode_host_frame(Call("f", "abc", ("noarg", "x")))

    def test_single_placeholder_argument_allowed(self) -> None:
        """As the only argument, noarg is marked and therefore unambiguous."""
        call = Call("f", "abc", ("noarg",))
        assert WorkerFrameDecoder().feed(encode_host_frame(call)) == [call]

    @pytest.mark.parametrize("payload", ["first\nsecond", "first\r\nsecond", "trailing\r"])
    def test_channel_payload_with_line_break_rejected(self, payload: str) -> None:
        """Host channel payloads are single-line."""
        with pytest.raises(FrameEncodingError, match="Channel payload"):
            encode_host_frame(ChannelMessage("c", payload))

    @pytest.mark.parametrize(
        "args",
        [
            ("x[bridgeendline]", "y"),
            ("x", "y[bridgeendline]"),
            ("only[bridgeendline]",),
            ("x", "a[bridgeendline]\nb", "z"),
        ],
    )
    def test_end_of_value_marker_in_argument_rejected(self, args: tuple[str, ...]) -> None:
        """The marker would end the call early."""
        with pytest.raises(FrameEncodingError, match="must not contain"):
            encode_host_frame(Call("f", "abc", args))

    @pytest.mark.parametrize(
        "line",
        [
            "[bridgeexit]_",
            " [bridgeexit]_\r",
            "torust__bridge_name[c]_end_namep",
            "param_abc_z",
            "function__bridge_name[g]_end_name_bridge_id[x]_end_id_bridge_arg[noarg]_end_arg",
        ],
    )
    def test_frame_lookalike_line_in_later_argument_rejected(self, line: str) -> None:
        """Embedded lines of later arguments must not read as frames."""
        with pytest.raises(FrameEncodingError, match="reads as a frame"):
            encode_host_frame(Call("join", "abc", ("a", f"x\n{line}", "z")))

    def test_frame_lookalike_line_in_first_argument_allowed(self) -> None:
        """Lines of the first argument are joined until its closer arrives."""
        call = Call("join", "abc", ("x\n[bridgeexit]_\nparam_abc_y", "z"))
        assert WorkerFrameDecoder().feed(encode_host_frame(call)) == [call]

    def test_argument_closer_in_first_argument(self) -> None:
        """The closer may only appear on the last line of the first argument."""
        call = Call("f", "abc", ("a\nb]_end_argc", "d"))
        assert WorkerFrameDecoder().feed(encode_host_frame(call)) == [call]
        with pytest.raises(FrameEncodingError, match="last line"):
            encode_host_frame(Call("f", "abc", ("a]_end_arg\nb", "d")))

    def test_encoding_error_is_value_error(self) -> None:
        """FrameEncodingError can be caught as ValueError."""
        with pytest.raises(ValueError):
            encode_host_frame(ChannelMessage("a]_end_nameb", "x"))


# ---------------------------------------------------------------------------
# Worker -> host encoding
# ---------------------------------------------------------------------------


class TestEncodeWorkerFrame:
    """Tests for encode_worker_frame."""

    def test_registration(self) -> None:
        """Registration frames are terminated by the worker end marker."""
        assert encode_worker_frame(Registration("addition")) == b"fnregister_addition[_bridgeendline]\n"

    def test_response(self) -> None:
        """Responses carry the call id and text value."""
        assert encode_worker_frame(Response("abc", "30")) == b"fnresponse_abc_30[_bridgeendline]\n"

    def test_response_value_may_contain_line_breaks(self) -> None:
        """Values are not line delimited in this direction."""
        assert encode_worker_frame(Response("abc", "a\nb")) == b"fnresponse_abc_a\nb[_bridgeendline]\n"

    def test_error_response(self) -> None:
        """Error responses carry type and message."""
        data = encode_worker_frame(ErrorResponse("abc", "ValueError", "bad: input"))
        assert data == b"fnerror_abc_ValueError:bad: input[_bridgeendline]\n"

    def test_error_type_with_colon_rejected(self) -> None:
        """The first colon separates type from message."""
        with pytest.raises(FrameEncodingError):
            encode_worker_frame(ErrorResponse("abc", "a:b", "msg"))

    def test_channel_message(self) -> None:
        """Worker channel messages use the tonode prefix."""
        data = encode_worker_frame(ChannelMessage("channel_foo", "bar"))
        assert data == b"tonode__bridge_name[channel_foo]_end_namebar[_bridgeendline]\n"

    def test_shutdown_request(self) -> None:
        """The worker's shutdown request has its own token."""
        assert encode_worker_frame(ShutdownRequest()) == b"_bridge_exit[_bridgeendline]\n"

    def test_value_containing_terminator_rejected(self) -> None:
        """A value that embeds the end marker would split the frame."""
        with pytest.raises(FrameEncodingError, match="must not contain"):
            encode_worker_frame(Response("abc", "x[_bridgeendline]y"))

    def test_host_only_frame_rejected(self) -> None:
        """Call frames never travel worker -> host."""
        with pytest.raises(FrameEncodingError):
            encode_worker_frame(Call("f", "abc"))


# ---------------------------------------------------------------------------
# Worker -> host decoding
# ---------------------------------------------------------------------------


class TestDecodeWorkerFrame:
    """Tests for decode_worker_frame."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("fnregister_addition", Registration("addition")),
            ("fnresponse_abc_30", Response("abc", "30")),
            ("fnresponse_abc_", Response("abc", "")),
            ("fnresponse_abc_a_b", Response("abc", "a_b")),
            ("fnerror_abc_ValueError:x: y", ErrorResponse("abc", "ValueError", "x: y")),
            ("tonode__bridge_name[ch]_end_namepayload", ChannelMessage("ch", "payload")),
            ("_bridge_exit", ShutdownRequest()),
            ("[bridgeexit]_", ShutdownRequest()),
        ],
    )
    def test_known_frames(self, text: str, expected: object) -> None:
        """Each prefix maps to its frame type."""
        assert decode_worker_frame(text) == expected

    @pytest.mark.parametrize("text", ["", "hello", "fnresponse_noseparator", "fnerror_abc_nocolon", "tonode__x"])
    def test_unknown_or_malformed(self, text: str) -> None:
        """Unknown and malformed frames decode to None."""
        assert decode_worker_frame(text) is None


class TestHostFrameDecoder:
    """Tests for HostFrameDecoder."""

    def test_several_frames_in_one_read(self) -> None:
        """One chunk may complete many frames."""
        data = encode_worker_frame(Registration("a")) + encode_worker_frame(Response("x", "1"))
        assert HostFrameDecoder().feed(data) == [Registration("a"), Response("x", "1")]

    def test_frame_split_across_reads(self) -> None:
        """A frame is emitted only once its terminator arrives."""
        decoder = HostFrameDecoder()
        data = encode_worker_frame(Response("x", "hello world"))
        assert decoder.feed(data[:10]) == []
        assert decoder.pending_text == data[:10].decode()
        assert decoder.feed(data[10:]) == [Response("x", "hello world")]

    def test_byte_at_a_time(self) -> None:
        """Feeding single bytes yields the same frames."""
        decoder = HostFrameDecoder()
        data = encode_worker_frame(ChannelMessage("c", "héllo ☃")) + encode_worker_frame(Registration("f"))
        frames = []
        for i in range(len(data)):
            frames.extend(decoder.feed(data[i : i + 1]))
        assert frames == [ChannelMessage("c", "héllo ☃"), Registration("f")]

    def test_multiline_value(self) -> None:
        """Line breaks inside a value survive."""
        data = encode_worker_frame(Response("x", "first\nsecond\n"))
        assert HostFrameDecoder().feed(data) == [Response("x", "first\nsecond\n")]

    def test_unknown_frame_dropped(self) -> None:
        """Unrecognized frames are skipped, later frames still decode."""
        data = b"garbage[_bridgeendline]\n" + encode_worker_frame(Registration("f"))
        assert HostFrameDecoder().feed(data) == [Registration("f")]

    def test_stray_terminator_newline_trimmed(self) -> None:
        """The newline after each end marker does not leak into the next frame."""
        data = b"\r\nfnregister_f[_bridgeendline]"
        assert HostFrameDecoder().feed(data) == [Registration("f")]


# ---------------------------------------------------------------------------
# Host -> worker decoding
# ---------------------------------------------------------------------------


class TestWorkerFrameDecoder:
    """Tests for WorkerFrameDecoder."""

    @pytest.mark.parametrize(
        "args",
        [(), ("only",), ("10", "20"), ("a", "b", "c", "d"), ("",), ("", ""), ("x y", "with_underscore")],
    )
    def test_call_arguments(self, args: tuple[str, ...]) -> None:
        """Calls decode back to the same arguments."""
        call = Call("f", "id1", args)
        assert WorkerFrameDecoder().feed(encode_host_frame(call)) == [call]

    def test_call_emitted_only_when_complete(self) -> None:
        """A multi-argument call waits for its final continuation line."""
        decoder = WorkerFrameDecoder()
        lines = encode_host_frame(Call("f", "id1", ("1", "2", "3"))).splitlines(keepends=True)
        assert decoder.feed(lines[0]) == []
        assert decoder.assembling == 1
        assert decoder.feed(lines[1]) == []
        assert decoder.feed(lines[2]) == [Call("f", "id1", ("1", "2", "3"))]
        assert decoder.assembling == 0

    def test_byte_at_a_time(self) -> None:
        """Feeding single bytes yields the same frames."""
        decoder = WorkerFrameDecoder()
        data = encode_host_frame(Call("f", "id1", ("é", "☃"))) + encode_host_frame(ShutdownRequest())
        frames = []
        for i in range(len(data)):
            frames.extend(decoder.feed(data[i : i + 1]))
        assert frames == [Call("f", "id1", ("é", "☃")), ShutdownRequest()]

    @pytest.mark.parametrize(
        "args",
        [("line1\nline2",), ("a\nb", "c"), ("a", "b\nc"), ("a", "b\nc", "d\ne\nf")],
    )
    def test_embedded_line_breaks(self, args: tuple[str, ...]) -> None:
        """Line breaks inside arguments continue the current value."""
        call = Call("f", "id1", args)
        assert WorkerFrameDecoder().feed(encode_host_frame(call)) == [call]

    @pytest.mark.parametrize(
        "args",
        [("a\r\nb",), ("x", "a\r\nb"), ("a\r\nb", "c\r"), ("c\r", "d"), ("\r",)],
    )
    def test_carriage_returns_in_arguments_kept(self, args: tuple[str, ...]) -> None:
        """Carriage returns are part of the argument text."""
        call = Call("f", "id1", args)
        assert WorkerFrameDecoder().feed(encode_host_frame(call)) == [call]

    def test_crlf_line_endings(self) -> None:
        """Frames written with CRLF endings still decode."""
        data = (
            encode_host_frame(Call("f", "id1", ("1", "2")))
            + encode_host_frame(Call("g", "id2", ("only",)))
            + encode_host_frame(ChannelMessage("c", "p"))
        ).replace(b"\n", b"\r\n")
        assert WorkerFrameDecoder().feed(data) == [
            Call("f", "id1", ("1", "2")),
            Call("g", "id2", ("only",)),
            ChannelMessage("c", "p"),
        ]

    def test_interleaved_calls(self) -> None:
        """Continuation lines are matched to their call by id."""
        first = encode_host_frame(Call("f", "one", ("1", "2"))).splitlines(keepends=True)
        second = encode_host_frame(Call("g", "two", ("3", "4"))).splitlines(keepends=True)
        data = first[0] + second[0] + second[1] + first[1]
        assert WorkerFrameDecoder().feed(data) == [Call("g", "two", ("3", "4")), Call("f", "one", ("1", "2"))]

    def test_channel_message_between_continuations(self) -> None:
        """Channel traffic may arrive while a call is being assembled."""
        lines = encode_host_frame(Call("f", "id1", ("1", "2"))).splitlines(keepends=True)
        data = lines[0] + encode_host_frame(ChannelMessage("c", "p")) + lines[1]
        assert WorkerFrameDecoder().feed(data) == [ChannelMessage("c", "p"), Call("f", "id1", ("1", "2"))]

    def test_channel_message(self) -> None:
        """Channel payloads decode with their channel name."""
        assert WorkerFrameDecoder().feed(b"torust__bridge_name[channel_a]_end_nameSent this!\n") == [
            ChannelMessage("channel_a", "Sent this!")
        ]

    def test_shutdown_with_crlf(self) -> None:
        """A trailing carriage return is ignored."""
        assert WorkerFrameDecoder().feed(b"[bridgeexit]_\r\n") == [ShutdownRequest()]

    def test_unknown_lines_dropped(self) -> None:
        """Unrecognized lines outside a call are ignored."""
        decoder = WorkerFrameDecoder()
        data = b"hello\nparam_unknown_1[bridgeendline]\n" + encode_host_frame(Call("f", "id1"))
        assert decoder.feed(data) == [Call("f", "id1")]

    def test_incomplete_line_buffered(self) -> None:
        """Nothing is emitted until the newline arrives."""
        decoder = WorkerFrameDecoder()
        assert decoder.feed(b"[bridgeexit]_") == []
        assert decoder.feed(b"\n") == [ShutdownRequest()]
