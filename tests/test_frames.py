"""Tests for chatrelay.streaming.frames: the event-stream wire codec."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from chatrelay.errors import FrameDecodeError
from chatrelay.schemas.streaming import Frame, FrameKind
from chatrelay.streaming.frames import (
    FAILURE_MESSAGE,
    MEDIA_TYPE,
    STREAM_HEADERS,
    decode_line,
    encode_frame,
)


# ── Frame model ──────────────────────────────────────────────────


class TestFrame:
    def test_delta_requires_content(self):
        with pytest.raises(ValidationError):
            Frame(kind=FrameKind.DELTA)

    def test_error_requires_diagnostic(self):
        with pytest.raises(ValidationError):
            Frame(kind=FrameKind.ERROR)

    def test_terminal_kinds(self):
        assert not Frame.delta("x").is_terminal
        assert Frame.done().is_terminal
        assert Frame.failure("boom").is_terminal

    def test_payloads(self):
        assert Frame.delta("Hi").payload() == {"content": "Hi"}
        assert Frame.done().payload() == {"done": True}
        assert Frame.failure("boom").payload() == {"error": "boom"}


# ── Encoding ─────────────────────────────────────────────────────


class TestEncodeFrame:
    def test_delta_bytes(self):
        assert encode_frame(Frame.delta("Hi")) == b'data: {"content": "Hi"}\n\n'

    def test_done_bytes(self):
        assert encode_frame(Frame.done()) == b'data: {"done": true}\n\n'

    def test_error_bytes(self):
        frame = Frame.failure("Failed to send message")
        assert encode_frame(frame) == b'data: {"error": "Failed to send message"}\n\n'

    def test_non_ascii_is_utf8(self):
        encoded = encode_frame(Frame.delta("héllo 😀"))
        assert "héllo 😀".encode() in encoded

    def test_newlines_in_content_stay_on_one_line(self):
        encoded = encode_frame(Frame.delta("line one\nline two"))
        assert encoded.count(b"\n") == 2
        assert encoded.endswith(b"\n\n")

    def test_stream_headers(self):
        assert MEDIA_TYPE == "text/event-stream"
        assert STREAM_HEADERS["Cache-Control"] == "no-cache"
        assert STREAM_HEADERS["Connection"] == "keep-alive"


# ── Decoding ─────────────────────────────────────────────────────


class TestDecodeLine:
    def test_delta(self):
        frame = decode_line('data: {"content": "Hi"}')
        assert frame == Frame.delta("Hi")

    def test_done(self):
        assert decode_line('data: {"done": true}') == Frame.done()

    def test_error(self):
        frame = decode_line('data: {"error": "Failed to send message"}')
        assert frame.kind is FrameKind.ERROR
        assert frame.error == "Failed to send message"

    @pytest.mark.parametrize("payload", ['""', "null"])
    def test_empty_error_gets_default_diagnostic(self, payload):
        frame = decode_line(f'data: {{"error": {payload}}}')
        assert frame == Frame.failure(FAILURE_MESSAGE)

    def test_blank_and_comment_lines_carry_nothing(self):
        assert decode_line("") is None
        assert decode_line("   ") is None
        assert decode_line(": keep-alive") is None

    def test_no_space_after_field(self):
        assert decode_line('data:{"content":"x"}') == Frame.delta("x")

    def test_carriage_return_stripped(self):
        assert decode_line('data: {"done": true}\r') == Frame.done()

    def test_round_trip_strips_terminator(self):
        frame = Frame.delta("héllo 😀")
        line = encode_frame(frame).decode().rstrip("\n")
        assert decode_line(line) == frame

    @pytest.mark.parametrize(
        "line",
        [
            "garbage",
            "event: message",
            "data: {not json}",
            "data: [1, 2]",
            'data: "just a string"',
            'data: {"content": ""}',
            'data: {"content": 42}',
            'data: {"done": false}',
            'data: {"something": "else"}',
        ],
    )
    def test_malformed_lines_raise(self, line):
        with pytest.raises(FrameDecodeError):
            decode_line(line)

    def test_decode_error_is_value_error(self):
        with pytest.raises(ValueError):
            decode_line("data: nope")
