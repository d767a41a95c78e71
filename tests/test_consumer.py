"""Tests for chatrelay.streaming.consumer: chunk reassembly and reconciliation."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.schemas.chat import Message, Role
from chatrelay.schemas.streaming import Frame, FrameKind, SessionState
from chatrelay.streaming.cancellation import CancellationController
from chatrelay.streaming.consumer import StreamConsumer
from chatrelay.streaming.frames import FAILURE_MESSAGE, encode_frame


# ── Factories ──────────────────────────────────────────────────────


def _wire(*frames: Frame) -> bytes:
    return b"".join(encode_frame(f) for f in frames)


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


async def _chunks(*parts: bytes, hang: bool = False, error: Exception | None = None):
    for part in parts:
        await asyncio.sleep(0)
        yield part
    if error is not None:
        raise error
    if hang:
        await asyncio.Event().wait()


def _make_transcript() -> list[Message]:
    return [
        Message(id=1, conversation_id=1, role=Role.USER, content="Hello"),
        Message(id=2, conversation_id=1, role=Role.ASSISTANT, content="Hi there!"),
    ]


_SCENARIO = _wire(
    Frame.delta("Hi"), Frame.delta(" there"), Frame.delta("!"), Frame.done(),
)


# ── Normal streams ─────────────────────────────────────────────────


class TestConsume:
    @pytest.mark.asyncio
    async def test_completed_stream(self):
        received: list[str] = []
        consumer = StreamConsumer(1, on_delta=received.append)

        outcome = await consumer.consume(_chunks(_SCENARIO))

        assert received == ["Hi", " there", "!"]
        assert outcome.state is SessionState.COMPLETED
        assert outcome.streamed_text == "Hi there!"
        assert outcome.delta_count == 3
        assert consumer.visible_text == ""
        assert not consumer.is_streaming

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13, 64])
    async def test_chunk_boundaries_do_not_matter(self, size):
        deltas = ["héllo", " 😀 ", "wörld", "\n", "日本語"]
        data = _wire(*(Frame.delta(d) for d in deltas), Frame.done())
        received: list[str] = []
        consumer = StreamConsumer(1, on_delta=received.append)

        outcome = await consumer.consume(_chunks(*_split(data, size)))

        assert received == deltas
        assert outcome.state is SessionState.COMPLETED
        assert outcome.malformed_lines == 0

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self):
        received: list[str] = []

        async def _listener(delta: str) -> None:
            await asyncio.sleep(0)
            received.append(delta)

        consumer = StreamConsumer(1, on_delta=_listener)
        await consumer.consume(_chunks(_SCENARIO))
        assert received == ["Hi", " there", "!"]

    @pytest.mark.asyncio
    async def test_error_frame_fails_session(self):
        data = _wire(Frame.delta("Hi"), Frame.failure("Failed to send message"))
        consumer = StreamConsumer(1)

        outcome = await consumer.consume(_chunks(data))

        assert outcome.state is SessionState.FAILED
        assert outcome.error == "Failed to send message"
        assert outcome.streamed_text == "Hi"

    @pytest.mark.asyncio
    async def test_empty_error_payload_fails_session(self):
        consumer = StreamConsumer(1)

        outcome = await consumer.consume(_chunks(b'data: {"error": ""}\n\n'))

        assert outcome.state is SessionState.FAILED
        assert outcome.error == FAILURE_MESSAGE
        assert outcome.malformed_lines == 0

    @pytest.mark.asyncio
    async def test_frames_after_terminal_are_ignored(self):
        data = _SCENARIO + _wire(Frame.delta("late"))
        received: list[str] = []
        consumer = StreamConsumer(1, on_delta=received.append)

        outcome = await consumer.consume(_chunks(data))

        assert "late" not in received
        assert outcome.streamed_text == "Hi there!"

    @pytest.mark.asyncio
    async def test_eof_without_terminal_aborts(self):
        consumer = StreamConsumer(1)
        outcome = await consumer.consume(_chunks(_wire(Frame.delta("Hi"))))
        assert outcome.state is SessionState.ABORTED
        assert outcome.streamed_text == "Hi"

    @pytest.mark.asyncio
    async def test_trailing_line_without_newline_is_flushed(self):
        consumer = StreamConsumer(1)
        outcome = await consumer.consume(_chunks(b'data: {"content": "x"}'))
        assert outcome.streamed_text == "x"

    @pytest.mark.asyncio
    async def test_transport_failure_aborts_without_raising(self):
        consumer = StreamConsumer(1)
        outcome = await consumer.consume(
            _chunks(_wire(Frame.delta("Hi")), error=ConnectionResetError("peer reset")),
        )
        assert outcome.state is SessionState.ABORTED


# ── Malformed input ────────────────────────────────────────────────


class TestMalformedLines:
    @pytest.mark.asyncio
    async def test_malformed_lines_skipped(self):
        data = (
            b'data: {"content": "a"}\n\n'
            b"garbage\n\n"
            b"data: {not json}\n\n"
            b'data: {"content": "b"}\n\n'
            b'data: {"done": true}\n\n'
        )
        consumer = StreamConsumer(1)

        outcome = await consumer.consume(_chunks(*_split(data, 4)))

        assert outcome.streamed_text == "ab"
        assert outcome.malformed_lines == 2
        assert outcome.state is SessionState.COMPLETED

    def test_comment_lines_are_not_malformed(self):
        consumer = StreamConsumer(1)
        frames = consumer.feed(b": ping\n\ndata: {\"content\": \"a\"}\n\n")
        assert frames == [Frame.delta("a")]
        assert consumer.malformed_lines == 0

    def test_feed_holds_partial_line(self):
        consumer = StreamConsumer(1)
        assert consumer.feed(b'data: {"conte') == []
        assert consumer.feed(b'nt": "Hi"}\n') == [Frame.delta("Hi")]
        assert consumer.visible_text == "Hi"

    def test_feed_splits_multibyte_character(self):
        consumer = StreamConsumer(1)
        data = encode_frame(Frame.delta("😀"))
        cut = data.index("😀".encode()) + 2
        assert consumer.feed(data[:cut]) == []
        assert consumer.feed(data[cut:]) == [Frame.delta("😀")]

    def test_feed_returns_terminal_frame(self):
        consumer = StreamConsumer(1)
        frames = consumer.feed(_SCENARIO)
        assert [f.kind for f in frames] == [
            FrameKind.DELTA, FrameKind.DELTA, FrameKind.DELTA, FrameKind.DONE,
        ]
        assert consumer.state is SessionState.COMPLETED


# ── Cancellation and reconciliation ────────────────────────────────


class TestCancelAndReconcile:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self):
        cancel = CancellationController()
        consumer = StreamConsumer(1, on_delta=lambda _: cancel.cancel("user stop"), cancel=cancel)

        outcome = await asyncio.wait_for(
            consumer.consume(_chunks(_wire(Frame.delta("Hi")), hang=True)),
            timeout=1,
        )

        assert outcome.state is SessionState.ABORTED
        assert outcome.streamed_text == "Hi"
        assert consumer.visible_text == ""

    @pytest.mark.asyncio
    async def test_cancel_drops_rest_of_same_read(self):
        cancel = CancellationController()
        received: list[str] = []

        def _show(delta: str) -> None:
            received.append(delta)
            cancel.cancel("user stop")

        consumer = StreamConsumer(1, on_delta=_show, cancel=cancel)
        outcome = await consumer.consume(
            _chunks(_wire(Frame.delta("A"), Frame.delta("B"), Frame.done())),
        )

        assert received == ["A"]
        assert outcome.state is SessionState.ABORTED
        assert outcome.streamed_text == "A"
        assert outcome.delta_count == 1

    @pytest.mark.asyncio
    async def test_finish_without_stream(self):
        cancel = CancellationController()

        async def _reconcile() -> list[Message]:
            return _make_transcript()[:1]

        consumer = StreamConsumer(1, reconcile=_reconcile, cancel=cancel)
        cancel.cancel("user stop")
        outcome = await consumer.finish()

        assert outcome.state is SessionState.ABORTED
        assert outcome.delta_count == 0
        assert outcome.transcript == _make_transcript()[:1]

    @pytest.mark.asyncio
    async def test_cancel_before_any_bytes(self):
        cancel = CancellationController()
        consumer = StreamConsumer(1, cancel=cancel)
        task = asyncio.create_task(consumer.consume(_chunks(hang=True)))
        await asyncio.sleep(0.01)
        cancel.cancel()

        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome.state is SessionState.ABORTED
        assert outcome.delta_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data",
        [
            _SCENARIO,
            _wire(Frame.delta("Hi"), Frame.failure("boom")),
            _wire(Frame.delta("Hi")),
        ],
    )
    async def test_transcript_reread_on_every_outcome(self, data):
        calls = 0

        async def _reconcile() -> list[Message]:
            nonlocal calls
            calls += 1
            return _make_transcript()

        consumer = StreamConsumer(1, reconcile=_reconcile)
        outcome = await consumer.consume(_chunks(data))

        assert calls == 1
        assert outcome.transcript == _make_transcript()

    @pytest.mark.asyncio
    async def test_reconcile_after_cancel(self):
        cancel = CancellationController()
        calls = 0

        async def _reconcile() -> list[Message]:
            nonlocal calls
            calls += 1
            return []

        consumer = StreamConsumer(
            1, on_delta=lambda _: cancel.cancel(), reconcile=_reconcile, cancel=cancel,
        )
        outcome = await consumer.consume(_chunks(_wire(Frame.delta("Hi")), hang=True))

        assert calls == 1
        assert outcome.transcript == []

    @pytest.mark.asyncio
    async def test_reconcile_failure_is_not_raised(self):
        async def _reconcile() -> list[Message]:
            raise ConnectionError("server gone")

        consumer = StreamConsumer(1, reconcile=_reconcile)
        outcome = await consumer.consume(_chunks(_SCENARIO))

        assert outcome.state is SessionState.COMPLETED
        assert outcome.transcript is None
