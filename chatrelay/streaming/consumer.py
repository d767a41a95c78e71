"""Client-side stream consumer.

Turns raw response bytes into frames and visible text. Bytes may be
split anywhere, including inside a multi-byte character, so decoding
goes through an incremental UTF-8 decoder and a residual buffer that
keeps the trailing, possibly incomplete line between reads.

Once the stream ends, however it ends, the local accumulation is
discarded and the authoritative transcript is re-read through the
``reconcile`` callback.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Any

from chatrelay.errors import FrameDecodeError, StreamCancelled
from chatrelay.schemas.chat import Message
from chatrelay.schemas.streaming import Frame, FrameKind, SessionState, StreamOutcome
from chatrelay.streaming.cancellation import CancellationController
from chatrelay.streaming.frames import decode_line
from chatrelay.streaming.session import StreamingSession

logger = logging.getLogger(__name__)

# Type aliases for consumer callbacks
DeltaListener = Callable[[str], Any]
Reconciler = Callable[[], Awaitable[list[Message]]]


class StreamConsumer:
    """Incremental frame decoder and visible-text accumulator for one send.

    ``on_delta`` (sync or async) is invoked with each fragment as soon as
    its line is complete. The consumer is single-use: create one per send.
    """

    def __init__(
        self,
        conversation_id: int = 0,
        *,
        on_delta: DeltaListener | None = None,
        reconcile: Reconciler | None = None,
        cancel: CancellationController | None = None,
    ) -> None:
        self._session = StreamingSession(conversation_id)
        self._on_delta = on_delta
        self._reconcile = reconcile
        self._cancel = cancel or CancellationController()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._residual = ""
        self._received: list[str] = []
        self._malformed = 0
        self._transcript: list[Message] | None = None
        self._cancel.on_cancel(self._on_cancelled)

    # ── State ──────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_streaming(self) -> bool:
        return self._session.is_active

    @property
    def visible_text(self) -> str:
        """Text to show as the in-progress reply (empty once idle)."""
        return self._session.text

    @property
    def malformed_lines(self) -> int:
        return self._malformed

    @property
    def cancel_controller(self) -> CancellationController:
        return self._cancel

    def outcome(self) -> StreamOutcome:
        return StreamOutcome(
            state=self._session.state,
            streamed_text="".join(self._received),
            delta_count=len(self._received),
            error=self._session.error,
            malformed_lines=self._malformed,
            transcript=self._transcript,
        )

    # ── Decoding ───────────────────────────────────────────────

    def feed(self, chunk: bytes) -> list[Frame]:
        """Decode one network read and return the frames it completed.

        Only frames accepted while the session is active are returned;
        anything after a terminal frame or a cancel is dropped.
        """
        return self._process_lines(self._split(chunk))

    def flush(self) -> list[Frame]:
        """Process whatever is left once the byte stream has ended."""
        return self._process_lines(self._tail())

    def _split(self, chunk: bytes) -> list[str]:
        text = self._decoder.decode(chunk)
        if not text:
            return []
        lines = (self._residual + text).split("\n")
        self._residual = lines.pop()
        return lines

    def _tail(self) -> list[str]:
        tail = self._residual + self._decoder.decode(b"", final=True)
        self._residual = ""
        return [tail] if tail else []

    def _process_lines(self, lines: list[str]) -> list[Frame]:
        accepted: list[Frame] = []
        for line in lines:
            frame = self._decode(line)
            if frame is not None and self._apply(frame):
                accepted.append(frame)
        return accepted

    def _decode(self, line: str) -> Frame | None:
        try:
            return decode_line(line)
        except FrameDecodeError as e:
            self._malformed += 1
            logger.warning("Dropping malformed stream line: %s", e)
            return None

    def _apply(self, frame: Frame) -> bool:
        if not self._session.is_active:
            logger.debug("Ignoring %s frame after session became %s", frame.kind, self.state)
            return False

        if frame.kind is FrameKind.DELTA:
            self._session.append(frame.content)
            self._received.append(frame.content)
        elif frame.kind is FrameKind.DONE:
            self._session.complete()
        else:
            logger.warning("Server reported stream error: %s", frame.error)
            self._session.fail(frame.error)
        return True

    def _on_cancelled(self, reason: str) -> None:
        if self._session.abort_if_active():
            logger.info("Stream cancelled by client: %s", reason)

    # ── Read loop ──────────────────────────────────────────────

    async def consume(self, chunks: AsyncIterable[bytes]) -> StreamOutcome:
        """Read ``chunks`` until a terminal frame, a cancel, or end of stream.

        Never raises for malformed input or transport failures: those end
        the session as aborted. The transcript is reconciled afterwards.
        """
        reads = self._cancel.iterate(chunks)
        try:
            async for chunk in reads:
                await self._deliver(self._split(chunk))
                if not self._session.is_active:
                    break
            else:
                await self._deliver(self._tail())
        except StreamCancelled:
            pass
        except Exception as e:
            logger.warning("Stream transport failed: %s", e)
        finally:
            await reads.aclose()
        return await self.finish()

    async def finish(self) -> StreamOutcome:
        """End the session as aborted unless it already ended, then reconcile.

        Used directly when the stream never started, e.g. on a cancel
        while waiting for the response.
        """
        if self._session.abort_if_active():
            logger.info("Stream ended without a terminal frame")

        await self._reconcile_transcript()
        return self.outcome()

    async def _deliver(self, lines: list[str]) -> None:
        # Nothing is applied once a cancel or terminal frame ends the session
        for line in lines:
            if not self._session.is_active:
                return
            frame = self._decode(line)
            if frame is not None and self._apply(frame) and frame.kind is FrameKind.DELTA:
                await self._emit(frame.content)

    async def _emit(self, content: str) -> None:
        if self._on_delta is None:
            return
        result = self._on_delta(content)
        if asyncio.iscoroutine(result):
            await result

    async def _reconcile_transcript(self) -> None:
        if self._reconcile is None:
            return
        try:
            self._transcript = await self._reconcile()
        except Exception:
            logger.exception("Failed to re-read transcript after stream")
