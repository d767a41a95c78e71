"""Live token streaming: wire frames, session lifecycle, cancellation,
and the producer/consumer pair on either side of the HTTP stream.
"""

from chatrelay.streaming.cancellation import CancellationController
from chatrelay.streaming.consumer import StreamConsumer
from chatrelay.streaming.frames import MEDIA_TYPE, decode_line, encode_frame
from chatrelay.streaming.producer import StreamProducer, build_preamble, build_request
from chatrelay.streaming.session import (
    TERMINAL_FRAMES,
    SessionRegistry,
    StreamingSession,
)

__all__ = [
    "MEDIA_TYPE",
    "TERMINAL_FRAMES",
    "CancellationController",
    "SessionRegistry",
    "StreamConsumer",
    "StreamProducer",
    "StreamingSession",
    "build_preamble",
    "build_request",
    "decode_line",
    "encode_frame",
]
