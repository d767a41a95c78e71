"""Wire protocol for the token stream.

Every frame is one ``data: <json>`` line followed by a blank line::

    data: {"content": "Hi"}

    data: {"done": true}

    data: {"error": "Failed to send message"}

encode_frame() produces those bytes; decode_line() turns one complete
text line back into a Frame. Reassembling lines from arbitrary byte
chunks is the stream consumer's job.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from chatrelay.errors import FrameDecodeError
from chatrelay.schemas.streaming import Frame

MEDIA_TYPE = "text/event-stream"
DATA_FIELD = "data:"

# Diagnostic for error frames that carry none
FAILURE_MESSAGE = "Failed to send message"

# Response headers for an unbuffered keep-alive stream
STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(frame: Frame) -> bytes:
    """Serialize a frame to its UTF-8 wire form, blank-line terminated."""
    payload = json.dumps(frame.payload(), ensure_ascii=False)
    return f"{DATA_FIELD} {payload}\n\n".encode()


def decode_line(line: str) -> Frame | None:
    """Parse one complete line of the stream.

    Returns None for lines that carry no frame (blank separators and
    ``:`` comment lines).

    Raises:
        FrameDecodeError: If the line is not a well-formed frame.
    """
    line = line.rstrip("\r")
    if not line.strip() or line.startswith(":"):
        return None

    if not line.startswith(DATA_FIELD):
        raise FrameDecodeError(f"Not a data line: {line[:80]!r}")

    raw = line[len(DATA_FIELD):]
    if raw.startswith(" "):
        raw = raw[1:]

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON payload: {raw[:80]!r}") from e

    if not isinstance(data, dict):
        raise FrameDecodeError(f"Payload is not an object: {raw[:80]!r}")

    try:
        if "error" in data:
            return Frame.failure(str(data["error"] or FAILURE_MESSAGE))
        if data.get("done") is True:
            return Frame.done()
        content = data.get("content")
        if isinstance(content, str):
            return Frame.delta(content)
    except ValidationError as e:
        raise FrameDecodeError(f"Invalid frame payload: {raw[:80]!r}") from e

    raise FrameDecodeError(f"Unrecognized payload: {raw[:80]!r}")
