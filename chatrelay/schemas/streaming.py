"""Streaming schemas for live token delivery.

Defines the three wire frame kinds, the lifecycle states shared by the
server-side session and the client-side consumer, and the outcome
returned to callers once a stream has ended.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from chatrelay.schemas.chat import Message


class FrameKind(StrEnum):
    """Kinds of frames carried on the event stream."""

    DELTA = "delta"
    DONE = "done"
    ERROR = "error"


class SessionState(StrEnum):
    """Lifecycle of one streaming session.

    ACTIVE is the only non-terminal state. Every other state is reached
    at most once and never left.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionState.ACTIVE


class Frame(BaseModel):
    """One self-delimited unit of the wire protocol."""

    kind: FrameKind
    content: str = Field(default="", description="Text fragment (delta frames)")
    error: str = Field(default="", description="Diagnostic (error frames)")

    @model_validator(mode="after")
    def _check_payload(self) -> Frame:
        if self.kind is FrameKind.DELTA and not self.content:
            raise ValueError("delta frames carry a non-empty fragment")
        if self.kind is FrameKind.ERROR and not self.error:
            raise ValueError("error frames carry a diagnostic")
        return self

    @classmethod
    def delta(cls, content: str) -> Frame:
        return cls(kind=FrameKind.DELTA, content=content)

    @classmethod
    def done(cls) -> Frame:
        return cls(kind=FrameKind.DONE)

    @classmethod
    def failure(cls, error: str) -> Frame:
        return cls(kind=FrameKind.ERROR, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not FrameKind.DELTA

    def payload(self) -> dict[str, Any]:
        """The JSON object carried on the ``data:`` line."""
        if self.kind is FrameKind.DELTA:
            return {"content": self.content}
        if self.kind is FrameKind.DONE:
            return {"done": True}
        return {"error": self.error}


class StreamOutcome(BaseModel):
    """What a client learns once a stream is over."""

    state: SessionState = Field(description="Terminal session state")
    streamed_text: str = Field(
        default="", description="Concatenation of every delta accepted before the end",
    )
    delta_count: int = Field(default=0, ge=0)
    error: str = Field(default="", description="Diagnostic from an error frame")
    malformed_lines: int = Field(default=0, ge=0, description="Lines dropped as unparseable")
    transcript: list[Message] | None = Field(
        default=None, description="Authoritative transcript re-read after the stream ended",
    )
