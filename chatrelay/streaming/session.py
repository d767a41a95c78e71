"""Streaming session lifecycle.

A StreamingSession binds one in-flight completion to one conversation.
It holds the accumulation buffer and moves through a small state
machine::

    active ──complete()──▶ completed   emits the terminal frame
       │ ───fail()──────▶ failed      emits an error frame
       └───abort()──────▶ aborted     emits nothing

TERMINAL_FRAMES is the transition table; every terminal transition
releases the buffer. SessionRegistry enforces at most one active session
per conversation.
"""

from __future__ import annotations

import logging
import time
import uuid

from chatrelay.errors import InvalidTransitionError, SessionActiveError
from chatrelay.schemas.chat import Character
from chatrelay.schemas.streaming import Frame, FrameKind, SessionState

logger = logging.getLogger(__name__)

# Terminal state -> frame kind emitted on entering it (None = no frame)
TERMINAL_FRAMES: dict[SessionState, FrameKind | None] = {
    SessionState.COMPLETED: FrameKind.DONE,
    SessionState.FAILED: FrameKind.ERROR,
    SessionState.ABORTED: None,
}


class StreamingSession:
    """Ephemeral state of one streamed reply. Never persisted."""

    def __init__(
        self,
        conversation_id: int,
        character: Character | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.conversation_id = conversation_id
        self.character = character
        self.started_at = time.monotonic()
        self._state = SessionState.ACTIVE
        self._buffer: list[str] = []
        self._error = ""

    def __repr__(self) -> str:
        return (
            f"StreamingSession({self.session_id[:8]}, "
            f"conversation={self.conversation_id}, state={self._state})"
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def text(self) -> str:
        """Everything accumulated so far (empty once the session has ended)."""
        return "".join(self._buffer)

    @property
    def error(self) -> str:
        return self._error

    def append(self, delta: str) -> None:
        """Add one delta to the accumulation buffer."""
        if not self.is_active:
            raise InvalidTransitionError(
                f"Cannot append to a {self._state} session"
            )
        self._buffer.append(delta)

    def complete(self) -> Frame:
        """Enter COMPLETED and return the terminal frame."""
        self._transition(SessionState.COMPLETED)
        return Frame.done()

    def fail(self, error: str) -> Frame:
        """Enter FAILED and return the error frame carrying ``error``."""
        self._transition(SessionState.FAILED)
        self._error = error
        return Frame.failure(error)

    def abort(self) -> None:
        """Enter ABORTED. No frame is emitted."""
        self._transition(SessionState.ABORTED)

    def abort_if_active(self) -> bool:
        if self.is_active:
            self.abort()
            return True
        return False

    def _transition(self, target: SessionState) -> None:
        if target not in TERMINAL_FRAMES:
            raise InvalidTransitionError(f"{target} is not a terminal state")
        if not self.is_active:
            raise InvalidTransitionError(
                f"Session {self.session_id[:8]} already {self._state}, cannot become {target}"
            )
        self._state = target
        self._buffer.clear()
        logger.debug(
            "Session %s for conversation %d -> %s after %.2fs",
            self.session_id[:8], self.conversation_id, target,
            time.monotonic() - self.started_at,
        )


class SessionRegistry:
    """Tracks the single active session of each conversation.

    open() checks and claims the slot without suspending, so on one event
    loop two concurrent sends cannot both succeed.
    """

    def __init__(self) -> None:
        self._active: dict[int, StreamingSession] = {}

    def __len__(self) -> int:
        return len(self._active)

    def get(self, conversation_id: int) -> StreamingSession | None:
        return self._active.get(conversation_id)

    def is_active(self, conversation_id: int) -> bool:
        return conversation_id in self._active

    def open(
        self,
        conversation_id: int,
        character: Character | None = None,
    ) -> StreamingSession:
        """Claim the conversation for a new session.

        Raises:
            SessionActiveError: If the conversation already has an active session.
        """
        if conversation_id in self._active:
            raise SessionActiveError(conversation_id)
        session = StreamingSession(conversation_id, character)
        self._active[conversation_id] = session
        logger.info(
            "Opened session %s for conversation %d",
            session.session_id[:8], conversation_id,
        )
        return session

    def release(self, session: StreamingSession) -> None:
        """Free the conversation slot held by ``session`` (no-op if not held)."""
        if self._active.get(session.conversation_id) is session:
            del self._active[session.conversation_id]
            logger.info(
                "Closed session %s for conversation %d (%s)",
                session.session_id[:8], session.conversation_id, session.state,
            )
