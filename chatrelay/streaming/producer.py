"""Server-side stream producer.

Drives one CompletionSource per send, forwards its deltas as frames and,
only when the source is exhausted normally, persists the concatenated
reply as a single assistant message.

Usage is two-phase so that pre-stream failures can still be reported as
HTTP status codes::

    session = await producer.open_session(conversation_id, content)  # may raise
    async for frame in producer.stream(session, cancel):              # never raises
        ...
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from chatrelay.errors import ChatRelayError, CompletionError, StreamCancelled
from chatrelay.persistence.repository import TranscriptRepository
from chatrelay.providers.base import CompletionSource
from chatrelay.schemas.chat import Character, Message, Role
from chatrelay.schemas.config import DEFAULT_PREAMBLE
from chatrelay.schemas.streaming import Frame
from chatrelay.streaming.cancellation import CancellationController
from chatrelay.streaming.frames import FAILURE_MESSAGE
from chatrelay.streaming.session import SessionRegistry, StreamingSession

logger = logging.getLogger(__name__)

_MAX_DIAGNOSTIC = 120


def build_preamble(character: Character, template: str = DEFAULT_PREAMBLE) -> str:
    """Render the persona system prompt for ``character``."""
    return template.format(name=character.name, persona=character.persona).strip()


def build_request(history: list[Message]) -> list[dict[str, str]]:
    """Map the transcript role-for-role into OpenAI-format messages."""
    return [{"role": str(m.role), "content": m.content} for m in history]


def describe_failure(error: BaseException) -> str:
    """Short diagnostic carried by an error frame."""
    if isinstance(error, CompletionError):
        return f"{FAILURE_MESSAGE} ({error})"[:_MAX_DIAGNOSTIC]
    return FAILURE_MESSAGE


class StreamProducer:
    """Relays one upstream completion per session and keeps the transcript consistent.

    Exactly zero or one assistant message is written per session: one
    when the source is exhausted and persisted, zero when the session is
    aborted or fails.
    """

    def __init__(
        self,
        repository: TranscriptRepository,
        source: CompletionSource,
        *,
        sessions: SessionRegistry | None = None,
        preamble_template: str = DEFAULT_PREAMBLE,
        timeout: int | None = None,
    ) -> None:
        self._repository = repository
        self._source = source
        self._sessions = sessions or SessionRegistry()
        self._preamble_template = preamble_template
        self._timeout = timeout

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    async def open_session(self, conversation_id: int, content: str) -> StreamingSession:
        """Validate the send, claim the conversation and persist the user message.

        Raises:
            ConversationNotFoundError: If the conversation or its character is missing.
            SessionActiveError: If the conversation is already streaming.
        """
        character = await self._repository.load_character(conversation_id)
        session = self._sessions.open(conversation_id, character)
        try:
            await self._repository.append_message(conversation_id, Role.USER, content)
        except BaseException:
            session.abort()
            self._sessions.release(session)
            raise
        return session

    async def stream(
        self,
        session: StreamingSession,
        cancel: CancellationController | None = None,
    ) -> AsyncIterator[Frame]:
        """Yield the session's frames in emission order.

        Yields zero or more delta frames followed by exactly one done or
        error frame, or nothing further once the session is aborted
        (cancel() called, or the consumer closed this generator).
        """
        cancel = cancel or CancellationController()
        conversation_id = session.conversation_id
        try:
            history = await cancel.race(self._repository.load_history(conversation_id))
            character = session.character or await cancel.race(
                self._repository.load_character(conversation_id)
            )
            upstream = self._source.stream(
                build_request(history),
                build_preamble(character, self._preamble_template),
                timeout=self._timeout,
            )
            deltas = cancel.iterate(upstream)
            try:
                async for delta in deltas:
                    if not delta:
                        continue
                    session.append(delta)
                    yield Frame.delta(delta)
            finally:
                await _close_quietly(deltas)
                await _close_quietly(upstream)

            # A cancel that lands after the last delta still wins over persistence
            if cancel.cancelled:
                raise StreamCancelled(cancel.reason)

            content = session.text
            await self._repository.append_message(conversation_id, Role.ASSISTANT, content)
            logger.info(
                "Persisted %d-char reply for conversation %d", len(content), conversation_id,
            )
            yield session.complete()

        except StreamCancelled as e:
            session.abort_if_active()
            logger.info("Session for conversation %d aborted: %s", conversation_id, e)
        except (asyncio.CancelledError, GeneratorExit):
            if session.abort_if_active():
                logger.info("Client left conversation %d mid-stream", conversation_id)
            raise
        except Exception as e:
            if not session.is_active:
                raise
            if isinstance(e, ChatRelayError):
                logger.error("Stream for conversation %d failed: %s", conversation_id, e)
            else:
                logger.exception("Stream for conversation %d failed", conversation_id)
            yield session.fail(describe_failure(e))
        finally:
            self._sessions.release(session)


async def _close_quietly(iterator: object) -> None:
    """Best-effort aclose() of an abandoned upstream iterator."""
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError:
        # Still unwinding in another task; it finishes on its own
        logger.debug("Upstream iterator still running, left to finish")
