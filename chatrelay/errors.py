"""Exception hierarchy for chatrelay.

Every error raised by the package derives from ChatRelayError so callers
can catch the whole family at one seam (the HTTP layer and the CLI).
"""

from __future__ import annotations


class ChatRelayError(Exception):
    """Base exception for all application-specific errors."""


class NotFoundError(ChatRelayError):
    """A referenced record does not exist."""


class ConversationNotFoundError(NotFoundError):
    """Raised when a conversation (or the character it references) is missing."""

    def __init__(self, conversation_id: int) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class CharacterNotFoundError(NotFoundError):
    """Raised when a character id does not resolve."""

    def __init__(self, character_id: int) -> None:
        super().__init__(f"Character {character_id} not found")
        self.character_id = character_id


class SessionActiveError(ChatRelayError):
    """Raised when a send arrives while the conversation is already streaming."""

    def __init__(self, conversation_id: int) -> None:
        super().__init__(
            f"A response is already streaming for conversation {conversation_id}"
        )
        self.conversation_id = conversation_id


class InvalidTransitionError(ChatRelayError):
    """Raised on a streaming session state change the lifecycle does not allow."""


class StreamCancelled(ChatRelayError):
    """Raised inside a read loop once its cancellation controller fires."""


class FrameDecodeError(ChatRelayError, ValueError):
    """Raised when a wire line cannot be parsed into a frame."""


class CompletionError(ChatRelayError, RuntimeError):
    """Raised when the upstream completion source fails."""


class ChatClientError(ChatRelayError):
    """Raised by the client when the server rejects a request before streaming."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
