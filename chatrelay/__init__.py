"""chatrelay: persona chat with live token streaming."""

__version__ = "0.1.0"

from .errors import ChatRelayError
from .schemas import Character, Conversation, Frame, Message, StreamOutcome

__all__ = [
    "Character",
    "ChatRelayError",
    "Conversation",
    "Frame",
    "Message",
    "StreamOutcome",
]
