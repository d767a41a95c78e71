"""chatrelay schema definitions.

All Pydantic v2 models used across the server, the streaming core and the client.
"""

from chatrelay.schemas.chat import (
    Character,
    CharacterCreate,
    Conversation,
    ConversationCreate,
    ConversationDetail,
    ErrorResponse,
    Message,
    Role,
    SendMessageRequest,
)
from chatrelay.schemas.config import (
    ModelConfig,
    PersonaConfig,
    RelayConfig,
    ServerConfig,
)
from chatrelay.schemas.streaming import (
    Frame,
    FrameKind,
    SessionState,
    StreamOutcome,
)

__all__ = [
    "Character",
    "CharacterCreate",
    "Conversation",
    "ConversationCreate",
    "ConversationDetail",
    "ErrorResponse",
    "Frame",
    "FrameKind",
    "Message",
    "ModelConfig",
    "PersonaConfig",
    "RelayConfig",
    "Role",
    "SendMessageRequest",
    "ServerConfig",
    "SessionState",
    "StreamOutcome",
]
