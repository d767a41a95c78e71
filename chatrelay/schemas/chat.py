"""Chat record schemas.

Defines the durable record kinds (Character, Conversation, Message) and
the request bodies accepted by the HTTP API. JSON uses camelCase keys;
Python attributes stay snake_case.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time used for createdAt stamps."""
    return datetime.now(UTC)


class Role(StrEnum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatModel(BaseModel):
    """Base model serializing with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Character(ChatModel):
    """A persona the assistant plays in a conversation."""

    id: int = Field(description="Character identifier")
    name: str = Field(description="Display name")
    persona: str = Field(description="Free-text behavioral instructions")
    greeting: str = Field(default="", description="Opening line of a new conversation")
    avatar_url: str = Field(default="", description="Avatar image URL")
    created_at: datetime = Field(default_factory=utcnow)


class Conversation(ChatModel):
    """A conversation with exactly one character."""

    id: int = Field(description="Conversation identifier")
    character_id: int = Field(description="Character this conversation talks to")
    created_at: datetime = Field(default_factory=utcnow)


class ConversationDetail(Conversation):
    """Conversation joined with its character for listing and lookup."""

    character: Character | None = Field(default=None)


class Message(ChatModel):
    """One immutable transcript entry."""

    id: int = Field(description="Message identifier, monotonic per store")
    conversation_id: int = Field(description="Owning conversation")
    role: Role = Field(description="Message author")
    content: str = Field(description="Message text")
    created_at: datetime = Field(default_factory=utcnow)


# ── Request bodies ───────────────────────────────────────────────


class CharacterCreate(ChatModel):
    """Body of POST /api/characters."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    name: str = Field(min_length=1, max_length=100)
    persona: str = Field(min_length=1)
    greeting: str = Field(default="")
    avatar_url: str = Field(default="")


class ConversationCreate(ChatModel):
    """Body of POST /api/conversations."""

    character_id: int


class SendMessageRequest(BaseModel):
    """Body of POST /api/conversations/{id}/messages."""

    content: str

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content must not be empty")
        return value


class ErrorResponse(BaseModel):
    """JSON body of every non-streaming error response."""

    message: str
    field: str | None = None
