"""In-memory TranscriptRepository.

Holds every record in process memory. Lets the streaming core and the
HTTP layer run without any persistence technology.
"""

from __future__ import annotations

import itertools

from chatrelay.errors import CharacterNotFoundError, ConversationNotFoundError
from chatrelay.persistence.repository import TranscriptRepository
from chatrelay.schemas.chat import (
    Character,
    CharacterCreate,
    Conversation,
    ConversationDetail,
    Message,
    Role,
)


class InMemoryTranscriptRepository(TranscriptRepository):
    """TranscriptRepository over plain dicts and lists."""

    def __init__(self) -> None:
        self._characters: dict[int, Character] = {}
        self._conversations: dict[int, Conversation] = {}
        self._messages: dict[int, list[Message]] = {}
        self._ids = {
            "character": itertools.count(1),
            "conversation": itertools.count(1),
            "message": itertools.count(1),
        }

    async def load_history(self, conversation_id: int) -> list[Message]:
        messages = self._messages.get(conversation_id, [])
        return sorted(messages, key=lambda m: (m.created_at, m.id))

    async def append_message(
        self, conversation_id: int, role: Role, content: str,
    ) -> Message:
        if conversation_id not in self._conversations:
            raise ConversationNotFoundError(conversation_id)
        message = Message(
            id=next(self._ids["message"]),
            conversation_id=conversation_id,
            role=role,
            content=content,
        )
        self._messages[conversation_id].append(message)
        return message

    async def load_character(self, conversation_id: int) -> Character:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.character_id not in self._characters:
            raise ConversationNotFoundError(conversation_id)
        return self._characters[conversation.character_id]

    async def create_character(self, data: CharacterCreate) -> Character:
        character = Character(id=next(self._ids["character"]), **data.model_dump())
        self._characters[character.id] = character
        return character

    async def get_character(self, character_id: int) -> Character | None:
        return self._characters.get(character_id)

    async def list_characters(self) -> list[Character]:
        return sorted(
            self._characters.values(), key=lambda c: (c.created_at, c.id), reverse=True,
        )

    async def create_conversation(self, character_id: int) -> Conversation:
        if character_id not in self._characters:
            raise CharacterNotFoundError(character_id)
        conversation = Conversation(
            id=next(self._ids["conversation"]), character_id=character_id,
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation

    async def get_conversation(self, conversation_id: int) -> ConversationDetail | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return None
        return self._detail(conversation)

    async def list_conversations(self) -> list[ConversationDetail]:
        ordered = sorted(
            self._conversations.values(), key=lambda c: (c.created_at, c.id), reverse=True,
        )
        return [self._detail(c) for c in ordered]

    def _detail(self, conversation: Conversation) -> ConversationDetail:
        return ConversationDetail(
            **conversation.model_dump(),
            character=self._characters.get(conversation.character_id),
        )
