"""Transcript repository interface and its SQLite implementation.

The stream producer depends only on TranscriptRepository; the server
injects SQLiteTranscriptRepository in production and tests inject the
in-memory implementation from chatrelay.persistence.memory.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

import aiosqlite

from chatrelay.errors import CharacterNotFoundError, ConversationNotFoundError
from chatrelay.schemas.chat import (
    Character,
    CharacterCreate,
    Conversation,
    ConversationDetail,
    Message,
    Role,
    utcnow,
)

logger = logging.getLogger(__name__)


class TranscriptRepository(ABC):
    """Durable store of characters, conversations and their message logs."""

    # ── Used by the stream producer ───────────────────────────

    @abstractmethod
    async def load_history(self, conversation_id: int) -> list[Message]:
        """Return the conversation's messages ordered by createdAt, then insertion."""

    @abstractmethod
    async def append_message(
        self, conversation_id: int, role: Role, content: str,
    ) -> Message:
        """Append one message and return the stored record.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """

    @abstractmethod
    async def load_character(self, conversation_id: int) -> Character:
        """Return the character a conversation talks to.

        Raises:
            ConversationNotFoundError: If the conversation or its character
                does not exist.
        """

    # ── Characters and conversations ──────────────────────────

    @abstractmethod
    async def create_character(self, data: CharacterCreate) -> Character: ...

    @abstractmethod
    async def get_character(self, character_id: int) -> Character | None: ...

    @abstractmethod
    async def list_characters(self) -> list[Character]:
        """All characters, newest first."""

    @abstractmethod
    async def create_conversation(self, character_id: int) -> Conversation:
        """Create a conversation.

        Raises:
            CharacterNotFoundError: If the character does not exist.
        """

    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> ConversationDetail | None: ...

    @abstractmethod
    async def list_conversations(self) -> list[ConversationDetail]:
        """All conversations with their characters, newest first."""


class SQLiteTranscriptRepository(TranscriptRepository):
    """TranscriptRepository backed by SQLite.

    All methods are async and operate on an aiosqlite connection
    initialized by database.init_db().
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._db.row_factory = aiosqlite.Row

    async def load_history(self, conversation_id: int) -> list[Message]:
        async with self._db.execute(
            "SELECT * FROM messages WHERE conversation_id = ?"
            " ORDER BY created_at, id",
            (conversation_id,),
        ) as cursor:
            return [_row_to_message(row) async for row in cursor]

    async def append_message(
        self, conversation_id: int, role: Role, content: str,
    ) -> Message:
        if not await self._conversation_exists(conversation_id):
            raise ConversationNotFoundError(conversation_id)

        created_at = utcnow()
        cursor = await self._db.execute(
            "INSERT INTO messages (conversation_id, role, content, created_at)"
            " VALUES (?, ?, ?, ?)",
            (conversation_id, str(role), content, created_at.isoformat()),
        )
        await self._db.commit()
        logger.debug(
            "Appended %s message %d to conversation %d",
            role, cursor.lastrowid, conversation_id,
        )
        return Message(
            id=cursor.lastrowid,
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=created_at,
        )

    async def load_character(self, conversation_id: int) -> Character:
        async with self._db.execute(
            "SELECT ch.* FROM conversations c"
            " JOIN characters ch ON ch.id = c.character_id"
            " WHERE c.id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return _row_to_character(row)

    async def create_character(self, data: CharacterCreate) -> Character:
        created_at = utcnow()
        cursor = await self._db.execute(
            "INSERT INTO characters (name, persona, greeting, avatar_url, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (
                data.name,
                data.persona,
                data.greeting,
                data.avatar_url,
                created_at.isoformat(),
            ),
        )
        await self._db.commit()
        logger.info("Created character %d (%s)", cursor.lastrowid, data.name)
        return Character(
            id=cursor.lastrowid,
            name=data.name,
            persona=data.persona,
            greeting=data.greeting,
            avatar_url=data.avatar_url,
            created_at=created_at,
        )

    async def get_character(self, character_id: int) -> Character | None:
        async with self._db.execute(
            "SELECT * FROM characters WHERE id = ?", (character_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_character(row) if row else None

    async def list_characters(self) -> list[Character]:
        async with self._db.execute(
            "SELECT * FROM characters ORDER BY created_at DESC, id DESC",
        ) as cursor:
            return [_row_to_character(row) async for row in cursor]

    async def create_conversation(self, character_id: int) -> Conversation:
        if await self.get_character(character_id) is None:
            raise CharacterNotFoundError(character_id)

        created_at = utcnow()
        cursor = await self._db.execute(
            "INSERT INTO conversations (character_id, created_at) VALUES (?, ?)",
            (character_id, created_at.isoformat()),
        )
        await self._db.commit()
        logger.info(
            "Created conversation %d with character %d", cursor.lastrowid, character_id,
        )
        return Conversation(
            id=cursor.lastrowid, character_id=character_id, created_at=created_at,
        )

    async def get_conversation(self, conversation_id: int) -> ConversationDetail | None:
        async with self._db.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return await self._row_to_detail(row)

    async def list_conversations(self) -> list[ConversationDetail]:
        async with self._db.execute(
            "SELECT * FROM conversations ORDER BY created_at DESC, id DESC",
        ) as cursor:
            rows = await cursor.fetchall()
        return [await self._row_to_detail(row) for row in rows]

    async def _conversation_exists(self, conversation_id: int) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def _row_to_detail(self, row: aiosqlite.Row) -> ConversationDetail:
        return ConversationDetail(
            id=row["id"],
            character_id=row["character_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            character=await self.get_character(row["character_id"]),
        )


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=Role(row["role"]),
        content=row["content"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_character(row: aiosqlite.Row) -> Character:
    return Character(
        id=row["id"],
        name=row["name"],
        persona=row["persona"],
        greeting=row["greeting"],
        avatar_url=row["avatar_url"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


async def start_conversation(
    repository: TranscriptRepository, character_id: int,
) -> Conversation:
    """Create a conversation and post the character's greeting as its first message.

    Raises:
        CharacterNotFoundError: If the character does not exist.
    """
    conversation = await repository.create_conversation(character_id)
    character = await repository.get_character(character_id)
    if character is not None and character.greeting:
        await repository.append_message(conversation.id, Role.ASSISTANT, character.greeting)
    return conversation
