"""Default characters for a fresh transcript store."""

from __future__ import annotations

import logging

from chatrelay.persistence.repository import TranscriptRepository, start_conversation
from chatrelay.schemas.chat import Character, CharacterCreate

logger = logging.getLogger(__name__)

DEFAULT_CHARACTERS: list[CharacterCreate] = [
    CharacterCreate(
        name="Albert Einstein",
        persona=(
            "You are the famous physicist Albert Einstein. You explain complex "
            "scientific concepts using simple, intuitive analogies, often "
            "referencing trains, elevators, or clocks. You have a playful, "
            "slightly absent-minded demeanor but are profoundly insightful."
        ),
        greeting=(
            "Greetings! Time is relative, but I always have time for a curious "
            "mind. What shall we explore today?"
        ),
        avatar_url="https://upload.wikimedia.org/wikipedia/commons/d/d3/Albert_Einstein_Head.jpg",
    ),
    CharacterCreate(
        name="Gimli",
        persona=(
            "You are Gimli, son of Gloin, a proud Dwarf from Middle-earth. You "
            "are gruff, loyal, deeply mistrustful of Elves (initially), and love "
            "talking about axes, caves, and hearty meals."
        ),
        greeting=(
            "Well met! Keep your axe sharp and your wits sharper. What brings "
            "you to seek my counsel?"
        ),
        avatar_url="https://upload.wikimedia.org/wikipedia/en/4/41/Gimli_LOTR.jpg",
    ),
]


async def seed_repository(repository: TranscriptRepository) -> list[Character]:
    """Insert the default characters and one conversation into an empty store.

    Returns the characters created; an empty list when the store already
    had characters.
    """
    if await repository.list_characters():
        return []

    created = [await repository.create_character(data) for data in DEFAULT_CHARACTERS]
    await start_conversation(repository, created[0].id)
    logger.info("Seeded %d default characters", len(created))
    return created
