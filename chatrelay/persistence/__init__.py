"""chatrelay transcript persistence layer.

Provides the TranscriptRepository interface with SQLite-backed and
in-memory implementations, plus default seed data.
"""

from chatrelay.persistence.database import close_db, init_db
from chatrelay.persistence.memory import InMemoryTranscriptRepository
from chatrelay.persistence.repository import (
    SQLiteTranscriptRepository,
    TranscriptRepository,
    start_conversation,
)
from chatrelay.persistence.seed import DEFAULT_CHARACTERS, seed_repository

__all__ = [
    "DEFAULT_CHARACTERS",
    "InMemoryTranscriptRepository",
    "SQLiteTranscriptRepository",
    "TranscriptRepository",
    "close_db",
    "init_db",
    "seed_repository",
    "start_conversation",
]
