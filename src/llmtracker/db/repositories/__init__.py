"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from llmtracker.db.repositories.base import BaseRepository
from llmtracker.db.repositories.capture import ApiCaptureRepository
from llmtracker.db.repositories.conversation import ConversationRepository
from llmtracker.db.repositories.message import MessageRepository
from llmtracker.db.repositories.streaming_chunk import StreamingChunkRepository
from llmtracker.db.repositories.system_prompt import SystemPromptRepository

__all__ = [
    "ApiCaptureRepository",
    "BaseRepository",
    "ConversationRepository",
    "MessageRepository",
    "StreamingChunkRepository",
    "SystemPromptRepository",
]
