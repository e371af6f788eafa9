"""
StreamingChunk repository.
"""

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from llmtracker.db.repositories.base import BaseRepository
from llmtracker.models.db import StreamingChunk
from llmtracker.models.schemas import StreamingChunkData


class StreamingChunkRepository(BaseRepository[StreamingChunk]):
    """Repository for StreamingChunk model."""

    def __init__(self, session: Session):
        super().__init__(StreamingChunk, session)

    def last_index(self, message_id: str) -> Optional[int]:
        """Highest chunk index stored for a message, or None if it has none."""
        return (
            self.session.query(func.max(StreamingChunk.chunk_index))
            .filter(StreamingChunk.message_id == message_id)
            .scalar()
        )

    def create_from_data(self, data: StreamingChunkData) -> StreamingChunk:
        """
        Insert a chunk row from a validated payload.

        Args:
            data: Validated chunk payload

        Returns:
            Created chunk
        """
        return self.create(
            id=data.id,
            message_id=data.message_id,
            api_capture_id=data.api_capture_id,
            chunk_index=data.chunk_index,
            timestamp=data.timestamp,
            delta_time_ms=data.delta_time_ms,
            content=data.content,
        )

    def get_by_message(self, message_id: str) -> List[StreamingChunk]:
        """
        Get a message's chunks in index order.

        Args:
            message_id: Message id

        Returns:
            List of chunks ordered by chunk_index ascending
        """
        return (
            self.session.query(StreamingChunk)
            .filter(StreamingChunk.message_id == message_id)
            .order_by(StreamingChunk.chunk_index.asc())
            .all()
        )
