"""
Message repository.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from llmtracker.db.repositories.base import BaseRepository
from llmtracker.models.db import Message
from llmtracker.models.schemas import MessageData


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model. Messages are keyed by their string id."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def get_by_id(self, message_id: str) -> Optional[Message]:
        """
        Get a message by its id.

        Args:
            message_id: Message id

        Returns:
            Message or None
        """
        return self.session.query(Message).filter(Message.id == message_id).first()

    def create_from_data(self, data: MessageData) -> Message:
        """
        Insert a message row from a validated payload.

        Args:
            data: Validated message payload

        Returns:
            Created message
        """
        return self.create(
            id=data.id,
            conversation_id=data.conversation_id,
            timestamp=data.timestamp,
            role=data.role.value,
            content=data.content,
            visible_to_user=data.visible_to_user,
            message_position=data.message_position,
            is_edited=data.is_edited,
            is_regenerated=data.is_regenerated,
            tokens_prompt=data.tokens_prompt,
            tokens_completion=data.tokens_completion,
            tokens_total=data.tokens_total,
            time_to_first_token_ms=data.time_to_first_token_ms,
            total_generation_time_ms=data.total_generation_time_ms,
            attachments=list(data.attachments),
        )

    def get_by_conversation(self, conversation_id: str) -> List[Message]:
        """
        Get a conversation's messages in order.

        Ordered by timestamp ascending; equal timestamps keep insertion order.

        Args:
            conversation_id: Conversation id

        Returns:
            List of messages
        """
        return (
            self.session.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp.asc(), Message.seq.asc())
            .all()
        )

