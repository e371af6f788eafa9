"""
Conversation repository.
"""

import logging
from typing import List

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from llmtracker.db.repositories.base import BaseRepository
from llmtracker.models.db import Conversation, Message
from llmtracker.models.schemas import ConversationData
from llmtracker.utils.time import now_ms

logger = logging.getLogger(__name__)


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation model."""

    def __init__(self, session: Session):
        super().__init__(Conversation, session)

    def upsert(self, data: ConversationData) -> Conversation:
        """
        Insert a conversation, or refresh an existing one.

        On conflict by id ``last_activity`` (never moved backwards) and
        ``metadata`` are refreshed, and ``title``/``model_used`` are replaced
        when supplied. ``started_at`` and ``platform`` are fixed at
        creation, and the message/token aggregates belong to the message
        insert path, so producer-supplied counters are ignored.

        Ignoring them keeps ``message_count`` and ``total_tokens`` equal to
        the count and token sum of the stored messages at all times.

        Args:
            data: Validated conversation payload

        Returns:
            The stored conversation
        """
        conversation = self.get(data.id)
        if conversation is None:
            return self.create(
                id=data.id,
                platform=data.platform,
                platform_conversation_id=data.platform_conversation_id,
                title=data.title,
                started_at=data.started_at,
                last_activity=max(data.started_at, data.last_activity),
                message_count=0,
                total_tokens=0,
                model_used=data.model_used,
                extra_data=dict(data.metadata),
            )

        conversation.last_activity = max(conversation.last_activity, data.last_activity)
        conversation.extra_data = dict(data.metadata)
        if data.title is not None:
            conversation.title = data.title
        if data.model_used is not None:
            conversation.model_used = data.model_used
        if conversation.platform_conversation_id is None:
            conversation.platform_conversation_id = data.platform_conversation_id
        self.session.flush()
        return conversation

    def open_for_message(
        self, conversation_id: str, platform: str, timestamp: int
    ) -> Conversation:
        """
        Create the conversation that a first message belongs to.

        Args:
            conversation_id: Id the message refers to
            platform: Platform tag carried by the message
            timestamp: Message timestamp, used as the start time

        Returns:
            Newly created conversation
        """
        logger.debug(f"Opening conversation {conversation_id} on first message")
        return self.create(
            id=conversation_id,
            platform=platform,
            started_at=timestamp,
            last_activity=timestamp,
            message_count=0,
            total_tokens=0,
            extra_data={},
        )

    def apply_message(self, conversation_id: str, tokens: int, timestamp: int) -> int:
        """
        Apply the aggregate update for one inserted message.

        Executed as a single UPDATE so the increment happens in the database,
        inside the caller's transaction.

        Args:
            conversation_id: Owning conversation
            tokens: Token total of the message (0 when unknown)
            timestamp: Message timestamp, becomes last_activity

        Returns:
            Number of rows updated (1, or 0 if the conversation is gone)
        """
        result = self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(
                message_count=Conversation.message_count + 1,
                total_tokens=Conversation.total_tokens + tokens,
                last_activity=timestamp,
                updated_at=now_ms(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def get_recent(self, limit: int = 50) -> List[Conversation]:
        """
        Get the most recently active conversations.

        Args:
            limit: Maximum number of results

        Returns:
            Conversations ordered by last_activity descending
        """
        return (
            self.session.query(Conversation)
            .order_by(Conversation.last_activity.desc())
            .limit(limit)
            .all()
        )

    def search(self, term: str, limit: int = 100) -> List[Conversation]:
        """
        Case-insensitive substring search over message content and titles.

        Args:
            term: Text to look for
            limit: Maximum number of conversations returned

        Returns:
            Matching conversations, most recently active first
        """
        pattern = f"%{self._escape_like(term.lower())}%"
        matching_messages = select(Message.conversation_id).where(
            func.lower(Message.content).like(pattern, escape="\\")
        )
        return (
            self.session.query(Conversation)
            .filter(
                or_(
                    Conversation.id.in_(matching_messages),
                    func.lower(Conversation.title).like(pattern, escape="\\"),
                )
            )
            .order_by(Conversation.last_activity.desc())
            .limit(limit)
            .all()
        )

    def delete_inactive_before(self, cutoff: int) -> int:
        """
        Delete conversations whose last activity is older than ``cutoff``.

        Messages, captures and chunks go with them through ON DELETE CASCADE.

        Args:
            cutoff: Epoch milliseconds; strictly older conversations are removed

        Returns:
            Number of conversations deleted
        """
        deleted = (
            self.session.query(Conversation)
            .filter(Conversation.last_activity < cutoff)
            .delete(synchronize_session=False)
        )
        self.session.flush()
        return deleted

    @staticmethod
    def _escape_like(term: str) -> str:
        return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
