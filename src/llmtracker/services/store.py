"""
Capture store for LLM Tracker.

The single entry point through which capture events reach the database.
Every mutating operation runs in one transaction, so the message insert and
its conversation aggregate update commit or roll back together. Database
errors are wrapped in ``StoreError``; nothing is retried here.

Mutations are not internally serialized. The ingestion server funnels them
through a single ``StoreWriter`` thread; reads may run from any thread.
"""

import logging
from typing import Any, Callable, List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from llmtracker.config import Settings, settings
from llmtracker.db.connection import Database
from llmtracker.db.repositories import (
    ApiCaptureRepository,
    ConversationRepository,
    MessageRepository,
    StreamingChunkRepository,
    SystemPromptRepository,
)
from llmtracker.exceptions import StoreError
from llmtracker.models.db import (
    ApiCapture,
    Conversation,
    Message,
    StreamingChunk,
    SystemPrompt,
)
from llmtracker.models.schemas import (
    CaptureData,
    ConversationData,
    MessageData,
    StreamingChunkData,
    SystemPromptData,
)
from llmtracker.utils.time import MS_PER_DAY, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")
SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _coerce(schema: Type[SchemaT], data: SchemaT | dict[str, Any]) -> SchemaT:
    """Validate a raw payload dict, or pass an already-validated model through."""
    if isinstance(data, schema):
        return data
    return schema.model_validate(data)


class CaptureStore:
    """
    Durable store for conversations, messages, captures, system prompts and
    streaming chunks.

    Example:
        >>> store = CaptureStore(Database("sqlite:////tmp/capture.db"))
        >>> store.upsert_conversation({"id": "c1", "platform": "claude"})
        >>> store.insert_message(
        ...     {"id": "m1", "conversation_id": "c1", "role": "user", "content": "hi"}
        ... )
    """

    def __init__(self, database: Database, config: Optional[Settings] = None):
        self.database = database
        self.config = config or settings

    # ===== Internal helpers =====

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` in one transaction, wrapping database errors."""
        try:
            with self.database.session() as session:
                return fn(session)
        except StoreError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise StoreError(str(e.__cause__ or e), operation) from e

    def query(self, operation: str, fn: Callable[[Session], T]) -> T:
        """Run a read-only query function with the store's error handling."""
        return self._run(operation, fn)

    def _tracked(self, platform: Optional[str], operation: str) -> bool:
        if self.config.is_platform_tracked(platform):
            return True
        logger.debug(f"{operation} dropped: tracking disabled for platform {platform!r}")
        return False

    # ===== Writes =====

    def upsert_conversation(
        self, data: ConversationData | dict[str, Any]
    ) -> Optional[Conversation]:
        """
        Insert a conversation or refresh the existing one.

        Returns:
            The stored conversation, or None if the platform is not tracked
        """
        data = _coerce(ConversationData, data)
        if not self._tracked(data.platform, "upsert_conversation"):
            return None

        def _op(session: Session) -> Conversation:
            return ConversationRepository(session).upsert(data)

        return self._run("upsert_conversation", _op)

    def insert_message(self, data: MessageData | dict[str, Any]) -> Optional[Message]:
        """
        Insert a message and update its conversation's aggregates atomically.

        ``message_count`` grows by one, ``total_tokens`` by the message's
        ``tokens_total`` (0 when unknown) and ``last_activity`` becomes the
        message timestamp. When the conversation does not exist yet it is
        opened in the same transaction, provided the payload names a platform.

        Returns:
            The stored message, or None if the platform is not tracked

        Raises:
            StoreError: If the conversation is missing and cannot be opened,
                or the message id is already stored
        """
        data = _coerce(MessageData, data)

        def _op(session: Session) -> Optional[Message]:
            conversations = ConversationRepository(session)
            conversation = conversations.get(data.conversation_id)

            platform = conversation.platform if conversation else data.platform
            if not self._tracked(platform, "insert_message"):
                return None

            if conversation is None:
                if not data.platform:
                    raise StoreError(
                        f"conversation {data.conversation_id} does not exist",
                        "insert_message",
                    )
                conversations.open_for_message(
                    data.conversation_id, data.platform, data.timestamp
                )

            message = MessageRepository(session).create_from_data(data)
            conversations.apply_message(
                data.conversation_id, data.tokens_total or 0, data.timestamp
            )
            return message

        return self._run("insert_message", _op)

    def insert_capture(
        self, data: CaptureData | dict[str, Any]
    ) -> Optional[ApiCapture]:
        """
        Insert an API capture for an existing message.

        System prompts carried by the capture are recorded in the same
        transaction.

        Raises:
            StoreError: If the message does not exist
        """
        data = _coerce(CaptureData, data)

        def _op(session: Session) -> Optional[ApiCapture]:
            message = MessageRepository(session).get_by_id(data.message_id)
            if message is None:
                raise StoreError(
                    f"message {data.message_id} does not exist", "insert_capture"
                )

            platform = data.platform or message.conversation.platform
            if not self._tracked(platform, "insert_capture"):
                return None

            capture = ApiCaptureRepository(session).create_from_data(data)

            if data.system_prompts and self.config.capture_system_prompts:
                prompts = SystemPromptRepository(session)
                for text in data.system_prompts:
                    prompts.record_occurrence(
                        SystemPromptData(
                            platform=platform,
                            prompt_text=text,
                            first_seen=data.timestamp,
                            last_seen=data.timestamp,
                            conversation_id=message.conversation_id,
                        )
                    )
            return capture

        return self._run("insert_capture", _op)

    def upsert_system_prompt(
        self, data: SystemPromptData | dict[str, Any]
    ) -> Optional[SystemPrompt]:
        """
        Record one observation of a system prompt.

        Identical text (by SHA-256) always maps to the same row; a repeat
        increments ``occurrence_count`` and moves ``last_seen``.
        """
        data = _coerce(SystemPromptData, data)
        if not self.config.capture_system_prompts:
            logger.debug("upsert_system_prompt dropped: system prompt capture disabled")
            return None
        if not self._tracked(data.platform, "upsert_system_prompt"):
            return None

        def _op(session: Session) -> SystemPrompt:
            return SystemPromptRepository(session).record_occurrence(data)

        return self._run("upsert_system_prompt", _op)

    def insert_streaming_chunk(
        self, data: StreamingChunkData | dict[str, Any]
    ) -> Optional[StreamingChunk]:
        """
        Insert one chunk of a streamed response.

        Raises:
            StoreError: If the message does not exist, or the chunk index does
                not exceed the last index stored for the message
        """
        data = _coerce(StreamingChunkData, data)
        if not self.config.capture_streaming_chunks:
            logger.debug("insert_streaming_chunk dropped: chunk capture disabled")
            return None

        def _op(session: Session) -> Optional[StreamingChunk]:
            message = MessageRepository(session).get_by_id(data.message_id)
            if message is None:
                raise StoreError(
                    f"message {data.message_id} does not exist",
                    "insert_streaming_chunk",
                )
            if not self._tracked(
                message.conversation.platform, "insert_streaming_chunk"
            ):
                return None

            chunks = StreamingChunkRepository(session)
            last_index = chunks.last_index(data.message_id)
            if last_index is not None and data.chunk_index <= last_index:
                raise StoreError(
                    f"chunk index {data.chunk_index} for message {data.message_id} "
                    f"does not follow last index {last_index}",
                    "insert_streaming_chunk",
                )
            return chunks.create_from_data(data)

        return self._run("insert_streaming_chunk", _op)

    def purge_expired(self, now: Optional[int] = None) -> int:
        """
        Delete conversations idle for longer than the retention period.

        Messages, captures and chunks are removed with their conversation.

        Args:
            now: Reference time in epoch milliseconds (defaults to now)

        Returns:
            Number of conversations deleted
        """
        if self.config.retention_days <= 0:
            return 0

        cutoff = (now if now is not None else now_ms()) - (
            self.config.retention_days * MS_PER_DAY
        )

        def _op(session: Session) -> int:
            return ConversationRepository(session).delete_inactive_before(cutoff)

        deleted = self._run("purge_expired", _op)
        if deleted:
            logger.info(
                f"Purged {deleted} conversation(s) idle for more than "
                f"{self.config.retention_days} days"
            )
        return deleted

    # ===== Reads =====

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._run(
            "get_conversation",
            lambda session: ConversationRepository(session).get(conversation_id),
        )

    def get_message(self, message_id: str) -> Optional[Message]:
        return self._run(
            "get_message",
            lambda session: MessageRepository(session).get_by_id(message_id),
        )

    def get_messages(self, conversation_id: str) -> List[Message]:
        """Messages of a conversation, timestamp ascending, then insertion order."""
        return self._run(
            "get_messages",
            lambda session: MessageRepository(session).get_by_conversation(
                conversation_id
            ),
        )

    def get_captures(self, message_id: str) -> List[ApiCapture]:
        return self._run(
            "get_captures",
            lambda session: ApiCaptureRepository(session).get_by_message(message_id),
        )

    def get_streaming_chunks(self, message_id: str) -> List[StreamingChunk]:
        """Chunks of a message in index order."""
        return self._run(
            "get_streaming_chunks",
            lambda session: StreamingChunkRepository(session).get_by_message(
                message_id
            ),
        )

    def search_conversations(
        self, term: str, limit: Optional[int] = None
    ) -> List[Conversation]:
        """
        Case-insensitive substring search over message content and titles.

        At most ``search_limit`` (100 by default) conversations are returned,
        most recently active first.
        """
        cap = self.config.search_limit
        limit = min(limit, cap) if limit else cap
        return self._run(
            "search_conversations",
            lambda session: ConversationRepository(session).search(term, limit=limit),
        )

    def get_recent_conversations(self, limit: Optional[int] = None) -> List[Conversation]:
        limit = limit or self.config.recent_conversations_limit
        return self._run(
            "get_recent_conversations",
            lambda session: ConversationRepository(session).get_recent(limit=limit),
        )

    def get_system_prompts(self, platform: Optional[str] = None) -> List[SystemPrompt]:
        """System prompts, most frequently observed first."""
        return self._run(
            "get_system_prompts",
            lambda session: SystemPromptRepository(session).get_by_platform(platform),
        )

    def get_stats(self) -> dict[str, int]:
        """Row counts per table."""

        def _op(session: Session) -> dict[str, int]:
            return {
                "conversations": ConversationRepository(session).count(),
                "messages": MessageRepository(session).count(),
                "api_captures": ApiCaptureRepository(session).count(),
                "system_prompts": SystemPromptRepository(session).count(),
                "streaming_chunks": StreamingChunkRepository(session).count(),
                "total_tokens": session.query(
                    func.coalesce(func.sum(Conversation.total_tokens), 0)
                ).scalar(),
            }

        return self._run("get_stats", _op)
