"""
SQLAlchemy database models for LLM Tracker.

These models represent the durable schema for captured conversations with
hosted chat services. All timestamps are Unix epoch milliseconds.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from llmtracker.utils.time import now_ms


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class MessageRole(str, enum.Enum):
    """Role of a message author in a chat exchange."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationStatus(str, enum.Enum):
    """Lifecycle status of a conversation."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


class Conversation(Base):
    """A chat session on one platform."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    platform: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True
    )  # 'chatgpt', 'claude', 'gemini'
    platform_conversation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )  # ID assigned by the platform
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    last_activity: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # Aggregates maintained by the store on every message insert
    message_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    total_tokens: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )

    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        Enum(
            ConversationStatus,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=ConversationStatus.ACTIVE.value,
        server_default=ConversationStatus.ACTIVE.value,
    )
    extra_data: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)
    updated_at: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=now_ms, onupdate=now_ms
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id!r}, "
            f"platform={self.platform!r}, "
            f"message_count={self.message_count})>"
        )


class Message(Base):
    """Individual message within a conversation. Immutable once created."""

    __tablename__ = "messages"

    # Insertion sequence, breaks timestamp ties on ordered reads
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, default=_new_id
    )
    conversation_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        Enum(
            MessageRole,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    visible_to_user: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, index=True
    )
    message_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_regenerated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Tokens and timing
    tokens_prompt: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tokens_completion: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tokens_total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    time_to_first_token_ms: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    total_generation_time_ms: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )

    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
    captures: Mapped[list["ApiCapture"]] = relationship(
        back_populates="message", cascade="all, delete-orphan", passive_deletes=True
    )
    chunks: Mapped[list["StreamingChunk"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StreamingChunk.chunk_index",
    )

    __table_args__ = (
        Index("idx_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id!r}, role={self.role!r}, timestamp={self.timestamp})>"
        )


class ApiCapture(Base):
    """Raw request/response snapshot of one exchange with a chat service API."""

    __tablename__ = "api_captures"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    message_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # Request details
    request_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    request_headers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    request_body: Mapped[Optional[dict | list | str]] = mapped_column(
        JSON, nullable=True
    )

    # Response details
    response_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_headers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    response_body: Mapped[Optional[dict | list | str]] = mapped_column(
        JSON, nullable=True
    )
    raw_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Extracted model parameters
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    top_p: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_streaming: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    platform: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True
    )

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)

    # Relationships
    message: Mapped["Message"] = relationship(back_populates="captures")

    def __repr__(self) -> str:
        return (
            f"<ApiCapture(id={self.id!r}, "
            f"message_id={self.message_id!r}, "
            f"model={self.model!r})>"
        )


class SystemPrompt(Base):
    """Hidden system prompt, deduplicated by content hash."""

    __tablename__ = "system_prompts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    platform: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )  # SHA-256 of prompt_text

    # Occurrence tracking
    first_seen: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_seen: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    occurrence_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="1", default=1, index=True
    )

    # Conversations where this prompt appeared
    conversation_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)
    updated_at: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=now_ms, onupdate=now_ms
    )

    def __repr__(self) -> str:
        return (
            f"<SystemPrompt(id={self.id!r}, "
            f"platform={self.platform!r}, "
            f"occurrence_count={self.occurrence_count})>"
        )


class StreamingChunk(Base):
    """Single chunk of a streamed assistant response."""

    __tablename__ = "streaming_chunks"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    message_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    api_capture_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        ForeignKey("api_captures.id", ondelete="CASCADE"),
        nullable=True,
    )

    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delta_time_ms: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # Time since previous chunk
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    message: Mapped["Message"] = relationship(back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("message_id", "chunk_index", name="uq_chunk_message_index"),
    )

    def __repr__(self) -> str:
        return (
            f"<StreamingChunk(message_id={self.message_id!r}, "
            f"chunk_index={self.chunk_index})>"
        )
