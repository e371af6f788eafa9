"""Initial capture schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates conversations, messages, api_captures, system_prompts and
streaming_chunks. Timestamps are epoch milliseconds stored as BIGINT.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("platform_conversation_id", sa.String(255), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("started_at", sa.BigInteger(), nullable=False),
        sa.Column("last_activity", sa.BigInteger(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("status", sa.String(8), nullable=False, server_default="active"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_conversations_platform", "conversations", ["platform"])
    op.create_index(
        "ix_conversations_platform_conversation_id",
        "conversations",
        ["platform_conversation_id"],
    )
    op.create_index("ix_conversations_started_at", "conversations", ["started_at"])
    op.create_index(
        "ix_conversations_last_activity", "conversations", ["last_activity"]
    )

    op.create_table(
        "messages",
        sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(255), nullable=False, unique=True),
        sa.Column(
            "conversation_id",
            sa.String(255),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("role", sa.String(9), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("visible_to_user", sa.Boolean(), nullable=False),
        sa.Column("message_position", sa.Integer(), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False),
        sa.Column("is_regenerated", sa.Boolean(), nullable=False),
        sa.Column("tokens_prompt", sa.Integer(), nullable=True),
        sa.Column("tokens_completion", sa.Integer(), nullable=True),
        sa.Column("tokens_total", sa.Integer(), nullable=True),
        sa.Column("time_to_first_token_ms", sa.Integer(), nullable=True),
        sa.Column("total_generation_time_ms", sa.Integer(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])
    op.create_index("ix_messages_timestamp", "messages", ["timestamp"])
    op.create_index("ix_messages_role", "messages", ["role"])
    op.create_index("ix_messages_visible_to_user", "messages", ["visible_to_user"])
    op.create_index(
        "idx_messages_conversation_timestamp",
        "messages",
        ["conversation_id", "timestamp"],
    )

    op.create_table(
        "api_captures",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column(
            "message_id",
            sa.String(255),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("request_url", sa.Text(), nullable=True),
        sa.Column("request_method", sa.String(16), nullable=True),
        sa.Column("request_headers", sa.JSON(), nullable=False),
        sa.Column("request_body", sa.JSON(), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_headers", sa.JSON(), nullable=False),
        sa.Column("response_body", sa.JSON(), nullable=True),
        sa.Column("raw_response", sa.Text(), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("max_tokens", sa.Integer(), nullable=True),
        sa.Column("top_p", sa.Float(), nullable=True),
        sa.Column("is_streaming", sa.Boolean(), nullable=False),
        sa.Column("platform", sa.String(50), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_api_captures_message_id", "api_captures", ["message_id"])
    op.create_index("ix_api_captures_timestamp", "api_captures", ["timestamp"])
    op.create_index("ix_api_captures_model", "api_captures", ["model"])
    op.create_index("ix_api_captures_platform", "api_captures", ["platform"])

    op.create_table(
        "system_prompts",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        sa.Column("prompt_hash", sa.String(64), nullable=False),
        sa.Column("first_seen", sa.BigInteger(), nullable=False),
        sa.Column("last_seen", sa.BigInteger(), nullable=False),
        sa.Column(
            "occurrence_count", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("conversation_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_system_prompts_platform", "system_prompts", ["platform"])
    op.create_index(
        "ix_system_prompts_prompt_hash", "system_prompts", ["prompt_hash"], unique=True
    )
    op.create_index("ix_system_prompts_last_seen", "system_prompts", ["last_seen"])
    op.create_index(
        "ix_system_prompts_occurrence_count", "system_prompts", ["occurrence_count"]
    )

    op.create_table(
        "streaming_chunks",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column(
            "message_id",
            sa.String(255),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "api_capture_id",
            sa.String(255),
            sa.ForeignKey("api_captures.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("delta_time_ms", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "message_id", "chunk_index", name="uq_chunk_message_index"
        ),
    )
    op.create_index(
        "ix_streaming_chunks_message_id", "streaming_chunks", ["message_id"]
    )


def downgrade() -> None:
    op.drop_table("streaming_chunks")
    op.drop_table("system_prompts")
    op.drop_table("api_captures")
    op.drop_table("messages")
    op.drop_table("conversations")
