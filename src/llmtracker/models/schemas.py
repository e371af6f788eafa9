"""
Capture event schemas for LLM Tracker.

Pydantic models validating the ``data`` payload of each envelope kind before
it reaches the store. Field aliases accept the names used by the browser
extension producer.
"""

import uuid
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from llmtracker.models.db import MessageRole
from llmtracker.utils.time import now_ms


def _new_id() -> str:
    return str(uuid.uuid4())


class CaptureModel(BaseModel):
    """Base schema for producer payloads."""

    model_config = ConfigDict(
        extra="ignore", populate_by_name=True, protected_namespaces=()
    )


class ConversationData(CaptureModel):
    """Payload of a ``conversation`` envelope."""

    id: str = Field(default_factory=_new_id)
    platform: str
    platform_conversation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("platform_conversation_id", "conversation_id"),
    )
    title: Optional[str] = None
    started_at: int = Field(default_factory=now_ms)
    last_activity: int = Field(default_factory=now_ms)
    model_used: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("model_used", "model")
    )
    status: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Producer-side counters; informational only, the store owns the aggregates
    message_count: Optional[int] = None
    total_tokens: Optional[int] = None


class MessageData(CaptureModel):
    """Payload of a ``message`` envelope."""

    id: str = Field(default_factory=_new_id)
    conversation_id: str
    platform: Optional[str] = None  # Used to open the conversation on first message
    timestamp: int = Field(default_factory=now_ms)
    role: MessageRole
    content: str = Field(
        default="", validation_alias=AliasChoices("content", "visible_content")
    )
    visible_to_user: bool = True
    message_position: Optional[int] = None
    is_edited: bool = Field(
        default=False, validation_alias=AliasChoices("is_edited", "edited")
    )
    is_regenerated: bool = Field(
        default=False, validation_alias=AliasChoices("is_regenerated", "regenerated")
    )
    tokens_prompt: Optional[int] = None
    tokens_completion: Optional[int] = None
    tokens_total: Optional[int] = None
    time_to_first_token_ms: Optional[int] = None
    total_generation_time_ms: Optional[int] = None
    attachments: list[Any] = Field(default_factory=list)


class CaptureData(CaptureModel):
    """Payload of an ``api_capture`` envelope."""

    id: str = Field(default_factory=_new_id)
    message_id: str
    timestamp: int = Field(default_factory=now_ms)
    request_url: Optional[str] = None
    request_method: Optional[str] = None
    request_headers: dict[str, Any] = Field(default_factory=dict)
    request_body: Optional[Any] = None
    response_status: Optional[int] = None
    response_headers: dict[str, Any] = Field(default_factory=dict)
    response_body: Optional[Any] = None
    raw_response: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    is_streaming: bool = Field(
        default=False, validation_alias=AliasChoices("is_streaming", "stream")
    )
    platform: Optional[str] = None
    system_prompts: list[str] = Field(default_factory=list)


class SystemPromptData(CaptureModel):
    """Payload of a ``system_prompt`` envelope."""

    platform: str
    prompt_text: str = Field(validation_alias=AliasChoices("prompt_text", "text"))
    first_seen: int = Field(default_factory=now_ms)
    last_seen: int = Field(default_factory=now_ms)
    conversation_id: Optional[str] = None


class StreamingChunkData(CaptureModel):
    """Payload of a ``streaming_chunk`` envelope."""

    id: str = Field(default_factory=_new_id)
    message_id: str
    api_capture_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("api_capture_id", "capture_id")
    )
    chunk_index: int = Field(validation_alias=AliasChoices("chunk_index", "index"))
    timestamp: int = Field(default_factory=now_ms)
    delta_time_ms: Optional[int] = None
    content: Optional[str] = None
