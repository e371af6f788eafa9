"""
Envelope types received by the ingestion server.

An envelope is a JSON object ``{type, id, data}``. ``parse_envelope`` maps
it onto exactly one variant of a closed set; tags the server does not know
become ``UnknownEnvelope`` rather than an error.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from llmtracker.exceptions import DispatchError


@dataclass(frozen=True)
class _EnvelopeBase:
    id: Optional[Any]
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversationEnvelope(_EnvelopeBase):
    TYPE = "conversation"


@dataclass(frozen=True)
class MessageEnvelope(_EnvelopeBase):
    TYPE = "message"


@dataclass(frozen=True)
class CaptureEnvelope(_EnvelopeBase):
    TYPE = "api_capture"


@dataclass(frozen=True)
class SystemPromptEnvelope(_EnvelopeBase):
    TYPE = "system_prompt"


@dataclass(frozen=True)
class StreamingChunkEnvelope(_EnvelopeBase):
    TYPE = "streaming_chunk"


@dataclass(frozen=True)
class PingEnvelope(_EnvelopeBase):
    TYPE = "ping"


@dataclass(frozen=True)
class UnknownEnvelope(_EnvelopeBase):
    type: str = ""


Envelope = Union[
    ConversationEnvelope,
    MessageEnvelope,
    CaptureEnvelope,
    SystemPromptEnvelope,
    StreamingChunkEnvelope,
    PingEnvelope,
    UnknownEnvelope,
]

ENVELOPE_TYPES: dict[str, type] = {
    cls.TYPE: cls
    for cls in (
        ConversationEnvelope,
        MessageEnvelope,
        CaptureEnvelope,
        SystemPromptEnvelope,
        StreamingChunkEnvelope,
        PingEnvelope,
    )
}


def parse_envelope(value: Any) -> Envelope:
    """
    Parse a decoded JSON value into an envelope variant.

    Args:
        value: Decoded frame payload

    Returns:
        The matching envelope, or ``UnknownEnvelope`` for an unrecognized tag

    Raises:
        DispatchError: If the value is not an object with a string ``type``,
            or its ``data`` is present but not an object
    """
    if not isinstance(value, dict):
        raise DispatchError(f"Envelope must be a JSON object, got {type(value).__name__}")

    tag = value.get("type")
    if not isinstance(tag, str):
        raise DispatchError("Envelope is missing a string 'type'")

    data = value.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        raise DispatchError(f"Envelope '{tag}' has non-object data")

    envelope_id = value.get("id")
    envelope_cls = ENVELOPE_TYPES.get(tag)
    if envelope_cls is None:
        return UnknownEnvelope(id=envelope_id, data=data, type=tag)
    return envelope_cls(id=envelope_id, data=data)
