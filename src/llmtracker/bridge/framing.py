"""
Length-prefixed JSON framing.

Every message on the native messaging pipe and on the ingestion socket is a
4-byte little-endian unsigned length followed by that many bytes of UTF-8
JSON. A bad frame costs only itself: an oversize frame is skipped by its
declared length and an unparseable payload is dropped, and decoding resumes
at the next frame boundary.
"""

import json
import logging
import struct
from typing import Any, BinaryIO, Callable, Iterator, List, Optional

from llmtracker.exceptions import FramingError

logger = logging.getLogger(__name__)

HEADER = struct.Struct("<I")
HEADER_SIZE = HEADER.size
DEFAULT_MAX_FRAME_SIZE = 16 * 1024 * 1024
READ_SIZE = 64 * 1024

ErrorCallback = Callable[[FramingError], None]


def encode(message: Any, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> bytes:
    """
    Encode a JSON-serializable value as one frame.

    Args:
        message: Value to serialize
        max_frame_size: Largest payload allowed, in bytes

    Returns:
        Length prefix followed by the UTF-8 JSON payload

    Raises:
        FramingError: If the payload exceeds ``max_frame_size`` or the value
            is not JSON-serializable
    """
    try:
        payload = json.dumps(message, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise FramingError(f"Message is not JSON-serializable: {e}") from e

    if len(payload) > max_frame_size:
        raise FramingError(
            f"Frame of {len(payload)} bytes exceeds maximum of {max_frame_size}",
            declared_length=len(payload),
        )
    return HEADER.pack(len(payload)) + payload


class FrameDecoder:
    """
    Incremental decoder for a byte stream of frames.

    Feed it reads of any size; it returns every message completed by that
    read. Partial frames stay buffered until the rest arrives.
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()
        self._skip = 0  # Bytes of an oversize frame still to discard

    @property
    def buffered(self) -> int:
        """Number of bytes held waiting for the rest of a frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes, on_error: Optional[ErrorCallback] = None) -> List[Any]:
        """
        Consume a chunk of bytes.

        Args:
            chunk: Bytes read from the stream
            on_error: Called with a FramingError for each bad frame; bad
                frames are logged when no callback is given

        Returns:
            Messages decoded from all frames completed by this chunk
        """
        self._buffer.extend(chunk)
        messages: List[Any] = []

        while True:
            if self._skip:
                dropped = min(self._skip, len(self._buffer))
                del self._buffer[:dropped]
                self._skip -= dropped
                if self._skip:
                    break

            if len(self._buffer) < HEADER_SIZE:
                break

            (length,) = HEADER.unpack_from(self._buffer)
            if length > self.max_frame_size:
                del self._buffer[:HEADER_SIZE]
                self._skip = length
                self._report(
                    FramingError(
                        f"Declared frame length {length} exceeds maximum of "
                        f"{self.max_frame_size}",
                        declared_length=length,
                    ),
                    on_error,
                )
                continue

            if len(self._buffer) < HEADER_SIZE + length:
                break

            payload = bytes(self._buffer[HEADER_SIZE : HEADER_SIZE + length])
            del self._buffer[: HEADER_SIZE + length]

            try:
                messages.append(json.loads(payload.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                self._report(
                    FramingError(f"Invalid frame payload: {e}", declared_length=length),
                    on_error,
                )

        return messages

    @staticmethod
    def _report(error: FramingError, on_error: Optional[ErrorCallback]) -> None:
        if on_error is not None:
            on_error(error)
        else:
            logger.warning(f"Dropping frame: {error}")


def decode(
    stream: BinaryIO,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    on_error: Optional[ErrorCallback] = None,
) -> Iterator[Any]:
    """
    Yield messages read from a binary stream until EOF.

    A trailing partial frame at EOF is discarded.
    """
    decoder = FrameDecoder(max_frame_size)
    read = getattr(stream, "read1", stream.read)
    while True:
        chunk = read(READ_SIZE)
        if not chunk:
            break
        yield from decoder.feed(chunk, on_error)

    if decoder.buffered:
        logger.debug(f"Discarding {decoder.buffered} bytes of incomplete frame at EOF")
