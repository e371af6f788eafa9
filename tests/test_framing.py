"""
Tests for length-prefixed JSON framing.
"""

import io
import struct

import pytest

from llmtracker.bridge.framing import FrameDecoder, decode, encode
from llmtracker.exceptions import FramingError


def raw_frame(payload: bytes) -> bytes:
    return struct.pack("<I", len(payload)) + payload


class TestEncode:
    """Tests for encode()."""

    def test_length_prefix_is_little_endian(self):
        """Test that the header is the payload length, little-endian."""
        frame = encode({"type": "ping"})

        payload = b'{"type": "ping"}'
        assert frame[:4] == struct.pack("<I", len(payload))
        assert frame[4:] == payload

    def test_utf8_payload_length_counts_bytes(self):
        """Test that non-ASCII text is measured in encoded bytes."""
        frame = encode({"text": "héllo ✓"})

        (length,) = struct.unpack("<I", frame[:4])
        assert length == len(frame) - 4
        assert "héllo ✓".encode("utf-8") in frame

    def test_oversize_payload_raises(self):
        """Test that a payload above the maximum is rejected."""
        with pytest.raises(FramingError):
            encode({"content": "x" * 100}, max_frame_size=50)

    def test_payload_at_maximum_is_allowed(self):
        """Test that a payload exactly at the limit encodes."""
        payload_size = len(b'"abc"')
        frame = encode("abc", max_frame_size=payload_size)
        assert len(frame) == 4 + payload_size

    def test_unserializable_value_raises(self):
        """Test that non-JSON values raise FramingError, not TypeError."""
        with pytest.raises(FramingError):
            encode({"value": object()})


class TestFrameDecoder:
    """Tests for incremental decoding."""

    def test_single_frame(self):
        """Test decoding one complete frame."""
        decoder = FrameDecoder()
        assert decoder.feed(encode({"a": 1})) == [{"a": 1}]
        assert decoder.buffered == 0

    def test_frame_split_across_reads(self):
        """Test that a frame delivered byte by byte decodes once complete."""
        decoder = FrameDecoder()
        frame = encode({"type": "message", "id": "m1"})

        results = []
        for i in range(len(frame)):
            results.extend(decoder.feed(frame[i : i + 1]))

        assert results == [{"type": "message", "id": "m1"}]

    def test_split_inside_header(self):
        """Test a split that cuts the 4-byte header itself."""
        decoder = FrameDecoder()
        frame = encode({"n": 42})

        assert decoder.feed(frame[:2]) == []
        assert decoder.feed(frame[2:]) == [{"n": 42}]

    def test_multiple_frames_in_one_read(self):
        """Test that every complete frame in one chunk is returned, in order."""
        decoder = FrameDecoder()
        data = encode({"n": 1}) + encode({"n": 2}) + encode({"n": 3})

        assert decoder.feed(data) == [{"n": 1}, {"n": 2}, {"n": 3}]

    def test_trailing_partial_frame_is_buffered(self):
        """Test that a partial frame after complete ones waits for more data."""
        decoder = FrameDecoder()
        second = encode({"n": 2})
        data = encode({"n": 1}) + second[:5]

        assert decoder.feed(data) == [{"n": 1}]
        assert decoder.buffered == 5
        assert decoder.feed(second[5:]) == [{"n": 2}]

    def test_invalid_json_drops_only_that_frame(self):
        """Test that a garbage payload is reported and the next frame survives."""
        decoder = FrameDecoder()
        errors = []
        data = raw_frame(b"{not json") + encode({"ok": True})

        messages = decoder.feed(data, on_error=errors.append)

        assert messages == [{"ok": True}]
        assert len(errors) == 1
        assert isinstance(errors[0], FramingError)

    def test_invalid_utf8_is_a_framing_error(self):
        """Test that undecodable bytes are treated like invalid JSON."""
        decoder = FrameDecoder()
        errors = []

        assert decoder.feed(raw_frame(b"\xff\xfe"), on_error=errors.append) == []
        assert len(errors) == 1

    def test_oversize_frame_is_skipped_by_declared_length(self):
        """Test that an oversize frame's body is discarded and decoding resumes."""
        decoder = FrameDecoder(max_frame_size=10)
        errors = []
        oversize = raw_frame(b'"' + b"x" * 30 + b'"')
        data = oversize + encode("ok")

        messages = decoder.feed(data, on_error=errors.append)

        assert messages == ["ok"]
        assert len(errors) == 1
        assert errors[0].declared_length == 32

    def test_oversize_frame_skipped_across_reads(self):
        """Test skipping an oversize body that arrives over several reads."""
        decoder = FrameDecoder(max_frame_size=10)
        errors = []
        oversize = raw_frame(b"y" * 40)

        assert decoder.feed(oversize[:20], on_error=errors.append) == []
        assert decoder.feed(oversize[20:], on_error=errors.append) == []
        assert decoder.feed(encode(1), on_error=errors.append) == [1]
        assert len(errors) == 1

    def test_errors_are_logged_without_callback(self, caplog):
        """Test that bad frames are logged when no callback is supplied."""
        decoder = FrameDecoder()

        with caplog.at_level("WARNING"):
            decoder.feed(raw_frame(b"nope"))

        assert "Dropping frame" in caplog.text


class TestDecodeStream:
    """Tests for decode() over a binary stream."""

    def test_yields_until_eof(self):
        """Test that all frames in a stream are yielded."""
        stream = io.BytesIO(encode({"n": 1}) + encode({"n": 2}))

        assert list(decode(stream)) == [{"n": 1}, {"n": 2}]

    def test_empty_stream(self):
        """Test that an empty stream yields nothing."""
        assert list(decode(io.BytesIO(b""))) == []

    def test_truncated_frame_at_eof_is_discarded(self):
        """Test that a partial trailing frame does not raise."""
        frame = encode({"n": 2})
        stream = io.BytesIO(encode({"n": 1}) + frame[:-2])

        assert list(decode(stream)) == [{"n": 1}]

    def test_bad_frame_in_stream_reported(self):
        """Test that decode passes errors to the callback and keeps going."""
        errors = []
        stream = io.BytesIO(raw_frame(b"[1,") + encode([1]))

        assert list(decode(stream, on_error=errors.append)) == [[1]]
        assert len(errors) == 1
