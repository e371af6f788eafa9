"""
Native messaging host.

Launched by the browser with the extension on the other end of stdin/stdout.
Frames read from stdin are forwarded to the ingestion server through a
``BridgeClient``; frames the server pushes back are written to stdout.

stdout is the protocol channel: nothing else may write to it, so this
process logs to its file only (see ``setup_logging(context="host")``).
"""

import logging
import sys
import threading
from typing import Any, BinaryIO, Optional

from llmtracker.bridge.client import BridgeClient
from llmtracker.bridge.framing import decode, encode
from llmtracker.config import Settings, settings
from llmtracker.exceptions import FramingError

logger = logging.getLogger(__name__)


class NativeHost:
    """Relays framed messages between the browser pipe and the bridge client."""

    def __init__(
        self,
        client: Optional[BridgeClient] = None,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or settings
        self.client = client or BridgeClient.from_settings(self.config)
        self.client.on_message = self.write_message
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self._write_lock = threading.Lock()
        self.forwarded = 0

    def write_message(self, message: Any) -> None:
        """Write one framed message to stdout."""
        try:
            frame = encode(message, self.config.max_frame_bytes)
        except FramingError as e:
            logger.error(f"Cannot relay message to browser: {e}")
            return

        with self._write_lock:
            try:
                self.stdout.write(frame)
                self.stdout.flush()
            except (BrokenPipeError, ValueError) as e:
                # ValueError: stdout already closed during shutdown
                logger.error(f"Browser pipe closed, message not delivered: {e}")

    def run(self) -> int:
        """
        Relay until stdin reaches EOF, then close the client.

        Returns:
            Number of messages forwarded from stdin
        """
        logger.info("Native messaging host starting")
        if not self.client.connect():
            logger.warning("Ingestion server unavailable, queueing messages")

        try:
            for message in decode(self.stdin, self.config.max_frame_bytes):
                logger.debug(f"Received from browser: {str(message)[:100]}")
                try:
                    self.client.send(message)
                    self.forwarded += 1
                except FramingError as e:
                    logger.error(f"Cannot forward message: {e}")
            logger.info("Browser closed the pipe")
        finally:
            self.client.close()
            logger.info(f"Native messaging host stopped ({self.forwarded} forwarded)")

        return self.forwarded
