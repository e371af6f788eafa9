"""
Registry of live ingestion connections.

The server adds a connection when it is accepted and removes it when it
closes; ``broadcast`` pushes a notification to every connection still open.
"""

import enum
import logging
import socket
import threading
from typing import Any, List, Optional, Tuple

from llmtracker.bridge.framing import encode
from llmtracker.config import settings
from llmtracker.exceptions import FramingError

logger = logging.getLogger(__name__)


class ConnectionStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    ACTIVE = "active"
    CLOSED = "closed"


class ClientConnection:
    """
    One accepted socket.

    Writes are serialized per connection so frames from the handler thread
    and from broadcasts never interleave.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Tuple[str, int],
        max_frame_size: int = settings.max_frame_bytes,
    ):
        self.sock = sock
        self.address = address
        self.max_frame_size = max_frame_size
        self.status = ConnectionStatus.ACCEPTED
        self._write_lock = threading.Lock()

    @property
    def label(self) -> str:
        host, port = self.address[0], self.address[1]
        return f"{host}:{port}"

    @property
    def is_open(self) -> bool:
        return self.status is not ConnectionStatus.CLOSED

    def send(self, message: Any) -> bool:
        """
        Write one framed message.

        A failed or timed-out write closes the connection, since the peer may
        hold part of the frame and every later frame would be misread.

        Returns:
            True if written, False if the connection is closed or the write failed
        """
        if not self.is_open:
            return False
        try:
            frame = encode(message, self.max_frame_size)
        except FramingError as e:
            logger.error(f"Cannot send to {self.label}: {e}")
            return False

        with self._write_lock:
            if not self.is_open:
                return False
            try:
                self.sock.sendall(frame)
                return True
            except OSError as e:
                # A partial frame cannot be resumed; end the stream instead
                logger.warning(f"Write to {self.label} failed, closing: {e}")
                self.close()
                return False

    def close(self) -> None:
        if self.status is ConnectionStatus.CLOSED:
            return
        self.status = ConnectionStatus.CLOSED
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone
        self.sock.close()


class ConnectionRegistry:
    """Thread-safe set of active connections."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: List[ClientConnection] = []

    def add(self, connection: ClientConnection) -> None:
        with self._lock:
            self._connections.append(connection)

    def remove(self, connection: ClientConnection) -> None:
        with self._lock:
            if connection in self._connections:
                self._connections.remove(connection)

    def active(self) -> List[ClientConnection]:
        with self._lock:
            return list(self._connections)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def broadcast(self, message: Any, exclude: Optional[ClientConnection] = None) -> int:
        """
        Send a notification to every active connection.

        Returns:
            Number of connections the message was written to
        """
        delivered = 0
        for connection in self.active():
            if connection is exclude:
                continue
            if connection.send(message):
                delivered += 1
            elif not connection.is_open:
                self.remove(connection)
        return delivered

    def close_all(self) -> None:
        for connection in self.active():
            connection.close()
