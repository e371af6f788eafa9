"""
Bridge client: reconnecting framed-socket connection to the ingestion server.

Outbound messages go through a FIFO queue whenever the socket is not
connected. On (re)connect the queue is drained in enqueue order before the
client reports ``CONNECTED``, so a message sent later can never overtake a
queued one. Inbound frames are decoded on a reader thread and handed to
``on_message``.

Delivery is at-most-once: ``close()`` abandons whatever is still queued.
"""

import logging
import socket
import threading
from collections import deque
from typing import Any, Callable, Deque, Optional

from llmtracker.bridge.framing import READ_SIZE, FrameDecoder, encode
from llmtracker.bridge.scheduler import ScheduledTask, Scheduler, TimerScheduler
from llmtracker.bridge.state import (
    ConnectionEvent,
    ConnectionState,
    ReconnectPolicy,
    transition,
)
from llmtracker.config import Settings, settings
from llmtracker.exceptions import BridgeConnectionError

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Any], None]
Connector = Callable[[str, int, float], socket.socket]


def tcp_connector(host: str, port: int, timeout: float) -> socket.socket:
    """Open a TCP connection, bounded by ``timeout``."""
    return socket.create_connection((host, port), timeout=timeout)


class BridgeClient:
    """
    Framed-socket client with queueing and bounded fixed-interval reconnects.

    Example:
        >>> client = BridgeClient("127.0.0.1", 9876, on_message=print)
        >>> client.connect()
        >>> client.send({"type": "ping", "id": "1", "data": {}})
        >>> client.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        on_message: Optional[MessageCallback] = None,
        scheduler: Optional[Scheduler] = None,
        connector: Optional[Connector] = None,
        policy: Optional[ReconnectPolicy] = None,
        connect_timeout: float = 5.0,
        send_timeout: float = 10.0,
        max_frame_size: int = settings.max_frame_bytes,
    ):
        self.host = host
        self.port = port
        self.on_message = on_message
        self.connect_timeout = connect_timeout
        self.send_timeout = send_timeout
        self.max_frame_size = max_frame_size
        self.policy = policy or ReconnectPolicy()

        self._scheduler = scheduler or TimerScheduler()
        self._connector = connector or tcp_connector

        # Guards state, queue and socket. Held while sending, never while reading.
        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._queue: Deque[bytes] = deque()
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._reconnect_task: Optional[ScheduledTask] = None
        self._closed = False

    @classmethod
    def from_settings(
        cls, config: Optional[Settings] = None, **kwargs: Any
    ) -> "BridgeClient":
        """Build a client for the configured ingestion server."""
        config = config or settings
        kwargs.setdefault(
            "policy",
            ReconnectPolicy(
                interval=config.bridge_reconnect_interval,
                max_attempts=config.bridge_max_reconnect_attempts,
            ),
        )
        return cls(
            config.server_host,
            config.server_port,
            connect_timeout=config.bridge_connect_timeout,
            send_timeout=config.bridge_send_timeout,
            max_frame_size=config.max_frame_bytes,
            **kwargs,
        )

    # ===== Status =====

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def exhausted(self) -> bool:
        """True when automatic reconnection has given up."""
        return self.policy.exhausted

    @property
    def queued(self) -> int:
        """Number of messages waiting for a connection."""
        with self._lock:
            return len(self._queue)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    # ===== Connection lifecycle =====

    def connect(self) -> bool:
        """
        Make one connection attempt now.

        On success the queue is drained before the state becomes CONNECTED.
        On failure a reconnect is scheduled unless the attempt budget is spent.

        Returns:
            True if the client is connected afterwards
        """
        with self._lock:
            if self._closed:
                return False
            if self._state is not ConnectionState.DISCONNECTED:
                return self.connected
            self._cancel_reconnect()
            self._apply(ConnectionEvent.CONNECT_REQUESTED)

        try:
            sock = self._connector(self.host, self.port, self.connect_timeout)
        except OSError as e:
            logger.warning(f"Could not connect to {self.host}:{self.port}: {e}")
            with self._lock:
                self._connect_failed()
            return False

        with self._lock:
            if self._closed:
                self._close_socket(sock)
                return False

            # Bounds every sendall; the reader treats the same timeout as idle
            sock.settimeout(self.send_timeout)
            try:
                self._drain(sock)
            except OSError as e:
                logger.warning(f"Connection lost while flushing queued messages: {e}")
                self._close_socket(sock)
                self._connect_failed()
                return False

            self._sock = sock
            self._apply(ConnectionEvent.CONNECT_SUCCEEDED)
            self.policy.reset()
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(sock,),
                name=f"bridge-reader-{self.host}:{self.port}",
                daemon=True,
            )
            self._reader.start()

        logger.info(f"Connected to ingestion server at {self.host}:{self.port}")
        return True

    def reset(self) -> bool:
        """
        Clear the reconnect failure count and try to connect again.

        Returns:
            True if the client is connected afterwards
        """
        with self._lock:
            self.policy.reset()
            if self._closed:
                return False
        return self.connect()

    def close(self) -> None:
        """
        Stop the client.

        Cancels any scheduled reconnect, closes the socket and abandons
        queued messages.
        """
        # A sender stuck in sendall holds the lock; shutting the socket down
        # first makes that write fail so the lock is released
        current = self._sock
        if current is not None:
            try:
                current.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Already disconnected

        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_reconnect()
            dropped = len(self._queue)
            self._queue.clear()
            sock, self._sock = self._sock, None
            self._apply(ConnectionEvent.RESET)

        if sock is not None:
            self._close_socket(sock)
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=5)

        if dropped:
            logger.warning(f"Bridge closed with {dropped} undelivered message(s)")
        logger.info("Bridge client closed")

    # ===== Sending =====

    def send(self, message: Any) -> bool:
        """
        Send a message, or queue it while not connected.

        Raises:
            FramingError: If the message cannot be framed (too large, not JSON)

        Returns:
            True if the message was written to the socket, False if it was
            queued (or dropped because the client is closed)
        """
        frame = encode(message, self.max_frame_size)

        with self._lock:
            if self._closed:
                logger.debug("Dropping message sent after close")
                return False

            if self._state is not ConnectionState.CONNECTED or self._sock is None:
                self._queue.append(frame)
                logger.debug(f"Not connected, queued message ({len(self._queue)} queued)")
                return False

            try:
                self._sock.sendall(frame)
                return True
            except OSError as e:
                # Covers timeouts too. A partly written frame dies with this
                # connection on the server side, so the whole frame is resent
                self._queue.appendleft(frame)
                self._connection_lost(e)
                return False

    # ===== Internals (call with the lock held) =====

    def _apply(self, event: ConnectionEvent) -> None:
        new_state = transition(self._state, event)
        if new_state is not self._state:
            logger.debug(f"Bridge {self._state.value} -> {new_state.value} ({event.value})")
        self._state = new_state

    def _drain(self, sock: socket.socket) -> None:
        # Pop only after a successful write so a failure leaves the frame at the head
        while self._queue:
            sock.sendall(self._queue[0])
            self._queue.popleft()

    def _connect_failed(self) -> None:
        self._apply(ConnectionEvent.CONNECT_FAILED)
        self.policy.record_failure()
        self._schedule_reconnect()

    def _connection_lost(self, error: Exception) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return
        logger.warning(f"Connection to ingestion server lost: {error}")
        sock, self._sock = self._sock, None
        self._apply(ConnectionEvent.CONNECTION_LOST)
        if sock is not None:
            self._close_socket(sock)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed or self._reconnect_task is not None:
            return
        if self.policy.exhausted:
            return
        self._reconnect_task = self._scheduler.schedule(
            self.policy.interval, self._run_scheduled_connect
        )

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    def _run_scheduled_connect(self) -> None:
        with self._lock:
            self._reconnect_task = None
        self.connect()

    @staticmethod
    def _close_socket(sock: socket.socket) -> None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected
        sock.close()

    # ===== Reader thread =====

    def _read_loop(self, sock: socket.socket) -> None:
        decoder = FrameDecoder(self.max_frame_size)
        error: Exception = BridgeConnectionError("Ingestion server closed the connection")
        try:
            while True:
                try:
                    data = sock.recv(READ_SIZE)
                except socket.timeout:
                    continue  # Idle, not a failure
                if not data:
                    break
                for message in decoder.feed(data):
                    self._deliver(message)
        except OSError as e:
            error = e

        with self._lock:
            # A replaced or closed socket is not this reader's business anymore
            if self._sock is sock:
                self._connection_lost(error)

    def _deliver(self, message: Any) -> None:
        if self.on_message is None:
            return
        try:
            self.on_message(message)
        except Exception:
            logger.exception("on_message callback failed")
