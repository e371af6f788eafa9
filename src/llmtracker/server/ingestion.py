"""
Ingestion server.

Accepts bridge connections on a local TCP port, decodes length-prefixed JSON
envelopes and applies them to the capture store. Each connection gets its
own thread; store mutations from all connections are funneled through one
``StoreWriter``.

Per envelope the server answers with exactly one ack. A failed store
operation is reported with an error notification first, and the connection
stays open either way.
"""

import logging
import selectors
import socket
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, List, Optional, Tuple, Type, assert_never

from pydantic import BaseModel, ValidationError

from llmtracker.bridge.framing import READ_SIZE, FrameDecoder
from llmtracker.config import Settings, settings
from llmtracker.exceptions import DispatchError, FramingError, StoreError
from llmtracker.models.schemas import (
    CaptureData,
    ConversationData,
    MessageData,
    StreamingChunkData,
    SystemPromptData,
)
from llmtracker.server.envelopes import (
    CaptureEnvelope,
    ConversationEnvelope,
    Envelope,
    MessageEnvelope,
    PingEnvelope,
    StreamingChunkEnvelope,
    SystemPromptEnvelope,
    UnknownEnvelope,
    parse_envelope,
)
from llmtracker.server.registry import (
    ClientConnection,
    ConnectionRegistry,
    ConnectionStatus,
)
from llmtracker.server.writer import StoreWriter
from llmtracker.services.store import CaptureStore
from llmtracker.utils.time import now_ms

logger = logging.getLogger(__name__)


def ack_message(envelope_id: Any) -> dict:
    return {"type": "ack", "messageId": envelope_id, "timestamp": now_ms()}


def error_message(error: str) -> dict:
    return {"type": "error", "error": error, "timestamp": now_ms()}


def welcome_message() -> dict:
    return {"type": "connection", "status": "connected", "timestamp": now_ms()}


def pong_message() -> dict:
    return {"type": "pong", "timestamp": now_ms()}


class IngestionServer:
    """
    Threaded TCP server applying capture envelopes to a ``CaptureStore``.

    Example:
        >>> server = IngestionServer(store, StoreWriter(), ConnectionRegistry())
        >>> server.start()
        >>> host, port = server.address
        >>> server.stop()
    """

    def __init__(
        self,
        store: CaptureStore,
        writer: Optional[StoreWriter] = None,
        registry: Optional[ConnectionRegistry] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or settings
        self.store = store
        self.host = host if host is not None else self.config.server_host
        self.port = port if port is not None else self.config.server_port

        self._owns_writer = writer is None
        self.writer = writer or StoreWriter(timeout=self.config.writer_timeout)
        self.registry = registry if registry is not None else ConnectionRegistry()

        self._listener: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._handler_threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._shutdown_event = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the port is real even when 0 was requested."""
        if self._listener is None:
            return self.host, self.port
        host, port = self._listener.getsockname()[:2]
        return host, port

    @property
    def running(self) -> bool:
        return self._listener is not None and not self._shutdown_event.is_set()

    # ===== Lifecycle =====

    def start(self) -> None:
        """Bind the listening socket and start accepting connections."""
        if self._listener is not None:
            return

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((self.host, self.port))
        listener.listen()
        listener.settimeout(self.config.server_poll_interval)
        self._listener = listener
        self._shutdown_event.clear()

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="ingestion-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address
        logger.info(f"Ingestion server listening on {host}:{port}")

    def serve_forever(self) -> None:
        """Start if needed and block until ``stop()`` is called."""
        self.start()
        while not self._shutdown_event.wait(self.config.server_poll_interval):
            pass

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop accepting, close every connection and join the worker threads.

        Store operations already submitted still run to completion.
        """
        self._shutdown_event.set()

        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=timeout)
            self._accept_thread = None

        self.registry.close_all()
        with self._threads_lock:
            threads, self._handler_threads = self._handler_threads, []
        for thread in threads:
            thread.join(timeout=timeout)

        if self._owns_writer:
            self.writer.shutdown(wait=True)

        logger.info("Ingestion server stopped")

    def broadcast(self, message: Any) -> int:
        """Push a notification to every active connection."""
        return self.registry.broadcast(message)

    # ===== Connection handling =====

    def _accept_loop(self) -> None:
        while not self._shutdown_event.is_set():
            listener = self._listener
            if listener is None:
                break
            try:
                sock, address = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._shutdown_event.is_set():
                    logger.error(f"Accept failed: {e}")
                break

            connection = ClientConnection(sock, address, self.config.max_frame_bytes)
            thread = threading.Thread(
                target=self._handle_connection,
                args=(connection,),
                name=f"ingestion-conn-{connection.label}",
                daemon=True,
            )
            with self._threads_lock:
                self._handler_threads = [t for t in self._handler_threads if t.is_alive()]
                self._handler_threads.append(thread)
            thread.start()

    def _handle_connection(self, connection: ClientConnection) -> None:
        logger.info(f"Bridge connected from {connection.label}")
        # The socket timeout bounds writes; reads are polled through the selector
        connection.sock.settimeout(self.config.server_send_timeout)
        if not connection.send(welcome_message()):
            logger.info(f"Bridge disconnected from {connection.label}")
            return
        connection.status = ConnectionStatus.ACTIVE
        self.registry.add(connection)

        decoder = FrameDecoder(self.config.max_frame_bytes)

        def on_frame_error(error: FramingError) -> None:
            logger.warning(f"Bad frame from {connection.label}: {error}")
            connection.send(error_message(str(error)))

        selector = selectors.DefaultSelector()
        selector.register(connection.sock, selectors.EVENT_READ)
        try:
            while connection.is_open and not self._shutdown_event.is_set():
                try:
                    if not selector.select(self.config.server_poll_interval):
                        continue
                    data = connection.sock.recv(READ_SIZE)
                except (OSError, ValueError) as e:
                    if connection.is_open:
                        logger.debug(f"Read from {connection.label} failed: {e}")
                    break
                if not data:
                    break
                for value in decoder.feed(data, on_error=on_frame_error):
                    self.handle_message(connection, value)
        finally:
            selector.close()
            self.registry.remove(connection)
            connection.close()
            logger.info(f"Bridge disconnected from {connection.label}")

    # ===== Dispatch =====

    def handle_message(self, connection: ClientConnection, value: Any) -> None:
        """Parse one decoded frame and dispatch it, or report why it was rejected."""
        try:
            envelope = parse_envelope(value)
        except DispatchError as e:
            logger.warning(f"Rejected frame from {connection.label}: {e}")
            connection.send(error_message(str(e)))
            return

        self.dispatch(connection, envelope)

    def dispatch(self, connection: ClientConnection, envelope: Envelope) -> None:
        """
        Handle one envelope and acknowledge it.

        Store failures are reported with an error notification before the ack.
        """
        try:
            match envelope:
                case PingEnvelope():
                    connection.send(pong_message())
                case UnknownEnvelope(type=tag):
                    logger.warning(f"Ignoring unknown envelope type {tag!r}")
                case ConversationEnvelope(data=data):
                    self._store(ConversationData, self.store.upsert_conversation, data)
                case MessageEnvelope(data=data):
                    self._store(MessageData, self.store.insert_message, data)
                case CaptureEnvelope(data=data):
                    self._store(CaptureData, self.store.insert_capture, data)
                case SystemPromptEnvelope(data=data):
                    self._store(SystemPromptData, self.store.upsert_system_prompt, data)
                case StreamingChunkEnvelope(data=data):
                    self._store(
                        StreamingChunkData, self.store.insert_streaming_chunk, data
                    )
                case _:
                    assert_never(envelope)
        except (StoreError, ValidationError) as e:
            logger.warning(f"Envelope {envelope.id!r} failed: {e}")
            connection.send(error_message(str(e)))
        except FutureTimeoutError:
            logger.error(f"Envelope {envelope.id!r} timed out waiting for the store")
            connection.send(error_message("Timed out waiting for the store"))
        except Exception as e:
            logger.exception(f"Unexpected error handling envelope {envelope.id!r}")
            connection.send(error_message(str(e)))

        connection.send(ack_message(envelope.id))

    def _store(
        self,
        schema: Type[BaseModel],
        operation: Callable[[Any], Any],
        data: dict[str, Any],
    ) -> None:
        """Validate on this thread, then apply on the writer thread."""
        self.writer.run(operation, schema.model_validate(data))
