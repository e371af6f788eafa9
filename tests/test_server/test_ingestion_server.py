"""
Integration tests for the ingestion server over real loopback sockets.
"""

import socket
import struct
import threading
import time

import pytest

from llmtracker.bridge.client import BridgeClient
from llmtracker.bridge.framing import FrameDecoder, encode
from llmtracker.bridge.state import ReconnectPolicy
from llmtracker.server.ingestion import IngestionServer
from llmtracker.server.registry import ConnectionRegistry

BASE_TS = 1_700_000_000_000


def wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class WireClient:
    """Minimal framed-socket peer for driving the server."""

    def __init__(self, address):
        self.sock = socket.create_connection(address, timeout=3)
        self.decoder = FrameDecoder()
        self.pending: list = []

    def send(self, message) -> None:
        self.sock.sendall(encode(message))

    def send_raw(self, payload: bytes) -> None:
        self.sock.sendall(struct.pack("<I", len(payload)) + payload)

    def receive(self, count: int = 1) -> list:
        while len(self.pending) < count:
            data = self.sock.recv(65536)
            if not data:
                break
            self.pending.extend(self.decoder.feed(data))
        received, self.pending = self.pending[:count], self.pending[count:]
        return received

    def close(self) -> None:
        self.sock.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def server(store, writer, registry, test_settings):
    ingestion = IngestionServer(
        store, writer, registry, host="127.0.0.1", port=0, config=test_settings
    )
    ingestion.start()
    yield ingestion
    ingestion.stop()


@pytest.fixture
def wire(server):
    """Connected peer with the welcome message already consumed."""
    client = WireClient(server.address)
    client.receive(1)
    yield client
    client.close()


def conversation_envelope(conversation_id="conv-1", envelope_id="e-conv"):
    return {
        "type": "conversation",
        "id": envelope_id,
        "data": {
            "id": conversation_id,
            "platform": "claude",
            "title": "Debugging React hooks",
            "started_at": BASE_TS,
            "last_activity": BASE_TS,
        },
    }


def message_envelope(n, tokens, conversation_id="conv-1"):
    return {
        "type": "message",
        "id": f"e-msg-{n}",
        "data": {
            "id": f"{conversation_id}-msg-{n}",
            "conversation_id": conversation_id,
            "timestamp": BASE_TS + n,
            "role": "user" if n % 2 == 0 else "assistant",
            "content": f"message {n}",
            "tokens_total": tokens,
        },
    }


class TestConnectionLifecycle:
    """Tests for accept, welcome and close."""

    def test_welcome_message_on_connect(self, server):
        """Test that a new connection is greeted."""
        client = WireClient(server.address)
        try:
            (welcome,) = client.receive(1)
        finally:
            client.close()

        assert welcome["type"] == "connection"
        assert welcome["status"] == "connected"
        assert isinstance(welcome["timestamp"], int)

    def test_connection_registered_and_removed(self, server, registry):
        """Test registry membership follows the connection."""
        client = WireClient(server.address)
        client.receive(1)
        assert wait_for(lambda: len(registry) == 1)

        client.close()

        assert wait_for(lambda: len(registry) == 0)

    def test_broadcast_reaches_all_clients(self, server, registry):
        """Test that server.broadcast pushes to every open connection."""
        clients = [WireClient(server.address) for _ in range(2)]
        try:
            for client in clients:
                client.receive(1)
            assert wait_for(lambda: len(registry) == 2)

            assert server.broadcast({"type": "notice", "text": "hi"}) == 2

            for client in clients:
                assert client.receive(1) == [{"type": "notice", "text": "hi"}]
        finally:
            for client in clients:
                client.close()

    def test_peer_that_stops_reading_is_disconnected(self, server, registry):
        """Test that a stalled write closes the connection instead of truncating frames."""
        peer = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        peer.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 4096)
        peer.settimeout(3)
        peer.connect(server.address)
        try:
            decoder = FrameDecoder()
            received: list = []
            while not received:
                received.extend(decoder.feed(peer.recv(65536)))
            assert received[0]["type"] == "connection"
            assert wait_for(lambda: len(registry) == 1)

            assert server.broadcast({"type": "notice", "blob": "x" * 15_000_000}) == 0
            assert wait_for(lambda: len(registry) == 0)
            assert server.broadcast({"type": "notice", "n": 2}) == 0

            # The peer sees a cut-off stream, never a later frame
            while True:
                data = peer.recv(65536)
                if not data:
                    break
                received.extend(decoder.feed(data))
            assert [m["type"] for m in received] == ["connection"]
        finally:
            peer.close()


class TestDispatch:
    """Tests for per-envelope handling and acknowledgments."""

    def test_conversation_is_stored_and_acked(self, wire, store):
        """Test the conversation path end to end."""
        wire.send(conversation_envelope())

        (ack,) = wire.receive(1)

        assert ack["type"] == "ack"
        assert ack["messageId"] == "e-conv"
        conversation = store.get_conversation("conv-1")
        assert conversation.title == "Debugging React hooks"

    def test_messages_update_aggregates(self, wire, store):
        """Test that three messages leave consistent conversation totals."""
        wire.send(conversation_envelope())
        wire.receive(1)

        for n, tokens in enumerate([10, 20, 30]):
            wire.send(message_envelope(n, tokens))
        acks = wire.receive(3)

        assert [a["messageId"] for a in acks] == ["e-msg-0", "e-msg-1", "e-msg-2"]
        conversation = store.get_conversation("conv-1")
        assert conversation.message_count == 3
        assert conversation.total_tokens == 60
        assert conversation.last_activity == BASE_TS + 2

    def test_ping_gets_pong_then_ack(self, wire):
        """Test ping handling order."""
        wire.send({"type": "ping", "id": "p1"})

        pong, ack = wire.receive(2)

        assert pong["type"] == "pong"
        assert ack == {"type": "ack", "messageId": "p1", "timestamp": ack["timestamp"]}

    def test_unknown_type_acked_without_error(self, wire):
        """Test that unknown tags are ignored but still acknowledged."""
        wire.send({"type": "telemetry", "id": "t1", "data": {}})

        (ack,) = wire.receive(1)

        assert ack["type"] == "ack"
        assert ack["messageId"] == "t1"

    def test_store_failure_sends_error_then_ack(self, wire):
        """Test that a missing conversation yields error + ack and the socket lives on."""
        wire.send(
            {
                "type": "message",
                "id": "orphan",
                "data": {"conversation_id": "nope", "role": "user", "content": "x"},
            }
        )

        error, ack = wire.receive(2)

        assert error["type"] == "error"
        assert "nope" in error["error"]
        assert ack["messageId"] == "orphan"

        wire.send({"type": "ping", "id": "after"})
        assert [m["type"] for m in wire.receive(2)] == ["pong", "ack"]

    def test_invalid_payload_sends_error_then_ack(self, wire):
        """Test that a payload failing validation is reported and acked."""
        wire.send({"type": "message", "id": "bad", "data": {"conversation_id": "c"}})

        error, ack = wire.receive(2)

        assert error["type"] == "error"
        assert "role" in error["error"]
        assert ack["messageId"] == "bad"

    def test_invalid_json_gets_error_without_ack(self, wire):
        """Test that an unparseable frame is answered with an error only."""
        wire.send_raw(b"{definitely not json")
        wire.send({"type": "ping", "id": "p2"})

        error, pong, ack = wire.receive(3)

        assert error["type"] == "error"
        assert pong["type"] == "pong"
        assert ack["messageId"] == "p2"

    def test_non_envelope_json_gets_error_without_ack(self, wire):
        """Test that a JSON value without a string type is rejected."""
        wire.send([1, 2, 3])
        wire.send({"type": "ping", "id": "p3"})

        error, pong, ack = wire.receive(3)

        assert error["type"] == "error"
        assert pong["type"] == "pong"
        assert ack["messageId"] == "p3"


class TestConcurrentWriters:
    """Tests for many connections writing to one conversation."""

    def test_parallel_connections_keep_aggregates_consistent(self, server, store):
        """Test that concurrent message inserts are all counted."""
        setup = WireClient(server.address)
        setup.receive(1)
        setup.send(conversation_envelope())
        setup.receive(1)
        setup.close()

        per_client = 10
        errors = []

        def produce(worker: int) -> None:
            client = WireClient(server.address)
            try:
                client.receive(1)
                for i in range(per_client):
                    n = worker * 100 + i
                    client.send(message_envelope(n, 5))
                replies = client.receive(per_client)
                errors.extend(r for r in replies if r["type"] != "ack")
            finally:
                client.close()

        threads = [threading.Thread(target=produce, args=(w,)) for w in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        conversation = store.get_conversation("conv-1")
        assert conversation.message_count == 40
        assert conversation.total_tokens == 200
        assert len(store.get_messages("conv-1")) == 40


class TestBridgeClientEndToEnd:
    """Tests pairing the real BridgeClient with the server."""

    def test_queued_messages_delivered_after_connect(self, server, store):
        """Test queue, connect, drain and acks over a real socket."""
        host, port = server.address
        received = []
        client = BridgeClient(
            host,
            port,
            on_message=received.append,
            policy=ReconnectPolicy(interval=0.05, max_attempts=3),
            connect_timeout=1.0,
        )
        try:
            client.send(conversation_envelope())
            client.send(message_envelope(0, 7))
            assert client.queued == 2

            assert client.connect() is True

            assert wait_for(
                lambda: [m["type"] for m in received] == ["connection", "ack", "ack"]
            )
            assert store.get_conversation("conv-1").total_tokens == 7
        finally:
            client.close()

    def test_reconnects_when_server_starts_late(self, store, writer, test_settings):
        """Test that scheduled reconnects find a server that came up later."""
        probe = socket.socket()
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
        probe.close()

        received = []
        client = BridgeClient(
            "127.0.0.1",
            port,
            on_message=received.append,
            policy=ReconnectPolicy(interval=0.1, max_attempts=50),
            connect_timeout=0.5,
        )
        late_server = IngestionServer(
            store, writer, host="127.0.0.1", port=port, config=test_settings
        )
        try:
            assert client.connect() is False
            client.send({"type": "ping", "id": "late"})

            late_server.start()

            assert wait_for(lambda: client.connected, timeout=5)
            assert wait_for(
                lambda: any(m.get("messageId") == "late" for m in received), timeout=5
            )
        finally:
            client.close()
            late_server.stop()
