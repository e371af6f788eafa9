"""
Fixtures for bridge tests: in-memory sockets, a scripted connector and a
scheduler whose tasks run only when the test says so.
"""

import queue
import threading
import time
from typing import Callable, List, Optional

import pytest

from llmtracker.bridge.framing import FrameDecoder


class FakeSocket:
    """Socket stand-in: records sent bytes, recv blocks on an inbox."""

    def __init__(self):
        self.sent: List[bytes] = []
        self.fail_sends = False
        self.stall_sends = False  # sendall blocks until shutdown, like a full buffer
        self.timeout = None
        self.closed = False
        self._released = threading.Event()
        self.send_started = threading.Event()
        self._inbox: "queue.Queue[Optional[bytes]]" = queue.Queue()

    def sendall(self, data: bytes) -> None:
        if self.stall_sends:
            self.send_started.set()
            self._released.wait(timeout=10)
            raise BrokenPipeError("Broken pipe")
        if self.closed or self.fail_sends:
            raise BrokenPipeError("Broken pipe")
        self.sent.append(bytes(data))

    def recv(self, size: int) -> bytes:
        data = self._inbox.get(timeout=10)
        return data or b""

    def push(self, data: bytes) -> None:
        """Make ``data`` available to the next recv()."""
        self._inbox.put(data)

    def peer_close(self) -> None:
        """Simulate the server closing the connection."""
        self._inbox.put(None)

    def settimeout(self, timeout) -> None:
        self.timeout = timeout

    def shutdown(self, how) -> None:
        self._released.set()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._released.set()
            self._inbox.put(None)

    def sent_messages(self) -> list:
        decoder = FrameDecoder()
        return decoder.feed(b"".join(self.sent))


class FakeConnector:
    """Connector returning scripted outcomes: a FakeSocket or an exception."""

    def __init__(self):
        self.outcomes: list = []
        self.calls: list = []
        self.default: Optional[Callable[[], object]] = None

    def __call__(self, host, port, timeout):
        self.calls.append((host, port, timeout))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.default is not None:
            outcome = self.default()
        else:
            outcome = ConnectionRefusedError("Connection refused")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeTask:
    def __init__(self, delay: float, fn: Callable[[], None]):
        self.delay = delay
        self.fn = fn
        self.cancelled = False
        self.ran = False

    def cancel(self) -> None:
        self.cancelled = True

    def run(self) -> None:
        self.ran = True
        self.fn()


class ManualScheduler:
    """Scheduler that only records tasks; tests run them explicitly."""

    def __init__(self):
        self.tasks: List[FakeTask] = []

    def schedule(self, delay: float, fn: Callable[[], None]) -> FakeTask:
        task = FakeTask(delay, fn)
        self.tasks.append(task)
        return task

    @property
    def pending(self) -> List[FakeTask]:
        return [t for t in self.tasks if not t.cancelled and not t.ran]

    def run_pending(self) -> int:
        tasks = self.pending
        for task in tasks:
            task.run()
        return len(tasks)


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def make_socket():
    """Factory for FakeSocket; all sockets are closed after the test."""
    sockets: List[FakeSocket] = []

    def _make() -> FakeSocket:
        sock = FakeSocket()
        sockets.append(sock)
        return sock

    yield _make
    for sock in sockets:
        sock.close()


@pytest.fixture
def waiter():
    return wait_for
