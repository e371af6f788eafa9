"""
Bridge connection state machine.

Connection lifecycle is a pure function of (state, event), kept apart from
sockets and threads so it can be reasoned about and tested on its own.
"""

import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionEvent(str, enum.Enum):
    CONNECT_REQUESTED = "connect_requested"
    CONNECT_SUCCEEDED = "connect_succeeded"
    CONNECT_FAILED = "connect_failed"
    CONNECTION_LOST = "connection_lost"
    RESET = "reset"


_TRANSITIONS: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT_REQUESTED): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.CONNECT_SUCCEEDED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.CONNECT_FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, ConnectionEvent.CONNECTION_LOST): ConnectionState.DISCONNECTED,
}


def transition(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    """
    Compute the next connection state.

    ``RESET`` returns to ``DISCONNECTED`` from anywhere. Events that do not
    apply to the current state (a late ``CONNECTION_LOST`` after the socket
    was already dropped, say) leave the state unchanged.

    Args:
        state: Current state
        event: Event that occurred

    Returns:
        The new state
    """
    if event is ConnectionEvent.RESET:
        return ConnectionState.DISCONNECTED
    return _TRANSITIONS.get((state, event), state)


@dataclass
class ReconnectPolicy:
    """Tracks consecutive reconnect failures against a fixed-interval budget."""

    interval: float = 5.0  # seconds between attempts
    max_attempts: int = 10
    failures: int = 0

    @property
    def exhausted(self) -> bool:
        """True once ``max_attempts`` consecutive attempts have failed."""
        return self.failures >= self.max_attempts

    def record_failure(self) -> None:
        """Record a failed connection attempt."""
        self.failures += 1
        if self.exhausted:
            logger.warning(
                f"Giving up reconnecting after {self.failures} consecutive failures"
            )
        else:
            logger.info(
                f"Connection attempt failed. Next attempt in {self.interval}s "
                f"(attempt {self.failures}/{self.max_attempts})"
            )

    def reset(self) -> None:
        """Reset the failure count after a successful connection."""
        self.failures = 0
