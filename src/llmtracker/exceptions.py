"""Custom exceptions for LLM Tracker."""


class LLMTrackerError(Exception):
    """Base class for all ingestion pipeline errors."""


class FramingError(LLMTrackerError):
    """Raised when a frame has a bad length prefix or an unparseable payload."""

    def __init__(self, message: str, declared_length: int | None = None):
        self.declared_length = declared_length
        super().__init__(message)


class BridgeConnectionError(LLMTrackerError, ConnectionError):
    """Raised on a transport-level failure or peer close of a bridge socket."""


class DispatchError(LLMTrackerError):
    """Raised when an inbound value is not a structurally valid envelope."""


class StoreError(LLMTrackerError):
    """Raised on a constraint violation, missing owning entity, or I/O failure."""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)
