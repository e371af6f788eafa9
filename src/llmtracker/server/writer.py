"""
Single-writer execution context for store mutations.

SQLite allows one writer at a time. Every mutating store call from every
connection thread is submitted here and executed in submission order on one
worker thread, so writes never contend with each other.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreWriter:
    """
    Serializes write operations onto one thread.

    Submitted operations run to completion even if the connection that
    submitted them has gone away; only the result is discarded.
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="store-writer"
        )

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """Queue an operation and return its future."""
        return self._executor.submit(fn, *args, **kwargs)

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Queue an operation and wait for its result.

        Raises:
            concurrent.futures.TimeoutError: If the result is not ready within
                ``timeout`` seconds (the operation itself still completes)
            Exception: Whatever the operation raised
        """
        return self.submit(fn, *args, **kwargs).result(timeout=self.timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; with ``wait`` let queued operations finish."""
        self._executor.shutdown(wait=wait)
        logger.debug("Store writer stopped")
