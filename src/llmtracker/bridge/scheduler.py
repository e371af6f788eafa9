"""
Cancellable delayed-task scheduling for the bridge client.

The client only depends on the ``Scheduler`` protocol, so tests can drive
reconnects by hand instead of waiting on real timers.
"""

import threading
from typing import Callable, Protocol


class ScheduledTask(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, fn: Callable[[], None]) -> ScheduledTask:
        """Run ``fn`` once after ``delay`` seconds; the result can cancel it."""
        ...


class TimerScheduler:
    """Scheduler backed by daemon ``threading.Timer`` threads."""

    def schedule(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer
