"""
TreeWatch Cancellable Deadlines.

Timer capability used by the debouncer and the recovery loop.
Requires Python 3.11+.
"""

import threading
from collections.abc import Callable
from typing import Protocol


class CancellableDeadline(Protocol):
    """A pending action that runs once after a delay unless cancelled."""

    def cancel(self) -> None:
        ...


# (delay_seconds, action) -> armed deadline
DeadlineFactory = Callable[[float, Callable[[], None]], CancellableDeadline]


def threading_deadline(delay: float, action: Callable[[], None]) -> CancellableDeadline:
    """Arm a daemon threading.Timer."""
    timer = threading.Timer(delay, action)
    timer.daemon = True
    timer.start()
    return timer
