"""
TreeWatch Debouncer.

Debounces rapid file system events per path.
Requires Python 3.11+.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from utils.logger import LoggerMixin
from watcher.deadline import CancellableDeadline, DeadlineFactory, threading_deadline


@dataclass
class PendingDebounce:
    """An action waiting for its key to go quiet."""

    key: str
    deadline: float  # time.monotonic() at which the action fires
    action: Callable[[], Any]
    timer: CancellableDeadline | None = None


class Debouncer(LoggerMixin):
    """
    Trailing-edge debouncer keyed by path.

    Every call to schedule() for a key cancels the key's pending timer and
    arms a new one, so a burst of signals collapses into a single action
    fired one delay after the last signal. Keys are independent of each
    other.
    """

    def __init__(
        self,
        delay_ms: int = 100,
        deadline_factory: DeadlineFactory = threading_deadline,
    ) -> None:
        """
        Initialize the debouncer.

        Args:
            delay_ms: Default quiet period in milliseconds
            deadline_factory: Creates cancellable timers
        """
        self._delay = delay_ms / 1000.0
        self._deadline_factory = deadline_factory
        self._pending: dict[str, PendingDebounce] = {}
        self._lock = threading.Lock()
        self._closed = False

    def schedule(
        self,
        key: str,
        action: Callable[[], Any],
        delay_ms: int | None = None,
    ) -> bool:
        """
        Arm (or re-arm) the action for a key.

        Args:
            key: Debounce key, usually an absolute path
            action: Zero-argument callable run when the key goes quiet
            delay_ms: Override of the default delay

        Returns:
            False if the debouncer is closed and nothing was armed
        """
        delay = self._delay if delay_ms is None else delay_ms / 1000.0

        with self._lock:
            if self._closed:
                return False

            previous = self._pending.pop(key, None)
            if previous is not None and previous.timer is not None:
                previous.timer.cancel()

            pending = PendingDebounce(
                key=key,
                deadline=time.monotonic() + delay,
                action=action,
            )
            pending.timer = self._deadline_factory(delay, lambda: self._fire(pending))
            self._pending[key] = pending

        return True

    def _fire(self, pending: PendingDebounce) -> None:
        """Run a pending action if it is still the current one for its key."""
        with self._lock:
            if self._closed or self._pending.get(pending.key) is not pending:
                return
            del self._pending[pending.key]

        self._run(pending)

    def _run(self, pending: PendingDebounce) -> None:
        try:
            pending.action()
        except Exception as e:
            self.log.error("debounce_action_failed", key=pending.key, error=str(e))

    def cancel(self, key: str) -> bool:
        """Cancel the pending action for a key without running it."""
        with self._lock:
            pending = self._pending.pop(key, None)
        if pending is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending action without running it."""
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()

        for item in pending:
            if item.timer is not None:
                item.timer.cancel()

        if pending:
            self.log.debug("debounce_cancelled", count=len(pending))

    def close(self) -> None:
        """Cancel everything and refuse further scheduling."""
        with self._lock:
            self._closed = True
        self.cancel_all()

    def flush(self) -> list[str]:
        """
        Immediately run all pending actions.

        Returns:
            Keys whose actions were run
        """
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()

        for item in pending:
            if item.timer is not None:
                item.timer.cancel()
            self._run(item)

        return [item.key for item in pending]

    @property
    def closed(self) -> bool:
        """Check if the debouncer has been closed."""
        return self._closed

    @property
    def pending_count(self) -> int:
        """Get number of pending actions."""
        return len(self._pending)

    @property
    def pending_keys(self) -> list[str]:
        """Get list of keys with pending actions."""
        with self._lock:
            return list(self._pending.keys())
