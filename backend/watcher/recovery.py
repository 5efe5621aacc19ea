"""
TreeWatch Recovery Loop.

Re-establishes watches that failed.
Requires Python 3.11+.
"""

import os
import threading
from dataclasses import dataclass

from utils.logger import LoggerMixin
from watcher.deadline import CancellableDeadline, DeadlineFactory, threading_deadline
from watcher.registry import WatchRegistry


@dataclass
class PendingRetry:
    """A scheduled re-registration of a failed watch."""

    path: str
    attempt: int
    timer: CancellableDeadline | None = None


class RecoveryLoop(LoggerMixin):
    """
    Deregisters failed watches and retries them after a fixed backoff.

    A successful retry ends the cycle for that path. A retry that fails
    with an OS error counts as a new watch error and starts the cycle
    again. A directory that has disappeared is only retried if it is a
    subtree root: anything below a root is picked up by its parent's
    watch once it is recreated.
    """

    def __init__(
        self,
        registry: WatchRegistry,
        backoff_ms: int = 1000,
        max_attempts: int | None = None,
        deadline_factory: DeadlineFactory = threading_deadline,
    ) -> None:
        """
        Initialize the recovery loop.

        Args:
            registry: Registry whose failed watches are recovered
            backoff_ms: Delay before each retry in milliseconds
            max_attempts: Give up after this many consecutive failed retries
            deadline_factory: Creates cancellable timers
        """
        self._registry = registry
        self._backoff = backoff_ms / 1000.0
        self._max_attempts = max_attempts
        self._deadline_factory = deadline_factory
        self._pending: dict[str, PendingRetry] = {}
        self._attempts: dict[str, int] = {}
        self._lock = threading.Lock()
        self._closed = False

    def on_watch_error(self, path: str) -> None:
        """Drop the failed watch and schedule its re-registration."""
        path = os.path.abspath(path)
        self._registry.deregister_path(path)

        with self._lock:
            if self._closed:
                return

            attempt = self._attempts.get(path, 0) + 1
            if self._max_attempts is not None and attempt > self._max_attempts:
                self._attempts.pop(path, None)
                self.log.warning("recovery_abandoned", path=path, attempts=attempt - 1)
                return
            self._attempts[path] = attempt

            previous = self._pending.pop(path, None)
            if previous is not None and previous.timer is not None:
                previous.timer.cancel()

            retry = PendingRetry(path=path, attempt=attempt)
            retry.timer = self._deadline_factory(self._backoff, lambda: self._retry(retry))
            self._pending[path] = retry

        self.log.info("recovery_scheduled", path=path, attempt=attempt, backoff_seconds=self._backoff)

    def _retry(self, retry: PendingRetry) -> None:
        with self._lock:
            if self._closed or self._pending.get(retry.path) is not retry:
                return
            del self._pending[retry.path]

        try:
            added = self._registry.register_tree(retry.path)
        except (FileNotFoundError, NotADirectoryError) as e:
            if self._registry.is_root(retry.path):
                self.log.debug("recovery_retry_failed", path=retry.path, error=str(e))
                self.on_watch_error(retry.path)
            else:
                self._forget(retry.path)
                self.log.debug("recovery_directory_gone", path=retry.path)
            return
        except OSError as e:
            self.log.debug("recovery_retry_failed", path=retry.path, error=str(e))
            self.on_watch_error(retry.path)
            return

        self._forget(retry.path)
        self.log.info("watch_recovered", path=retry.path, attempt=retry.attempt, watches=added)

    def _forget(self, path: str) -> None:
        with self._lock:
            self._attempts.pop(path, None)

    def cancel_all(self) -> None:
        """Cancel every scheduled retry."""
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            self._attempts.clear()

        for retry in pending:
            if retry.timer is not None:
                retry.timer.cancel()

    def close(self) -> None:
        """Cancel retries and ignore further errors."""
        with self._lock:
            self._closed = True
        self.cancel_all()

    @property
    def pending_paths(self) -> list[str]:
        """Get paths with a retry scheduled."""
        with self._lock:
            return sorted(self._pending)
