"""
TreeWatch File Watcher.

Recursive directory monitoring on top of per-directory watchdog watches.
Requires Python 3.11+.
"""

import asyncio
import inspect
import os
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from utils.config import get_settings
from utils.logger import LoggerMixin
from watcher.deadline import DeadlineFactory, threading_deadline
from watcher.debouncer import Debouncer
from watcher.errors import InvalidRootError
from watcher.ignore import IgnoreFilter
from watcher.recovery import RecoveryLoop
from watcher.registry import WatchRegistry

ChangeCallback = Callable[[str], Any]


class RecursiveWatcher(LoggerMixin):
    """
    Watches a directory tree and reports changed paths.

    Every non-ignored directory under the root gets its own watch,
    directories created later are added as they appear, bursts of events
    for one path are debounced into a single callback, and failed watches
    are retried in the background.
    """

    def __init__(
        self,
        root_path: str | os.PathLike[str],
        on_change: ChangeCallback,
        debounce_delay_ms: int | None = None,
        recovery_backoff_ms: int | None = None,
        ignore_patterns: Iterable[str] | None = None,
        use_polling: bool | None = None,
        observer_factory: Callable[[], BaseObserver] | None = None,
        fallback_observer_factory: Callable[[], BaseObserver] | None = None,
        deadline_factory: DeadlineFactory = threading_deadline,
    ) -> None:
        """
        Initialize the watcher.

        Args:
            root_path: Root directory to watch
            on_change: Callback receiving each changed absolute path (may be async)
            debounce_delay_ms: Quiet period per path before reporting
            recovery_backoff_ms: Delay before retrying a failed watch
            ignore_patterns: Regular expressions matched against basenames
            use_polling: Use watchdog's polling observer instead of OS events
            observer_factory: Creates the watchdog observer (overrides use_polling)
            fallback_observer_factory: Creates the observer for directories the
                native observer has no resources left for (defaults to polling)
            deadline_factory: Creates cancellable timers
        """
        settings = get_settings().watcher

        self._root_path = os.path.abspath(os.fspath(root_path))
        self._on_change = on_change
        self._debounce_delay = (
            settings.debounce_delay_ms if debounce_delay_ms is None else debounce_delay_ms
        )
        self._recovery_backoff = (
            settings.recovery_backoff_ms if recovery_backoff_ms is None else recovery_backoff_ms
        )
        self._recovery_max_attempts = settings.recovery_max_attempts
        self._ignore_filter = IgnoreFilter(
            settings.ignore_patterns if ignore_patterns is None else ignore_patterns
        )
        self._use_polling = settings.use_polling if use_polling is None else use_polling
        self._poll_interval = settings.poll_interval_seconds
        self._join_timeout = settings.join_timeout_seconds
        self._observer_factory = observer_factory or self._default_observer
        if fallback_observer_factory is None and observer_factory is None and not self._use_polling:
            fallback_observer_factory = self._polling_observer
        self._fallback_observer_factory = fallback_observer_factory
        self._deadline_factory = deadline_factory

        self._observer: BaseObserver | None = None
        self._debouncer: Debouncer | None = None
        self._registry: WatchRegistry | None = None
        self._recovery: RecoveryLoop | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

        self._delivery_lock = threading.RLock()
        self._running = False

    def _default_observer(self) -> BaseObserver:
        if self._use_polling:
            return self._polling_observer()
        return Observer()

    def _polling_observer(self) -> BaseObserver:
        return PollingObserver(timeout=self._poll_interval)

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the event loop for async callbacks."""
        self._loop = loop

    def start(self) -> None:
        """
        Start watching the tree.

        Raises:
            InvalidRootError: If the root path does not exist; nothing is
                started in that case
        """
        if self._running:
            return

        if not os.path.exists(self._root_path):
            raise InvalidRootError(self._root_path)

        observer = self._observer_factory()
        observer.start()

        debouncer = Debouncer(
            delay_ms=self._debounce_delay,
            deadline_factory=self._deadline_factory,
        )
        registry = WatchRegistry(
            observer=observer,
            ignore_filter=self._ignore_filter,
            debouncer=debouncer,
            on_change=self._deliver,
            fallback_observer_factory=self._fallback_observer_factory,
        )
        recovery = RecoveryLoop(
            registry=registry,
            backoff_ms=self._recovery_backoff,
            max_attempts=self._recovery_max_attempts,
            deadline_factory=self._deadline_factory,
        )
        registry.set_error_handler(recovery.on_watch_error)

        self._observer = observer
        self._debouncer = debouncer
        self._registry = registry
        self._recovery = recovery
        self._running = True

        try:
            registry.register_subtree(self._root_path)
        except InvalidRootError:
            # Root vanished between the check and the scan
            self.stop()
            raise

        self.log.info(
            "file_watcher_started",
            path=self._root_path,
            watches=len(registry),
            debounce_delay_ms=self._debounce_delay,
            polling=self._use_polling,
        )

    def stop(self) -> None:
        """Stop watching and release all watches. Safe to call repeatedly."""
        with self._delivery_lock:
            if not self._running:
                return
            self._running = False

        if self._debouncer is not None:
            self._debouncer.close()
        if self._registry is not None:
            self._registry.teardown_all()
        if self._recovery is not None:
            self._recovery.close()

        observers = [self._observer]
        if self._registry is not None:
            observers.append(self._registry.fallback_observer)
        for observer in observers:
            if observer is None:
                continue
            observer.stop()
            if threading.current_thread() is not observer:
                observer.join(timeout=self._join_timeout)
        self._observer = None

        self.log.info("file_watcher_stopped", path=self._root_path)

    def _deliver(self, path: str) -> None:
        """Invoke the change callback unless the watcher has been stopped."""
        with self._delivery_lock:
            if not self._running:
                return
            try:
                if inspect.iscoroutinefunction(self._on_change):
                    self._deliver_async(path)
                else:
                    self._on_change(path)
            except Exception as e:
                self.log.error("change_callback_failed", path=path, error=str(e))

    def _deliver_async(self, path: str) -> None:
        async def guarded() -> None:
            if self._running:
                await self._on_change(path)

        if self._loop is not None:
            asyncio.run_coroutine_threadsafe(guarded(), self._loop)
        else:
            # No event loop set, run in a new loop on this thread
            asyncio.run(guarded())

    def flush(self) -> list[str]:
        """Immediately report every pending change."""
        if self._debouncer is None:
            return []
        return self._debouncer.flush()

    @property
    def root_path(self) -> str:
        """Get the absolute root path."""
        return self._root_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    @property
    def watched_paths(self) -> list[str]:
        """Get the directories currently watched."""
        if self._registry is None or not self._running:
            return []
        return self._registry.watched_paths

    @property
    def pending_count(self) -> int:
        """Get number of pending changes."""
        return self._debouncer.pending_count if self._debouncer is not None else 0

    def __enter__(self) -> "RecursiveWatcher":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.stop()


def start_watching(
    root_path: str | os.PathLike[str],
    on_change: ChangeCallback,
    **options: Any,
) -> Callable[[], None]:
    """
    Watch a directory tree and return a function that stops watching.

    Args:
        root_path: Root directory to watch
        on_change: Called with the absolute path of every change
        **options: Keyword arguments for RecursiveWatcher

    Returns:
        Idempotent teardown function

    Raises:
        InvalidRootError: If root_path does not exist
    """
    watcher = RecursiveWatcher(root_path, on_change, **options)
    watcher.start()
    return watcher.stop


async def create_async_watcher(
    root_path: Path,
    on_change: Callable[[str], Any],
    debounce_delay_ms: int | None = None,
) -> RecursiveWatcher:
    """
    Create a watcher that delivers async callbacks on the running loop.

    Args:
        root_path: Root directory to watch
        on_change: Async callback for changes
        debounce_delay_ms: Debounce delay in milliseconds

    Returns:
        Configured, not yet started RecursiveWatcher
    """
    watcher = RecursiveWatcher(
        root_path=root_path,
        on_change=on_change,
        debounce_delay_ms=debounce_delay_ms,
    )
    watcher.set_event_loop(asyncio.get_running_loop())
    return watcher
