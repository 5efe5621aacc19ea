"""
TreeWatch Watch Registry.

Owns one non-recursive watchdog watch per directory of the observed tree.
Requires Python 3.11+.
"""

import errno
import os
import stat
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from watchdog.events import (
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers.api import BaseObserver, ObservedWatch

from utils.logger import LoggerMixin
from watcher.debouncer import Debouncer
from watcher.errors import InvalidRootError
from watcher.ignore import IgnoreFilter

# Access-only notifications; nothing changed at the path.
NON_CHANGE_EVENT_TYPES = frozenset({"opened", "closed_no_write"})

# Native watch resources are exhausted (inotify instances, inotify watches).
RESOURCE_EXHAUSTION_ERRNOS = frozenset({errno.EMFILE, errno.ENOSPC})


@dataclass
class WatchEntry:
    """An active watch on a single directory."""

    path: str
    handle: ObservedWatch
    observer: BaseObserver
    polled: bool = False


class DirectoryEventHandler(FileSystemEventHandler):
    """
    Turns watchdog events for one watched directory into raw signals.

    Only direct children of the directory produce (event_type, name)
    signals. Deletion or move of the directory itself means the watch is
    dead and is reported as a watch error.
    """

    def __init__(self, directory: str, registry: "WatchRegistry") -> None:
        super().__init__()
        self.directory = directory
        self._registry = registry

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in NON_CHANGE_EVENT_TYPES:
            return

        src_path = os.fsdecode(event.src_path)
        if src_path == self.directory and event.event_type in (EVENT_TYPE_DELETED, EVENT_TYPE_MOVED):
            self._registry.handle_watch_error(self.directory)
            return

        paths = [src_path]
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            paths.append(os.fsdecode(dest_path))

        for path in paths:
            if os.path.dirname(path) == self.directory:
                self._registry.handle_signal(self.directory, event.event_type, os.path.basename(path))
            elif path == self.directory:
                # Events about the directory itself carry no name
                self._registry.handle_signal(self.directory, event.event_type, "")


class WatchRegistry(LoggerMixin):
    """
    The set of currently watched directories.

    Registration is idempotent per absolute path. Raw signals from the
    watches are filtered, debounced and passed to the change callback;
    new subdirectories discovered through signals are registered live.

    When the native observer runs out of notification resources (inotify
    instance or watch limits), further directories are watched through a
    fallback observer, normally watchdog's polling observer.
    """

    def __init__(
        self,
        observer: BaseObserver,
        ignore_filter: IgnoreFilter,
        debouncer: Debouncer,
        on_change: Callable[[str], Any],
        fallback_observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            observer: Running watchdog observer that owns the OS watches
            ignore_filter: Predicate for paths that are never watched or reported
            debouncer: Per-path debouncer in front of on_change
            on_change: Called with the absolute path of every debounced change
            fallback_observer_factory: Creates the observer used once the
                native one reports resource exhaustion (None disables it)
        """
        self._observer = observer
        self._ignore = ignore_filter
        self._debouncer = debouncer
        self._on_change = on_change
        self._fallback_factory = fallback_observer_factory
        self._fallback_observer: BaseObserver | None = None
        self._error_handler: Callable[[str], Any] | None = None

        self._entries: dict[str, WatchEntry] = {}
        self._handlers: dict[str, DirectoryEventHandler] = {}
        self._roots: set[str] = set()
        self._registering: set[str] = set()
        self._lock = threading.Lock()
        self._closed = False

    def set_error_handler(self, handler: Callable[[str], Any]) -> None:
        """Set the callable that receives paths of failed watches."""
        self._error_handler = handler

    # Registration

    def register_subtree(self, root_path: str | os.PathLike[str]) -> int:
        """
        Watch a root directory and every non-ignored directory beneath it.

        A root that exists but is not a directory is accepted and logged;
        nothing is watched for it.

        Args:
            root_path: Directory to observe

        Returns:
            Number of watches added

        Raises:
            InvalidRootError: If root_path does not exist
        """
        root = os.path.abspath(os.fspath(root_path))
        if not os.path.exists(root):
            raise InvalidRootError(root)
        if not os.path.isdir(root):
            self.log.warning("root_not_directory", root=root)
            return 0

        with self._lock:
            self._roots.add(root)

        added = self._walk(root, strict=False)
        self.log.info("subtree_registered", root=root, watches=added, total=len(self._entries))
        return added

    def register_tree(self, path: str) -> int:
        """
        Watch a directory and its non-ignored subdirectories.

        Raises OSError if the watch on the directory itself cannot be
        created. Failures below it are skipped or handed to the error
        handler.
        """
        return self._walk(os.path.abspath(path), strict=True)

    def register_path(self, path: str) -> bool:
        """
        Watch a single directory.

        Returns:
            True if a new watch was created, False if the path was already
            watched, is ignored, or the registry is torn down

        Raises:
            OSError: If the directory is missing or the watch cannot be created
        """
        path = os.path.abspath(path)
        if self._closed or self._ignore.should_ignore(path):
            return False
        if not os.path.isdir(path):
            raise FileNotFoundError(f"Not a directory: {path}")

        with self._lock:
            if self._closed or path in self._entries or path in self._registering:
                return False
            self._registering.add(path)
            handler = self._handlers[path] = DirectoryEventHandler(path, self)

        # The observer dispatches events while holding its own lock, so it is
        # never called with ours held.
        try:
            entry = self._schedule(path, handler)
        except OSError:
            with self._lock:
                self._handlers.pop(path, None)
            raise
        finally:
            with self._lock:
                self._registering.discard(path)

        with self._lock:
            torn_down = self._closed
            if not torn_down:
                self._entries[path] = entry

        if torn_down:
            self._release(entry)
            return False

        self.log.debug("watch_registered", path=path, polled=entry.polled)
        return True

    def _schedule(self, path: str, handler: DirectoryEventHandler) -> WatchEntry:
        try:
            handle = self._observer.schedule(handler, path, recursive=False)
            return WatchEntry(path=path, handle=handle, observer=self._observer)
        except OSError as e:
            if e.errno not in RESOURCE_EXHAUSTION_ERRNOS or self._fallback_factory is None:
                raise
            fallback = self._get_fallback_observer()
            if fallback is None:
                raise
            handle = fallback.schedule(handler, path, recursive=False)
            self.log.debug("watch_fallback", path=path, error=str(e))
            return WatchEntry(path=path, handle=handle, observer=fallback, polled=True)

    def _get_fallback_observer(self) -> BaseObserver | None:
        with self._lock:
            if self._closed:
                return None
            if self._fallback_observer is None:
                self._fallback_observer = self._fallback_factory()
                self._fallback_observer.start()
                self.log.warning("native_watch_resources_exhausted", fallback=type(self._fallback_observer).__name__)
            return self._fallback_observer

    def _walk(self, start: str, strict: bool) -> int:
        added = 0
        worklist: deque[str] = deque([start])

        while worklist:
            current = worklist.popleft()
            try:
                if not self.register_path(current):
                    continue
            except (FileNotFoundError, NotADirectoryError) as e:
                if strict and current == start:
                    raise
                # Vanished between listing and registration
                self.log.debug("watch_register_skipped", path=current, error=str(e))
                continue
            except OSError as e:
                if strict and current == start:
                    raise
                self.log.debug("watch_register_failed", path=current, error=str(e))
                self.handle_watch_error(current)
                continue

            added += 1
            worklist.extend(self._list_subdirectories(current))

        return added

    def _list_subdirectories(self, directory: str) -> list[str]:
        """List non-ignored child directories, skipping entries that fail."""
        subdirectories = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if self._ignore.should_ignore(entry.name):
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            subdirectories.append(entry.path)
                    except OSError as e:
                        self.log.debug("stat_failed", path=entry.path, error=str(e))
        except OSError as e:
            self.log.debug("listing_failed", path=directory, error=str(e))
        return subdirectories

    # Removal

    def deregister_path(self, path: str) -> bool:
        """
        Stop watching a directory.

        Returns:
            True if a watch was removed
        """
        path = os.path.abspath(path)
        with self._lock:
            entry = self._entries.pop(path, None)
            if entry is not None:
                self._handlers.pop(path, None)

        if entry is None:
            return False

        self._release(entry)
        self.log.debug("watch_deregistered", path=path)
        return True

    def teardown_all(self) -> None:
        """Release every watch and refuse new registrations."""
        with self._lock:
            self._closed = True
            entries = list(self._entries.values())
            self._entries.clear()
            self._handlers.clear()
            fallback = self._fallback_observer

        for entry in entries:
            self._release(entry)

        if fallback is not None:
            fallback.stop()

        if entries:
            self.log.info("watches_released", count=len(entries))

    def _release(self, entry: WatchEntry) -> None:
        try:
            entry.observer.unschedule(entry.handle)
        except Exception as e:
            self.log.debug("watch_release_failed", path=entry.path, error=str(e))

    # Events

    def handle_signal(self, directory: str, event_type: str, name: str) -> None:
        """
        Process a raw (event_type, name) signal from a watched directory.

        Args:
            directory: The watched directory the signal came from
            event_type: watchdog event type, informational only
            name: Name of the changed entry inside directory
        """
        if not name:
            return

        with self._lock:
            if directory not in self._entries:
                # Watch already released; drop what was still queued
                return

        full_path = os.path.join(directory, name)
        if self._ignore.should_ignore(full_path):
            return

        self._debouncer.schedule(full_path, partial(self._on_change, full_path))

        try:
            is_directory = stat.S_ISDIR(os.lstat(full_path).st_mode)
        except OSError:
            # Gone before we could look at it
            return

        if is_directory:
            added = self._walk(full_path, strict=False)
            if added:
                self.log.debug("directory_discovered", path=full_path, event_type=event_type, watches=added)

    def handle_watch_error(self, path: str) -> None:
        """Route a failed watch to the error handler."""
        if self._closed:
            return

        self.log.warning("watch_error", path=path)
        if self._error_handler is not None:
            self._error_handler(path)
        else:
            self.deregister_path(path)

    # Introspection

    def is_watched(self, path: str) -> bool:
        """Check if a directory currently has a watch."""
        with self._lock:
            return os.path.abspath(path) in self._entries

    def is_root(self, path: str) -> bool:
        """Check if a path was registered as a subtree root."""
        with self._lock:
            return os.path.abspath(path) in self._roots

    @property
    def closed(self) -> bool:
        """Check if the registry has been torn down."""
        return self._closed

    @property
    def fallback_observer(self) -> BaseObserver | None:
        """Get the fallback observer, if native watches ever ran out."""
        return self._fallback_observer

    @property
    def watched_paths(self) -> list[str]:
        """Get sorted list of watched directories."""
        with self._lock:
            return sorted(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
