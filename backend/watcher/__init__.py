"""
TreeWatch File Watcher Package.

Recursive directory monitoring with debouncing, ignore rules and
self-healing watches.
Requires Python 3.11+.
"""

from watcher.debouncer import Debouncer
from watcher.errors import InvalidPathError, InvalidRootError, WatcherError
from watcher.file_watcher import RecursiveWatcher, create_async_watcher, start_watching
from watcher.ignore import IgnoreFilter
from watcher.recovery import RecoveryLoop
from watcher.registry import WatchEntry, WatchRegistry

__all__ = [
    "RecursiveWatcher",
    "start_watching",
    "create_async_watcher",
    "Debouncer",
    "IgnoreFilter",
    "RecoveryLoop",
    "WatchEntry",
    "WatchRegistry",
    "WatcherError",
    "InvalidRootError",
    "InvalidPathError",
]
