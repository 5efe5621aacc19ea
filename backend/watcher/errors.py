"""
TreeWatch Errors.

Only an invalid root is ever raised to callers. Watch failures, listing
failures and vanished paths are recovered from or skipped internally.
Requires Python 3.11+.
"""


class WatcherError(Exception):
    """Base class for watcher errors."""


class InvalidRootError(WatcherError, FileNotFoundError):
    """The root path given to the watcher does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Invalid watch path: {path}")
        self.path = path


InvalidPathError = InvalidRootError
