"""
TreeWatch Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from watcher.debouncer import Debouncer
from watcher.ignore import IgnoreFilter
from watcher.registry import WatchRegistry


@dataclass
class ManualDeadline:
    """Deadline fired by ManualDeadlines.advance()."""

    due: float
    action: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualDeadlines:
    """Deadline factory driven by a fake clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.armed: list[ManualDeadline] = []

    def __call__(self, delay: float, action: Callable[[], None]) -> ManualDeadline:
        deadline = ManualDeadline(due=self.now + delay, action=action)
        self.armed.append(deadline)
        return deadline

    @property
    def active(self) -> list[ManualDeadline]:
        return [d for d in self.armed if not d.cancelled and not d.fired]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every deadline that comes due."""
        target = self.now + seconds
        while True:
            due = sorted((d for d in self.active if d.due <= target), key=lambda d: d.due)
            if not due:
                break
            deadline = due[0]
            self.now = max(self.now, deadline.due)
            deadline.fired = True
            deadline.action()
        self.now = target


@dataclass(frozen=True)
class FakeWatch:
    path: str
    is_recursive: bool = False


@dataclass
class FakeObserver:
    """Stands in for a watchdog observer; events are injected with emit()."""

    handlers: dict[str, tuple[FakeWatch, FileSystemEventHandler]] = field(default_factory=dict)
    failures: dict[str, OSError] = field(default_factory=dict)
    scheduled: list[str] = field(default_factory=list)
    unscheduled: list[str] = field(default_factory=list)
    unschedule_error: Exception | None = None
    started: bool = False
    stopped: bool = False

    def schedule(self, handler: FileSystemEventHandler, path: str, recursive: bool = False) -> FakeWatch:
        if path in self.failures:
            raise self.failures[path]
        watch = FakeWatch(path, recursive)
        self.handlers[path] = (watch, handler)
        self.scheduled.append(path)
        return watch

    def unschedule(self, watch: FakeWatch) -> None:
        self.handlers.pop(watch.path, None)
        self.unscheduled.append(watch.path)
        if self.unschedule_error is not None:
            raise self.unschedule_error

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        pass

    @property
    def watched(self) -> set[str]:
        return set(self.handlers)

    def emit(self, directory: str | Path, event: FileSystemEvent) -> None:
        """Deliver an event through the handler of a watched directory."""
        _, handler = self.handlers[str(directory)]
        handler.dispatch(event)


@dataclass
class ChangeRecorder:
    """Thread-safe on_change callback that records paths."""

    paths: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __call__(self, path: str) -> None:
        with self._lock:
            self.paths.append(path)

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self.paths)


def wait_for(predicate: Callable[[], Any], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll until predicate() is truthy or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def deadlines() -> ManualDeadlines:
    """Manual clock for debounce and recovery timers."""
    return ManualDeadlines()


@pytest.fixture
def observer() -> FakeObserver:
    """Fake watchdog observer."""
    return FakeObserver()


@pytest.fixture
def recorder() -> ChangeRecorder:
    """Recording change callback."""
    return ChangeRecorder()


@pytest.fixture
def debouncer(deadlines: ManualDeadlines) -> Debouncer:
    """Debouncer on the manual clock."""
    return Debouncer(delay_ms=100, deadline_factory=deadlines)


@pytest.fixture
def registry(observer: FakeObserver, debouncer: Debouncer, recorder: ChangeRecorder) -> WatchRegistry:
    """Registry wired to the fake observer and manual clock."""
    return WatchRegistry(
        observer=observer,
        ignore_filter=IgnoreFilter(),
        debouncer=debouncer,
        on_change=recorder,
    )


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """
    Create a directory tree for testing.

    root/
        a/
            b/
        c/
        node_modules/
            pkg/
        .git/
            objects/
        f.txt
    """
    root = tmp_path / "root"
    (root / "a" / "b").mkdir(parents=True)
    (root / "c").mkdir()
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / ".git" / "objects").mkdir(parents=True)
    (root / "f.txt").write_text("hello")
    return Path(os.path.realpath(root))
