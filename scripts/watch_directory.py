#!/usr/bin/env python3
"""
TreeWatch Directory Watch Script.

Prints every change under a directory tree until interrupted.
Requires Python 3.11+.

Usage:
    python scripts/watch_directory.py /path/to/directory
"""

import argparse
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from utils.logger import configure_logging
from watcher.errors import InvalidRootError
from watcher.file_watcher import start_watching


configure_logging()


def print_change(path: str) -> None:
    """Print a changed path with a timestamp."""
    print(f"File changed: {path}")
    print(f"Change detected at: {datetime.now(timezone.utc).isoformat()}")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Watch a directory tree and print changed paths"
    )
    parser.add_argument(
        "path",
        type=Path,
        nargs="?",
        default=Path("."),
        help="Directory to watch (default: current directory)",
    )
    parser.add_argument(
        "--debounce-ms",
        type=int,
        default=None,
        help="Quiet period per path before a change is reported",
    )
    parser.add_argument(
        "--polling",
        action="store_true",
        default=None,
        help="Poll the file system instead of using OS notifications",
    )

    args = parser.parse_args()
    root = args.path.resolve()

    try:
        stop = start_watching(
            root,
            print_change,
            debounce_delay_ms=args.debounce_ms,
            use_polling=args.polling,
        )
    except InvalidRootError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Watching directory: {root}")
    print("Press Ctrl+C to stop")

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        print("\nStopped")
    finally:
        stop()


if __name__ == "__main__":
    main()
