"""
TreeWatch Utilities Package.

Configuration and logging shared by the watcher and scripts.
Requires Python 3.11+.
"""

from utils.config import Settings, WatcherSettings, get_settings
from utils.logger import configure_logging, get_logger, LoggerMixin

__all__ = [
    "Settings",
    "WatcherSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "LoggerMixin",
]
