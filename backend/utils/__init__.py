"""
EtagWatch Utilities Package.

Configuration and logging shared by the watcher packages.
Requires Python 3.11+.
"""

from utils.config import LoggingSettings, Settings, WatcherSettings, get_settings
from utils.logger import LoggerMixin, configure_logging, get_logger, watch_context

__all__ = [
    "Settings",
    "WatcherSettings",
    "LoggingSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "watch_context",
    "LoggerMixin",
]
