"""
EtagWatch Watcher Package.

Recursive directory watching with dependency-aware etags.
Requires Python 3.11+.
"""

from watcher.debouncer import Debouncer
from watcher.exceptions import (
    DependencyCycleError,
    InvalidPathError,
    TraversalError,
    WatcherAlreadyRunningError,
    WatcherError,
    WatchSetupError,
)
from watcher.expander import DependencyExpander
from watcher.file_watcher import DirectoryEventHandler, Watcher, create_async_watcher
from watcher.handles import WatchFactory, WatchHandle
from watcher.models import EntryKind, NotificationKind, WatchEntry, WatchEvent
from watcher.registry import PathRegistry
from watcher.traverser import DirectoryTraverser

__all__ = [
    # Coordinator
    "Watcher",
    "DirectoryEventHandler",
    "create_async_watcher",
    # Components
    "PathRegistry",
    "DirectoryTraverser",
    "DependencyExpander",
    "Debouncer",
    "WatchFactory",
    "WatchHandle",
    # Models
    "EntryKind",
    "NotificationKind",
    "WatchEntry",
    "WatchEvent",
    # Exceptions
    "WatcherError",
    "TraversalError",
    "WatchSetupError",
    "InvalidPathError",
    "DependencyCycleError",
    "WatcherAlreadyRunningError",
]
