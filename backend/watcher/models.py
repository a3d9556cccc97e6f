"""
EtagWatch Watcher Models.

Data model for tracked paths and the events the watcher publishes.
Requires Python 3.11+.
"""

import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from fingerprint.models import Snapshot

if TYPE_CHECKING:
    from watcher.handles import WatchHandle


class EntryKind(str, Enum):
    """What a tracked path was on its last observed stat."""

    FILE = "file"
    DIRECTORY = "directory"

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "EntryKind":
        """Classify a stat result."""
        return cls.DIRECTORY if stat.S_ISDIR(st.st_mode) else cls.FILE


class WatchEvent(str, Enum):
    """Events published to watcher listeners."""

    INITIALIZED = "initialized"
    CHANGED = "changed"  # (path, etag)
    ADDED = "added"  # (path)
    DELETED = "deleted"  # (path)
    ERROR = "error"  # (path, exception)


class NotificationKind(str, Enum):
    """How an OS notification should be evaluated."""

    PATH = "path"  # a specific path was named
    DIRECTORY = "directory"  # only the directory was named, rescan it


@dataclass
class WatchEntry:
    """
    Registry record for one tracked path.

    Attributes:
        path: Absolute, normalized path (registry key)
        kind: File or directory, from the last observed stat
        handle: Active watch subscription for this path
        snapshot: Last observed size and modification time
        dependencies: Paths whose state is folded into this entry's etag
        etag: Last computed fingerprint
    """

    path: str
    kind: EntryKind
    handle: "WatchHandle"
    snapshot: Snapshot | None = None
    dependencies: list[str] = field(default_factory=list)
    etag: str | None = None

    @property
    def is_directory(self) -> bool:
        """Check if the entry is a directory."""
        return self.kind is EntryKind.DIRECTORY

    @property
    def has_dependencies(self) -> bool:
        """Check if the entry declares any dependency."""
        return bool(self.dependencies)


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Return the absolute, normalized form used as registry key."""
    return os.path.abspath(os.fspath(path))
