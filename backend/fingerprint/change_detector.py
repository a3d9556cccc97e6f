"""
EtagWatch Change Detector.

Decides whether a path is new, modified, unmodified or deleted by
comparing a fresh stat with the registry.
Requires Python 3.11+.
"""

import os
from typing import TYPE_CHECKING

from fingerprint.models import ChangeStatus, Snapshot
from utils.logger import LoggerMixin

if TYPE_CHECKING:
    from watcher.registry import PathRegistry


class ChangeDetector(LoggerMixin):
    """
    Stat-based change detection.

    Only size and modification time are compared. Content can change
    without touching either, and both can move without a semantic
    change; both cases are accepted.
    """

    def __init__(self, follow_symlinks: bool = False) -> None:
        """
        Initialize the change detector.

        Args:
            follow_symlinks: Stat symlink targets instead of the links
        """
        self._follow_symlinks = follow_symlinks

    def stat(self, path: str) -> os.stat_result | None:
        """
        Stat a path.

        Returns:
            The stat result, or None if the path does not exist

        Raises:
            OSError: For failures other than the path being missing
        """
        try:
            return os.stat(path, follow_symlinks=self._follow_symlinks)
        except (FileNotFoundError, NotADirectoryError):
            return None

    def has_changed(
        self, path: str, registry: "PathRegistry"
    ) -> tuple[ChangeStatus, os.stat_result | None]:
        """
        Compare the current state of a path with its registry entry.

        Args:
            path: Absolute, normalized path
            registry: Registry holding the last known snapshot

        Returns:
            (status, stat) where stat is None when the path is deleted
        """
        st = self.stat(path)
        if st is None:
            return ChangeStatus.DELETED, None

        entry = registry.get(path)
        if entry is None or entry.snapshot is None:
            return ChangeStatus.NEW, st

        if Snapshot.from_stat(st) != entry.snapshot:
            return ChangeStatus.MODIFIED, st

        return ChangeStatus.UNMODIFIED, st
