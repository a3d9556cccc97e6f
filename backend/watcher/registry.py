"""
EtagWatch Path Registry.

In-memory map from absolute path to WatchEntry.
Requires Python 3.11+.
"""

import os
import threading
from collections.abc import Iterable, Iterator

from fingerprint.models import Snapshot
from utils.logger import LoggerMixin
from watcher.exceptions import DependencyCycleError, InvalidPathError
from watcher.models import WatchEntry


class PathRegistry(LoggerMixin):
    """
    Single source of truth for what the watcher knows about each path.

    Entries are added together with an open watch handle and removing an
    entry closes its handle. All mutations are serialized through one
    re-entrant lock, exposed as ``lock`` so that callers can group
    several operations into one atomic pass.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._entries: dict[str, WatchEntry] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """Lock guarding every registry mutation."""
        return self._lock

    def add(self, entry: WatchEntry) -> None:
        """
        Register an entry and its watch handle.

        An entry already registered under the same path is replaced and
        its handle closed.
        """
        with self._lock:
            previous = self._entries.get(entry.path)
            if previous is not None and previous.handle is not entry.handle:
                previous.handle.close()
            self._entries[entry.path] = entry

    def remove(self, path: str) -> WatchEntry | None:
        """
        Unregister a path and close its watch handle.

        Returns:
            The removed entry, or None if the path was not registered
        """
        with self._lock:
            entry = self._entries.pop(path, None)
            if entry is not None:
                entry.handle.close()
        return entry

    def get(self, path: str) -> WatchEntry | None:
        """Get the entry for a path."""
        with self._lock:
            return self._entries.get(path)

    def update_snapshot(self, path: str, snapshot: Snapshot) -> None:
        """Record a freshly observed snapshot for a registered path."""
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                raise InvalidPathError(f"Path is not being watched: {path}")
            entry.snapshot = snapshot

    def is_directory(self, path: str) -> bool:
        """Check if a path is registered as a directory."""
        entry = self.get(path)
        return entry is not None and entry.is_directory

    def children_of(self, directory: str) -> list[str]:
        """Get registered paths whose parent is ``directory``."""
        with self._lock:
            return sorted(p for p in self._entries if os.path.dirname(p) == directory and p != directory)

    def descendants_of(self, directory: str) -> list[str]:
        """Get every registered path below ``directory``, deepest first."""
        prefix = directory.rstrip(os.sep) + os.sep
        with self._lock:
            found = [p for p in self._entries if p.startswith(prefix)]
        return sorted(found, key=lambda p: (-p.count(os.sep), p))

    def dependents_of(self, paths: Iterable[str]) -> list[str]:
        """Get registered paths that declare a dependency on any of ``paths``."""
        targets = set(paths)
        with self._lock:
            return [
                entry.path
                for entry in self._entries.values()
                if any(dep in targets for dep in entry.dependencies)
            ]

    def set_dependencies(self, path: str, dependencies: list[str]) -> None:
        """
        Replace the dependency list of a registered path.

        Args:
            path: Registered path declaring the dependencies
            dependencies: Normalized dependency paths, in order

        Raises:
            InvalidPathError: If the path is not registered
            DependencyCycleError: If the path would depend on itself,
                directly or through other declared dependencies
        """
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                raise InvalidPathError(f"Error setting dependencies for an invalid path: {path}")

            deps = list(dict.fromkeys(dependencies))
            if path in deps:
                raise DependencyCycleError(f"Path cannot depend on itself: {path}")

            cycle = self._find_cycle(path, deps)
            if cycle:
                raise DependencyCycleError(
                    "Dependency cycle: " + " -> ".join([path, *cycle])
                )

            entry.dependencies = deps

    def _find_cycle(self, path: str, deps: list[str]) -> list[str] | None:
        """Return a dependency chain from ``deps`` back to ``path``, if any."""
        stack: list[tuple[str, list[str]]] = [(dep, [dep]) for dep in deps]
        seen: set[str] = set()
        while stack:
            current, chain = stack.pop()
            if current == path:
                return chain
            if current in seen:
                continue
            seen.add(current)
            entry = self._entries.get(current)
            if entry is not None:
                stack.extend((dep, [*chain, dep]) for dep in entry.dependencies)
        return None

    def paths(self) -> list[str]:
        """Get all registered paths, sorted."""
        with self._lock:
            return sorted(self._entries)

    def clear(self) -> int:
        """
        Remove every entry, closing all handles.

        Returns:
            Number of entries removed
        """
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                entry.handle.close()
        return len(entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[WatchEntry]:
        with self._lock:
            return iter(list(self._entries.values()))
