"""
EtagWatch Directory Traverser.

Registers a watch and a WatchEntry for every path below a directory.
Requires Python 3.11+.
"""

import os
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from fingerprint.change_detector import ChangeDetector
from fingerprint.models import Snapshot
from utils.logger import LoggerMixin
from watcher.exceptions import TraversalError
from watcher.handles import WatchFactory
from watcher.models import EntryKind, WatchEntry
from watcher.registry import PathRegistry


class DirectoryTraverser(LoggerMixin):
    """
    Walks a directory tree with a worklist instead of nested callbacks.

    Each directory is registered before it is listed. Its children are
    stat'ed in parallel, joined, then registered in name order, and the
    child directories are queued. The walk is done when the queue drains.
    """

    def __init__(
        self,
        registry: PathRegistry,
        watch_factory: WatchFactory,
        detector: ChangeDetector,
        max_workers: int = 4,
        should_ignore: Callable[[str], bool] | None = None,
    ) -> None:
        """
        Initialize the traverser.

        Args:
            registry: Registry receiving the new entries
            watch_factory: Factory opening one watch handle per entry
            detector: Change detector used for stat calls
            max_workers: Number of threads issuing stat calls
            should_ignore: Predicate for paths that must not be watched
        """
        self._registry = registry
        self._watch_factory = watch_factory
        self._detector = detector
        self._max_workers = max_workers
        self._should_ignore = should_ignore or (lambda path: False)

    def traverse(
        self,
        root_path: str,
        st: os.stat_result | None = None,
    ) -> list[str]:
        """
        Register a path and, for a directory, everything beneath it.

        Args:
            root_path: Absolute, normalized path to register
            st: Already known stat result for root_path

        Returns:
            Newly registered paths, root first, in discovery order

        Raises:
            TraversalError: If a listing, stat or watch fails. On any
                failure the entries registered by this call are removed
                again before the exception propagates.
        """
        registered: list[str] = []
        visited: set[tuple[int, int]] = set()

        try:
            if st is None:
                st = self._stat(root_path)
                if st is None:
                    raise TraversalError(root_path, "Path does not exist")

            pending: deque[str] = deque()
            if self._register(root_path, st, registered, visited):
                pending.append(root_path)

            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="etagwatch-stat"
            ) as pool:
                while pending:
                    directory = pending.popleft()
                    children = self._list(directory)
                    for child, child_st in zip(children, pool.map(self._stat, children)):
                        if child_st is None:
                            # Removed between listing and stat
                            continue
                        if self._register(child, child_st, registered, visited):
                            pending.append(child)
        except Exception:
            self._rollback(registered)
            raise

        self.log.debug("traversal_complete", root=root_path, registered=len(registered))
        return registered

    def _register(
        self,
        path: str,
        st: os.stat_result,
        registered: list[str],
        visited: set[tuple[int, int]],
    ) -> bool:
        """Register one path. Returns True if it is a directory to descend into."""
        kind = EntryKind.from_stat(st)
        if kind is EntryKind.DIRECTORY:
            key = (st.st_dev, st.st_ino)
            if key in visited:
                self.log.warning("directory_loop_skipped", path=path)
                return False
            visited.add(key)

        handle = self._watch_factory.open(path, kind)
        self._registry.add(
            WatchEntry(path=path, kind=kind, handle=handle, snapshot=Snapshot.from_stat(st))
        )
        registered.append(path)
        return kind is EntryKind.DIRECTORY

    def _list(self, directory: str) -> list[str]:
        """List the children of a directory as absolute paths."""
        try:
            names = sorted(os.listdir(directory))
        except (FileNotFoundError, NotADirectoryError):
            # Gone already, its own deletion notification follows
            return []
        except OSError as e:
            raise TraversalError(directory, f"Cannot list directory ({e.strerror or e})") from e

        children = []
        for name in names:
            child = os.path.join(directory, name)
            if not self._should_ignore(child):
                children.append(child)
        return children

    def _stat(self, path: str) -> os.stat_result | None:
        try:
            return self._detector.stat(path)
        except OSError as e:
            raise TraversalError(path, f"Cannot stat ({e.strerror or e})") from e

    def _rollback(self, registered: list[str]) -> None:
        """Unregister paths added by a failed traversal."""
        for path in reversed(registered):
            self._registry.remove(path)
        if registered:
            self.log.warning("traversal_rolled_back", count=len(registered), root=registered[0])
