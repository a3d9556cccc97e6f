"""
EtagWatch Watch Handles.

OS-level subscriptions backed by watchdog observers.
Requires Python 3.11+.
"""

import os
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers.api import BaseObserver, ObservedWatch

from utils.logger import LoggerMixin
from watcher.exceptions import WatchSetupError
from watcher.models import EntryKind


class WatchHandle(LoggerMixin):
    """
    Subscription that keeps one path under observation.

    Directory handles own a non-recursive watchdog watch. File handles
    ride on their parent directory's watch and only carry the
    open/closed state.
    """

    def __init__(
        self,
        path: str,
        observer: BaseObserver | None = None,
        watch: ObservedWatch | None = None,
    ) -> None:
        self.path = path
        self._observer = observer
        self._watch = watch
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        """Check if the handle has been closed."""
        return self._closed

    @property
    def owns_os_watch(self) -> bool:
        """Check if closing this handle releases an OS watch."""
        return self._watch is not None

    def close(self) -> None:
        """Release the subscription. Later calls are no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self._observer is not None and self._watch is not None:
            try:
                self._observer.unschedule(self._watch)
            except (KeyError, OSError) as e:
                # The emitter may already be gone with its directory
                self.log.warning("unschedule_failed", path=self.path, error=str(e))

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"WatchHandle({self.path!r}, {state})"


class WatchFactory(LoggerMixin):
    """Opens watch handles against a single watchdog observer."""

    def __init__(self, observer: BaseObserver, handler: FileSystemEventHandler) -> None:
        """
        Initialize the factory.

        Args:
            observer: Observer that delivers OS notifications
            handler: Event handler scheduled for every directory watch
        """
        self._observer = observer
        self._handler = handler

    def open(self, path: str, kind: EntryKind) -> WatchHandle:
        """
        Open a watch for a path.

        Directories get a watch of their own. Files are reported through
        their parent directory's watch.

        Args:
            path: Absolute path to watch
            kind: Kind of the path

        Returns:
            An open WatchHandle

        Raises:
            WatchSetupError: If the observer refuses the watch
        """
        if kind is not EntryKind.DIRECTORY:
            return WatchHandle(path)
        return self._schedule(path, path)

    def open_parent(self, path: str) -> WatchHandle:
        """
        Watch the directory containing a path that has no watched parent.

        Used for a single-file root, so that its deletion and re-creation
        are still reported while no entry exists for it.

        Raises:
            WatchSetupError: If the observer refuses the watch
        """
        return self._schedule(path, os.path.dirname(path))

    def _schedule(self, path: str, target: str) -> WatchHandle:
        try:
            watch = self._observer.schedule(self._handler, target, recursive=False)
        except OSError as e:
            raise WatchSetupError(path, f"Cannot watch ({e.strerror or e})") from e

        self.log.debug("watch_scheduled", path=path, target=target)
        return WatchHandle(path, self._observer, watch)
