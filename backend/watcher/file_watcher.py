"""
EtagWatch Directory Watcher.

Recursive directory watching with dependency-aware etags using watchdog.
Requires Python 3.11+.
"""

import asyncio
import inspect
import os
import queue
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from fingerprint.change_detector import ChangeDetector
from fingerprint.etag_calculator import EtagCalculator
from fingerprint.models import ChangeStatus, Snapshot
from utils.config import get_settings
from utils.logger import LoggerMixin, watch_context
from watcher.debouncer import Debouncer, Notification
from watcher.exceptions import TraversalError, WatcherAlreadyRunningError
from watcher.expander import DependencyExpander
from watcher.handles import WatchFactory, WatchHandle
from watcher.models import EntryKind, NotificationKind, WatchEvent, normalize_path
from watcher.registry import PathRegistry
from watcher.traverser import DirectoryTraverser

Listener = Callable[..., Any]


class DirectoryEventHandler(FileSystemEventHandler, LoggerMixin):
    """
    Turns watchdog events into watcher notifications.

    The handler never touches the registry; it only hands notifications
    to the debouncer so that the observer thread is never blocked.
    """

    def __init__(self, debouncer: Debouncer) -> None:
        """
        Initialize the event handler.

        Args:
            debouncer: Debouncer that forwards notifications to the watcher
        """
        super().__init__()
        self._debouncer = debouncer

    @staticmethod
    def _path(raw: str | bytes) -> str:
        return normalize_path(os.fsdecode(raw))

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:
        """Handle file/directory creation."""
        path = self._path(event.src_path)
        self.log.debug("path_created", path=path)
        self._debouncer.debounce(path, NotificationKind.PATH)

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:
        """Handle file/directory deletion."""
        path = self._path(event.src_path)
        self.log.debug("path_deleted", path=path)
        self._debouncer.debounce(path, NotificationKind.PATH)

    def on_modified(self, event: FileModifiedEvent | DirModifiedEvent) -> None:
        """Handle file/directory modification."""
        path = self._path(event.src_path)
        if isinstance(event, DirModifiedEvent):
            # The changed child is not named, diff the directory instead
            self.log.debug("directory_modified", path=path)
            self._debouncer.debounce(path, NotificationKind.DIRECTORY)
            return

        self.log.debug("file_modified", path=path)
        self._debouncer.debounce(path, NotificationKind.PATH)

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        """Handle file/directory move/rename."""
        src_path = self._path(event.src_path)
        dest_path = self._path(event.dest_path)
        self.log.debug("path_moved", src=src_path, dest=dest_path)
        self._debouncer.debounce(src_path, NotificationKind.PATH)
        self._debouncer.debounce(dest_path, NotificationKind.PATH)

    def on_closed(self, event: FileClosedEvent) -> None:
        """Handle a file closed after writing."""
        path = self._path(event.src_path)
        self._debouncer.debounce(path, NotificationKind.PATH)


class Watcher(LoggerMixin):
    """
    Watches a directory tree and publishes etag changes.

    Every file and directory below the root gets a registry entry and a
    watch. OS notifications are queued and handled one at a time by a
    dispatch thread. A change to a path is fanned out to the paths that
    declared a dependency on it, and each affected file is published
    with its recomputed etag.

    Events (see ``WatchEvent``):
        initialized()       full tree registered and fingerprinted
        changed(path, etag) a file or one of its dependencies changed
        added(path)         a new file appeared
        deleted(path)       a watched file disappeared
        error(path, exc)    a rescan failed; other paths keep being watched
    """

    def __init__(
        self,
        root_path: str | os.PathLike[str],
        on_change: Callable[[str, str], Any] | None = None,
        debounce_delay_ms: int | None = None,
        ignore_patterns: list[str] | None = None,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        """
        Initialize the watcher.

        Args:
            root_path: Directory (or single file) to watch
            on_change: Listener for ``changed`` events (path, etag)
            debounce_delay_ms: Notification coalescing window in milliseconds
            ignore_patterns: Glob patterns for names that are never watched
            observer_factory: Builds the watchdog observer on each start
        """
        settings = get_settings().watcher
        if ignore_patterns is not None:
            settings = settings.model_copy(update={"ignore_patterns": list(ignore_patterns)})

        self._root_path = normalize_path(root_path)
        self._settings = settings
        self._debounce_delay = (
            settings.debounce_delay_ms if debounce_delay_ms is None else debounce_delay_ms
        )
        self._observer_factory = observer_factory or self._create_observer

        self._listeners: dict[WatchEvent, list[Listener]] = defaultdict(list)
        if on_change is not None:
            self.on(WatchEvent.CHANGED, on_change)
        self._loop: asyncio.AbstractEventLoop | None = None

        self._registry = PathRegistry()
        self._detector = ChangeDetector(follow_symlinks=settings.follow_symlinks)
        self._calculator = EtagCalculator()
        self._expander = DependencyExpander()

        self._queue: queue.Queue[Notification] = queue.Queue()
        self._debouncer = Debouncer(delay_ms=self._debounce_delay, callback=self._enqueue)
        self._handler = DirectoryEventHandler(self._debouncer)

        self._observer: BaseObserver | None = None
        self._traverser: DirectoryTraverser | None = None
        self._root_anchor: WatchHandle | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._running = False
        self._initialized = False
        self._lock = threading.Lock()

    def _create_observer(self) -> BaseObserver:
        """Build the observer selected by the settings."""
        if self._settings.use_polling:
            return PollingObserver(timeout=self._settings.polling_interval_s)
        return Observer()

    # ------------------------------------------------------------------
    # Listeners

    def on(self, event: WatchEvent | str, listener: Listener) -> None:
        """
        Register a listener for a watcher event.

        Coroutine functions are scheduled on the loop given to
        ``set_event_loop``.
        """
        self._listeners[WatchEvent(event)].append(listener)

    def off(self, event: WatchEvent | str, listener: Listener) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was registered
        """
        try:
            self._listeners[WatchEvent(event)].remove(listener)
            return True
        except ValueError:
            return False

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the event loop for async listeners."""
        self._loop = loop

    def _emit(self, event: WatchEvent, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                if inspect.iscoroutinefunction(listener):
                    if self._loop is not None:
                        asyncio.run_coroutine_threadsafe(listener(*args), self._loop)
                    else:
                        asyncio.run(listener(*args))
                else:
                    listener(*args)
            except Exception as e:
                self.log.error("listener_failed", watch_event=event.value, error=str(e))

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """
        Register the whole tree and start watching.

        Blocks until every path below the root has a watch and an etag,
        then emits ``initialized``.

        Raises:
            WatcherAlreadyRunningError: If already running
            TraversalError: If the initial traversal fails. On this or
                any other failure no watch is left open and
                ``initialized`` is not emitted.
        """
        with self._lock:
            if self._running:
                raise WatcherAlreadyRunningError("Watcher is already running")
            self._running = True

        self._stop_event.clear()

        try:
            observer = self._observer_factory()
            observer.start()
            self._observer = observer

            watch_factory = WatchFactory(observer, self._handler)
            self._traverser = DirectoryTraverser(
                self._registry,
                watch_factory,
                self._detector,
                max_workers=self._settings.traversal_workers,
                should_ignore=self._settings.should_ignore,
            )

            with watch_context(self._root_path), self._registry.lock:
                self._traverser.traverse(self._root_path)
                if not self._registry.is_directory(self._root_path):
                    self._root_anchor = watch_factory.open_parent(self._root_path)
                count = self._calculator.compute_all(self._registry)
                self._initialized = True
                self.log.info("watcher_initialized", path=self._root_path, entries=count)
                self._emit(WatchEvent.INITIALIZED)
        except Exception as e:
            self.log.error("watcher_start_failed", path=self._root_path, error=str(e))
            self._teardown()
            raise

        self._thread = threading.Thread(
            target=self._dispatch_loop, name="etagwatch-dispatch", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop watching and close every watch handle."""
        with self._lock:
            if not self._running:
                return

        # Pending notifications are still handled before the loop exits
        self._debouncer.flush()
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

        self._teardown()
        self.log.info("watcher_stopped", path=self._root_path)

    def _teardown(self) -> None:
        self._debouncer.clear()
        self._registry.clear()
        if self._root_anchor is not None:
            self._root_anchor.close()
            self._root_anchor = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
        self._initialized = False
        with self._lock:
            self._running = False

    # ------------------------------------------------------------------
    # Notification handling

    def _enqueue(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            self._queue.put(notification)

    def _dispatch_loop(self) -> None:
        """Worker loop handling queued notifications one at a time."""
        with watch_context(self._root_path):
            self._run_dispatch_loop()

    def _run_dispatch_loop(self) -> None:
        self.log.debug("dispatch_loop_started")

        while True:
            try:
                path, kind = self._queue.get(timeout=0.1)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue

            try:
                self.process_notification(path, kind)
            except Exception as e:
                self.log.error("notification_failed", path=path, kind=kind.value, error=str(e))
            finally:
                self._queue.task_done()

    def process_notification(self, path: str, kind: NotificationKind) -> None:
        """Handle one notification synchronously."""
        if kind is NotificationKind.DIRECTORY:
            self.rescan_directory(path)
        else:
            self.handle_path(path)

    def handle_path(self, path: str | os.PathLike[str]) -> None:
        """
        Evaluate a path named by an OS notification.

        Unknown paths are only considered when their parent directory is
        watched, or when they are the root itself.

        Args:
            path: Path whose state may have changed
        """
        path = normalize_path(path)
        if self._settings.should_ignore(path):
            return

        with self._registry.lock:
            if not self._is_eligible(path):
                return

            try:
                status, st = self._detector.has_changed(path, self._registry)
            except OSError as e:
                self._report_error(path, e)
                return

            self._generate_events(self._apply(path, status, st))

    def _is_eligible(self, path: str) -> bool:
        """Check if a notification for a path can concern the watched tree."""
        return (
            path in self._registry
            or path == self._root_path
            or self._registry.is_directory(os.path.dirname(path))
        )

    def rescan_directory(self, directory: str | os.PathLike[str]) -> None:
        """
        Diff a directory's children against the registry.

        Used when the OS reports a directory-level change without naming
        the affected child.

        Args:
            directory: Registered directory to rescan
        """
        directory = normalize_path(directory)

        with self._registry.lock:
            if not self._registry.is_directory(directory):
                return

            try:
                names = sorted(os.listdir(directory))
            except (FileNotFoundError, NotADirectoryError):
                self.handle_path(directory)
                return
            except OSError as e:
                self._report_error(
                    directory,
                    TraversalError(directory, f"Cannot list directory ({e.strerror or e})"),
                )
                return

            current = [
                child
                for child in (os.path.join(directory, name) for name in names)
                if not self._settings.should_ignore(child)
            ]

            changed: list[str] = []
            for child in current:
                try:
                    status, st = self._detector.has_changed(child, self._registry)
                except OSError as e:
                    self._report_error(child, e)
                    continue
                changed.extend(self._apply(child, status, st))

            listed = set(current)
            for child in self._registry.children_of(directory):
                if child not in listed:
                    changed.extend(self._apply(child, ChangeStatus.DELETED, None))

            try:
                status, st = self._detector.has_changed(directory, self._registry)
            except OSError as e:
                self._report_error(directory, e)
            else:
                changed.extend(self._apply(directory, status, st))

            self.log.debug("directory_rescanned", path=directory, changed=len(changed))
            self._generate_events(changed)

    def _apply(
        self, path: str, status: ChangeStatus, st: os.stat_result | None
    ) -> list[str]:
        """
        Bring the registry in line with a detected change.

        Returns:
            Paths whose state changed, to be expanded and published
        """
        if status is ChangeStatus.UNMODIFIED:
            return []

        if status is ChangeStatus.DELETED:
            return self._remove(path)

        removed: list[str] = []
        entry = self._registry.get(path)
        if entry is not None and entry.kind is not EntryKind.from_stat(st):
            # A file was replaced by a directory or the other way round
            removed = self._remove(path)
            status = ChangeStatus.NEW

        if status is ChangeStatus.NEW:
            return removed + self._add(path, st)

        self._registry.update_snapshot(path, Snapshot.from_stat(st))
        return [path]

    def _add(self, path: str, st: os.stat_result) -> list[str]:
        """Register a new path and its subtree, publishing ``added`` for files."""
        try:
            registered = self._traverser.traverse(path, st)
        except TraversalError as e:
            self._report_error(path, e)
            return []

        for added in registered:
            if not self._registry.is_directory(added):
                self.log.info("path_added", path=added)
                self._emit(WatchEvent.ADDED, added)
        return registered

    def _remove(self, path: str) -> list[str]:
        """Unregister a path and its subtree, publishing ``deleted`` for files."""
        if path not in self._registry:
            return []

        doomed = [*self._registry.descendants_of(path), path]
        removed = []
        for target in doomed:
            entry = self._registry.remove(target)
            if entry is None:
                continue
            removed.append(target)
            if not entry.is_directory:
                self.log.info("path_deleted", path=target)
                self._emit(WatchEvent.DELETED, target)
        return removed

    def _generate_events(self, changed: list[str]) -> None:
        """Recompute etags for changed paths and their dependents and publish them."""
        direct = set(changed)

        for path in self._expander.expand(changed, self._registry):
            entry = self._registry.get(path)
            if entry is None:
                continue

            if path not in direct:
                try:
                    st = self._detector.stat(path)
                except OSError as e:
                    self._report_error(path, e)
                    continue
                if st is None:
                    self._remove(path)
                    continue
                if EntryKind.from_stat(st) is entry.kind:
                    self._registry.update_snapshot(path, Snapshot.from_stat(st))

            etag = self._calculator.compute(path, self._registry)
            if entry.is_directory:
                continue

            self.log.info("path_changed", path=path, etag=etag)
            self._emit(WatchEvent.CHANGED, path, etag)

    def _report_error(self, path: str, error: Exception) -> None:
        self.log.error("watch_error", path=path, error=str(error))
        self._emit(WatchEvent.ERROR, path, error)

    # ------------------------------------------------------------------
    # Queries

    def declare_dependencies(
        self,
        path: str | os.PathLike[str],
        dependencies: str | os.PathLike[str] | Iterable[str | os.PathLike[str]],
    ) -> None:
        """
        Declare the paths whose state is folded into a path's etag.

        Replaces any earlier declaration. The path's etag is recomputed
        and stored, without publishing an event.

        Args:
            path: Registered path
            dependencies: A path or an iterable of paths

        Raises:
            InvalidPathError: If the path is not being watched
            DependencyCycleError: If the path would depend on itself
        """
        path = normalize_path(path)
        if isinstance(dependencies, (str, os.PathLike)):
            dependencies = [dependencies]
        deps = [normalize_path(dep) for dep in dependencies]

        with self._registry.lock:
            self._registry.set_dependencies(path, deps)
            entry = self._registry.get(path)
            if entry is not None and entry.snapshot is not None:
                self._calculator.compute(path, self._registry)

        self.log.debug("dependencies_declared", path=path, dependencies=deps)

    def get_etag(self, path: str | os.PathLike[str]) -> str | None:
        """Get the last published etag of a watched path."""
        entry = self._registry.get(normalize_path(path))
        return entry.etag if entry is not None else None

    def get_dependencies(self, path: str | os.PathLike[str]) -> list[str]:
        """Get the declared dependencies of a watched path."""
        entry = self._registry.get(normalize_path(path))
        return list(entry.dependencies) if entry is not None else []

    def is_watching(self, path: str | os.PathLike[str]) -> bool:
        """Check if a path is being watched."""
        return normalize_path(path) in self._registry

    def watched_paths(self) -> list[str]:
        """Get all watched paths, sorted."""
        return self._registry.paths()

    @property
    def root_path(self) -> str:
        """Get the watched root."""
        return self._root_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    @property
    def is_initialized(self) -> bool:
        """Check if the initial traversal has completed."""
        return self._initialized

    @property
    def pending_count(self) -> int:
        """Get number of notifications not handled yet."""
        return self._queue.qsize() + self._debouncer.pending_count

    def __len__(self) -> int:
        """Return the number of watched paths."""
        return len(self._registry)

    def __enter__(self) -> "Watcher":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.stop()


async def create_async_watcher(
    root_path: str | os.PathLike[str],
    on_change: Callable[[str, str], Any] | None = None,
    debounce_delay_ms: int | None = None,
    ignore_patterns: list[str] | None = None,
    observer_factory: Callable[[], BaseObserver] | None = None,
) -> Watcher:
    """
    Create and start a watcher bound to the running event loop.

    The initial traversal runs in a worker thread. Coroutine listeners
    are scheduled on the calling loop.

    Args:
        root_path: Directory to watch
        on_change: Listener for ``changed`` events
        debounce_delay_ms: Notification coalescing window in milliseconds
        ignore_patterns: Glob patterns for names that are never watched
        observer_factory: Builds the watchdog observer

    Returns:
        A started Watcher instance
    """
    watcher = Watcher(
        root_path=root_path,
        on_change=on_change,
        debounce_delay_ms=debounce_delay_ms,
        ignore_patterns=ignore_patterns,
        observer_factory=observer_factory,
    )
    watcher.set_event_loop(asyncio.get_running_loop())
    await asyncio.to_thread(watcher.start)
    return watcher
