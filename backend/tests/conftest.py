"""
EtagWatch Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

import os
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from fingerprint.etag_calculator import format_etag
from watcher.file_watcher import Watcher
from watcher.models import WatchEvent


class FakeWatch:
    """Stand-in for watchdog's ObservedWatch."""

    def __init__(self, path: str) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"FakeWatch({self.path!r})"


class RecordingObserver:
    """
    Observer double that records scheduled watches.

    No OS notification is ever delivered; tests drive the watcher
    through handle_path() and rescan_directory().
    """

    def __init__(self) -> None:
        self.watches: dict[FakeWatch, Any] = {}
        self.refused: set[str] = set()
        self.started = False
        self.stopped = False

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> FakeWatch:
        if path in self.refused:
            raise PermissionError(13, "Permission denied", path)
        watch = FakeWatch(path)
        self.watches[watch] = handler
        return watch

    def unschedule(self, watch: FakeWatch) -> None:
        del self.watches[watch]

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        pass

    @property
    def watched_paths(self) -> list[str]:
        return sorted(w.path for w in self.watches)


class EventRecorder:
    """Collects every event published by a watcher, in order."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def attach(self, watcher: Watcher) -> "EventRecorder":
        for event in WatchEvent:
            watcher.on(event, self._listener(event))
        return self

    def _listener(self, event: WatchEvent) -> Callable[..., None]:
        def record(*args: Any) -> None:
            self.events.append((event.value, *args))

        return record

    def of(self, kind: str) -> list[tuple]:
        return [e for e in self.events if e[0] == kind]

    def clear(self) -> None:
        self.events.clear()


@dataclass
class SampleTree:
    """Paths of the sample tree, as strings."""

    root: str
    a: str
    b: str
    sub: str
    c: str
    d: str


# Fixed modification times, in seconds
A_MTIME = 1_700_000_000
B_MTIME = 1_700_000_100
C_MTIME = 1_700_000_200
D_MTIME = 1_700_000_300


def write_file(path: str | Path, data: bytes, mtime: int) -> None:
    """Write a file and pin its modification time."""
    Path(path).write_bytes(data)
    os.utime(path, (mtime, mtime))


def etag_for(size: int, *mtimes: int) -> str:
    """Expected etag for a total size and modification times in seconds."""
    return format_etag(size, sum(m * 1000 for m in mtimes))


def wait_for(predicate: Callable[[], Any], timeout: float = 2.0, interval: float = 0.02) -> bool:
    """Poll a predicate until it is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def tree(tmp_path: Path) -> SampleTree:
    """
    Create a sample tree:

        root/a.txt      10 bytes
        root/b.txt       5 bytes
        root/sub/c.txt   3 bytes
        root/sub/d.txt   4 bytes
    """
    root = tmp_path / "root"
    sub = root / "sub"
    sub.mkdir(parents=True)

    write_file(root / "a.txt", b"a" * 10, A_MTIME)
    write_file(root / "b.txt", b"b" * 5, B_MTIME)
    write_file(sub / "c.txt", b"c" * 3, C_MTIME)
    write_file(sub / "d.txt", b"d" * 4, D_MTIME)

    return SampleTree(
        root=str(root),
        a=str(root / "a.txt"),
        b=str(root / "b.txt"),
        sub=str(sub),
        c=str(sub / "c.txt"),
        d=str(sub / "d.txt"),
    )


@pytest.fixture
def observer() -> RecordingObserver:
    """Observer double shared by the watcher under test."""
    return RecordingObserver()


@pytest.fixture
def recorder() -> EventRecorder:
    """Event recorder to attach to a watcher."""
    return EventRecorder()


@pytest.fixture
def make_watcher(
    observer: RecordingObserver,
) -> Generator[Callable[..., Watcher], None, None]:
    """Factory for watchers bound to the recording observer, stopped on teardown."""
    created: list[Watcher] = []

    def _make(root: str | Path, **kwargs: Any) -> Watcher:
        watcher = Watcher(root, observer_factory=lambda: observer, **kwargs)
        created.append(watcher)
        return watcher

    yield _make

    for watcher in created:
        watcher.stop()


@pytest.fixture
def started(
    tree: SampleTree, make_watcher: Callable[..., Watcher], recorder: EventRecorder
) -> Watcher:
    """A started watcher over the sample tree, with the recorder attached."""
    watcher = make_watcher(tree.root)
    recorder.attach(watcher)
    watcher.start()
    recorder.clear()
    return watcher
