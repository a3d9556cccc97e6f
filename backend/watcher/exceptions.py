"""Custom exceptions for the watcher package."""


class WatcherError(Exception):
    """Base exception for all watcher errors."""

    pass


class TraversalError(WatcherError):
    """Listing or stat failure while walking a directory tree."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class WatchSetupError(TraversalError):
    """The OS refused to establish a watch for a path."""

    pass


class InvalidPathError(WatcherError):
    """Path is not currently registered with the watcher."""

    pass


class DependencyCycleError(WatcherError):
    """Dependency declaration would make a path depend on itself."""

    pass


class WatcherAlreadyRunningError(WatcherError):
    """Watcher is already running."""

    pass
