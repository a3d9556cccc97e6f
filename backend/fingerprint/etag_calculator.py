"""
EtagWatch Etag Calculator.

Size/modification-time fingerprints for watched resources.
Requires Python 3.11+.
"""

from typing import TYPE_CHECKING

from utils.logger import LoggerMixin

if TYPE_CHECKING:
    from watcher.registry import PathRegistry


def format_etag(size: int, mtime: int) -> str:
    """
    Encode a size and modification time as a quoted etag.

    Args:
        size: Total size in bytes
        mtime: Total modification time in milliseconds

    Returns:
        Etag of the form ``"<size>-<mtime>"``
    """
    return f'"{size}-{mtime}"'


class EtagCalculator(LoggerMixin):
    """
    Computes etags from registry snapshots.

    An etag folds the path's own snapshot together with the last known
    snapshot of every declared dependency. Sizes and modification times
    are summed, so two different states may collide; consumers must
    only compare etags for equality.
    """

    def totals(self, path: str, registry: "PathRegistry") -> tuple[int, int]:
        """
        Sum the size and modification time of a path and its dependencies.

        Dependencies that are not registered, or have no snapshot yet,
        contribute nothing.

        Raises:
            KeyError: If the path is not registered or was never stat'ed
        """
        with registry.lock:
            entry = registry.get(path)
            if entry is None or entry.snapshot is None:
                raise KeyError(f"No snapshot recorded for: {path}")

            size = entry.snapshot.size
            mtime = entry.snapshot.mtime
            for dep in entry.dependencies:
                dep_entry = registry.get(dep)
                if dep_entry is None or dep_entry.snapshot is None:
                    continue
                size += dep_entry.snapshot.size
                mtime += dep_entry.snapshot.mtime
        return size, mtime

    def compute(self, path: str, registry: "PathRegistry") -> str:
        """
        Compute the etag for a path and store it on its entry.

        Args:
            path: Registered path
            registry: Registry holding the path and its dependencies

        Returns:
            The freshly computed etag
        """
        with registry.lock:
            etag = format_etag(*self.totals(path, registry))
            entry = registry.get(path)
            if entry is not None:
                entry.etag = etag
        return etag

    def compute_all(self, registry: "PathRegistry") -> int:
        """
        Compute and store the etag of every entry that has a snapshot.

        Returns:
            Number of etags computed
        """
        count = 0
        with registry.lock:
            for entry in registry:
                if entry.snapshot is None:
                    continue
                self.compute(entry.path, registry)
                count += 1
        self.log.debug("etags_computed", count=count)
        return count
