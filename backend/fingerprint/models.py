"""
EtagWatch Fingerprint Models.

Change evidence recorded for each watched path.
Requires Python 3.11+.
"""

import os
from dataclasses import dataclass
from enum import Enum


class ChangeStatus(str, Enum):
    """Outcome of comparing a fresh stat against the registry."""

    NEW = "new"
    MODIFIED = "modified"
    UNMODIFIED = "unmodified"
    DELETED = "deleted"


@dataclass(frozen=True)
class Snapshot:
    """Size and modification time used as change evidence."""

    size: int
    mtime: int  # milliseconds since the epoch

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "Snapshot":
        """Build a snapshot from a stat result."""
        return cls(size=st.st_size, mtime=st.st_mtime_ns // 1_000_000)
