"""
EtagWatch Fingerprint Package.

Stat-based change detection and etag computation.
Requires Python 3.11+.
"""

from fingerprint.etag_calculator import EtagCalculator, format_etag
from fingerprint.change_detector import ChangeDetector
from fingerprint.models import ChangeStatus, Snapshot

__all__ = [
    "EtagCalculator",
    "ChangeDetector",
    "format_etag",
    "ChangeStatus",
    "Snapshot",
]
