"""
EtagWatch Debouncer.

Coalesces rapid OS notifications before they reach the watcher queue.
Requires Python 3.11+.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from utils.logger import LoggerMixin
from watcher.models import NotificationKind

Notification = tuple[str, NotificationKind]


@dataclass
class PendingNotification:
    """A notification waiting for the debounce window to close."""

    path: str
    kind: NotificationKind
    timestamp: float


class Debouncer(LoggerMixin):
    """
    Debounces rapid notifications.

    Accumulates notifications and triggers the callback after a delay
    period with no new notifications. A notification repeated for the
    same path and kind is kept once. With a zero delay every
    notification is forwarded immediately.
    """

    def __init__(
        self,
        delay_ms: int = 0,
        callback: Callable[[list[Notification]], Any] | None = None,
    ) -> None:
        """
        Initialize the debouncer.

        Args:
            delay_ms: Delay in milliseconds before forwarding, 0 disables
            callback: Function to call with accumulated notifications
        """
        self._delay = delay_ms / 1000.0
        self._callback = callback
        self._pending: dict[Notification, PendingNotification] = {}
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def debounce(self, path: str, kind: NotificationKind) -> None:
        """
        Add a notification.

        The callback will be triggered after delay_ms milliseconds
        of no new notifications.

        Args:
            path: Path named by the OS notification
            kind: Whether to evaluate the path or rescan the directory
        """
        if self._delay <= 0:
            self._dispatch([(path, kind)])
            return

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

            key = (path, kind)
            # Re-inserting keeps arrival order of the latest notification
            self._pending.pop(key, None)
            self._pending[key] = PendingNotification(path=path, kind=kind, timestamp=time.time())

            self._timer = threading.Timer(self._delay, self._process_pending)
            self._timer.daemon = True
            self._timer.start()

    def _process_pending(self) -> None:
        """Forward all pending notifications."""
        with self._lock:
            if not self._pending:
                return
            notifications = [(n.path, n.kind) for n in self._pending.values()]
            self._pending.clear()
            self._timer = None

        self.log.debug("processing_debounced_notifications", count=len(notifications))
        self._dispatch(notifications)

    def _dispatch(self, notifications: list[Notification]) -> None:
        if self._callback is None:
            return
        try:
            self._callback(notifications)
        except Exception as e:
            self.log.error("debounce_callback_failed", error=str(e))

    def flush(self) -> list[Notification]:
        """
        Immediately forward all pending notifications.

        Returns:
            List of (path, kind) tuples that were pending
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

            notifications = [(n.path, n.kind) for n in self._pending.values()]
            self._pending.clear()

        if notifications:
            self._dispatch(notifications)
        return notifications

    def clear(self) -> None:
        """Drop all pending notifications without forwarding them."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()

    @property
    def pending_count(self) -> int:
        """Get number of pending notifications."""
        return len(self._pending)
