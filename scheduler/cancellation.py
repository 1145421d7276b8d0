"""Cooperative cancellation for request tasks."""

from typing import Optional


class TaskCancelled(Exception):
    """Raised inside a task once its token is cancelled."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "Task cancelled")
        self.reason = reason


class CancellationToken:
    """
    Read-only view of a cancellation flag.

    Work holding a token checks it after every suspension point and stops
    emitting output once it is set. Only the owning CancellationSource can
    set it.
    """

    def __init__(self, source: "CancellationSource"):
        self._source = source

    @property
    def cancelled(self) -> bool:
        return self._source.cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._source.reason

    def raise_if_cancelled(self):
        if self._source.cancelled:
            raise TaskCancelled(self._source.reason)


class CancellationSource:
    """Owner side of a cancellation token."""

    def __init__(self):
        self.cancelled = False
        self.reason: Optional[str] = None
        self.token = CancellationToken(self)

    def cancel(self, reason: Optional[str] = None):
        # First reason wins
        if not self.cancelled:
            self.cancelled = True
            self.reason = reason
