"""
Retention and archival for the execution store.

RetentionManager runs the store's retention sweep off the caller's thread.
The sweep is advisory: it deletes what it can and gives up as soon as
another thread holds the store, so `run` and `diff` never wait on it.
"""

import logging
import threading
from datetime import datetime

from rundiff.errors import RundiffError
from rundiff.store.records import ExecutionStore

logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Schedules retention sweeps and archival for one store.

    Usage:
        manager = RetentionManager(store, max_days=365)
        manager.start()          # background, non-blocking
        ...
        manager.join(timeout=5)  # optional, e.g. before exit

    Attributes:
        store: The store to sweep
        max_days: Age limit in days
        removed: Executions deleted by the last completed sweep
        error: Error raised by the last background sweep, if any
    """

    def __init__(self, store: ExecutionStore, max_days: int) -> None:
        if max_days < 1:
            msg = f"max_days must be >= 1, got {max_days}"
            raise ValueError(msg)
        self.store = store
        self.max_days = max_days
        self.removed = 0
        self.error: RundiffError | None = None
        self._thread: threading.Thread | None = None

    def sweep(self, now: datetime | None = None, blocking: bool = True) -> int:
        """Run one sweep on the calling thread."""
        self.removed = self.store.retention(self.max_days, now=now, blocking=blocking)
        return self.removed

    def archive(self, now: datetime | None = None) -> int:
        """Move past-year entries into yearly archives."""
        return self.store.archive(now=now)

    def start(self, now: datetime | None = None) -> threading.Thread:
        """
        Start a non-blocking sweep in a daemon thread.

        Returns the running thread. A second call while a sweep is still
        running returns the existing thread.
        """
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self.error = None
        self._thread = threading.Thread(
            target=self._run_background,
            args=(now,),
            name="rundiff-retention",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> bool:
        """
        Wait for a background sweep.

        Returns:
            True if no sweep is running afterwards
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_background(self, now: datetime | None) -> None:
        try:
            self.sweep(now=now, blocking=False)
        except RundiffError as e:
            self.error = e
            logger.warning("Retention sweep failed: %s", e.message)
