"""
Interval scheduling for watch folder scans.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from .service import WatchFolderService


class WatchScheduler:
    """Run an initial scan and then one scan per interval on a background thread."""

    def __init__(
        self,
        service: WatchFolderService,
        interval_minutes: float = 30,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.service = service
        self.interval_seconds = max(float(interval_minutes) * 60, 1.0)
        self.logger = logger or logging.getLogger("receipt_vault")
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="watch-scheduler", daemon=True)
        self._thread.start()
        self.logger.info(
            "Watch service started for %s (interval %.0fs)", self.service.watch_folder, self.interval_seconds
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        self.service.state.next_scan_at = None
        self.logger.info("Watch service stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the scheduler is stopped; returns True once stopped."""
        return self._stop_event.wait(timeout)

    def _run(self) -> None:
        stop_event = self._stop_event
        while not stop_event.is_set():
            self._scan_once()
            self.service.state.next_scan_at = datetime.now() + timedelta(seconds=self.interval_seconds)
            if stop_event.wait(self.interval_seconds):
                break

    def _scan_once(self) -> None:
        try:
            self.service.scan()
        except Exception:
            self.logger.exception("Watch folder scan failed")
