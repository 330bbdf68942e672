"""
Call Sync Scheduler

Runs reconciliation passes on a fixed interval from a background thread
inside the web process.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .models import SyncSummary

logger = logging.getLogger(__name__)


@dataclass
class SchedulerStats:
    started_at: datetime = field(default_factory=datetime.now)
    tick_count: int = 0
    success_count: int = 0
    error_count: int = 0
    dropped_count: int = 0
    last_tick_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SyncScheduler:
    """
    Calls `sync` every `interval` seconds until stopped.

    Overlap protection lives in the reconciler: a tick that lands while a
    pass is still running comes back as a dropped summary and is only logged.
    """

    def __init__(self, sync: Callable[[], SyncSummary], interval: int, run_immediately: bool = False):
        self.sync = sync
        self.interval = interval
        self.run_immediately = run_immediately
        self.stats = SchedulerStats()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> Optional[SyncSummary]:
        """Run one scheduled pass and log its summary."""
        self.stats.tick_count += 1
        self.stats.last_tick_at = datetime.now()
        logger.info(f"⏰ SCHEDULED SYNC TRIGGERED (tick #{self.stats.tick_count})")

        try:
            summary = self.sync()
        except Exception as e:
            self.stats.error_count += 1
            self.stats.last_error = str(e)
            logger.error(f"❌ Scheduled sync failed: {e}", exc_info=True)
            return None

        if summary.dropped:
            self.stats.dropped_count += 1
            logger.warning("Scheduled sync skipped - previous pass still running")
        elif summary.ok:
            self.stats.success_count += 1
            self.stats.last_error = None
        else:
            self.stats.error_count += 1
            self.stats.last_error = summary.error
            logger.warning(f"Scheduled sync finished with error: {summary.error}")
        logger.info(f"Scheduled sync result: {summary.to_dict()}")
        return summary

    def _run(self) -> None:
        logger.info(f"📅 Scheduled RingCentral sync: every {self.interval}s")
        if self.run_immediately:
            self.tick()
        while not self._stop.wait(self.interval):
            self.tick()
        logger.info("Call sync scheduler stopped")

    def start(self) -> None:
        if self.is_running():
            logger.debug("Scheduler already running")
            return
        self._stop.clear()
        self.stats = SchedulerStats()
        self._thread = threading.Thread(target=self._run, name="call-sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        logger.info("Stop requested")
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
