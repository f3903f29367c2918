"""
============================================================================
PULSE ENGINE - PERIODIC TRIGGER
============================================================================
Built-in scheduling trigger for single-process deployments.

In a distributed deployment an external cron hits POST /scheduler; when
the engine runs on its own, IntervalTrigger invokes the scheduler every
SCHEDULER_TRIGGER_INTERVAL seconds instead. Overlapping passes are safe,
so a pass that runs long never needs to be cancelled.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from typing import Any, Dict, Optional

from exceptions.base import PulseException
from monitoring.scheduler import MonitorScheduler, SchedulingStats
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Trigger")


class IntervalTrigger:
    """
    Background task that runs one scheduling pass per interval.

    Attributes
    ----------
    _interval : float      seconds between passes
    _running : bool
    _task : asyncio.Task
    _run_count : int
    _fail_count : int
    """

    def __init__(self, scheduler: MonitorScheduler, interval_seconds: float):
        self.scheduler = scheduler
        self._interval = interval_seconds

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._run_count = 0
        self._fail_count = 0
        self._started_at: Optional[float] = None
        self._last_stats: Optional[SchedulingStats] = None

        logger.info(f"IntervalTrigger created: interval={self._interval}s")

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("IntervalTrigger is already running")
            return

        self._running = True
        self._started_at = time.monotonic()
        self._task = asyncio.create_task(self._trigger_loop())
        logger.info("✓ IntervalTrigger started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("✓ IntervalTrigger stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # LOOP
    # ------------------------------------------------------------------

    async def _trigger_loop(self) -> None:
        logger.info("[Trigger] Trigger loop started")

        # First pass immediately so due monitors are not held back a full interval
        await self.fire()

        while self._running:
            try:
                await asyncio.sleep(self._interval)
                if not self._running:
                    break
                await self.fire()
            except asyncio.CancelledError:
                break

        logger.info("[Trigger] Trigger loop exited")

    async def fire(self) -> Optional[SchedulingStats]:
        """Run one scheduling pass and write the heartbeat line."""
        self._run_count += 1
        try:
            stats = await self.scheduler.schedule_monitor_checks()
        except PulseException as e:
            self._fail_count += 1
            logger.error(f"[Trigger] Scheduling pass failed: {e.log_format()}")
            return None
        except Exception as e:
            # Counted like any failed pass; the loop keeps running
            self._fail_count += 1
            logger.exception(f"[Trigger] Scheduling pass crashed: {type(e).__name__}: {e}")
            return None

        self._last_stats = stats
        uptime = int(time.monotonic() - self._started_at) if self._started_at else 0
        logger.info(
            f"[Trigger] ♥ heartbeat #{self._run_count}: enqueued={stats.enqueued} "
            f"skipped={stats.skipped} errors={stats.errors} "
            f"(up {TimeHelper.seconds_to_human_readable(uptime)})"
        )
        return stats

    def get_stats(self) -> Dict[str, Any]:
        return {
            "isRunning": self._running,
            "intervalSeconds": self._interval,
            "runCount": self._run_count,
            "failCount": self._fail_count,
            "lastRun": self._last_stats.to_dict() if self._last_stats else None,
        }
