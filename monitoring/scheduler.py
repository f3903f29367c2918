"""
============================================================================
PULSE ENGINE - CHECK SCHEDULER
============================================================================
Decides which monitors are due and enqueues exactly one MONITOR_CHECK
message per due monitor.

Pass outline
------------
1.  Read up to SCHEDULER_BATCH_SIZE active monitors whose next_check_at
    is due (or NULL), oldest first.
2.  For each, compare-and-swap next_check_at to now + interval against
    the value just read. Losing the swap means another scheduler pass
    claimed the monitor: skip it silently.
3.  Enqueue the claimed monitors' messages, critical and high priority
    first. An enqueue failure after a won claim is counted as an error
    and the claim is not rolled back; the monitor is checked again on
    its next interval. A monitor whose row cannot be turned into a valid
    message is claimed (so it does not stay due) but counted as an error
    and not enqueued.

A pass holds no state between invocations, so overlapping passes are
safe. Correctness rests entirely on the compare-and-swap claim.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field

from pydantic import ValidationError

from config.constants import MessageType, MonitorStatus, Priority
from config.settings import SchedulerSettings, QueueSettings
from database.gateway import DataStoreGateway
from database.models import Monitor
from exceptions.database import DatabaseException
from exceptions.queue import QueueException
from messaging.base import CheckQueue
from messaging.messages import (
    CheckConfig,
    CheckMessage,
    CheckPayload,
    MonitorData,
    PreviousCheck,
)
from utils.helpers import TimeHelper
from utils.logger import get_logger, log_execution_time


logger = get_logger("Scheduler")


# ============================================================================
# STATS
# ============================================================================

@dataclass
class SchedulingStats:
    """
    Aggregate result of one scheduling pass.

    Attributes
    ----------
    scanned : int
        Due monitors read from the data store.
    enqueued : int
        Messages successfully handed to the queue.
    skipped : int
        Monitors claimed by a concurrent pass (lost compare-and-swap).
    errors : int
        Claims or enqueues that failed, and rows with an invalid check configuration.
    """
    scanned: int = 0
    enqueued: int = 0
    skipped: int = 0
    errors: int = 0
    by_priority: Dict[str, int] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "enqueued": self.enqueued,
            "skipped": self.skipped,
            "errors": self.errors,
            "byPriority": dict(self.by_priority),
            "startedAt": TimeHelper.isoformat(self.started_at),
            "durationMs": self.duration_ms,
        }


# ============================================================================
# MESSAGE CONSTRUCTION
# ============================================================================

def classify_priority(monitor: Monitor) -> Priority:
    """
    critical  monitor currently down / timed out, or checked every minute
    high      interval of 5 minutes or less
    low       interval of 30 minutes or more while up
    normal    everything else
    """
    status = monitor.monitor_status
    interval = monitor.interval_minutes

    if status.is_unhealthy or interval <= 1:
        return Priority.CRITICAL
    if interval <= 5:
        return Priority.HIGH
    if interval >= 30 and status == MonitorStatus.UP:
        return Priority.LOW
    return Priority.NORMAL


def build_check_message(
    monitor: Monitor,
    now: datetime,
    scheduler_settings: SchedulerSettings,
    max_retries: int,
    priority: Optional[Priority] = None
) -> CheckMessage:
    """Build the MONITOR_CHECK message for a claimed monitor."""
    previous_check = None
    if monitor.last_checked_at is not None:
        previous_check = PreviousCheck(
            status=monitor.monitor_status,
            response_time=monitor.response_time or 0,
            checked_at=monitor.last_checked_at,
        )

    return CheckMessage(
        message_id=CheckMessage.build_message_id(monitor.id, now),
        message_type=MessageType.MONITOR_CHECK,
        timestamp=now,
        source=scheduler_settings.message_source,
        retry_count=0,
        max_retries=max_retries,
        correlation_id=CheckMessage.build_correlation_id(now),
        payload=CheckPayload(
            monitor_id=monitor.id,
            user_id=str(monitor.user_id),
            monitor_data=MonitorData(
                name=monitor.name,
                url=monitor.url,
                expected_status=monitor.monitor_status,
                interval_minutes=monitor.interval_minutes,
                timeout_seconds=(
                    monitor.timeout_seconds or scheduler_settings.check_timeout_seconds
                ),
                headers=monitor.headers or None,
            ),
            check_config=CheckConfig(
                priority=priority or classify_priority(monitor),
                scheduled_at=now,
                expected_duration=scheduler_settings.expected_duration_ms,
                user_agent=scheduler_settings.user_agent,
            ),
            previous_check=previous_check,
        ),
    )


# ============================================================================
# SCHEDULER
# ============================================================================

class MonitorScheduler:
    """
    Stateless scheduling pass plus a read-only health report.

    Usage
    -----
        scheduler = MonitorScheduler(gateway, queue, settings.scheduler, settings.queue)
        stats = await scheduler.schedule_monitor_checks()
    """

    def __init__(
        self,
        gateway: DataStoreGateway,
        queue: CheckQueue,
        scheduler_settings: SchedulerSettings,
        queue_settings: QueueSettings,
    ):
        self.gateway = gateway
        self.queue = queue
        self.settings = scheduler_settings
        self.max_retries = queue_settings.max_retries

        # Diagnostics only; a pass never reads these
        self._run_count = 0
        self._last_run_at: Optional[datetime] = None
        self._last_stats: Optional[SchedulingStats] = None

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    @log_execution_time
    async def schedule_monitor_checks(self, now: Optional[datetime] = None) -> SchedulingStats:
        """
        Run one scheduling pass.

        Never raises for a single monitor's failure; failures are
        reflected in the returned stats.
        """
        now = now or TimeHelper.utcnow()
        stats = SchedulingStats(started_at=now)
        start_time = time.perf_counter()

        try:
            monitors = await self.gateway.get_due_monitors(now, limit=self.settings.batch_size)
        except DatabaseException as e:
            logger.warning(f"[Scheduler] Could not read due monitors: {e}")
            stats.errors += 1
            return self._finish(stats, start_time)

        stats.scanned = len(monitors)
        if not monitors:
            logger.debug("[Scheduler] No monitors due")
            return self._finish(stats, start_time)

        claimed: List[Tuple[Priority, CheckMessage]] = []

        for monitor in monitors:
            new_next_check_at = TimeHelper.add_minutes(now, max(1, monitor.interval_minutes))

            # A row the message schema rejects must not abort the pass
            message: Optional[CheckMessage] = None
            build_error: Optional[Exception] = None
            try:
                priority = classify_priority(monitor)
                message = build_check_message(
                    monitor, now, self.settings, self.max_retries, priority
                )
            except (ValidationError, ValueError) as e:
                build_error = e

            try:
                won = await self.gateway.claim_next_check(
                    monitor.id,
                    monitor.next_check_at,
                    new_next_check_at
                )
            except DatabaseException as e:
                stats.errors += 1
                logger.warning(f"[Scheduler] Claim failed for monitor {monitor.id}: {e}")
                continue

            if not won:
                stats.skipped += 1
                logger.debug(f"[Scheduler] Monitor {monitor.id} claimed elsewhere, skipping")
                continue

            if message is None:
                # Claimed but never enqueued; next_check_at still advances
                stats.errors += 1
                logger.error(
                    f"[Scheduler] Monitor {monitor.id} has an invalid check "
                    f"configuration, cycle skipped: {build_error}"
                )
                continue

            claimed.append((priority, message))

        # sorted() is stable: oldest-first order is kept within a priority
        claimed.sort(key=lambda item: item[0].rank)

        for priority, message in claimed:
            try:
                await self.queue.enqueue(message)
            except QueueException as e:
                stats.errors += 1
                logger.warning(
                    f"[Scheduler] Enqueue failed for monitor "
                    f"{message.payload.monitor_id}: {e}"
                )
                continue

            stats.enqueued += 1
            stats.by_priority[priority.value] = stats.by_priority.get(priority.value, 0) + 1

        return self._finish(stats, start_time)

    async def health_check(self) -> Dict[str, Any]:
        """
        Report queue reachability and scheduler liveness.

        Reads only; never claims or enqueues.
        """
        now = TimeHelper.utcnow()
        stats: Dict[str, Any] = {
            "runCount": self._run_count,
            "lastRunAt": TimeHelper.isoformat(self._last_run_at),
            "lastRun": self._last_stats.to_dict() if self._last_stats else None,
        }

        queue_ok = await self.queue.ping()
        stats["queueClient"] = "connected" if queue_ok else "unreachable"

        database_ok = True
        try:
            stats["totalActiveMonitors"] = await self.gateway.count_active_monitors()
            stats["monitorsDue"] = await self.gateway.count_due_monitors(now)
        except DatabaseException as e:
            database_ok = False
            stats["databaseError"] = e.message
            logger.warning(f"[Scheduler] Health check could not reach the database: {e}")

        return {
            "healthy": queue_ok and database_ok,
            "stats": stats,
        }

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    def _finish(self, stats: SchedulingStats, start_time: float) -> SchedulingStats:
        stats.duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._run_count += 1
        self._last_run_at = stats.started_at
        self._last_stats = stats

        if stats.errors:
            logger.warning(
                f"[Scheduler] Pass finished with errors: scanned={stats.scanned} "
                f"enqueued={stats.enqueued} skipped={stats.skipped} errors={stats.errors}"
            )
        elif stats.scanned:
            logger.info(
                f"[Scheduler] ✓ Enqueued {stats.enqueued}/{stats.scanned} checks "
                f"(skipped={stats.skipped}) in {stats.duration_ms}ms"
            )
        return stats
