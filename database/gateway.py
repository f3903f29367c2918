"""
============================================================================
PULSE ENGINE - DATA STORE GATEWAY
============================================================================
Narrow data-access interface used by the scheduler, the worker pool,
the alert rule engine and the notification dispatcher.

Every method opens its own short transaction through
DatabaseManager.session(). Returned ORM objects are detached and safe
to read after the call.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import contains_eager

from config.constants import (
    AlertEventType,
    AlertLogStatus,
    CheckOutcome,
    Limits,
    MonitorStatus,
)
from database.manager import DatabaseManager
from database.models import (
    AlertLog,
    AlertRule,
    Monitor,
    MonitoringHistory,
    NotificationChannel,
)
from exceptions.database import MonitorNotFoundError
from utils.helpers import StringHelper
from utils.logger import get_logger


logger = get_logger("Gateway")


@dataclass(frozen=True)
class CheckWriteResult:
    """
    Outcome of persisting one check.

    When ``duplicate`` is True the check id was already recorded and
    nothing was written; the remaining fields describe the current row.
    """

    monitor: Monitor
    previous_status: MonitorStatus
    previous_failure_count: int
    failure_count: int
    duplicate: bool = False


class DataStoreGateway:
    """
    SQLAlchemy implementation of the data store gateway.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    # ------------------------------------------------------------------
    # SCHEDULER
    # ------------------------------------------------------------------

    def _due_clause(self, now: datetime):
        return and_(
            Monitor.is_active.is_(True),
            or_(Monitor.next_check_at.is_(None), Monitor.next_check_at <= now),
        )

    async def get_due_monitors(self, now: datetime, limit: int = 50) -> List[Monitor]:
        """
        Active monitors whose next check is due, oldest first.

        Never-scheduled monitors (NULL next_check_at) sort first.
        """
        stmt = (
            select(Monitor)
            .where(self._due_clause(now))
            .order_by(Monitor.next_check_at.asc().nulls_first(), Monitor.id.asc())
            .limit(limit)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def claim_next_check(
        self,
        monitor_id: int,
        expected_next_check_at: Optional[datetime],
        new_next_check_at: datetime
    ) -> bool:
        """
        Compare-and-swap ``next_check_at``.

        Returns True only if the row still held ``expected_next_check_at``
        and was updated by this call.
        """
        if expected_next_check_at is None:
            matches_expected = Monitor.next_check_at.is_(None)
        else:
            matches_expected = Monitor.next_check_at == expected_next_check_at

        stmt = (
            update(Monitor)
            .where(
                Monitor.id == monitor_id,
                Monitor.is_active.is_(True),
                matches_expected,
            )
            .values(next_check_at=new_next_check_at)
            .execution_options(synchronize_session=False)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def count_active_monitors(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count(Monitor.id)).where(Monitor.is_active.is_(True))
            ) or 0

    async def count_due_monitors(self, now: datetime) -> int:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count(Monitor.id)).where(self._due_clause(now))
            ) or 0

    # ------------------------------------------------------------------
    # WORKER
    # ------------------------------------------------------------------

    async def get_monitor(self, monitor_id: int) -> Optional[Monitor]:
        async with self.db.session() as session:
            return await session.get(Monitor, monitor_id)

    async def write_check_result(
        self,
        monitor_id: int,
        check_id: str,
        outcome: CheckOutcome,
        response_time: Optional[float],
        checked_at: datetime,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> CheckWriteResult:
        """
        Append a history row and update the monitor in one transaction.

        Raises:
            MonitorNotFoundError: the monitor no longer exists
        """
        if error_message:
            error_message = StringHelper.truncate(
                error_message, Limits.MAX_ERROR_MESSAGE_LENGTH
            )

        async with self.db.session() as session:
            monitor = await session.scalar(
                select(Monitor).where(Monitor.id == monitor_id).with_for_update()
            )
            if monitor is None:
                raise MonitorNotFoundError(monitor_id)

            previous_status = monitor.monitor_status
            previous_count = monitor.consecutive_failure_count or 0

            session.add(MonitoringHistory(
                monitor_id=monitor_id,
                check_id=check_id,
                checked_at=checked_at,
                status=outcome.value,
                response_time=response_time,
                status_code=status_code,
                error_message=error_message,
            ))

            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    f"[Gateway] Check {check_id} already recorded for monitor {monitor_id}"
                )
                current = await session.get(Monitor, monitor_id)
                return CheckWriteResult(
                    monitor=current,
                    previous_status=current.monitor_status,
                    previous_failure_count=current.consecutive_failure_count,
                    failure_count=current.consecutive_failure_count,
                    duplicate=True,
                )

            monitor.record_check(outcome, response_time, checked_at)
            await session.flush()

            return CheckWriteResult(
                monitor=monitor,
                previous_status=previous_status,
                previous_failure_count=previous_count,
                failure_count=monitor.consecutive_failure_count,
            )

    # ------------------------------------------------------------------
    # ALERTING
    # ------------------------------------------------------------------

    async def get_active_rules(self, monitor_id: int) -> List[AlertRule]:
        """Active rules of a monitor whose channel is active, channel loaded."""
        stmt = (
            select(AlertRule)
            .join(AlertRule.channel)
            .options(contains_eager(AlertRule.channel))
            .where(
                AlertRule.monitor_id == monitor_id,
                AlertRule.is_active.is_(True),
                NotificationChannel.is_active.is_(True),
            )
            .order_by(AlertRule.id)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().unique().all())

    async def get_channel(self, channel_id: int) -> Optional[NotificationChannel]:
        async with self.db.session() as session:
            return await session.get(NotificationChannel, channel_id)

    async def get_last_fired(
        self,
        rule: AlertRule,
        alert_type: AlertEventType
    ) -> Optional[datetime]:
        """
        Creation time of the latest alert log for the rule's monitor and
        channel with the given alert type, whatever its delivery status.
        """
        async with self.db.session() as session:
            return await session.scalar(
                select(func.max(AlertLog.created_at)).where(
                    AlertLog.monitor_id == rule.monitor_id,
                    AlertLog.notification_channel_id == rule.notification_channel_id,
                    AlertLog.alert_type == AlertEventType(alert_type).value,
                )
            )

    async def write_alert_log(self, entry: AlertLog) -> AlertLog:
        async with self.db.session() as session:
            session.add(entry)
            await session.flush()
            return entry

    async def update_alert_log(
        self,
        log_id: int,
        status: AlertLogStatus,
        error_message: Optional[str] = None,
        sent_at: Optional[datetime] = None
    ) -> Optional[AlertLog]:
        if error_message:
            error_message = StringHelper.truncate(
                error_message, Limits.MAX_ERROR_MESSAGE_LENGTH
            )

        async with self.db.session() as session:
            entry = await session.get(AlertLog, log_id)
            if entry is None:
                logger.warning(f"[Gateway] Alert log {log_id} vanished before update")
                return None
            entry.status = AlertLogStatus(status).value
            entry.error_message = error_message
            entry.sent_at = sent_at
            await session.flush()
            return entry
