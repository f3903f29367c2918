"""
============================================================================
PULSE ENGINE - ALERT RULE ENGINE
============================================================================
Decides, for one persisted check, which alert rules fire.

Per-monitor state machine
-------------------------
    HEALTHY ──down/timeout──▶ DEGRADING(n) ──n reaches threshold──▶ ALERTED
       ▲                          │                                   │
       └──────────── up ──────────┴────── up ──▶ RECOVERED ───────────┘

The failure count lives on the Monitor row (consecutive_failure_count)
and is maintained by the gateway when the check is written. The time a
rule last fired is derived from the alert log.

Firing rules
------------
* up           count is reset. Rules with alert_on_up fire a recovery
               notification when the previous persisted status was down
               or timeout.
* down/timeout rules whose flag matches the outcome fire when
               count == threshold, or when count > threshold and the
               cooldown has elapsed since the rule last fired.
* Every firing is suppressed while now - last_fired < cooldown_minutes.

A redelivered check (duplicate history write) never reaches the rules.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config.constants import AlertEventType, CheckOutcome, MonitorStatus
from database.gateway import CheckWriteResult, DataStoreGateway
from database.models import AlertRule
from exceptions.database import DatabaseException
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("AlertEngine")


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class MonitorSnapshot:
    """
    What channel senders get to see about the monitor when an alert fires.
    """
    monitor_id: int
    user_id: str
    name: str
    url: str
    status: MonitorStatus
    previous_status: MonitorStatus
    consecutive_failures: int
    checked_at: datetime
    response_time: Optional[float] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monitor_id": self.monitor_id,
            "user_id": self.user_id,
            "name": self.name,
            "url": self.url,
            "status": self.status.value,
            "previous_status": self.previous_status.value,
            "consecutive_failures": self.consecutive_failures,
            "checked_at": TimeHelper.isoformat(self.checked_at),
            "response_time": self.response_time,
            "status_code": self.status_code,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class AlertDecision:
    """A rule that fired, and for which event."""
    rule: AlertRule
    event_type: AlertEventType
    reason: str


# ============================================================================
# ENGINE
# ============================================================================

class AlertRuleEngine:
    """
    Stateless evaluator; all state is read from the data store.
    """

    def __init__(self, gateway: DataStoreGateway):
        self.gateway = gateway

    async def evaluate(
        self,
        write: CheckWriteResult,
        outcome: CheckOutcome,
        now: Optional[datetime] = None
    ) -> List[AlertDecision]:
        """
        Evaluate every active rule of the monitor against one check.

        Data store failures are logged and yield no decisions.
        """
        if write.duplicate:
            logger.debug(
                f"[AlertEngine] Duplicate delivery for monitor {write.monitor.id}, "
                f"skipping evaluation"
            )
            return []

        now = now or TimeHelper.utcnow()
        monitor_id = write.monitor.id

        try:
            rules = await self.gateway.get_active_rules(monitor_id)
        except DatabaseException as e:
            logger.warning(f"[AlertEngine] Could not load rules for monitor {monitor_id}: {e}")
            return []

        decisions: List[AlertDecision] = []

        try:
            for rule in rules:
                if not self._is_well_formed(rule):
                    logger.warning(f"[AlertEngine] Ignoring malformed rule {rule.id}")
                    continue

                if outcome == CheckOutcome.UP:
                    decision = await self._evaluate_recovery(rule, write, now)
                else:
                    decision = await self._evaluate_failure(rule, write, outcome, now)

                if decision is not None:
                    decisions.append(decision)
        except DatabaseException as e:
            logger.warning(
                f"[AlertEngine] Alert history unavailable for monitor {monitor_id}, "
                f"skipping evaluation: {e}"
            )
            return []

        for decision in decisions:
            log = logger.info if decision.event_type == AlertEventType.UP else logger.warning
            log(
                f"[AlertEngine] Rule {decision.rule.id} fired {decision.event_type.value} "
                f"for monitor {monitor_id} ({decision.reason})"
            )

        return decisions

    # ------------------------------------------------------------------
    # RECOVERY
    # ------------------------------------------------------------------

    async def _evaluate_recovery(
        self,
        rule: AlertRule,
        write: CheckWriteResult,
        now: datetime
    ) -> Optional[AlertDecision]:
        if not rule.alert_on_up:
            return None
        if not write.previous_status.is_unhealthy:
            return None

        last_fired = await self.gateway.get_last_fired(rule, AlertEventType.UP)
        if not self._cooldown_elapsed(rule, last_fired, now):
            logger.debug(f"[AlertEngine] Recovery for rule {rule.id} suppressed by cooldown")
            return None

        return AlertDecision(
            rule=rule,
            event_type=AlertEventType.UP,
            reason=f"recovered from {write.previous_status.value}",
        )

    # ------------------------------------------------------------------
    # FAILURE
    # ------------------------------------------------------------------

    async def _evaluate_failure(
        self,
        rule: AlertRule,
        write: CheckWriteResult,
        outcome: CheckOutcome,
        now: datetime
    ) -> Optional[AlertDecision]:
        event_type = AlertEventType.for_outcome(outcome)

        if event_type == AlertEventType.DOWN and not rule.alert_on_down:
            return None
        if event_type == AlertEventType.TIMEOUT and not rule.alert_on_timeout:
            return None

        count = write.failure_count
        threshold = rule.consecutive_failures_threshold
        if count < threshold:
            return None

        # down and timeout alerts belong to the same incident and share a cooldown
        last_down = await self.gateway.get_last_fired(rule, AlertEventType.DOWN)
        last_timeout = await self.gateway.get_last_fired(rule, AlertEventType.TIMEOUT)
        fired = [ts for ts in (last_down, last_timeout) if ts is not None]
        last_fired = max(fired) if fired else None

        cooldown_elapsed = self._cooldown_elapsed(rule, last_fired, now)

        if count == threshold and cooldown_elapsed:
            reason = f"{count} consecutive failure(s) reached threshold {threshold}"
        elif count > threshold and cooldown_elapsed:
            reason = f"{count} consecutive failures, cooldown elapsed"
        else:
            logger.debug(
                f"[AlertEngine] Rule {rule.id} suppressed by cooldown "
                f"(count={count}, last_fired={last_fired})"
            )
            return None

        return AlertDecision(rule=rule, event_type=event_type, reason=reason)

    # ------------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------------

    @staticmethod
    def _cooldown_elapsed(rule: AlertRule, last_fired: Optional[datetime], now: datetime) -> bool:
        if last_fired is None:
            return True
        return now - last_fired >= timedelta(minutes=rule.cooldown_minutes)

    @staticmethod
    def _is_well_formed(rule: AlertRule) -> bool:
        threshold = rule.consecutive_failures_threshold
        cooldown = rule.cooldown_minutes
        return (
            isinstance(threshold, int) and threshold >= 1
            and isinstance(cooldown, int) and cooldown >= 0
            and rule.notification_channel_id is not None
        )


def build_snapshot(
    write: CheckWriteResult,
    outcome: CheckOutcome,
    checked_at: datetime,
    response_time: Optional[float] = None,
    status_code: Optional[int] = None,
    error_message: Optional[str] = None
) -> MonitorSnapshot:
    monitor = write.monitor
    return MonitorSnapshot(
        monitor_id=monitor.id,
        user_id=str(monitor.user_id),
        name=monitor.name,
        url=monitor.url,
        status=outcome.as_status(),
        previous_status=write.previous_status,
        consecutive_failures=write.failure_count,
        checked_at=checked_at,
        response_time=response_time,
        status_code=status_code,
        error_message=error_message,
    )
