"""
============================================================================
PULSE ENGINE - NOTIFICATION DISPATCHER
============================================================================
Fans firing decisions out to channel senders and records every attempt
in the alert log.

    dispatch(snapshot, rule, event_type) -> AlertLog
        1. write a ``pending`` alert log row
        2. validate the channel config and invoke the sender
           registered for the channel's type
        3. update the row to ``sent`` or ``failed``

There is no retry inside a dispatch. The decisions of one check are
dispatched concurrently; one channel's failure never blocks the others.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from config.constants import AlertEventType, AlertLogStatus, ChannelType
from database.gateway import DataStoreGateway
from database.models import AlertLog, AlertRule, NotificationChannel
from exceptions.monitoring import NotificationError, UnsupportedChannelError
from monitoring.alerts import AlertDecision, MonitorSnapshot
from monitoring.channels import ChannelSender, SendResult
from utils.helpers import TimeHelper
from utils.logger import get_logger
from utils.validators import validate_channel_config


logger = get_logger("Dispatcher")


class NotificationDispatcher:
    """
    Parameters
    ----------
    gateway : DataStoreGateway
        Used to write and update alert log rows.
    senders : Mapping[ChannelType, ChannelSender]
        Sender per channel type.
    """

    def __init__(
        self,
        gateway: DataStoreGateway,
        senders: Mapping[ChannelType, ChannelSender]
    ):
        self.gateway = gateway
        self.senders: Dict[ChannelType, ChannelSender] = dict(senders)

        self._sent_count = 0
        self._failed_count = 0

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        snapshot: MonitorSnapshot,
        rule: AlertRule,
        event_type: AlertEventType,
        now: Optional[datetime] = None
    ) -> AlertLog:
        """
        Deliver one alert through the rule's channel.

        ``now`` becomes the alert log's ``created_at``, which is what
        cooldown windows are measured from.
        """
        now = now or TimeHelper.utcnow()

        entry = await self.gateway.write_alert_log(AlertLog(
            monitor_id=snapshot.monitor_id,
            notification_channel_id=rule.notification_channel_id,
            alert_type=event_type.value,
            status=AlertLogStatus.PENDING.value,
            created_at=now,
        ))

        try:
            channel = await self._resolve_channel(rule)
            sender = self._sender_for(channel)
            result = await sender.send(channel.config or {}, event_type, snapshot)
        except NotificationError as e:
            result = SendResult(success=False, error=e.message)
        except Exception as e:
            # Any other sender failure also ends the row as failed
            logger.exception(
                f"[Dispatcher] Sender for channel {rule.notification_channel_id} raised unexpectedly"
            )
            result = SendResult(success=False, error=f"{type(e).__name__}: {e}")

        if result.success:
            self._sent_count += 1
            updated = await self.gateway.update_alert_log(
                entry.id,
                AlertLogStatus.SENT,
                sent_at=TimeHelper.utcnow(),
            )
            logger.info(
                f"[Dispatcher] ✓ {event_type.value} alert for monitor {snapshot.monitor_id} "
                f"sent via channel {rule.notification_channel_id}"
            )
        else:
            self._failed_count += 1
            updated = await self.gateway.update_alert_log(
                entry.id,
                AlertLogStatus.FAILED,
                error_message=result.error,
            )
            logger.warning(
                f"[Dispatcher] {event_type.value} alert for monitor {snapshot.monitor_id} "
                f"via channel {rule.notification_channel_id} failed: {result.error}"
            )

        return updated or entry

    async def dispatch_all(
        self,
        snapshot: MonitorSnapshot,
        decisions: List[AlertDecision],
        now: Optional[datetime] = None
    ) -> List[AlertLog]:
        """Dispatch every decision concurrently; returns the logs written."""
        if not decisions:
            return []

        results = await asyncio.gather(
            *(
                self.dispatch(snapshot, decision.rule, decision.event_type, now)
                for decision in decisions
            ),
            return_exceptions=True
        )

        logs: List[AlertLog] = []
        for decision, result in zip(decisions, results):
            if isinstance(result, BaseException):
                # The alert log itself could not be written
                logger.error(
                    f"[Dispatcher] Dispatch for rule {decision.rule.id} raised: {result}"
                )
                continue
            logs.append(result)

        return logs

    def get_stats(self) -> Dict[str, int]:
        return {
            "sent": self._sent_count,
            "failed": self._failed_count,
        }

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    async def _resolve_channel(self, rule: AlertRule) -> NotificationChannel:
        channel = rule.__dict__.get("channel")
        if channel is None:
            channel = await self.gateway.get_channel(rule.notification_channel_id)
        if channel is None:
            raise NotificationError(
                f"Notification channel {rule.notification_channel_id} not found"
            )
        return channel

    def _sender_for(self, channel: NotificationChannel) -> ChannelSender:
        try:
            sender = self.senders.get(ChannelType(channel.type))
        except ValueError:
            sender = None
        if sender is None:
            raise UnsupportedChannelError(
                f"Unsupported alert type: {channel.type}",
                channel_type=str(channel.type),
            )

        validation = validate_channel_config(channel.type, channel.config)
        if not validation:
            raise NotificationError(
                f"Invalid channel configuration: {', '.join(validation.errors)}",
                channel_type=str(channel.type),
            )
        return sender
