"""
============================================================================
PULSE ENGINE - DATABASE MODELS
============================================================================
SQLAlchemy ORM models for monitors, check history, notification
channels, alert rules and the alert log.

All timestamps are stored as naive UTC datetimes.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Float, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from config.constants import (
    AlertLogStatus,
    CheckOutcome,
    Defaults,
    MonitorStatus,
)
from utils.helpers import TimeHelper


# ============================================================================
# BASE MODEL CONFIGURATION
# ============================================================================

Base = declarative_base()


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.
    """
    created_at = Column(
        DateTime,
        nullable=False,
        default=TimeHelper.utcnow,
        index=True
    )
    updated_at = Column(
        DateTime,
        nullable=False,
        default=TimeHelper.utcnow,
        onupdate=TimeHelper.utcnow
    )


# ============================================================================
# MONITOR MODEL
# ============================================================================

class Monitor(Base, TimestampMixin):
    """
    An HTTP endpoint checked on a fixed interval.

    The scheduler only writes ``next_check_at``. The worker pool only
    writes the status fields (status, response_time, last_checked_at,
    consecutive_failure_count).
    """
    __tablename__ = "monitors"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Owner (external account id)
    user_id = Column(String(64), nullable=False, index=True)

    # Target
    url = Column(Text, nullable=False)
    name = Column(String(255), nullable=False)
    interval_minutes = Column(Integer, nullable=False, default=5)
    timeout_seconds = Column(Integer, nullable=True)
    headers = Column(JSON, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Status fields
    status = Column(
        String(16),
        nullable=False,
        default=MonitorStatus.PENDING.value
    )
    response_time = Column(Float, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    consecutive_failure_count = Column(Integer, nullable=False, default=0)

    # Scheduling
    next_check_at = Column(DateTime, nullable=True)

    # Relationships
    history = relationship(
        "MonitoringHistory",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    alert_rules = relationship(
        "AlertRule",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_monitor_due", "is_active", "next_check_at"),
        CheckConstraint("interval_minutes >= 1", name="ck_monitor_interval_positive"),
        CheckConstraint(
            "consecutive_failure_count >= 0",
            name="ck_monitor_failure_count_non_negative"
        ),
    )

    @property
    def monitor_status(self) -> MonitorStatus:
        try:
            return MonitorStatus(self.status)
        except ValueError:
            return MonitorStatus.UNKNOWN

    @property
    def is_down(self) -> bool:
        return self.monitor_status.is_unhealthy

    def record_check(
        self,
        outcome: CheckOutcome,
        response_time: Optional[float],
        checked_at: datetime
    ) -> None:
        """
        Apply a completed check to the status fields.

        The failure counter resets on ``up`` and increments on
        ``down`` / ``timeout``. A check older than ``last_checked_at``
        (a late redelivery) still moves the counter but leaves the
        latest status, response time and timestamp in place.
        """
        checked_at = TimeHelper.to_naive_utc(checked_at)
        if self.last_checked_at is None or checked_at >= self.last_checked_at:
            self.status = outcome.as_status().value
            self.response_time = response_time
            self.last_checked_at = checked_at

        if outcome.is_failure:
            self.consecutive_failure_count = (self.consecutive_failure_count or 0) + 1
        else:
            self.consecutive_failure_count = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert monitor to dictionary"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "url": self.url,
            "interval_minutes": self.interval_minutes,
            "is_active": self.is_active,
            "status": self.status,
            "response_time": self.response_time,
            "last_checked_at": TimeHelper.isoformat(self.last_checked_at),
            "next_check_at": TimeHelper.isoformat(self.next_check_at),
            "consecutive_failure_count": self.consecutive_failure_count,
        }

    def __repr__(self) -> str:
        return f"<Monitor(id={self.id}, name={self.name!r}, status={self.status})>"


# ============================================================================
# MONITORING HISTORY MODEL
# ============================================================================

class MonitoringHistory(Base):
    """
    Append-only record of one completed check attempt.

    ``check_id`` is the queue message id; the unique constraint keeps a
    redelivered message from producing a second row.
    """
    __tablename__ = "monitoring_history"

    id = Column(Integer, primary_key=True, autoincrement=True)

    monitor_id = Column(
        Integer,
        ForeignKey("monitors.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    check_id = Column(String(128), nullable=False)

    checked_at = Column(DateTime, nullable=False, default=TimeHelper.utcnow, index=True)
    status = Column(String(16), nullable=False)
    response_time = Column(Float, nullable=True)
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    monitor = relationship("Monitor", back_populates="history")

    __table_args__ = (
        UniqueConstraint("monitor_id", "check_id", name="uq_history_monitor_check"),
        Index("idx_history_monitor_checked", "monitor_id", "checked_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MonitoringHistory(monitor_id={self.monitor_id}, "
            f"status={self.status}, checked_at={self.checked_at})>"
        )


# ============================================================================
# NOTIFICATION CHANNEL MODEL
# ============================================================================

class NotificationChannel(Base, TimestampMixin):
    """
    A user's destination for alerts (email address, phone, webhook).
    """
    __tablename__ = "notification_channels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)

    type = Column(String(16), nullable=False)
    name = Column(String(255), nullable=False)
    config = Column(JSON, nullable=False, default=dict)

    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)

    alert_rules = relationship(
        "AlertRule",
        back_populates="channel",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<NotificationChannel(id={self.id}, type={self.type})>"


# ============================================================================
# ALERT RULE MODEL
# ============================================================================

class AlertRule(Base, TimestampMixin):
    """
    Binds a monitor to a notification channel with firing conditions.
    """
    __tablename__ = "alert_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)

    monitor_id = Column(
        Integer,
        ForeignKey("monitors.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    notification_channel_id = Column(
        Integer,
        ForeignKey("notification_channels.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    alert_on_down = Column(Boolean, nullable=False, default=True)
    alert_on_up = Column(Boolean, nullable=False, default=False)
    alert_on_timeout = Column(Boolean, nullable=False, default=True)

    consecutive_failures_threshold = Column(
        Integer,
        nullable=False,
        default=Defaults.CONSECUTIVE_FAILURES_THRESHOLD
    )
    cooldown_minutes = Column(
        Integer,
        nullable=False,
        default=Defaults.COOLDOWN_MINUTES
    )

    is_active = Column(Boolean, nullable=False, default=True)

    monitor = relationship("Monitor", back_populates="alert_rules")
    channel = relationship("NotificationChannel", back_populates="alert_rules")

    __table_args__ = (
        UniqueConstraint(
            "monitor_id",
            "notification_channel_id",
            name="uq_alert_rule_monitor_channel"
        ),
        CheckConstraint(
            "consecutive_failures_threshold >= 1",
            name="ck_rule_threshold_positive"
        ),
        CheckConstraint("cooldown_minutes >= 0", name="ck_rule_cooldown_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<AlertRule(id={self.id}, monitor_id={self.monitor_id}, "
            f"channel_id={self.notification_channel_id})>"
        )


# ============================================================================
# ALERT LOG MODEL
# ============================================================================

class AlertLog(Base):
    """
    One dispatch attempt of an alert to a channel.

    Used for audit and for the per-rule cooldown window.
    """
    __tablename__ = "alert_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    monitor_id = Column(
        Integer,
        ForeignKey("monitors.id", ondelete="CASCADE"),
        nullable=False
    )
    notification_channel_id = Column(
        Integer,
        ForeignKey("notification_channels.id", ondelete="CASCADE"),
        nullable=False
    )

    alert_type = Column(String(16), nullable=False)
    status = Column(
        String(16),
        nullable=False,
        default=AlertLogStatus.PENDING.value
    )
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=TimeHelper.utcnow)
    sent_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "idx_alert_log_last_fired",
            "monitor_id",
            "notification_channel_id",
            "alert_type",
            "created_at"
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "monitor_id": self.monitor_id,
            "notification_channel_id": self.notification_channel_id,
            "alert_type": self.alert_type,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": TimeHelper.isoformat(self.created_at),
            "sent_at": TimeHelper.isoformat(self.sent_at),
        }

    def __repr__(self) -> str:
        return (
            f"<AlertLog(id={self.id}, monitor_id={self.monitor_id}, "
            f"type={self.alert_type}, status={self.status})>"
        )
