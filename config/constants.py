"""
Constants Module for Pulse Engine

Contains the enumerations and static values shared by the scheduler,
the worker pool, the alert engine and the notification dispatcher.
"""

from __future__ import annotations

from enum import Enum
from typing import Final, FrozenSet


class MonitorStatus(str, Enum):
    """
    Persisted monitor status.

    PENDING is the status of a monitor that has never been checked.
    UNKNOWN is reserved for monitors whose state could not be determined.
    """

    UP = "up"
    DOWN = "down"
    PENDING = "pending"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def is_unhealthy(self) -> bool:
        return self in (MonitorStatus.DOWN, MonitorStatus.TIMEOUT)


class CheckOutcome(str, Enum):
    """Classification of a single completed probe."""

    UP = "up"
    DOWN = "down"
    TIMEOUT = "timeout"

    @property
    def is_failure(self) -> bool:
        return self is not CheckOutcome.UP

    def as_status(self) -> MonitorStatus:
        return MonitorStatus(self.value)


class AlertEventType(str, Enum):
    """Kind of notification produced by the alert engine."""

    DOWN = "down"
    TIMEOUT = "timeout"
    UP = "up"

    @classmethod
    def for_outcome(cls, outcome: CheckOutcome) -> "AlertEventType":
        return cls(outcome.value)


class AlertLogStatus(str, Enum):
    """Delivery state of an AlertLog row."""

    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class ChannelType(str, Enum):
    """Notification channel types understood by the dispatcher."""

    EMAIL = "email"
    SMS = "sms"
    WEBHOOK = "webhook"


class MessageType(str, Enum):
    """Queue message types."""

    MONITOR_CHECK = "MONITOR_CHECK"


class Priority(str, Enum):
    """
    Check priority.

    Within a single scheduling pass, messages are enqueued in the order
    CRITICAL, HIGH, NORMAL, LOW.
    """

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


class Defaults:
    """Default values used when a message or record omits a field."""

    MESSAGE_VERSION: Final[str] = "1.0"
    MAX_RETRIES: Final[int] = 3
    TIMEOUT_SECONDS: Final[int] = 10
    EXPECTED_DURATION_MS: Final[int] = 15000
    USER_AGENT: Final[str] = "Pulse-Engine-Monitor/1.0"
    CONSECUTIVE_FAILURES_THRESHOLD: Final[int] = 1
    COOLDOWN_MINUTES: Final[int] = 0


class Limits:
    """Hard bounds enforced on records and probes."""

    MIN_INTERVAL_MINUTES: Final[int] = 1
    MAX_INTERVAL_MINUTES: Final[int] = 1440
    MAX_TIMEOUT_SECONDS: Final[int] = 120
    MAX_ERROR_MESSAGE_LENGTH: Final[int] = 500


# HTTP status codes counted as "up": every 2xx and 3xx response.
UP_STATUS_RANGE: Final[range] = range(200, 400)

# Statuses that mark a monitor as unhealthy for recovery detection.
UNHEALTHY_STATUSES: Final[FrozenSet[MonitorStatus]] = frozenset(
    {MonitorStatus.DOWN, MonitorStatus.TIMEOUT}
)
