"""
Messaging Package for Pulse Engine

The check queue interface, its backends and the MONITOR_CHECK message.
"""

from config.settings import QueueBackend, QueueSettings
from messaging.base import CheckQueue, QueueStats
from messaging.messages import (
    CheckConfig,
    CheckMessage,
    CheckPayload,
    MonitorData,
    PreviousCheck,
    ReceivedMessage,
)
from messaging.memory import InMemoryCheckQueue
from messaging.redis_streams import RedisStreamCheckQueue


def build_queue(settings: QueueSettings) -> CheckQueue:
    """Create the configured queue backend."""
    if settings.backend == QueueBackend.REDIS:
        return RedisStreamCheckQueue(settings)

    return InMemoryCheckQueue(
        visibility_timeout=settings.visibility_timeout,
        max_receive_count=settings.max_retries + 1,
    )


__all__ = [
    "CheckQueue",
    "QueueStats",
    "CheckConfig",
    "CheckMessage",
    "CheckPayload",
    "MonitorData",
    "PreviousCheck",
    "ReceivedMessage",
    "InMemoryCheckQueue",
    "RedisStreamCheckQueue",
    "build_queue",
]
