"""
Configuration Package for Pulse Engine

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the engine
"""

from config.settings import (
    Settings,
    DatabaseSettings,
    QueueSettings,
    SchedulerSettings,
    WorkerSettings,
    NotificationSettings,
    LoggingSettings,
    ControlSettings,
    Environment,
    QueueBackend,
    get_settings,
)

from config.constants import (
    MonitorStatus,
    CheckOutcome,
    AlertEventType,
    AlertLogStatus,
    ChannelType,
    MessageType,
    Priority,
    Defaults,
    Limits,
)

__all__ = [
    # Settings
    "Settings",
    "DatabaseSettings",
    "QueueSettings",
    "SchedulerSettings",
    "WorkerSettings",
    "NotificationSettings",
    "LoggingSettings",
    "ControlSettings",
    "Environment",
    "QueueBackend",
    "get_settings",

    # Constants
    "MonitorStatus",
    "CheckOutcome",
    "AlertEventType",
    "AlertLogStatus",
    "ChannelType",
    "MessageType",
    "Priority",
    "Defaults",
    "Limits",
]
