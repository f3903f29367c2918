"""
Exceptions Package for Pulse Engine

Provides the exception hierarchy used throughout the engine.
"""

from exceptions.base import (
    PulseException,
    ConfigurationError,
    InitializationError,
)

from exceptions.database import (
    DatabaseException,
    DatabaseConnectionError,
    DatabaseQueryError,
    MonitorNotFoundError,
)

from exceptions.queue import (
    QueueException,
    QueueUnavailableError,
    MessageFormatError,
)

from exceptions.monitoring import (
    MonitoringException,
    CheckProcessingError,
    NotificationError,
    UnsupportedChannelError,
)

__all__ = [
    # Base exceptions
    "PulseException",
    "ConfigurationError",
    "InitializationError",

    # Database exceptions
    "DatabaseException",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "MonitorNotFoundError",

    # Queue exceptions
    "QueueException",
    "QueueUnavailableError",
    "MessageFormatError",

    # Monitoring exceptions
    "MonitoringException",
    "CheckProcessingError",
    "NotificationError",
    "UnsupportedChannelError",
]
