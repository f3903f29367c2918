"""
Monitoring Exception Classes for Pulse Engine

A failed probe is never an exception: down and timeout are valid
results. These classes cover failures of the processing pipeline
around the probe and of notification delivery.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import PulseException


class MonitoringException(PulseException):
    """Base class for monitoring pipeline errors."""

    default_error_code = 4000


class CheckProcessingError(MonitoringException):
    """Raised when a check message cannot be processed to completion."""

    default_error_code = 4001

    def __init__(
        self,
        message: str,
        message_id: Optional[str] = None,
        monitor_id: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if message_id:
            self.details["message_id"] = message_id

        if monitor_id is not None:
            self.details["monitor_id"] = str(monitor_id)


class NotificationError(MonitoringException):
    """Raised by channel senders when a transport call fails."""

    default_error_code = 4100

    def __init__(
        self,
        message: str,
        channel_type: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if channel_type:
            self.details["channel_type"] = channel_type


class UnsupportedChannelError(NotificationError):
    """Raised when no sender is registered for a channel type."""

    default_error_code = 4101
    default_recoverable = False
