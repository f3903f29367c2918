"""
Queue Exception Classes for Pulse Engine

Errors raised by check queue backends and by message decoding.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import PulseException


class QueueException(PulseException):
    """Base class for all check queue errors."""

    default_error_code = 3000
    default_recoverable = True


class QueueUnavailableError(QueueException):
    """
    Queue Unavailable Error

    Raised when the queue backend cannot be reached. Transient: callers
    log at WARNING and retry on the next cycle.
    """

    default_error_code = 3001

    def __init__(
        self,
        message: str = "Check queue is unreachable",
        backend: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if backend:
            self.details["backend"] = backend


class MessageFormatError(QueueException):
    """
    Message Format Error

    Raised when a received message body cannot be decoded into a
    CheckMessage. Permanent: the message is dead-lettered once its
    retry budget is exhausted.
    """

    default_error_code = 3002
    default_recoverable = False

    def __init__(
        self,
        message: str = "Malformed check message",
        message_id: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if message_id:
            self.details["message_id"] = message_id
