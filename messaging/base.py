"""
Check Queue Interface for Pulse Engine

The scheduler and the worker pool depend on this capability interface
only. Backends provide at-least-once delivery with a visibility
timeout: a received message that is neither acknowledged nor released
becomes visible again once the timeout expires.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from messaging.messages import CheckMessage, ReceivedMessage


@dataclass
class QueueStats:
    """Point-in-time queue depth figures."""

    backend: str
    visible: int = 0
    in_flight: int = 0
    dead_letter: int = 0

    @property
    def depth(self) -> int:
        return self.visible + self.in_flight

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["depth"] = self.depth
        return data


class CheckQueue(ABC):
    """Abstract check queue."""

    backend_name: str = "abstract"

    @abstractmethod
    async def enqueue(self, message: CheckMessage) -> str:
        """
        Send one message.

        Returns:
            Backend message id

        Raises:
            QueueUnavailableError: the backend could not be reached
        """

    @abstractmethod
    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: Optional[float] = None
    ) -> List[ReceivedMessage]:
        """Receive up to ``max_messages`` visible messages, waiting if empty."""

    @abstractmethod
    async def acknowledge(self, received: ReceivedMessage) -> None:
        """Delete a successfully processed message."""

    @abstractmethod
    async def release(self, received: ReceivedMessage, delay_seconds: float = 0) -> None:
        """Abandon a delivery; the message becomes visible again after the delay."""

    @abstractmethod
    async def dead_letter(self, received: ReceivedMessage, reason: str) -> None:
        """Move a message to the dead-letter destination."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""

    @abstractmethod
    async def queue_stats(self) -> QueueStats:
        """Report visible, in-flight and dead-letter counts."""

    async def close(self) -> None:
        """Release backend resources."""
