"""
In-Process Check Queue for Pulse Engine

Single-process queue with visibility timeouts, receive counts and a
redrive policy that moves a message to the dead-letter list once it
has been received more than ``max_receive_count`` times.

Suitable for development, single-process deployments and tests.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from messaging.base import CheckQueue, QueueStats
from messaging.messages import CheckMessage, ReceivedMessage
from utils.logger import get_logger


logger = get_logger("MemoryQueue")


@dataclass
class _Entry:
    queue_message_id: str
    body: str
    visible_at: float
    receive_count: int = 0
    receipt_handle: Optional[str] = None


@dataclass
class DeadLetter:
    queue_message_id: str
    body: str
    reason: str
    receive_count: int


class InMemoryCheckQueue(CheckQueue):
    """
    asyncio in-memory queue.

    Args:
        visibility_timeout: Seconds a received message stays hidden
        max_receive_count: Deliveries allowed before redrive to the
            dead-letter list; None disables redrive
        clock: Monotonic clock, injectable for tests
    """

    backend_name = "memory"

    def __init__(
        self,
        visibility_timeout: float = 60,
        max_receive_count: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self._clock = clock

        # Insertion ordered, so scans are FIFO
        self._entries: Dict[str, _Entry] = {}
        self._dead_letters: List[DeadLetter] = []
        self._available = asyncio.Event()

    @property
    def dead_letters(self) -> List[DeadLetter]:
        return list(self._dead_letters)

    # ------------------------------------------------------------------
    # CheckQueue
    # ------------------------------------------------------------------

    async def enqueue(self, message: CheckMessage) -> str:
        queue_message_id = str(uuid.uuid4())
        self._entries[queue_message_id] = _Entry(
            queue_message_id=queue_message_id,
            body=message.to_json(),
            visible_at=self._clock(),
        )
        self._available.set()
        logger.debug(f"[MemoryQueue] Enqueued {message.message_id} as {queue_message_id}")
        return queue_message_id

    async def enqueue_raw(self, body: str) -> str:
        """Enqueue an arbitrary body; used to exercise malformed-message handling."""
        queue_message_id = str(uuid.uuid4())
        self._entries[queue_message_id] = _Entry(
            queue_message_id=queue_message_id,
            body=body,
            visible_at=self._clock(),
        )
        self._available.set()
        return queue_message_id

    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: Optional[float] = None
    ) -> List[ReceivedMessage]:
        received = self._collect(max_messages)
        if received or not wait_seconds:
            return received

        self._available.clear()
        try:
            await asyncio.wait_for(self._available.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            pass

        return self._collect(max_messages)

    async def acknowledge(self, received: ReceivedMessage) -> None:
        entry = self._current(received)
        if entry is None:
            return
        del self._entries[entry.queue_message_id]

    async def release(self, received: ReceivedMessage, delay_seconds: float = 0) -> None:
        entry = self._current(received)
        if entry is None:
            return
        entry.visible_at = self._clock() + max(0.0, delay_seconds)
        entry.receipt_handle = None
        self._available.set()

    async def dead_letter(self, received: ReceivedMessage, reason: str) -> None:
        entry = self._entries.pop(received.queue_message_id, None)
        if entry is None:
            return
        self._move_to_dead_letter(entry, reason)

    async def ping(self) -> bool:
        return True

    async def queue_stats(self) -> QueueStats:
        now = self._clock()
        visible = sum(1 for entry in self._entries.values() if entry.visible_at <= now)
        return QueueStats(
            backend=self.backend_name,
            visible=visible,
            in_flight=len(self._entries) - visible,
            dead_letter=len(self._dead_letters),
        )

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    def _collect(self, max_messages: int) -> List[ReceivedMessage]:
        now = self._clock()
        batch: List[ReceivedMessage] = []

        for entry in list(self._entries.values()):
            if len(batch) >= max_messages:
                break
            if entry.visible_at > now:
                continue

            if (
                self.max_receive_count is not None
                and entry.receive_count >= self.max_receive_count
            ):
                del self._entries[entry.queue_message_id]
                self._move_to_dead_letter(entry, "maximum receive count exceeded")
                logger.error(
                    f"[MemoryQueue] Message {entry.queue_message_id} redriven to the "
                    f"dead-letter list after {entry.receive_count} receive(s)"
                )
                continue

            entry.receive_count += 1
            entry.receipt_handle = str(uuid.uuid4())
            entry.visible_at = now + self.visibility_timeout

            batch.append(ReceivedMessage(
                queue_message_id=entry.queue_message_id,
                receipt_handle=entry.receipt_handle,
                body=entry.body,
                receive_count=entry.receive_count,
            ))

        return batch

    def _current(self, received: ReceivedMessage) -> Optional[_Entry]:
        """The entry if ``received`` is still its latest delivery."""
        entry = self._entries.get(received.queue_message_id)
        if entry is None or entry.receipt_handle != received.receipt_handle:
            logger.debug(
                f"[MemoryQueue] Stale receipt for {received.queue_message_id}, ignoring"
            )
            return None
        return entry

    def _move_to_dead_letter(self, entry: _Entry, reason: str) -> None:
        self._dead_letters.append(DeadLetter(
            queue_message_id=entry.queue_message_id,
            body=entry.body,
            reason=reason,
            receive_count=entry.receive_count,
        ))
