"""
Redis Streams Check Queue for Pulse Engine

Check messages are entries of a Redis Stream consumed through a
consumer group, so several worker processes share one queue.

Visibility timeout semantics map onto the pending entries list (PEL):
- a received entry stays pending until XACK
- entries idle longer than the visibility timeout are reclaimed with
  XAUTOCLAIM and delivered again, with Redis counting deliveries
- release() resets an entry's idle time with XCLAIM ... IDLE so it is
  reclaimed once the requested delay has passed
- entries delivered more than ``max_receive_count`` times are moved
  to a dead-letter stream
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

from config.settings import QueueSettings
from exceptions.queue import QueueUnavailableError
from messaging.base import CheckQueue, QueueStats
from messaging.messages import CheckMessage, ReceivedMessage
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("RedisQueue")


class RedisStreamCheckQueue(CheckQueue):
    """Redis Streams implementation of the check queue."""

    backend_name = "redis"

    def __init__(
        self,
        settings: QueueSettings,
        client: Optional[aioredis.Redis] = None,
        max_receive_count: Optional[int] = None
    ):
        self.settings = settings
        self.stream_name = settings.stream_name
        self.dead_letter_stream = settings.dead_letter_stream
        self.consumer_group = settings.consumer_group
        self.consumer_name = settings.consumer_name
        self.visibility_timeout_ms = settings.visibility_timeout * 1000
        self.max_receive_count = (
            max_receive_count if max_receive_count is not None
            else settings.max_retries + 1
        )

        self._redis = client
        self._group_ready = False

    # ------------------------------------------------------------------
    # CONNECTION
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the client and the consumer group if needed."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.settings.receive_wait_seconds + 5.0,
                socket_connect_timeout=5.0,
            )

        if self._group_ready:
            return

        try:
            await self._redis.xgroup_create(
                self.stream_name,
                self.consumer_group,
                id="0",
                mkstream=True
            )
            logger.info(f"[RedisQueue] ✓ Created consumer group {self.consumer_group}")
        except ResponseError as e:
            # Group may already exist, which is fine
            if "BUSYGROUP" not in str(e):
                raise self._unavailable("create consumer group", e) from e
        except RedisError as e:
            raise self._unavailable("create consumer group", e) from e

        self._group_ready = True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._group_ready = False

    def _unavailable(self, operation: str, error: Exception) -> QueueUnavailableError:
        logger.warning(f"[RedisQueue] {operation} failed: {error}")
        return QueueUnavailableError(
            f"Redis {operation} failed: {error}",
            backend=self.backend_name,
            cause=error
        )

    # ------------------------------------------------------------------
    # CheckQueue
    # ------------------------------------------------------------------

    async def enqueue(self, message: CheckMessage) -> str:
        await self.connect()
        fields = {
            "message_id": message.message_id,
            "body": message.to_json(),
            "enqueued_at": TimeHelper.isoformat(TimeHelper.utcnow()),
        }
        try:
            return await self._redis.xadd(
                self.stream_name,
                fields,
                maxlen=self.settings.max_stream_length,
                approximate=True
            )
        except RedisError as e:
            raise self._unavailable("XADD", e) from e

    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: Optional[float] = None
    ) -> List[ReceivedMessage]:
        await self.connect()
        try:
            batch = await self._reclaim_expired(max_messages)

            remaining = max_messages - len(batch)
            if remaining <= 0:
                return batch

            # BLOCK 0 means forever, so a zero wait must not block at all
            block = int(wait_seconds * 1000) if wait_seconds and not batch else None
            response = await self._redis.xreadgroup(
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={self.stream_name: ">"},
                count=remaining,
                block=block
            )
        except RedisError as e:
            raise self._unavailable("receive", e) from e

        for _stream, entries in response or []:
            for entry_id, fields in entries:
                batch.append(self._to_received(entry_id, fields, receive_count=1))

        return batch

    async def acknowledge(self, received: ReceivedMessage) -> None:
        await self.connect()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.xack(self.stream_name, self.consumer_group, received.receipt_handle)
                pipe.xdel(self.stream_name, received.receipt_handle)
                await pipe.execute()
        except RedisError as e:
            raise self._unavailable("XACK", e) from e

    async def release(self, received: ReceivedMessage, delay_seconds: float = 0) -> None:
        await self.connect()
        idle_ms = max(0, self.visibility_timeout_ms - int(delay_seconds * 1000))
        try:
            # JUSTID leaves the delivery counter untouched
            await self._redis.xclaim(
                self.stream_name,
                self.consumer_group,
                self.consumer_name,
                min_idle_time=0,
                message_ids=[received.receipt_handle],
                idle=idle_ms,
                justid=True
            )
        except RedisError as e:
            raise self._unavailable("XCLAIM", e) from e

    async def dead_letter(self, received: ReceivedMessage, reason: str) -> None:
        await self.connect()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.xadd(
                    self.dead_letter_stream,
                    {
                        "original_id": received.receipt_handle,
                        "body": received.body,
                        "reason": reason,
                        "receive_count": str(received.receive_count),
                        "dead_lettered_at": TimeHelper.isoformat(TimeHelper.utcnow()),
                    },
                    maxlen=self.settings.max_stream_length,
                    approximate=True
                )
                pipe.xack(self.stream_name, self.consumer_group, received.receipt_handle)
                pipe.xdel(self.stream_name, received.receipt_handle)
                await pipe.execute()
        except RedisError as e:
            raise self._unavailable("dead-letter", e) from e

    async def ping(self) -> bool:
        try:
            await self.connect()
            return bool(await self._redis.ping())
        except (RedisError, QueueUnavailableError, OSError) as e:
            logger.warning(f"[RedisQueue] Ping failed: {e}")
            return False

    async def queue_stats(self) -> QueueStats:
        await self.connect()
        try:
            length = await self._redis.xlen(self.stream_name)
            pending = await self._redis.xpending(self.stream_name, self.consumer_group)
            dead = await self._redis.xlen(self.dead_letter_stream)
        except RedisError as e:
            raise self._unavailable("stats", e) from e

        in_flight = int(pending.get("pending", 0)) if pending else 0
        return QueueStats(
            backend=self.backend_name,
            visible=max(0, length - in_flight),
            in_flight=in_flight,
            dead_letter=dead,
        )

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    async def _reclaim_expired(self, max_messages: int) -> List[ReceivedMessage]:
        """Claim entries whose visibility timeout has expired."""
        response = await self._redis.xautoclaim(
            self.stream_name,
            self.consumer_group,
            self.consumer_name,
            min_idle_time=self.visibility_timeout_ms,
            start_id="0-0",
            count=max_messages
        )
        claimed = response[1] if response and len(response) > 1 else []

        batch: List[ReceivedMessage] = []
        for entry_id, fields in claimed:
            if not fields:
                # Entry was deleted while pending
                await self._redis.xack(self.stream_name, self.consumer_group, entry_id)
                continue

            receive_count = await self._delivery_count(entry_id)
            received = self._to_received(entry_id, fields, receive_count)

            if receive_count > self.max_receive_count:
                logger.error(
                    f"[RedisQueue] Entry {entry_id} redriven to {self.dead_letter_stream} "
                    f"after {receive_count - 1} receive(s)"
                )
                await self.dead_letter(received, "maximum receive count exceeded")
                continue

            batch.append(received)

        return batch

    async def _delivery_count(self, entry_id: str) -> int:
        rows = await self._redis.xpending_range(
            self.stream_name,
            self.consumer_group,
            min=entry_id,
            max=entry_id,
            count=1
        )
        if not rows:
            return 1
        return int(rows[0].get("times_delivered", 1))

    @staticmethod
    def _to_received(entry_id: str, fields: Dict[str, Any], receive_count: int) -> ReceivedMessage:
        return ReceivedMessage(
            queue_message_id=entry_id,
            receipt_handle=entry_id,
            body=fields.get("body", ""),
            receive_count=receive_count,
        )
