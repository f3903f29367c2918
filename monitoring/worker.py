"""
============================================================================
PULSE ENGINE - WORKER POOL
============================================================================
Long-lived consumers that turn MONITOR_CHECK messages into persisted
check results and alerts.

Architecture
------------
WorkerPool
├── _poll_loop()          ← receives as many messages as there are free slots
├── _run_guarded()        ← one task per message, bounded by a semaphore
└── process_message()     ← decode → probe → persist → alert → acknowledge

Per message
-----------
1.  Decode the CheckMessage (malformed bodies are permanent errors).
2.  Probe monitorData.url through the CheckExecutor. A down or timeout
    outcome is a valid result, not an error.
3.  Write the history row and update the monitor in one transaction,
    keyed by the message id so a redelivery is recorded once.
4.  Evaluate alert rules and dispatch the firing ones.
5.  Acknowledge.

A processing error (anything but a probe failure) leaves the message
unacknowledged: it is released for redelivery until maxRetries is
exhausted and then moved to the dead-letter destination.

Lifecycle
---------
    pool = WorkerPool(queue, gateway, executor, engine, dispatcher, ...)
    await pool.start()
    ...
    await pool.stop()           ← stops pulling, drains in-flight checks

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional, Set

from config.settings import QueueSettings, WorkerSettings
from database.gateway import DataStoreGateway
from exceptions.base import PulseException
from exceptions.monitoring import CheckProcessingError
from exceptions.queue import QueueException
from messaging.base import CheckQueue
from messaging.messages import CheckMessage, ReceivedMessage
from monitoring.alerts import AlertRuleEngine, build_snapshot
from monitoring.dispatcher import NotificationDispatcher
from monitoring.executor import CheckExecutor
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("WorkerPool")


# Outcomes of process_message()
ACKNOWLEDGED = "acknowledged"
RELEASED = "released"
DEAD_LETTERED = "dead_lettered"


class WorkerPool:
    """
    Bounded pool of concurrent check consumers.

    The pool is an explicit handle owned by the embedding process;
    several pools may share one queue.
    """

    def __init__(
        self,
        queue: CheckQueue,
        gateway: DataStoreGateway,
        executor: CheckExecutor,
        engine: AlertRuleEngine,
        dispatcher: NotificationDispatcher,
        worker_settings: WorkerSettings,
        queue_settings: QueueSettings,
    ):
        """
        Parameters
        ----------
        queue : CheckQueue
            Source of check messages.
        gateway : DataStoreGateway
            Persists check results.
        executor : CheckExecutor
            Runs the HTTP probes.
        engine : AlertRuleEngine
            Decides which rules fire for a persisted check.
        dispatcher : NotificationDispatcher
            Delivers the firing decisions.
        """
        self.queue = queue
        self.gateway = gateway
        self.executor = executor
        self.engine = engine
        self.dispatcher = dispatcher
        self.settings = worker_settings
        self.queue_settings = queue_settings

        # --- concurrency control ---
        self.pool_size = worker_settings.pool_size
        self._semaphore = asyncio.Semaphore(self.pool_size)
        self._tasks: Set[asyncio.Task] = set()
        self._task_timeouts: Dict[asyncio.Task, float] = {}

        # --- lifecycle ---
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._in_flight = 0

        # --- counters ---
        self._processed_count = 0
        self._error_count = 0
        self._dead_lettered_count = 0
        self._started_at: Optional[datetime] = None
        self._last_message_at: Optional[datetime] = None

        logger.info(
            f"WorkerPool created: pool_size={self.pool_size}, "
            f"batch_size={queue_settings.receive_batch_size}, "
            f"max_retries={queue_settings.max_retries}"
        )

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start pulling messages in the background."""
        if self._running:
            logger.warning("WorkerPool is already running")
            return

        self._running = True
        self._started_at = TimeHelper.utcnow()
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"✓ WorkerPool started with {self.pool_size} slot(s)")

    async def stop(self, drain: bool = True) -> None:
        """
        Stop pulling and let in-flight checks finish.

        Draining is bounded by the longest in-flight probe timeout plus
        WORKER_DRAIN_GRACE_SECONDS. Checks still running after that are
        cancelled; their messages are redelivered once the visibility
        timeout expires.
        """
        was_running = self._running
        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        pending = set(self._tasks)
        if pending and drain:
            deadline = self._drain_timeout(pending)
            logger.info(
                f"[WorkerPool] Draining {len(pending)} in-flight check(s), "
                f"up to {deadline:.1f}s"
            )
            _, pending = await asyncio.wait(pending, timeout=deadline)

        if pending:
            logger.warning(
                f"[WorkerPool] Cancelling {len(pending)} check(s) still in flight"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if was_running:
            logger.info(
                f"✓ WorkerPool stopped: processed={self._processed_count}, "
                f"errors={self._error_count}"
            )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight_count(self) -> int:
        return self._in_flight

    def status(self) -> str:
        return "running" if self._running else "stopped"

    async def health_check(self) -> Dict[str, Any]:
        """Liveness and counters; never touches the queue contents."""
        stats: Dict[str, Any] = {
            "isRunning": self._running,
            "inFlightCount": self._in_flight,
            "processedCount": self._processed_count,
            "errorCount": self._error_count,
            "deadLetteredCount": self._dead_lettered_count,
            "poolSize": self.pool_size,
            "startedAt": TimeHelper.isoformat(self._started_at),
            "lastMessageAt": TimeHelper.isoformat(self._last_message_at),
            "queueClient": "connected" if await self.queue.ping() else "unreachable",
            "timestamp": TimeHelper.isoformat(TimeHelper.utcnow()),
        }
        return {
            "healthy": self._running,
            "stats": stats,
        }

    # ------------------------------------------------------------------
    # POLL LOOP
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        """
        Receive messages while free slots exist; runs until stop().
        """
        logger.info("[WorkerPool] Poll loop started")

        while self._running:
            try:
                free = self.pool_size - len(self._tasks)
                if free <= 0:
                    await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
                    continue

                messages = await self.queue.receive(
                    max_messages=min(free, self.queue_settings.receive_batch_size),
                    wait_seconds=self.queue_settings.receive_wait_seconds,
                )

                if not messages:
                    # sleep(0) still yields when the backend returned without waiting
                    await asyncio.sleep(self.settings.idle_sleep)
                    continue

                logger.debug(f"[WorkerPool] Received {len(messages)} message(s)")
                for received in messages:
                    self._spawn(received)

            except asyncio.CancelledError:
                break
            except QueueException as e:
                logger.warning(f"[WorkerPool] Queue receive failed: {e}")
                await asyncio.sleep(self.settings.error_backoff)
            except Exception as e:
                logger.exception(f"[WorkerPool] Unhandled error in poll loop: {e}")
                await asyncio.sleep(self.settings.error_backoff)

        logger.info("[WorkerPool] Poll loop exited")

    def _spawn(self, received: ReceivedMessage) -> None:
        task = asyncio.create_task(self._run_guarded(received))
        self._tasks.add(task)
        self._task_timeouts[task] = self._probe_timeout_of(received)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._task_timeouts.pop(task, None)

    async def _run_guarded(self, received: ReceivedMessage) -> None:
        """
        Acquire a slot, process one message, release the slot.
        """
        async with self._semaphore:
            self._in_flight += 1
            try:
                await self.process_message(received)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Left unacknowledged; the visibility timeout redelivers it
                self._error_count += 1
                logger.exception(
                    f"[WorkerPool] Unexpected error on message "
                    f"{received.queue_message_id}: {e}"
                )
            finally:
                self._in_flight -= 1

    # ------------------------------------------------------------------
    # SINGLE MESSAGE
    # ------------------------------------------------------------------

    async def process_message(self, received: ReceivedMessage) -> str:
        """
        Process one delivery end to end.

        Returns
        -------
        str
            ``acknowledged``, ``released`` or ``dead_lettered``.

        Alerting is at most once per check. Once the history row is
        committed, a redelivery of the same message is a duplicate and
        skips alert evaluation, even when the first delivery failed
        after the write (dispatch or acknowledge raised). Those decisions
        are not replayed: the failure counter already moved, so the next
        failing check is evaluated against the cooldown as usual.
        """
        self._last_message_at = TimeHelper.utcnow()
        message: Optional[CheckMessage] = None

        try:
            message = received.decode()
            payload = message.payload

            result = await self.executor.execute(
                payload.monitor_data,
                user_agent=payload.check_config.user_agent,
            )
            checked_at = TimeHelper.utcnow()

            write = await self.gateway.write_check_result(
                payload.monitor_id,
                message.message_id,
                result.outcome,
                result.response_time,
                checked_at,
                status_code=result.status_code,
                error_message=result.error_message,
            )

            if write.duplicate:
                logger.info(
                    f"[WorkerPool] Message {message.message_id} was already processed, "
                    f"acknowledging"
                )
            else:
                decisions = await self.engine.evaluate(write, result.outcome, checked_at)
                if decisions:
                    snapshot = build_snapshot(
                        write,
                        result.outcome,
                        checked_at,
                        response_time=result.response_time,
                        status_code=result.status_code,
                        error_message=result.error_message,
                    )
                    await self.dispatcher.dispatch_all(snapshot, decisions, checked_at)

            await self.queue.acknowledge(received)

        except PulseException as e:
            self._error_count += 1
            return await self._handle_failure(received, message, e)
        except Exception as e:
            self._error_count += 1
            logger.exception(f"[WorkerPool] Unexpected error on {received.queue_message_id}: {e}")
            error = CheckProcessingError.from_exception(
                e,
                message=f"Unexpected processing error: {type(e).__name__}: {e}",
                message_id=message.message_id if message is not None else None,
                monitor_id=message.payload.monitor_id if message is not None else None,
            )
            return await self._handle_failure(received, message, error)

        self._processed_count += 1
        logger.debug(
            f"[WorkerPool] ✓ Monitor {payload.monitor_id} → {result.outcome.value} "
            f"({result.response_time}ms)"
        )
        return ACKNOWLEDGED

    async def _handle_failure(
        self,
        received: ReceivedMessage,
        message: Optional[CheckMessage],
        error: PulseException
    ) -> str:
        """
        Release the delivery for a retry, or dead-letter it once the
        retries are exhausted.
        """
        max_retries = (
            message.max_retries if message is not None
            else self.queue_settings.max_retries
        )
        message_id = message.message_id if message is not None else received.queue_message_id
        log = logger.warning if error.recoverable else logger.error

        if received.receive_count > max_retries:
            try:
                await self.queue.dead_letter(received, error.message)
            except QueueException as e:
                logger.warning(f"[WorkerPool] Could not dead-letter {message_id}: {e}")
                return RELEASED

            self._dead_lettered_count += 1
            logger.error(
                f"[WorkerPool] Message {message_id} dead-lettered after "
                f"{received.receive_count} attempt(s): {error.log_format()}"
            )
            return DEAD_LETTERED

        log(
            f"[WorkerPool] Message {message_id} failed on attempt "
            f"{received.receive_count}/{max_retries + 1}: {error.log_format()}"
        )

        try:
            await self.queue.release(received, delay_seconds=self.settings.retry_delay_seconds)
        except QueueException as e:
            # Still redelivered once the visibility timeout expires
            logger.warning(f"[WorkerPool] Could not release {message_id}: {e}")

        return RELEASED

    # ------------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------------

    def _probe_timeout_of(self, received: ReceivedMessage) -> float:
        try:
            return float(received.decode().payload.monitor_data.timeout_seconds)
        except PulseException:
            return 0.0

    def _drain_timeout(self, tasks: Set[asyncio.Task]) -> float:
        longest = max((self._task_timeouts.get(task, 0.0) for task in tasks), default=0.0)
        return longest + self.settings.drain_grace_seconds
