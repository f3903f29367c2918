"""Tests for the worker pool: processing, redelivery, dead-lettering, drain and health."""

import asyncio

import httpx
from sqlalchemy import delete, func, select

from config.constants import AlertEventType, MonitorStatus
from database.models import AlertLog, Monitor, MonitoringHistory
from monitoring.scheduler import build_check_message
from monitoring.worker import ACKNOWLEDGED, DEAD_LETTERED, RELEASED

from tests.conftest import T0, status_transport


async def _count(db, model) -> int:
    async with db.session() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


async def test_down_probe_is_persisted_and_acknowledged(
    db, gateway, queue, seed, sender, scheduler_settings, pool_factory
) -> None:
    """A 500 response is a valid down result: persisted, alerted, acknowledged."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel)

    await queue.enqueue(build_check_message(monitor, T0, scheduler_settings, max_retries=3))
    pool = pool_factory(status_transport(500))

    [received] = await queue.receive()
    assert await pool.process_message(received) == ACKNOWLEDGED

    stored = await gateway.get_monitor(monitor.id)
    assert stored.status == MonitorStatus.DOWN.value
    assert stored.consecutive_failure_count == 1
    assert sender.events() == [AlertEventType.DOWN]
    assert (await queue.queue_stats()).depth == 0

    health = await pool.health_check()
    assert health["stats"]["processedCount"] == 1
    assert health["stats"]["errorCount"] == 0


async def test_duplicate_delivery_counts_once(
    db, gateway, queue, seed, sender, scheduler_settings, pool_factory
) -> None:
    """The same message delivered twice writes one history row and fires once."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=1)

    message = build_check_message(monitor, T0, scheduler_settings, max_retries=3)
    await queue.enqueue(message)
    await queue.enqueue(message)

    pool = pool_factory(status_transport(503))
    deliveries = await queue.receive(max_messages=10)
    assert len(deliveries) == 2

    for received in deliveries:
        assert await pool.process_message(received) == ACKNOWLEDGED

    assert await _count(db, MonitoringHistory) == 1
    assert await _count(db, AlertLog) == 1
    assert (await gateway.get_monitor(monitor.id)).consecutive_failure_count == 1
    assert sender.events() == [AlertEventType.DOWN]


async def test_redelivery_after_committed_write_does_not_replay_alerts(
    db, gateway, queue, seed, sender, scheduler_settings, pool_factory
) -> None:
    """A failure after the history write releases the message; the retry is a duplicate and alerts nothing."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=1)
    await queue.enqueue(build_check_message(monitor, T0, scheduler_settings, max_retries=3))

    pool = pool_factory(status_transport(503))
    dispatch_all = pool.dispatcher.dispatch_all
    attempts = []

    async def fail_first_dispatch(*args, **kwargs):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("alert log table locked")
        return await dispatch_all(*args, **kwargs)

    pool.dispatcher.dispatch_all = fail_first_dispatch

    [first] = await queue.receive()
    assert await pool.process_message(first) == RELEASED

    [second] = await queue.receive()
    assert second.receive_count == 2
    assert await pool.process_message(second) == ACKNOWLEDGED

    assert len(attempts) == 1
    assert sender.events() == []
    assert await _count(db, MonitoringHistory) == 1
    assert await _count(db, AlertLog) == 0
    assert (await gateway.get_monitor(monitor.id)).consecutive_failure_count == 1
    assert (await queue.queue_stats()).depth == 0


async def test_malformed_message_is_dead_lettered_after_retries(queue, pool_factory) -> None:
    """A body that is not a check message is retried, then dead-lettered."""
    await queue.enqueue_raw("{not json")
    pool = pool_factory(status_transport(200))

    outcomes = []
    for _ in range(4):
        [received] = await queue.receive()
        outcomes.append(await pool.process_message(received))

    assert outcomes == [RELEASED, RELEASED, RELEASED, DEAD_LETTERED]
    assert len(queue.dead_letters) == 1
    assert await queue.receive() == []

    health = await pool.health_check()
    assert health["stats"]["errorCount"] == 4
    assert health["stats"]["deadLetteredCount"] == 1


async def test_unknown_monitor_is_dead_lettered(
    queue, seed, scheduler_settings, pool_factory, db
) -> None:
    """A message for a deleted monitor ends in the dead-letter list, nothing persisted."""
    monitor = await seed.monitor()
    message = build_check_message(monitor, T0, scheduler_settings, max_retries=1)
    async with db.session() as session:
        await session.execute(delete(Monitor).where(Monitor.id == monitor.id))

    await queue.enqueue(message)
    pool = pool_factory(status_transport(200))

    outcomes = []
    for _ in range(2):
        [received] = await queue.receive()
        outcomes.append(await pool.process_message(received))

    assert outcomes == [RELEASED, DEAD_LETTERED]
    assert await _count(db, MonitoringHistory) == 0
    assert queue.dead_letters[0].reason == f"Monitor not found: {monitor.id}"


async def test_pool_consumes_until_stopped(
    gateway, queue, seed, scheduler_settings, pool_factory
) -> None:
    """A started pool drains the queue; stop() flips it to stopped."""
    monitors = [await seed.monitor(name=f"m{i}") for i in range(6)]
    for monitor in monitors:
        await queue.enqueue(build_check_message(monitor, T0, scheduler_settings, max_retries=3))

    pool = pool_factory(status_transport(200))
    await pool.start()
    assert pool.status() == "running"

    await _wait_for(lambda: pool._processed_count == len(monitors))
    await pool.stop()

    health = await pool.health_check()
    assert health["healthy"] is False
    assert health["stats"]["isRunning"] is False
    assert health["stats"]["processedCount"] == len(monitors)
    assert health["stats"]["inFlightCount"] == 0
    for monitor in monitors:
        assert (await gateway.get_monitor(monitor.id)).status == MonitorStatus.UP.value


async def test_stop_drains_in_flight_checks(
    gateway, queue, seed, scheduler_settings, pool_factory
) -> None:
    """stop() waits for a probe that is already running."""
    monitor = await seed.monitor()
    await queue.enqueue(build_check_message(monitor, T0, scheduler_settings, max_retries=3))

    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.3)
        return httpx.Response(200)

    pool = pool_factory(httpx.MockTransport(slow))
    await pool.start()
    await _wait_for(lambda: pool.in_flight_count == 1)

    await pool.stop()

    assert pool.in_flight_count == 0
    assert pool._processed_count == 1
    assert (await gateway.get_monitor(monitor.id)).status == MonitorStatus.UP.value
    assert (await queue.queue_stats()).depth == 0


async def test_pool_respects_pool_size(
    queue, seed, scheduler_settings, pool_factory, worker_settings
) -> None:
    """No more probes run at once than the pool has slots."""
    for i in range(10):
        monitor = await seed.monitor(name=f"m{i}")
        await queue.enqueue(build_check_message(monitor, T0, scheduler_settings, max_retries=3))

    running = 0
    peak = 0

    async def counting(request: httpx.Request) -> httpx.Response:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1
        return httpx.Response(200)

    pool = pool_factory(httpx.MockTransport(counting))
    await pool.start()
    await _wait_for(lambda: pool._processed_count == 10)
    await pool.stop()

    assert 1 <= peak <= worker_settings.pool_size


async def test_start_twice_is_harmless(pool_factory) -> None:
    """A second start() keeps the single poll loop."""
    pool = pool_factory(status_transport(200))
    await pool.start()
    poll_task = pool._poll_task
    await pool.start()

    assert pool._poll_task is poll_task
    await pool.stop()
    assert pool.status() == "stopped"
