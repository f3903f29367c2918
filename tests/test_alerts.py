"""Tests for the alert rule engine: thresholds, cooldowns, recovery and duplicate suppression."""

from datetime import timedelta
from unittest.mock import AsyncMock

from config.constants import AlertEventType, AlertLogStatus, CheckOutcome, MonitorStatus
from database.gateway import CheckWriteResult
from database.models import AlertLog, AlertRule
from exceptions.database import DatabaseConnectionError
from monitoring.alerts import AlertRuleEngine
from sqlalchemy import select

from tests.conftest import T0

DOWN = CheckOutcome.DOWN
UP = CheckOutcome.UP
TIMEOUT = CheckOutcome.TIMEOUT


async def _alert_logs(db):
    async with db.session() as session:
        return (await session.execute(select(AlertLog).order_by(AlertLog.id))).scalars().all()


async def test_threshold_three_fires_once_and_trailing_down_does_not(recorder, seed, sender) -> None:
    """[down, down, down, up, down] with threshold 3 fires exactly one down alert."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=3, cooldown_minutes=0)

    results = await recorder.sequence(monitor, [DOWN, DOWN, DOWN, UP, DOWN], timedelta(minutes=1))

    assert [write.failure_count for write, _ in results] == [1, 2, 3, 0, 1]
    assert [len(decisions) for _, decisions in results] == [0, 0, 1, 0, 0]
    assert sender.events() == [AlertEventType.DOWN]


async def test_threshold_one_cooldown_suppresses_close_failures(recorder, seed, sender) -> None:
    """Threshold 1, cooldown 60: three downs five minutes apart fire once."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=1, cooldown_minutes=60)

    await recorder.sequence(monitor, [DOWN, DOWN, DOWN], timedelta(minutes=5))

    assert sender.events() == [AlertEventType.DOWN]


async def test_threshold_one_cooldown_elapsed_fires_each_time(recorder, seed, sender) -> None:
    """Threshold 1, cooldown 60: three downs 65 minutes apart fire three times."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=1, cooldown_minutes=60)

    await recorder.sequence(monitor, [DOWN, DOWN, DOWN], timedelta(minutes=65))

    assert sender.events() == [AlertEventType.DOWN] * 3


async def test_recovery_fires_one_up_notification(recorder, seed, sender) -> None:
    """down → up with alert_on_up fires a single up notification."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, alert_on_up=True, consecutive_failures_threshold=1)

    await recorder.sequence(monitor, [DOWN, UP], timedelta(minutes=1))

    assert sender.events() == [AlertEventType.DOWN, AlertEventType.UP]
    _, _, snapshot = sender.calls[-1]
    assert snapshot.previous_status == MonitorStatus.DOWN
    assert snapshot.status == MonitorStatus.UP


async def test_up_after_up_fires_nothing(recorder, seed, sender) -> None:
    """up → up never produces a recovery notification."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, alert_on_up=True)

    await recorder.sequence(monitor, [UP, UP], timedelta(minutes=1))

    assert sender.calls == []


async def test_recovery_is_independent_of_threshold(recorder, seed, sender) -> None:
    """A recovery fires even when the failures never reached the threshold."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, alert_on_up=True, consecutive_failures_threshold=5)

    await recorder.sequence(monitor, [DOWN, UP], timedelta(minutes=1))

    assert sender.events() == [AlertEventType.UP]


async def test_recovery_respects_cooldown(recorder, seed, sender) -> None:
    """Flapping inside the cooldown window yields one recovery notification."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(
        monitor, channel,
        alert_on_up=True, alert_on_down=False, alert_on_timeout=False, cooldown_minutes=30,
    )

    await recorder.sequence(monitor, [DOWN, UP, DOWN, UP], timedelta(minutes=2))

    assert sender.events() == [AlertEventType.UP]


async def test_timeout_fires_only_when_flag_set(recorder, seed, sender) -> None:
    """alert_on_timeout=False suppresses timeout alerts but not down alerts."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, alert_on_timeout=False, consecutive_failures_threshold=1, cooldown_minutes=0)

    await recorder.sequence(monitor, [TIMEOUT, DOWN], timedelta(minutes=1))

    assert sender.events() == [AlertEventType.DOWN]


async def test_down_and_timeout_share_cooldown(recorder, seed, sender) -> None:
    """A timeout right after a down alert is inside the same cooldown window."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=1, cooldown_minutes=60)

    await recorder.sequence(monitor, [DOWN, TIMEOUT], timedelta(minutes=5))

    assert sender.events() == [AlertEventType.DOWN]


async def test_failed_delivery_still_starts_cooldown(db, gateway, engine, seed) -> None:
    """Cooldown is measured from the last alert log of any delivery status."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    rule = await seed.rule(monitor, channel, consecutive_failures_threshold=1, cooldown_minutes=60)

    await gateway.write_alert_log(AlertLog(
        monitor_id=monitor.id,
        notification_channel_id=channel.id,
        alert_type=AlertEventType.DOWN.value,
        status=AlertLogStatus.FAILED.value,
        created_at=T0,
    ))
    assert await gateway.get_last_fired(rule, AlertEventType.DOWN) == T0

    write = await gateway.write_check_result(monitor.id, "c-1", DOWN, None, T0 + timedelta(minutes=10))
    assert await engine.evaluate(write, DOWN, T0 + timedelta(minutes=10)) == []


async def test_duplicate_delivery_fires_at_most_once(recorder, seed, sender) -> None:
    """The same check id recorded twice counts and fires once."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel, consecutive_failures_threshold=1, cooldown_minutes=0)

    first, first_decisions = await recorder.record(monitor, DOWN, T0, check_id="monitor-1-abc")
    second, second_decisions = await recorder.record(monitor, DOWN, T0, check_id="monitor-1-abc")

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.failure_count == 1
    assert len(first_decisions) == 1
    assert second_decisions == []
    assert sender.events() == [AlertEventType.DOWN]


async def test_inactive_rules_and_channels_are_ignored(recorder, seed, sender) -> None:
    """Only active rules bound to active channels are evaluated."""
    monitor = await seed.monitor()
    active_channel = await seed.channel()
    muted_channel = await seed.channel(is_active=False)
    disabled_rule_channel = await seed.channel()
    await seed.rule(monitor, active_channel)
    await seed.rule(monitor, muted_channel)
    await seed.rule(monitor, disabled_rule_channel, is_active=False)

    _, decisions = await recorder.record(monitor, DOWN, T0)

    assert [d.rule.notification_channel_id for d in decisions] == [active_channel.id]


async def test_store_failure_skips_evaluation(seed) -> None:
    """A data store error while loading rules yields no decisions."""
    monitor = await seed.monitor()
    gateway = AsyncMock()
    gateway.get_active_rules.side_effect = DatabaseConnectionError("database unavailable")

    write = CheckWriteResult(
        monitor=monitor,
        previous_status=MonitorStatus.UP,
        previous_failure_count=0,
        failure_count=1,
    )
    assert await AlertRuleEngine(gateway).evaluate(write, DOWN, T0) == []


async def test_malformed_rule_is_skipped(seed) -> None:
    """A rule with an invalid threshold is ignored."""
    monitor = await seed.monitor()
    broken = AlertRule(
        id=99,
        monitor_id=monitor.id,
        notification_channel_id=1,
        alert_on_down=True,
        alert_on_up=False,
        alert_on_timeout=True,
        consecutive_failures_threshold=0,
        cooldown_minutes=0,
    )
    gateway = AsyncMock()
    gateway.get_active_rules.return_value = [broken]
    gateway.get_last_fired.return_value = None

    write = CheckWriteResult(
        monitor=monitor,
        previous_status=MonitorStatus.UP,
        previous_failure_count=0,
        failure_count=1,
    )
    assert await AlertRuleEngine(gateway).evaluate(write, DOWN, T0) == []


async def test_alert_logs_record_delivery(db, recorder, seed) -> None:
    """Every firing writes an alert log that ends in the sent state."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    await seed.rule(monitor, channel)

    await recorder.record(monitor, DOWN, T0)

    logs = await _alert_logs(db)
    assert len(logs) == 1
    assert logs[0].status == AlertLogStatus.SENT.value
    assert logs[0].alert_type == AlertEventType.DOWN.value
    assert logs[0].created_at == T0
    assert logs[0].sent_at is not None
