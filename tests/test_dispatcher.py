"""Tests for notification dispatch and alert log bookkeeping."""

from sqlalchemy import select

from config.constants import AlertEventType, AlertLogStatus, ChannelType, CheckOutcome, MonitorStatus
from database.models import AlertLog
from exceptions.monitoring import NotificationError
from monitoring.alerts import AlertDecision, MonitorSnapshot
from monitoring.channels import SendResult
from monitoring.dispatcher import NotificationDispatcher

from tests.conftest import T0, RecordingSender


def _snapshot(monitor) -> MonitorSnapshot:
    return MonitorSnapshot(
        monitor_id=monitor.id,
        user_id=monitor.user_id,
        name=monitor.name,
        url=monitor.url,
        status=MonitorStatus.DOWN,
        previous_status=MonitorStatus.UP,
        consecutive_failures=1,
        checked_at=T0,
        status_code=500,
    )


async def _logs(db):
    async with db.session() as session:
        return (await session.execute(select(AlertLog).order_by(AlertLog.id))).scalars().all()


async def test_successful_send_marks_log_sent(db, seed, dispatcher, sender) -> None:
    """A successful send leaves one log in the sent state with sent_at set."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    rule = await seed.rule(monitor, channel)

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.SENT.value
    assert entry.sent_at is not None
    assert entry.created_at == T0
    assert entry.error_message is None

    config, event_type, snapshot = sender.calls[0]
    assert config == {"webhook_url": "https://hooks.example.com/pulse"}
    assert event_type == AlertEventType.DOWN
    assert snapshot.monitor_id == monitor.id
    assert dispatcher.get_stats() == {"sent": 1, "failed": 0}


async def test_rejected_send_marks_log_failed(db, gateway, seed) -> None:
    """A sender reporting failure leaves a failed log carrying the error."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    rule = await seed.rule(monitor, channel)
    rejecting = RecordingSender(result=SendResult(success=False, error="Webhook failed with status 410: Gone"))
    dispatcher = NotificationDispatcher(gateway, {ChannelType.WEBHOOK: rejecting})

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.FAILED.value
    assert entry.sent_at is None
    assert entry.error_message == "Webhook failed with status 410: Gone"
    assert dispatcher.get_stats() == {"sent": 0, "failed": 1}


async def test_transport_error_marks_log_failed(gateway, seed) -> None:
    """A NotificationError from the sender is recorded, not raised."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    rule = await seed.rule(monitor, channel)
    broken = RecordingSender(error=NotificationError("webhook transport failed: connection reset"))
    dispatcher = NotificationDispatcher(gateway, {ChannelType.WEBHOOK: broken})

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.FAILED.value
    assert "connection reset" in entry.error_message


async def test_unsupported_channel_type_is_a_failed_log(db, seed, dispatcher, sender) -> None:
    """A channel type with no registered sender fails with an unsupported alert type."""
    monitor = await seed.monitor()
    channel = await seed.channel(type=ChannelType.SMS)
    rule = await seed.rule(monitor, channel)

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.FAILED.value
    assert entry.error_message == "Unsupported alert type: sms"
    assert sender.calls == []


async def test_dispatch_all_isolates_channel_failures(db, gateway, seed) -> None:
    """One failing channel does not stop the other from being delivered."""
    monitor = await seed.monitor()
    webhook = await seed.channel()
    email = await seed.channel(type=ChannelType.EMAIL)
    webhook_rule = await seed.rule(monitor, webhook)
    email_rule = await seed.rule(monitor, email)

    class FailingEmail(RecordingSender):
        channel_type = ChannelType.EMAIL

    ok = RecordingSender()
    failing = FailingEmail(error=NotificationError("email transport failed: timeout"))
    dispatcher = NotificationDispatcher(gateway, {ChannelType.WEBHOOK: ok, ChannelType.EMAIL: failing})

    decisions = [
        AlertDecision(rule=webhook_rule, event_type=AlertEventType.DOWN, reason="threshold reached"),
        AlertDecision(rule=email_rule, event_type=AlertEventType.DOWN, reason="threshold reached"),
    ]
    logs = await dispatcher.dispatch_all(_snapshot(monitor), decisions, T0)

    by_channel = {log.notification_channel_id: log.status for log in logs}
    assert by_channel == {
        webhook.id: AlertLogStatus.SENT.value,
        email.id: AlertLogStatus.FAILED.value,
    }
    assert len(await _logs(db)) == 2


async def test_dispatch_all_without_decisions_writes_nothing(db, seed, dispatcher) -> None:
    """An empty decision list is a no-op."""
    monitor = await seed.monitor()

    assert await dispatcher.dispatch_all(_snapshot(monitor), [], T0) == []
    assert await _logs(db) == []


def test_snapshot_outcome_maps_to_status() -> None:
    """Outcomes map one-to-one onto monitor statuses."""
    assert CheckOutcome.UP.as_status() == MonitorStatus.UP
    assert CheckOutcome.DOWN.as_status() == MonitorStatus.DOWN
    assert CheckOutcome.TIMEOUT.as_status() == MonitorStatus.TIMEOUT


async def test_invalid_channel_config_is_a_failed_log(seed, dispatcher, sender) -> None:
    """A webhook channel without a usable URL fails before the sender is called."""
    monitor = await seed.monitor()
    channel = await seed.channel(config={"webhook_url": "ftp://hooks.example.com"})
    rule = await seed.rule(monitor, channel)

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.FAILED.value
    assert entry.error_message.startswith("Invalid channel configuration:")
    assert sender.calls == []


async def test_unexpected_sender_error_marks_log_failed(db, gateway, seed) -> None:
    """An exception outside the notification hierarchy still ends the log as failed."""
    monitor = await seed.monitor()
    channel = await seed.channel()
    rule = await seed.rule(monitor, channel)
    crashing = RecordingSender(error=RuntimeError("socket closed"))
    dispatcher = NotificationDispatcher(gateway, {ChannelType.WEBHOOK: crashing})

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.FAILED.value
    assert entry.error_message == "RuntimeError: socket closed"
    assert [log.status for log in await _logs(db)] == [AlertLogStatus.FAILED.value]
    assert dispatcher.get_stats() == {"sent": 0, "failed": 1}


async def test_non_string_webhook_header_is_a_failed_log(seed, dispatcher, sender) -> None:
    """Header values must be strings; the send is never attempted otherwise."""
    monitor = await seed.monitor()
    channel = await seed.channel(
        config={"webhook_url": "https://hooks.example.com/pulse", "headers": {"X-Retry": 3}}
    )
    rule = await seed.rule(monitor, channel)

    entry = await dispatcher.dispatch(_snapshot(monitor), rule, AlertEventType.DOWN, now=T0)

    assert entry.status == AlertLogStatus.FAILED.value
    assert "Webhook header names and values must be strings" in entry.error_message
    assert sender.calls == []
