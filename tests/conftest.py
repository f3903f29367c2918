"""Shared fixtures: a temporary SQLite database behind the real gateway, the in-memory queue, seed helpers."""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional, Tuple

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.constants import AlertEventType, ChannelType, CheckOutcome
from config.settings import (
    DatabaseSettings,
    NotificationSettings,
    QueueSettings,
    SchedulerSettings,
    WorkerSettings,
)
from database.gateway import DataStoreGateway
from database.manager import DatabaseManager
from database.models import AlertRule, Monitor, NotificationChannel
from messaging.memory import InMemoryCheckQueue
from monitoring.alerts import AlertRuleEngine, MonitorSnapshot, build_snapshot
from monitoring.channels import ChannelSender, SendResult
from monitoring.dispatcher import NotificationDispatcher
from monitoring.executor import CheckExecutor
from monitoring.worker import WorkerPool


T0 = datetime(2026, 3, 2, 12, 0, 0)


# ============================================================================
# SETTINGS
# ============================================================================

@pytest.fixture
def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(batch_size=50, check_timeout_seconds=5)


@pytest.fixture
def queue_settings() -> QueueSettings:
    return QueueSettings(
        backend="memory",
        max_retries=3,
        visibility_timeout=30,
        receive_batch_size=10,
        receive_wait_seconds=0.05,
    )


@pytest.fixture
def worker_settings() -> WorkerSettings:
    return WorkerSettings(
        pool_size=4,
        idle_sleep=0.01,
        error_backoff=0.01,
        drain_grace_seconds=1,
        retry_delay_seconds=0,
    )


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        resend_api_key="re_test_key",
        resend_from_email="alerts@pulse.test",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-token",
        twilio_phone_number="+15550001111",
    )


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
async def db(tmp_path):
    """A fresh SQLite file per test, tables created by the manager."""
    manager = DatabaseManager(DatabaseSettings(
        dsn=f"sqlite+aiosqlite:///{tmp_path / 'pulse_test.db'}",
        create_tables=True,
    ))
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def gateway(db) -> DataStoreGateway:
    return DataStoreGateway(db)


@pytest.fixture
def queue(queue_settings) -> InMemoryCheckQueue:
    return InMemoryCheckQueue(
        visibility_timeout=queue_settings.visibility_timeout,
        max_receive_count=queue_settings.max_retries + 1,
    )


class Seeder:
    """Inserts rows directly through the manager's session."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def _add(self, obj):
        async with self.db.session() as session:
            session.add(obj)
            await session.flush()
            return obj

    async def monitor(self, **overrides: Any) -> Monitor:
        fields = dict(
            user_id="user-1",
            url="https://example.com/health",
            name="Example API",
            interval_minutes=5,
            is_active=True,
        )
        fields.update(overrides)
        return await self._add(Monitor(**fields))

    async def channel(self, type: ChannelType = ChannelType.WEBHOOK, **overrides: Any) -> NotificationChannel:
        config = {
            ChannelType.WEBHOOK: {"webhook_url": "https://hooks.example.com/pulse"},
            ChannelType.EMAIL: {"email": "ops@example.com"},
            ChannelType.SMS: {"phone": "+15551234567"},
        }[ChannelType(type)]
        fields = dict(
            user_id="user-1",
            type=ChannelType(type).value,
            name=f"{ChannelType(type).value} channel",
            config=config,
            is_active=True,
        )
        fields.update(overrides)
        return await self._add(NotificationChannel(**fields))

    async def rule(self, monitor: Monitor, channel: NotificationChannel, **overrides: Any) -> AlertRule:
        fields = dict(
            monitor_id=monitor.id,
            notification_channel_id=channel.id,
            alert_on_down=True,
            alert_on_up=False,
            alert_on_timeout=True,
            consecutive_failures_threshold=1,
            cooldown_minutes=0,
            is_active=True,
        )
        fields.update(overrides)
        return await self._add(AlertRule(**fields))


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class RecordingSender(ChannelSender):
    """Webhook-typed sender that records every call instead of sending."""

    channel_type = ChannelType.WEBHOOK

    def __init__(self, result: Optional[SendResult] = None, error: Optional[Exception] = None):
        super().__init__(client=None)
        self.result = result or SendResult(success=True, message_id="recorded")
        self.error = error
        self.calls: List[Tuple[dict, AlertEventType, MonitorSnapshot]] = []

    async def send(self, channel_config, event_type, snapshot) -> SendResult:
        self.calls.append((dict(channel_config), event_type, snapshot))
        if self.error is not None:
            raise self.error
        return self.result

    def events(self) -> List[AlertEventType]:
        return [event_type for _, event_type, _ in self.calls]


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def dispatcher(gateway, sender) -> NotificationDispatcher:
    return NotificationDispatcher(gateway, {ChannelType.WEBHOOK: sender})


@pytest.fixture
def engine(gateway) -> AlertRuleEngine:
    return AlertRuleEngine(gateway)


class CheckRecorder:
    """
    Runs the persisted half of the pipeline (write → evaluate → dispatch)
    for a given outcome at a given time, without a probe.
    """

    def __init__(self, gateway, engine, dispatcher):
        self.gateway = gateway
        self.engine = engine
        self.dispatcher = dispatcher
        self._seq = 0

    async def record(
        self,
        monitor: Monitor,
        outcome: CheckOutcome,
        at: datetime,
        check_id: Optional[str] = None
    ):
        self._seq += 1
        check_id = check_id or f"monitor-{monitor.id}-{self._seq}"
        write = await self.gateway.write_check_result(
            monitor.id, check_id, outcome, 120.0, at,
            status_code=200 if outcome == CheckOutcome.UP else None,
        )
        decisions = await self.engine.evaluate(write, outcome, at)
        if decisions:
            snapshot = build_snapshot(write, outcome, at, response_time=120.0)
            await self.dispatcher.dispatch_all(snapshot, decisions, at)
        return write, decisions

    async def sequence(self, monitor: Monitor, outcomes: List[CheckOutcome], spacing: timedelta, start: datetime = T0):
        results = []
        for index, outcome in enumerate(outcomes):
            results.append(await self.record(monitor, outcome, start + spacing * index))
        return results


@pytest.fixture
def recorder(gateway, engine, dispatcher) -> CheckRecorder:
    return CheckRecorder(gateway, engine, dispatcher)


# ============================================================================
# PROBES & WORKER
# ============================================================================

def status_transport(status_code: int = 200) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status_code))


@pytest.fixture
async def pool_factory(queue, gateway, engine, dispatcher, worker_settings, queue_settings):
    """Build a WorkerPool around a probe transport; stopped at teardown."""
    pools: List[WorkerPool] = []

    def factory(transport: httpx.AsyncBaseTransport) -> WorkerPool:
        pool = WorkerPool(
            queue=queue,
            gateway=gateway,
            executor=CheckExecutor(transport=transport),
            engine=engine,
            dispatcher=dispatcher,
            worker_settings=worker_settings,
            queue_settings=queue_settings,
        )
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        await pool.stop(drain=False)
        await pool.executor.close()
