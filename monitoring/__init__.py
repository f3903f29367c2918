"""
============================================================================
PULSE ENGINE - MONITORING PACKAGE
============================================================================
The check pipeline, leaves first:

monitoring/
├── __init__.py          ← this file
├── executor.py          ← CheckExecutor: bounded-timeout HTTP probe
├── scheduler.py         ← MonitorScheduler: due scan + CAS claim + enqueue
├── alerts.py            ← AlertRuleEngine: thresholds and cooldowns
├── channels.py          ← webhook / email / SMS senders and templates
├── dispatcher.py        ← NotificationDispatcher: alert log + fan-out
├── worker.py            ← WorkerPool: queue consumers
├── trigger.py           ← IntervalTrigger: in-process scheduling trigger
└── control.py           ← ControlServer: aiohttp trigger / control routes

============================================================================
"""

from monitoring.executor import CheckExecutor, CheckResult, classify_status
from monitoring.scheduler import (
    MonitorScheduler,
    SchedulingStats,
    build_check_message,
    classify_priority,
)
from monitoring.alerts import AlertDecision, AlertRuleEngine, MonitorSnapshot, build_snapshot
from monitoring.channels import (
    AlertTemplates,
    ChannelSender,
    EmailSender,
    SendResult,
    SmsSender,
    WebhookSender,
    build_senders,
)
from monitoring.dispatcher import NotificationDispatcher
from monitoring.worker import WorkerPool
from monitoring.trigger import IntervalTrigger
from monitoring.control import ControlServer

__all__ = [
    # Executor
    "CheckExecutor",
    "CheckResult",
    "classify_status",

    # Scheduler
    "MonitorScheduler",
    "SchedulingStats",
    "build_check_message",
    "classify_priority",

    # Alerts
    "AlertDecision",
    "AlertRuleEngine",
    "MonitorSnapshot",
    "build_snapshot",

    # Notifications
    "AlertTemplates",
    "ChannelSender",
    "EmailSender",
    "SendResult",
    "SmsSender",
    "WebhookSender",
    "build_senders",
    "NotificationDispatcher",

    # Runtime
    "WorkerPool",
    "IntervalTrigger",
    "ControlServer",
]
