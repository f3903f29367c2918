"""
Database Package for Pulse Engine

Models, the DatabaseManager, the data store gateway and plan
capability checks.
"""

from database.models import (
    Base,
    Monitor,
    MonitoringHistory,
    NotificationChannel,
    AlertRule,
    AlertLog,
)
from database.manager import DatabaseManager
from database.gateway import DataStoreGateway, CheckWriteResult
from database.capabilities import (
    Plan,
    PlanCapabilities,
    PlanLimits,
    FREE_PLAN,
    PRO_PLAN,
    capabilities_for,
)

__all__ = [
    "Base",
    "Monitor",
    "MonitoringHistory",
    "NotificationChannel",
    "AlertRule",
    "AlertLog",
    "DatabaseManager",
    "DataStoreGateway",
    "CheckWriteResult",
    "Plan",
    "PlanCapabilities",
    "PlanLimits",
    "FREE_PLAN",
    "PRO_PLAN",
    "capabilities_for",
]
