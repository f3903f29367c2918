"""
Plan Capability Checks for Pulse Engine

Plan limits are expressed as a capability interface. The account
layer in front of the engine calls it when monitors and channels are
created; the scheduler and the worker pool never consult it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Protocol

from config.constants import ChannelType


class Plan(str, Enum):
    """Subscription plans."""
    FREE = "free"
    PRO = "pro"


class PlanCapabilities(Protocol):
    """Capability checks for a single account."""

    def can_use_interval(self, interval_minutes: int) -> bool: ...

    def can_access_timeframe(self, timeframe: str) -> bool: ...

    def can_use_channel_type(self, channel_type: ChannelType) -> bool: ...

    def can_add_monitor(self, current_monitor_count: int) -> bool: ...


@dataclass(frozen=True)
class PlanLimits:
    """
    Static limits of one plan.

    ``max_monitors`` of None means unlimited.
    """

    plan: Plan
    allowed_intervals: FrozenSet[int]
    allowed_channel_types: FrozenSet[ChannelType]
    allowed_timeframes: FrozenSet[str]
    max_monitors: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict, compare=False)

    def can_use_interval(self, interval_minutes: int) -> bool:
        return interval_minutes in self.allowed_intervals

    def can_access_timeframe(self, timeframe: str) -> bool:
        return timeframe in self.allowed_timeframes

    def can_use_channel_type(self, channel_type: ChannelType) -> bool:
        try:
            return ChannelType(channel_type) in self.allowed_channel_types
        except ValueError:
            return False

    def can_add_monitor(self, current_monitor_count: int) -> bool:
        if self.max_monitors is None:
            return True
        return current_monitor_count < self.max_monitors


FREE_PLAN = PlanLimits(
    plan=Plan.FREE,
    allowed_intervals=frozenset({30, 60}),
    allowed_channel_types=frozenset({ChannelType.EMAIL}),
    allowed_timeframes=frozenset({"1h", "6h"}),
    max_monitors=3,
)

PRO_PLAN = PlanLimits(
    plan=Plan.PRO,
    allowed_intervals=frozenset({1, 5, 10, 15, 30, 60}),
    allowed_channel_types=frozenset(
        {ChannelType.EMAIL, ChannelType.SMS, ChannelType.WEBHOOK}
    ),
    allowed_timeframes=frozenset({"1h", "6h", "24h", "7d", "30d"}),
    max_monitors=None,
)

_PLANS = {
    Plan.FREE: FREE_PLAN,
    Plan.PRO: PRO_PLAN,
}


def capabilities_for(plan: Optional[str]) -> PlanCapabilities:
    """
    Resolve the capabilities of a plan name.

    Unknown or missing plans fall back to the free plan.
    """
    try:
        return _PLANS[Plan(plan)]
    except ValueError:
        return FREE_PLAN
