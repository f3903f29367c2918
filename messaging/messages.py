"""
Check Queue Messages for Pulse Engine

Pydantic models for the MONITOR_CHECK work item. The wire format is
JSON with camelCase keys; Python code uses snake_case attributes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from config.constants import Defaults, Limits, MessageType, MonitorStatus, Priority
from exceptions.queue import MessageFormatError
from utils.helpers import TimeHelper


class WireModel(BaseModel):
    """Base for camelCase JSON models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MonitorData(WireModel):
    name: str
    url: str = Field(min_length=1)
    # Persisted monitor status when the check was scheduled.
    expected_status: MonitorStatus = MonitorStatus.PENDING
    interval_minutes: int = Field(ge=Limits.MIN_INTERVAL_MINUTES, le=Limits.MAX_INTERVAL_MINUTES)
    timeout_seconds: int = Field(
        default=Defaults.TIMEOUT_SECONDS,
        ge=1,
        le=Limits.MAX_TIMEOUT_SECONDS
    )
    headers: Optional[Dict[str, str]] = None


class CheckConfig(WireModel):
    priority: Priority = Priority.NORMAL
    scheduled_at: datetime
    expected_duration: int = Defaults.EXPECTED_DURATION_MS
    user_agent: str = Defaults.USER_AGENT


class PreviousCheck(WireModel):
    status: MonitorStatus
    response_time: float = 0
    checked_at: Optional[datetime] = None


class CheckPayload(WireModel):
    monitor_id: int
    user_id: str
    monitor_data: MonitorData
    check_config: CheckConfig
    previous_check: Optional[PreviousCheck] = None


class CheckMessage(WireModel):
    """
    MONITOR_CHECK queue payload.

    ``message_id`` identifies one scheduled check. Redeliveries of the
    same message carry the same id, which makes it the idempotency key
    for history writes.
    """

    message_id: str = Field(min_length=1)
    message_type: MessageType = MessageType.MONITOR_CHECK
    version: str = Defaults.MESSAGE_VERSION
    timestamp: datetime
    source: str
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=Defaults.MAX_RETRIES, ge=0)
    correlation_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    payload: CheckPayload

    @staticmethod
    def build_message_id(monitor_id: int, now: datetime) -> str:
        return f"monitor-{monitor_id}-{TimeHelper.epoch_millis(now)}"

    @staticmethod
    def build_correlation_id(now: datetime) -> str:
        return f"schedule-{now.date().isoformat()}"

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: Any) -> "CheckMessage":
        """
        Decode a message body.

        Raises:
            MessageFormatError: the body is not valid JSON or does not
                match the MONITOR_CHECK schema
        """
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")

        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MessageFormatError(f"Message body is not JSON: {e}", cause=e) from e

        message_id = data.get("messageId") if isinstance(data, dict) else None

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MessageFormatError(
                f"Message does not match the check schema: {e.error_count()} error(s)",
                message_id=message_id,
                details={"errors": e.errors(include_url=False, include_context=False)},
                cause=e,
            ) from e


@dataclass
class ReceivedMessage:
    """
    A message handed out by a queue backend.

    ``receipt_handle`` identifies this particular delivery; it is what
    acknowledge / release / dead_letter operate on. ``receive_count``
    is 1 on first delivery.
    """

    queue_message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1

    def decode(self) -> CheckMessage:
        return CheckMessage.from_json(self.body)
