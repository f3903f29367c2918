"""
============================================================================
PULSE ENGINE - NOTIFICATION CHANNEL SENDERS
============================================================================
Pluggable senders behind the dispatcher's channel contract:

    send(channel_config, event_type, snapshot) -> SendResult

Reference implementations (all over httpx):
    WebhookSender   JSON POST to the user's endpoint
    EmailSender     Resend HTTP API
    SmsSender       Twilio REST API

A sender returns SendResult(success=False) when the remote side rejects
the notification, and raises NotificationError when the transport call
itself fails.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from config.constants import AlertEventType, ChannelType
from config.settings import NotificationSettings
from exceptions.monitoring import NotificationError
from monitoring.alerts import MonitorSnapshot
from utils.helpers import StringHelper, TimeHelper
from utils.logger import get_logger


logger = get_logger("Channels")


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


# ============================================================================
# MESSAGE TEMPLATES
# ============================================================================

class AlertTemplates:
    """Subjects and bodies for down, timeout and recovery alerts."""

    @staticmethod
    def is_recovery(event_type: AlertEventType) -> bool:
        return event_type == AlertEventType.UP

    @staticmethod
    def subject(event_type: AlertEventType, snapshot: MonitorSnapshot) -> str:
        if event_type == AlertEventType.UP:
            return f"✅ {snapshot.name} is back online"
        if event_type == AlertEventType.TIMEOUT:
            return f"⏰ {snapshot.name} is timing out"
        return f"🚨 {snapshot.name} is down"

    @staticmethod
    def text(event_type: AlertEventType, snapshot: MonitorSnapshot) -> str:
        lines = [
            f"Monitor Alert - {snapshot.name}",
            "",
            f"Status: {event_type.value.upper()}",
            f"URL: {snapshot.url}",
            f"Previous Status: {snapshot.previous_status.value.upper()}",
        ]
        if snapshot.response_time is not None:
            lines.append(f"Response Time: {int(snapshot.response_time)}ms")
        if snapshot.status_code is not None:
            lines.append(f"HTTP Status: {snapshot.status_code}")
        if snapshot.consecutive_failures > 1:
            lines.append(f"Consecutive Failures: {snapshot.consecutive_failures}")
        if snapshot.error_message:
            lines.append(f"Error: {snapshot.error_message}")
        lines.append(f"Time: {TimeHelper.isoformat(snapshot.checked_at)}")
        lines.append("")

        if event_type == AlertEventType.UP:
            lines.append(
                "Good News: Your endpoint has recovered and is responding normally again."
            )
        else:
            lines.append(
                "Action Required: Your endpoint is not responding properly. "
                "Please check your service and infrastructure."
            )

        return "\n".join(lines)

    @staticmethod
    def html(event_type: AlertEventType, snapshot: MonitorSnapshot) -> str:
        body = AlertTemplates.text(event_type, snapshot).replace("&", "&amp;")
        body = body.replace("<", "&lt;").replace(">", "&gt;").replace("\n", "<br>")
        return f"<html><body><p>{body}</p></body></html>"

    @staticmethod
    def sms(event_type: AlertEventType, snapshot: MonitorSnapshot) -> str:
        if event_type == AlertEventType.UP:
            return f"✅ Pulse: {snapshot.name} is back online! {snapshot.url}"

        emoji = "⏰" if event_type == AlertEventType.TIMEOUT else "🚨"
        failures = (
            f" ({snapshot.consecutive_failures} failures)"
            if snapshot.consecutive_failures > 1 else ""
        )
        return (
            f"{emoji} Pulse Alert: {snapshot.name} is {event_type.value.upper()}"
            f"{failures}. Check: {snapshot.url}"
        )

    @staticmethod
    def webhook_payload(event_type: AlertEventType, snapshot: MonitorSnapshot) -> Dict[str, Any]:
        return {
            "monitor": {
                "id": snapshot.monitor_id,
                "name": snapshot.name,
                "url": snapshot.url,
            },
            "alert": {
                "trigger_status": event_type.value,
                "previous_status": snapshot.previous_status.value,
                "consecutive_failures": snapshot.consecutive_failures,
                "response_time": snapshot.response_time,
                "status_code": snapshot.status_code,
                "timestamp": TimeHelper.isoformat(snapshot.checked_at),
            },
            "meta": {
                "alert_type": ChannelType.WEBHOOK.value,
                "source": "pulse-engine",
            },
        }


# ============================================================================
# SENDER BASE
# ============================================================================

class ChannelSender(ABC):
    """Base class for channel senders sharing one httpx client."""

    channel_type: ChannelType

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @abstractmethod
    async def send(
        self,
        channel_config: Mapping[str, Any],
        event_type: AlertEventType,
        snapshot: MonitorSnapshot
    ) -> SendResult:
        """Deliver one notification."""

    def _transport_error(self, error: Exception) -> NotificationError:
        return NotificationError(
            StringHelper.truncate(f"{self.channel_type.value} transport failed: {error}", 300),
            channel_type=self.channel_type.value,
            cause=error,
        )

    @staticmethod
    def _json_field(response: httpx.Response, key: str) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data.get(key) if isinstance(data, dict) else None

    @staticmethod
    def _rejected(response: httpx.Response, what: str) -> SendResult:
        logger.debug(f"[Channels] {what} rejected by {response.request.url.host}: {response.status_code}")
        return SendResult(
            success=False,
            error=f"{what} failed with status {response.status_code}: {response.reason_phrase}",
        )


# ============================================================================
# WEBHOOK
# ============================================================================

class WebhookSender(ChannelSender):
    channel_type = ChannelType.WEBHOOK

    def __init__(self, client: httpx.AsyncClient, settings: NotificationSettings):
        super().__init__(client)
        self.timeout = settings.webhook_timeout
        self.user_agent = settings.webhook_user_agent

    async def send(self, channel_config, event_type, snapshot) -> SendResult:
        url = channel_config.get("webhook_url")
        if not url:
            return SendResult(success=False, error="No webhook URL configured")

        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }
        headers.update(channel_config.get("headers") or {})

        try:
            response = await self.client.post(
                url,
                json=AlertTemplates.webhook_payload(event_type, snapshot),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        if not response.is_success:
            return self._rejected(response, "Webhook")

        return SendResult(
            success=True,
            message_id=f"webhook-{TimeHelper.epoch_millis(TimeHelper.utcnow())}",
        )


# ============================================================================
# EMAIL (Resend)
# ============================================================================

class EmailSender(ChannelSender):
    channel_type = ChannelType.EMAIL

    def __init__(self, client: httpx.AsyncClient, settings: NotificationSettings):
        super().__init__(client)
        self.settings = settings

    async def send(self, channel_config, event_type, snapshot) -> SendResult:
        if not self.settings.email_configured:
            return SendResult(success=False, error="Email transport not configured")

        email = channel_config.get("email")
        if not email:
            return SendResult(success=False, error="No email address configured")

        api_key = self.settings.resend_api_key.get_secret_value()
        try:
            response = await self.client.post(
                self.settings.resend_api_url,
                headers={"Authorization": f"Bearer {api_key}"},
                json={
                    "from": self.settings.resend_from_email,
                    "to": [email],
                    "subject": AlertTemplates.subject(event_type, snapshot),
                    "html": AlertTemplates.html(event_type, snapshot),
                    "text": AlertTemplates.text(event_type, snapshot),
                    "headers": {"X-Entity-Ref-ID": f"monitor-{snapshot.monitor_id}"},
                },
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        if not response.is_success:
            return self._rejected(response, "Email")

        return SendResult(success=True, message_id=self._json_field(response, "id"))


# ============================================================================
# SMS (Twilio)
# ============================================================================

class SmsSender(ChannelSender):
    channel_type = ChannelType.SMS

    def __init__(self, client: httpx.AsyncClient, settings: NotificationSettings):
        super().__init__(client)
        self.settings = settings

    async def send(self, channel_config, event_type, snapshot) -> SendResult:
        if not self.settings.sms_configured:
            return SendResult(success=False, error="SMS transport not configured")

        phone = channel_config.get("phone")
        if not phone:
            return SendResult(success=False, error="No phone number configured")

        sid = self.settings.twilio_account_sid
        url = f"{self.settings.twilio_api_base}/Accounts/{sid}/Messages.json"
        try:
            response = await self.client.post(
                url,
                auth=(sid, self.settings.twilio_auth_token.get_secret_value()),
                data={
                    "From": self.settings.twilio_phone_number,
                    "To": phone,
                    "Body": AlertTemplates.sms(event_type, snapshot),
                },
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        if not response.is_success:
            return self._rejected(response, "SMS")

        return SendResult(success=True, message_id=self._json_field(response, "sid"))


def build_senders(
    client: httpx.AsyncClient,
    settings: NotificationSettings
) -> Dict[ChannelType, ChannelSender]:
    """Default sender registry keyed by channel type."""
    senders = (
        EmailSender(client, settings),
        SmsSender(client, settings),
        WebhookSender(client, settings),
    )
    return {sender.channel_type: sender for sender in senders}
