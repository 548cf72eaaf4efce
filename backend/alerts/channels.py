"""
Alert Channels
Adapters that format an alert and hand it to one external sink.

A channel's only contract is send(): return on success, raise
ChannelDeliveryError (or let the timeout fire) on failure. Retrying,
timeouts and isolation between channels belong to the alert manager.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Dict, List, Mapping, Optional

import httpx

from .models import AlertInstance, AlertSeverity, ChannelType

logger = logging.getLogger(__name__)
console_logger = logging.getLogger("alerts.console")

SEVERITY_LOG_LEVELS = {
    AlertSeverity.LOW: logging.INFO,
    AlertSeverity.MEDIUM: logging.WARNING,
    AlertSeverity.HIGH: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}

SEVERITY_COLORS = {
    AlertSeverity.LOW: "#17a2b8",
    AlertSeverity.MEDIUM: "#ffc107",
    AlertSeverity.HIGH: "#fd7e14",
    AlertSeverity.CRITICAL: "#dc3545",
}


class ChannelDeliveryError(Exception):
    """The sink rejected or could not receive the alert."""


def format_text(alert: AlertInstance) -> str:
    """Plain-text body shared by email and SMS"""
    lines = [
        f"[{alert.severity.value.upper()}] {alert.message}",
        f"Type: {alert.type.value}",
        f"Current value: {alert.current_value:g} (threshold {alert.threshold:g})",
        f"Time: {alert.timestamp.isoformat()}",
    ]
    if alert.affected_entities:
        lines.append(f"Affected: {', '.join(alert.affected_entities)}")
    if alert.suggested_actions:
        lines.append("Suggested actions:")
        lines.extend(f"  - {action}" for action in alert.suggested_actions)
    return "\n".join(lines)


class AlertChannel(ABC):
    """Base class for alert delivery channels."""

    channel_type: ChannelType

    @abstractmethod
    async def send(self, alert: AlertInstance) -> None:
        ...


# =============================================================================
# Console
# =============================================================================

class ConsoleChannel(AlertChannel):
    """Writes the alert to the log at a level matching its severity"""

    channel_type = ChannelType.CONSOLE

    async def send(self, alert: AlertInstance) -> None:
        level = SEVERITY_LOG_LEVELS.get(alert.severity, logging.WARNING)
        console_logger.log(
            level,
            "[ALERT] %s: %s | type=%s current=%g threshold=%g details=%s",
            alert.severity.value.upper(),
            alert.message,
            alert.type.value,
            alert.current_value,
            alert.threshold,
            alert.details,
        )


# =============================================================================
# HTTP channels
# =============================================================================

class HttpChannel(AlertChannel):
    """
    POSTs JSON with a short-lived httpx client.

    transport is only passed in tests (httpx.MockTransport).
    """

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def _post(self, url: str, payload: dict, headers: Optional[Mapping[str, str]] = None) -> None:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=dict(headers or {}))
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(f"{self.channel_type.value} request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ChannelDeliveryError(
                f"{self.channel_type.value} returned HTTP {response.status_code}: {response.text[:200]}"
            )


class SlackChannel(HttpChannel):
    """Slack incoming webhook"""

    channel_type = ChannelType.SLACK

    def __init__(self, webhook_url: str, **kwargs):
        super().__init__(**kwargs)
        self.webhook_url = webhook_url

    def format_payload(self, alert: AlertInstance) -> dict:
        fields = [
            {"title": "Type", "value": alert.type.value, "short": True},
            {"title": "Severity", "value": alert.severity.value.upper(), "short": True},
            {"title": "Current value", "value": f"{alert.current_value:g}", "short": True},
            {"title": "Threshold", "value": f"{alert.threshold:g}", "short": True},
        ]
        if alert.affected_entities:
            fields.append({"title": "Affected", "value": ", ".join(alert.affected_entities), "short": False})
        if alert.suggested_actions:
            fields.append({
                "title": "Suggested actions",
                "value": "\n".join(f"• {a}" for a in alert.suggested_actions),
                "short": False,
            })

        return {
            "text": f"[{alert.severity.value.upper()}] {alert.message}",
            "attachments": [{
                "color": SEVERITY_COLORS.get(alert.severity, "#6c757d"),
                "fields": fields,
                "ts": int(alert.timestamp.timestamp()),
            }],
        }

    async def send(self, alert: AlertInstance) -> None:
        await self._post(self.webhook_url, self.format_payload(alert))


class WebhookChannel(HttpChannel):
    """Generic JSON webhook; the body is AlertInstance.to_dict()"""

    channel_type = ChannelType.WEBHOOK

    def __init__(self, url: str, headers: Optional[Mapping[str, str]] = None, **kwargs):
        super().__init__(**kwargs)
        self.url = url
        self.headers = dict(headers or {})

    async def send(self, alert: AlertInstance) -> None:
        await self._post(self.url, alert.to_dict(), self.headers)


class SmsChannel(HttpChannel):
    """SMS gateway taking {to, message} per recipient"""

    channel_type = ChannelType.SMS
    MAX_LENGTH = 160

    def __init__(self, gateway_url: str, recipients: List[str], api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.gateway_url = gateway_url
        self.recipients = list(recipients)
        self.api_key = api_key

    async def send(self, alert: AlertInstance) -> None:
        if not self.recipients:
            raise ChannelDeliveryError("sms has no recipients")

        text = f"[{alert.severity.value.upper()}] {alert.message}"[: self.MAX_LENGTH]
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        for recipient in self.recipients:
            await self._post(self.gateway_url, {"to": recipient, "message": text}, headers)


# =============================================================================
# Email
# =============================================================================

class EmailChannel(AlertChannel):
    """SMTP email; the blocking send runs in a worker thread"""

    channel_type = ChannelType.EMAIL

    def __init__(
        self,
        host: str,
        sender: str,
        recipients: List[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, alert: AlertInstance) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message["Subject"] = f"[{alert.severity.value.upper()}] Ops alert: {alert.type.value}"
        message.set_content(format_text(alert))
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)

    async def send(self, alert: AlertInstance) -> None:
        if not self.recipients:
            raise ChannelDeliveryError("email has no recipients")
        try:
            await asyncio.to_thread(self._send_sync, self.build_message(alert))
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDeliveryError(f"email delivery failed: {e}") from e


# =============================================================================
# Registry
# =============================================================================

def build_channels(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[ChannelType, AlertChannel]:
    """
    Channels available to rules.

    Console is always registered; the rest only when their settings are
    present. A rule routed to an unregistered channel gets a failed
    delivery attempt, not an error.
    """
    timeout = settings.channel_timeout_seconds
    channels: Dict[ChannelType, AlertChannel] = {ChannelType.CONSOLE: ConsoleChannel()}

    if settings.slack_webhook_url:
        channels[ChannelType.SLACK] = SlackChannel(settings.slack_webhook_url, timeout=timeout, transport=transport)

    if settings.alert_webhook_url:
        channels[ChannelType.WEBHOOK] = WebhookChannel(
            settings.alert_webhook_url,
            headers=settings.alert_webhook_headers,
            timeout=timeout,
            transport=transport,
        )

    if settings.smtp_host and settings.alert_email_from and settings.alert_email_to:
        channels[ChannelType.EMAIL] = EmailChannel(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.alert_email_from,
            recipients=settings.alert_email_to,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=timeout,
        )

    if settings.sms_gateway_url and settings.sms_recipients:
        channels[ChannelType.SMS] = SmsChannel(
            settings.sms_gateway_url,
            recipients=settings.sms_recipients,
            api_key=settings.sms_api_key,
            timeout=timeout,
            transport=transport,
        )

    logger.info("Alert channels registered: %s", ", ".join(c.value for c in channels))
    return channels
