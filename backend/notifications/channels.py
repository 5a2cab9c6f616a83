"""Outbound delivery channels used by messaging steps.

Each channel handles delivery for one transport (SMTP email, Twilio SMS,
portal inbox). Channels never raise for delivery problems; they return a
DeliveryResult and the step handler decides what a failure means.
"""

import asyncio
import logging
import math
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Optional

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PORTAL = "portal"


@dataclass
class Notification:
    """A message to be delivered."""
    channel: NotificationChannel
    recipient: str  # email address, E.164 phone number or portal client id
    message: str
    title: str = ""
    organization_id: Optional[str] = None
    execution_id: Optional[str] = None
    template: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    retryable: bool = True
    provider_id: Optional[str] = None
    delivered_at: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for delivery channels."""

    channel_type: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Deliver a notification through this channel."""
        ...


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send email via SMTP.

    Config (defaults from settings):
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    channel_type = NotificationChannel.EMAIL

    def __init__(self, config: dict = None):
        settings = get_settings()
        self.config = {
            "smtp_host": settings.SMTP_HOST,
            "smtp_port": settings.SMTP_PORT,
            "smtp_user": settings.SMTP_USER,
            "smtp_password": settings.SMTP_PASSWORD,
            "from_address": settings.SMTP_FROM_ADDRESS,
            "use_tls": settings.SMTP_USE_TLS,
            **(config or {}),
        }

    async def send(self, notification: Notification) -> DeliveryResult:
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = notification.title
            msg["From"] = self.config["from_address"]
            msg["To"] = notification.recipient
            if notification.template:
                msg["X-Template-Id"] = notification.template

            msg.attach(MIMEText(notification.message, "plain"))
            html = f"""
            <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
                <div style="color: #333; line-height: 1.6;">
                    {notification.message.replace(chr(10), '<br>')}
                </div>
            </div>
            """
            msg.attach(MIMEText(html, "html"))

            # smtplib blocks; keep it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._send_smtp(msg, notification.recipient))

            return DeliveryResult(
                success=True,
                channel=self.channel_type,
                recipient=notification.recipient,
                message="Email sent",
                delivered_at=_now_iso(),
            )

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed: {e}")
            permanent = isinstance(e, smtplib.SMTPRecipientsRefused)
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=notification.recipient,
                error=str(e),
                retryable=not permanent,
            )

    def _send_smtp(self, msg, to_addr):
        """Synchronous SMTP send."""
        cfg = self.config
        with smtplib.SMTP(cfg["smtp_host"], cfg["smtp_port"]) as server:
            if cfg["use_tls"]:
                server.starttls()
            if cfg["smtp_user"]:
                server.login(cfg["smtp_user"], cfg["smtp_password"])
            server.sendmail(cfg["from_address"], [to_addr], msg.as_string())


# ─── SMS Channel ───────────────────────────────────────────────

def count_segments(body: str) -> int:
    """GSM-7 segment count: 160 chars fit one segment, longer texts split at 153."""
    length = len(body or "")
    if length <= 160:
        return 1
    return math.ceil(length / 153)


class SmsChannel(BaseChannel):
    """Send SMS through the Twilio REST API.

    ``usage`` (services.sms_usage_service.SmsUsageService) enforces the
    practice's plan and records sent/failed counts.
    """

    channel_type = NotificationChannel.SMS

    def __init__(self, usage=None, config: dict = None, client: Optional[httpx.AsyncClient] = None):
        settings = get_settings()
        self.usage = usage
        self.client = client
        self.config = {
            "account_sid": settings.TWILIO_ACCOUNT_SID,
            "auth_token": settings.TWILIO_AUTH_TOKEN,
            "from_number": settings.TWILIO_FROM_NUMBER,
            "api_base": settings.TWILIO_API_BASE,
            **(config or {}),
        }

    @property
    def is_configured(self) -> bool:
        cfg = self.config
        return bool(cfg["account_sid"] and cfg["auth_token"] and cfg["from_number"])

    async def send(self, notification: Notification) -> DeliveryResult:
        segments = count_segments(notification.message)
        org_id = notification.organization_id

        if self.usage and org_id:
            check = await self.usage.check_limit(org_id, segments)
            if not check.can_send:
                return DeliveryResult(
                    success=False,
                    channel=self.channel_type,
                    recipient=notification.recipient,
                    error=check.warning or "SMS is not available on this plan",
                    retryable=False,
                )
            if check.warning:
                logger.warning(f"SMS usage warning for org {org_id}: {check.warning}")

        if not self.is_configured:
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=notification.recipient,
                error="SMS provider is not configured",
                retryable=False,
            )

        cfg = self.config
        url = f"{cfg['api_base']}/Accounts/{cfg['account_sid']}/Messages.json"
        payload = {"To": notification.recipient, "From": cfg["from_number"], "Body": notification.message}

        try:
            if self.client is not None:
                resp = await self.client.post(url, data=payload, auth=(cfg["account_sid"], cfg["auth_token"]))
            else:
                async with httpx.AsyncClient(timeout=15) as client:
                    resp = await client.post(url, data=payload, auth=(cfg["account_sid"], cfg["auth_token"]))
        except httpx.HTTPError as e:
            await self._record_failure(org_id)
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=notification.recipient,
                error=f"SMS request failed: {e}",
            )

        if resp.status_code >= 400:
            await self._record_failure(org_id)
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=notification.recipient,
                error=f"SMS provider returned {resp.status_code}: {resp.text[:200]}",
                retryable=resp.status_code >= 500 or resp.status_code == 429,
            )

        if self.usage and org_id:
            await self.usage.record_sent(org_id, segments)

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=notification.recipient,
            message="SMS sent",
            provider_id=resp.json().get("sid"),
            delivered_at=_now_iso(),
            details={"segments": segments},
        )

    async def _record_failure(self, org_id: Optional[str]) -> None:
        if self.usage and org_id:
            await self.usage.record_failed(org_id)


# ─── Portal Channel ────────────────────────────────────────────

class PortalChannel(BaseChannel):
    """Write an in-app message to the client's portal inbox."""

    channel_type = NotificationChannel.PORTAL

    def __init__(self, db):
        self.db = db

    async def send(self, notification: Notification) -> DeliveryResult:
        from db.models.portal_message import PortalMessage

        message = PortalMessage(
            organization_id=notification.organization_id,
            client_id=notification.recipient,
            execution_id=notification.execution_id,
            subject=notification.title or None,
            body=notification.message,
        )
        self.db.add(message)
        await self.db.flush()
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=notification.recipient,
            message="Portal message created",
            provider_id=message.id,
            delivered_at=_now_iso(),
        )


# ─── Channel bundle ────────────────────────────────────────────

@dataclass
class StepChannels:
    """The channels a step run can use; tests swap in fakes."""
    email: BaseChannel
    sms: BaseChannel
    portal: BaseChannel
    http: Optional[httpx.AsyncClient] = None  # webhook steps open their own client when unset


def build_step_channels(db) -> StepChannels:
    """Default channels for a session: SMTP email, Twilio SMS with usage tracking, portal inbox."""
    from services.sms_usage_service import SmsUsageService

    return StepChannels(
        email=EmailChannel(),
        sms=SmsChannel(usage=SmsUsageService(db)),
        portal=PortalChannel(db),
    )
