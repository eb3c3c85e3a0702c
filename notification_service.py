"""
Notification Service for BloodLink
Sends notifications over email, SMS and WhatsApp and keeps a delivery log
"""

import asyncio
import logging
import smtplib
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Union

import aiohttp

from config import EmailConfig, Settings, TwilioConfig
from notification_content import Channel, NotificationType, render_content, render_email

logger = logging.getLogger(__name__)


class NotificationStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class Recipient:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class ChannelSelection:
    email: bool = False
    sms: bool = False
    whatsapp: bool = False

    def wants(self, channel: Channel) -> bool:
        return bool(getattr(self, channel.value))


@dataclass
class NotificationEvent:
    """A notification to deliver to one recipient"""
    type: Union[NotificationType, str]
    recipient: Recipient
    data: Dict[str, Any] = field(default_factory=dict)
    urgency: str = "medium"
    channels: ChannelSelection = field(default_factory=ChannelSelection)

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, NotificationType) else str(self.type)


@dataclass(frozen=True)
class NotificationLog:
    """Delivery record for one send_notification call. Never updated."""
    id: str
    type: str
    channels_used: List[str]
    status: str
    data: Dict[str, Any]
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    sent_at: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationLogStore:
    """Append-only log with a bounded most-recent read"""

    def append(self, entry: NotificationLog) -> None:
        raise NotImplementedError

    def recent(self, limit: int = 50) -> List[NotificationLog]:
        raise NotImplementedError


class InMemoryNotificationLogStore(NotificationLogStore):
    """Ring buffer holding the most recent ``capacity`` entries"""

    def __init__(self, capacity: int = 100):
        self.capacity = capacity
        self._entries: Deque[NotificationLog] = deque(maxlen=capacity)

    def append(self, entry: NotificationLog) -> None:
        self._entries.append(entry)

    def recent(self, limit: int = 50) -> List[NotificationLog]:
        if limit <= 0:
            return []
        return list(reversed(self._entries))[:limit]

    def __len__(self) -> int:
        return len(self._entries)


class NotificationChannel:
    """A delivery sink. ``send`` returns True when the provider accepted the message."""

    name = "channel"

    async def send(self, address: str, body: str, subject: Optional[str] = None) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LoggingChannel(NotificationChannel):
    """Demo-mode sink: writes the message to the log and reports success"""

    def __init__(self, name: str):
        self.name = name

    async def send(self, address: str, body: str, subject: Optional[str] = None) -> bool:
        if subject:
            logger.info(f"[{self.name} demo] to={address} subject={subject!r}")
        else:
            logger.info(f"[{self.name} demo] to={address} message={body!r}")
        return True


class EmailChannel(NotificationChannel):
    """Sends HTML email over SMTP in a worker thread"""

    name = Channel.EMAIL.value

    def __init__(self, config: EmailConfig, executor: Optional[ThreadPoolExecutor] = None):
        self.config = config
        self.executor = executor or ThreadPoolExecutor(max_workers=4)

    def _send_sync(self, address: str, subject: str, html_body: str) -> bool:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.config.from_email
        message["To"] = address
        message.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(self.config.smtp_server, self.config.smtp_port, timeout=30) as server:
            server.starttls()
            if self.config.username:
                server.login(self.config.username, self.config.password)
            server.sendmail(self.config.from_email, [address], message.as_string())
        return True

    async def send(self, address: str, body: str, subject: Optional[str] = None) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor, self._send_sync, address, subject or "BloodLink Notification", body
        )

    def close(self) -> None:
        self.executor.shutdown(wait=True)


class TwilioSmsChannel(NotificationChannel):
    """Sends SMS through the Twilio Messages API"""

    name = Channel.SMS.value

    def __init__(self, config: TwilioConfig, timeout_seconds: int = 10):
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def messages_url(self) -> str:
        return (f"{self.config.base_url.rstrip('/')}/2010-04-01/Accounts/"
                f"{self.config.account_sid}/Messages.json")

    def _addresses(self, address: str):
        return address, self.config.from_number

    async def send(self, address: str, body: str, subject: Optional[str] = None) -> bool:
        to, sender = self._addresses(address)
        payload = {"To": to, "From": sender, "Body": body}
        auth = aiohttp.BasicAuth(self.config.account_sid, self.config.auth_token)

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.messages_url, data=payload, auth=auth) as response:
                if response.status >= 300:
                    detail = await response.text()
                    logger.warning(f"Twilio {self.name} to {address} rejected "
                                   f"(HTTP {response.status}): {detail}")
                    return False
                return True


class TwilioWhatsAppChannel(TwilioSmsChannel):
    """Sends WhatsApp messages through the Twilio Messages API"""

    name = Channel.WHATSAPP.value

    def _addresses(self, address: str):
        return f"whatsapp:{address}", f"whatsapp:{self.config.whatsapp_from}"


@dataclass
class _Delivery:
    channel: Channel
    address: str
    body: str
    subject: Optional[str] = None


class NotificationService:
    """
    Fans one notification out to its requested channels and records the
    outcome in the notification log.
    """

    def __init__(self, channels: Dict[Channel, NotificationChannel],
                 log_store: Optional[NotificationLogStore] = None):
        self.channels = channels
        self.log_store = log_store or InMemoryNotificationLogStore()

    def _prepare(self, event: NotificationEvent) -> List[_Delivery]:
        recipient = event.recipient
        deliveries = []

        if event.channels.email and recipient.email:
            email = render_email(event.type, recipient.name, event.data, event.urgency)
            deliveries.append(_Delivery(Channel.EMAIL, recipient.email, email.html_body, email.subject))

        for channel in (Channel.SMS, Channel.WHATSAPP):
            if event.channels.wants(channel) and recipient.phone:
                body = render_content(channel, event.type, recipient.name, event.data, event.urgency)
                deliveries.append(_Delivery(channel, recipient.phone, body))

        return deliveries

    async def _attempt(self, delivery: _Delivery) -> bool:
        sink = self.channels.get(delivery.channel)
        if sink is None:
            logger.warning(f"No {delivery.channel.value} channel configured")
            return False
        try:
            return bool(await sink.send(delivery.address, delivery.body, delivery.subject))
        except Exception as e:
            logger.error(f"{delivery.channel.value} notification to {delivery.address} failed: {e}")
            return False

    def _record(self, event: NotificationEvent, channels_used: List[str],
                status: NotificationStatus, error_message: Optional[str] = None) -> NotificationLog:
        entry = NotificationLog(
            id=str(uuid.uuid4()),
            type=event.type_name,
            channels_used=channels_used,
            status=status.value,
            data=dict(event.data),
            recipient_email=event.recipient.email,
            recipient_phone=event.recipient.phone,
            sent_at=datetime.now(timezone.utc).isoformat() if status is NotificationStatus.SENT else None,
            error_message=error_message,
        )
        try:
            self.log_store.append(entry)
        except Exception as e:
            logger.error(f"Failed to log notification {entry.id}: {e}")
        return entry

    async def send_notification(self, event: NotificationEvent) -> bool:
        """
        Send through every requested channel the recipient can be reached on.

        Returns:
            bool: True if at least one channel succeeded
        """
        logger.info(f"Sending {event.type_name} notification to {event.recipient.name}")

        try:
            deliveries = self._prepare(event)
        except Exception as e:
            logger.error(f"Error preparing {event.type_name} notification: {e}")
            self._record(event, [], NotificationStatus.FAILED, str(e))
            return False

        if not deliveries:
            logger.warning(f"No deliverable channels for {event.type_name} to {event.recipient.name}")
            self._record(event, [], NotificationStatus.FAILED, "No deliverable channels")
            return False

        results = await asyncio.gather(*(self._attempt(d) for d in deliveries))
        channels_used = [d.channel.value for d, ok in zip(deliveries, results) if ok]

        if channels_used:
            self._record(event, channels_used, NotificationStatus.SENT)
            return True

        self._record(event, [], NotificationStatus.FAILED, "All channels failed")
        return False

    def get_notification_logs(self, limit: int = 50) -> List[NotificationLog]:
        """Most recent log entries, newest first"""
        return self.log_store.recent(limit)

    def get_notification_stats(self) -> Dict[str, Any]:
        logs = self.log_store.recent(getattr(self.log_store, "capacity", 100))
        sent = sum(1 for log in logs if log.status == NotificationStatus.SENT.value)
        failed = sum(1 for log in logs if log.status == NotificationStatus.FAILED.value)
        pending = sum(1 for log in logs if log.status == NotificationStatus.PENDING.value)
        return {
            "total": len(logs),
            "sent": sent,
            "failed": failed,
            "pending": pending,
            "success_rate": round(sent / len(logs) * 100, 1) if logs else 0.0,
        }

    # Convenience wrappers with per-type urgency and channel defaults

    async def send_blood_request_confirmation(self, recipient: Recipient,
                                              request_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.BLOOD_REQUEST_CONFIRMATION,
            recipient=recipient,
            data=request_data,
            urgency="medium",
            channels=ChannelSelection(email=bool(recipient.email), sms=bool(recipient.phone)),
        ))

    async def send_donor_match_notification(self, recipient: Recipient,
                                            match_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.DONOR_MATCH_FOUND,
            recipient=recipient,
            data=match_data,
            urgency="high",
            channels=ChannelSelection(email=bool(recipient.email), sms=bool(recipient.phone),
                                      whatsapp=bool(recipient.phone)),
        ))

    async def send_donor_request_alert(self, recipient: Recipient, request_data: Dict[str, Any],
                                       urgency: str) -> bool:
        """Tell a matched donor about a request (SMS and WhatsApp)"""
        return await self.send_notification(NotificationEvent(
            type=NotificationType.DONOR_MATCH_FOUND,
            recipient=recipient,
            data=request_data,
            urgency=urgency,
            channels=ChannelSelection(sms=True, whatsapp=True),
        ))

    async def send_donation_reminder(self, recipient: Recipient,
                                     reminder_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.DONATION_REMINDER,
            recipient=recipient,
            data=reminder_data,
            urgency="low",
            channels=ChannelSelection(email=bool(recipient.email), sms=bool(recipient.phone)),
        ))

    async def send_appointment_reminder(self, recipient: Recipient,
                                        appointment_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.APPOINTMENT_REMINDER,
            recipient=recipient,
            data=appointment_data,
            urgency="medium",
            channels=ChannelSelection(email=bool(recipient.email), sms=bool(recipient.phone),
                                      whatsapp=bool(recipient.phone)),
        ))

    async def send_donor_welcome(self, recipient: Recipient, donor_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.DONOR_WELCOME,
            recipient=recipient,
            data=donor_data,
            urgency="low",
            channels=ChannelSelection(email=bool(recipient.email), sms=bool(recipient.phone)),
        ))

    async def send_volunteer_welcome(self, recipient: Recipient,
                                     volunteer_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.VOLUNTEER_WELCOME,
            recipient=recipient,
            data=volunteer_data,
            urgency="low",
            channels=ChannelSelection(email=True),
        ))

    async def send_partnership_confirmation(self, recipient: Recipient,
                                            partner_data: Dict[str, Any]) -> bool:
        return await self.send_notification(NotificationEvent(
            type=NotificationType.PARTNERSHIP_CONFIRMATION,
            recipient=recipient,
            data=partner_data,
            urgency="medium",
            channels=ChannelSelection(email=True),
        ))

    def close(self):
        """Clean up channel resources"""
        for channel in self.channels.values():
            channel.close()


def build_notification_service(settings: Settings) -> NotificationService:
    """Wire demo (logging) or live (SMTP + Twilio) channels from settings"""
    log_store = InMemoryNotificationLogStore(capacity=settings.log_capacity)

    if settings.is_live:
        channels: Dict[Channel, NotificationChannel] = {
            Channel.EMAIL: EmailChannel(settings.email),
            Channel.SMS: TwilioSmsChannel(settings.twilio),
            Channel.WHATSAPP: TwilioWhatsAppChannel(settings.twilio),
        }
    else:
        channels = {channel: LoggingChannel(channel.value) for channel in Channel}

    logger.info(f"Notification service initialized in {settings.notification_mode.upper()} mode")
    return NotificationService(channels, log_store)
