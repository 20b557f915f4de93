"""Outbound message transports: SMTP email, chat webhook and SMS REST."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any

import requests

from leadflow.core.config import Config
from leadflow.core.exceptions import ConfigurationError, ExternalServiceFailure, LeadProcessingFailure
from leadflow.models.base import utcnow
from leadflow.models.enums import Channel
from leadflow.utils.ids import sandbox_message_id

logger = logging.getLogger(__name__)

SMS_API_BASE = "https://api.twilio.com/2010-04-01"
SMS_MAX_LENGTH = 1600


@dataclass(frozen=True)
class TransportSettings:
    """Explicit transport configuration; nothing is read from the environment here."""

    sandbox_mode: bool = True
    timeout_seconds: int = 30
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    from_email: str = "noreply@leadflow.local"
    chat_webhook_url: str | None = None
    sms_account_sid: str | None = None
    sms_auth_token: str | None = None
    sms_from_number: str | None = None

    @classmethod
    def from_config(cls, config: Config) -> "TransportSettings":
        return cls(
            sandbox_mode=config.TRANSPORT_SANDBOX_MODE,
            timeout_seconds=config.TRANSPORT_TIMEOUT_SECONDS,
            smtp_host=config.SMTP_HOST,
            smtp_port=config.SMTP_PORT,
            smtp_username=config.SMTP_USERNAME,
            smtp_password=config.SMTP_PASSWORD,
            from_email=config.SMTP_FROM_EMAIL,
            chat_webhook_url=config.CHAT_WEBHOOK_URL,
            sms_account_sid=config.SMS_ACCOUNT_SID,
            sms_auth_token=config.SMS_AUTH_TOKEN,
            sms_from_number=config.SMS_FROM_NUMBER,
        )


@dataclass(frozen=True)
class RenderedMessage:
    body: str
    subject: str | None = None
    html: str | None = None


@dataclass(frozen=True)
class DeliveryReceipt:
    channel: str
    recipient: str
    message_id: str
    sandbox: bool = False
    sent_at: datetime = field(default_factory=utcnow)


class Transport:
    """Lifecycle: ``start()`` validates credentials, then ``send``, then ``shutdown()``."""

    channel: str = ""

    def __init__(self, settings: TransportSettings) -> None:
        self.settings = settings
        self.ready = False

    @property
    def sandbox(self) -> bool:
        return self.settings.sandbox_mode

    def validate(self) -> None:
        raise NotImplementedError

    def start(self) -> None:
        if not self.sandbox:
            self.validate()
        self.ready = True
        logger.info(
            "transport.ready",
            extra={"event": "transport.ready", "channel": self.channel, "sandbox": self.sandbox},
        )

    def shutdown(self) -> None:
        self.ready = False
        logger.info("transport.shutdown", extra={"event": "transport.shutdown", "channel": self.channel})

    def send(self, recipient: str, message: RenderedMessage, metadata: dict[str, Any] | None = None) -> DeliveryReceipt:
        if not self.ready:
            raise LeadProcessingFailure(f"{self.channel} transport used before start()", stage="transport")
        metadata = metadata or {}
        if self.sandbox:
            logger.info(
                "transport.sandbox_send",
                extra={
                    "event": "transport.sandbox_send",
                    "channel": self.channel,
                    "recipient": recipient,
                    "subject": message.subject,
                    "lead_id": metadata.get("lead_id"),
                },
            )
            return DeliveryReceipt(channel=self.channel, recipient=recipient, message_id=sandbox_message_id(self.channel), sandbox=True)
        return self._deliver(recipient, message, metadata)

    def _deliver(self, recipient: str, message: RenderedMessage, metadata: dict[str, Any]) -> DeliveryReceipt:
        raise NotImplementedError


class SmtpEmailTransport(Transport):
    channel = Channel.EMAIL.value

    def validate(self) -> None:
        if not (self.settings.smtp_host and self.settings.smtp_username and self.settings.smtp_password):
            raise ConfigurationError("SMTP transport requires SMTP_HOST, SMTP_USERNAME and SMTP_PASSWORD.")

    def _deliver(self, recipient: str, message: RenderedMessage, metadata: dict[str, Any]) -> DeliveryReceipt:
        email = MIMEMultipart("alternative")
        email["Subject"] = message.subject or ""
        email["From"] = self.settings.from_email
        email["To"] = recipient
        message_id = make_msgid(domain=self.settings.from_email.split("@")[-1])
        email["Message-ID"] = message_id
        email.attach(MIMEText(message.body, "plain"))
        if message.html:
            email.attach(MIMEText(message.html, "html"))

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=self.settings.timeout_seconds) as server:
                server.starttls()
                server.login(self.settings.smtp_username, self.settings.smtp_password)
                server.send_message(email)
        except (smtplib.SMTPException, OSError) as exc:
            raise ExternalServiceFailure(f"SMTP delivery to {recipient} failed: {exc}", service="email", original=exc) from exc
        return DeliveryReceipt(channel=self.channel, recipient=recipient, message_id=message_id)


class ChatWebhookTransport(Transport):
    """Posts alerts to a chat incoming-webhook URL; the recipient is the channel name."""

    channel = Channel.CHAT.value

    def validate(self) -> None:
        if not self.settings.chat_webhook_url:
            raise ConfigurationError("Chat transport requires CHAT_WEBHOOK_URL.")

    def _deliver(self, recipient: str, message: RenderedMessage, metadata: dict[str, Any]) -> DeliveryReceipt:
        payload: dict[str, Any] = {"text": message.body, "channel": recipient}
        if metadata.get("blocks"):
            payload["blocks"] = metadata["blocks"]
        try:
            response = requests.post(self.settings.chat_webhook_url, json=payload, timeout=self.settings.timeout_seconds)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise ExternalServiceFailure(f"Chat webhook delivery failed: {exc}", service="chat", original=exc) from exc
        return DeliveryReceipt(channel=self.channel, recipient=recipient, message_id=response.headers.get("x-request-id", "chat-ok"))


class SmsRestTransport(Transport):
    channel = Channel.SMS.value

    def validate(self) -> None:
        if not (self.settings.sms_account_sid and self.settings.sms_auth_token and self.settings.sms_from_number):
            raise ConfigurationError("SMS transport requires SMS_ACCOUNT_SID, SMS_AUTH_TOKEN and SMS_FROM_NUMBER.")

    def _deliver(self, recipient: str, message: RenderedMessage, metadata: dict[str, Any]) -> DeliveryReceipt:
        url = f"{SMS_API_BASE}/Accounts/{self.settings.sms_account_sid}/Messages.json"
        form = {"To": recipient, "From": self.settings.sms_from_number, "Body": message.body[:SMS_MAX_LENGTH]}
        try:
            response = requests.post(
                url,
                data=form,
                auth=(self.settings.sms_account_sid, self.settings.sms_auth_token),
                timeout=self.settings.timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise ExternalServiceFailure(f"SMS delivery to {recipient} failed: {exc}", service="sms", original=exc) from exc
        return DeliveryReceipt(channel=self.channel, recipient=recipient, message_id=str(body.get("sid", "")))


@dataclass
class Transports:
    email: Transport
    chat: Transport
    sms: Transport

    def get(self, channel: str) -> Transport:
        return {
            Channel.EMAIL.value: self.email,
            Channel.CHAT.value: self.chat,
            Channel.SMS.value: self.sms,
        }[Channel(channel).value]

    def all(self) -> tuple[Transport, ...]:
        return (self.email, self.chat, self.sms)

    def start(self) -> None:
        for transport in self.all():
            transport.start()

    def shutdown(self) -> None:
        for transport in self.all():
            transport.shutdown()


def build_transports(settings: TransportSettings) -> Transports:
    return Transports(
        email=SmtpEmailTransport(settings),
        chat=ChatWebhookTransport(settings),
        sms=SmsRestTransport(settings),
    )
