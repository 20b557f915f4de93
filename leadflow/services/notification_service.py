"""Manager notifications and multi-channel fan-out delivery."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from leadflow.core.config import Config, get_config
from leadflow.core.exceptions import ExternalServiceFailure, ReferenceFailure
from leadflow.messaging.transports import RenderedMessage, Transports
from leadflow.models.base import utcnow
from leadflow.models.enums import Channel, EscalationLevel, LeadStatus, NotificationType
from leadflow.models.lead import Lead
from leadflow.models.notification import Notification
from leadflow.services.base_service import BaseService

logger = logging.getLogger(__name__)

CHAT_RECIPIENT = "#lead-alerts"
SMS_VALUE_THRESHOLD = 2000
SMS_SCORE_THRESHOLD = 90


class NotificationService(BaseService):
    def __init__(self, db=None, transports: Transports | None = None, config: Config | None = None) -> None:
        super().__init__(db)
        self.transports = transports
        self.config = config or get_config()

    def get(self, notification_id: int) -> Notification:
        notification = self.db.query(Notification).filter(Notification.id == notification_id).first()
        if notification is None:
            raise ReferenceFailure("notification", notification_id)
        return notification

    def _recipients(self, channels: list[str]) -> dict[str, list[str]]:
        recipients: dict[str, list[str]] = {}
        for channel in channels:
            if channel == Channel.EMAIL.value:
                recipients[channel] = list(self.config.ESCALATION_EMAILS)
            elif channel == Channel.CHAT.value:
                recipients[channel] = [CHAT_RECIPIENT]
            elif channel == Channel.SMS.value:
                recipients[channel] = list(self.config.ESCALATION_PHONES)
        return recipients

    def create_high_value_alert(self, lead: Lead, now: datetime | None = None) -> Notification:
        """Return the lead's high-value alert, creating it on first call."""
        now = now or utcnow()
        existing = (
            self.db.query(Notification)
            .filter(
                Notification.lead_id == lead.id,
                Notification.notification_type == NotificationType.HIGH_VALUE_LEAD.value,
            )
            .first()
        )
        if existing is not None:
            return existing

        channels = [Channel.EMAIL.value, Channel.CHAT.value]
        if (lead.estimated_value or 0) >= SMS_VALUE_THRESHOLD or lead.score >= SMS_SCORE_THRESHOLD:
            channels.append(Channel.SMS.value)
        notification = Notification(
            lead_id=lead.id,
            notification_type=NotificationType.HIGH_VALUE_LEAD.value,
            title=f"High-Value Lead Alert: {lead.company_name or lead.contact_name}",
            message=(
                f"A high-value lead (Score: {lead.score}, Value: ${lead.estimated_value or 0:.2f}) "
                f"has been received from {lead.contact_name}"
                + (f" at {lead.company_name}" if lead.company_name else "")
                + f". Respond within {self.config.SLA_RESPONSE_MINUTES} minutes."
            ),
            priority=5,
            channels=channels,
            recipients=self._recipients(channels),
            expires_at=now + timedelta(hours=1),
            created_at=now,
        )
        return self.save(notification)

    def create_response_needed_alert(
        self,
        lead: Lead,
        minutes_waiting: int,
        level: str,
        now: datetime | None = None,
    ) -> Notification | None:
        """Create the escalation for ``level``; None when one already exists."""
        now = now or utcnow()
        escalation = EscalationLevel(level)
        channels = [Channel.EMAIL.value, Channel.CHAT.value]
        if escalation is EscalationLevel.CRITICAL:
            channels.append(Channel.SMS.value)
        notification = Notification(
            lead_id=lead.id,
            notification_type=NotificationType.RESPONSE_NEEDED.value,
            escalation_level=escalation.value,
            title=f"{escalation.value.upper()}: Response Time Alert for {lead.contact_name}",
            message=(
                f"Lead from {lead.contact_name} has been waiting for {minutes_waiting} minutes. "
                f"The {self.config.SLA_RESPONSE_MINUTES}-minute response commitment is at risk."
            ),
            priority=5 if escalation is EscalationLevel.CRITICAL else 4,
            channels=channels,
            recipients=self._recipients(channels),
            expires_at=now + timedelta(minutes=30),
            created_at=now,
        )
        self.db.add(notification)
        try:
            self.commit()
        except IntegrityError:
            return None
        self.db.refresh(notification)
        return notification

    def _render(self, channel: str, notification: Notification, lead: Lead | None) -> tuple[RenderedMessage, dict[str, Any]]:
        link = f"{self.config.DASHBOARD_URL}/leads/{notification.lead_id}" if notification.lead_id else self.config.DASHBOARD_URL
        metadata: dict[str, Any] = {"lead_id": notification.lead_id, "notification_id": notification.id}
        if channel == Channel.SMS.value:
            return RenderedMessage(body=f"{notification.title}. {notification.message} View: {link}"), metadata
        if channel == Channel.CHAT.value:
            fields = []
            if lead is not None:
                fields = [
                    {"type": "mrkdwn", "text": f"*Service Type:*\n{lead.service_type}"},
                    {"type": "mrkdwn", "text": f"*Est. Value:*\n${lead.estimated_value or 'N/A'}"},
                    {"type": "mrkdwn", "text": f"*Lead Score:*\n{lead.score}/100"},
                    {"type": "mrkdwn", "text": f"*Email:*\n{lead.email}"},
                ]
            metadata["blocks"] = [
                {"type": "section", "text": {"type": "mrkdwn", "text": f"*{notification.title}*\n{notification.message}"}},
                *([{"type": "section", "fields": fields}] if fields else []),
                {
                    "type": "actions",
                    "elements": [{"type": "button", "text": {"type": "plain_text", "text": "View Lead"}, "url": link}],
                },
            ]
            return RenderedMessage(body=notification.title), metadata
        return RenderedMessage(subject=notification.title, body=f"{notification.message}\n\nView lead: {link}"), metadata

    def deliver(self, notification_id: int, now: datetime | None = None) -> dict[str, Any]:
        """Fan a notification out to every channel and recipient independently.

        Succeeds when the primary (first listed) channel delivered at least once,
        or degraded when only a secondary channel did. Raises
        ``ExternalServiceFailure`` when every attempt failed.
        """
        now = now or utcnow()
        notification = self.get(notification_id)
        if notification.sent:
            return {"status": "skipped", "reason": "already_sent"}
        if notification.is_expired(now):
            logger.info(
                "notification.expired",
                extra={"event": "notification.expired", "notification_id": notification.id, "lead_id": notification.lead_id},
            )
            return {"status": "skipped", "reason": "expired"}
        if self.transports is None:
            raise ExternalServiceFailure("No transports configured", service="notification")

        lead = self.db.query(Lead).filter(Lead.id == notification.lead_id).first() if notification.lead_id else None
        status: dict[str, Any] = {}
        attempted = 0
        for channel in notification.channels:
            recipients = (notification.recipients or {}).get(channel, [])
            outcome: dict[str, Any] = {"sent": 0, "failed": 0, "errors": []}
            message, metadata = self._render(channel, notification, lead)
            for recipient in recipients:
                attempted += 1
                try:
                    receipt = self.transports.get(channel).send(recipient, message, metadata)
                except ExternalServiceFailure as exc:
                    outcome["failed"] += 1
                    outcome["errors"].append(str(exc))
                    continue
                outcome["sent"] += 1
                outcome.setdefault("message_ids", []).append(receipt.message_id)
            status[channel] = outcome
            logger.info(
                "notification.channel_outcome",
                extra={
                    "event": "notification.channel_outcome",
                    "notification_id": notification.id,
                    "lead_id": notification.lead_id,
                    "channel": channel,
                    "sent": outcome["sent"],
                    "failed": outcome["failed"],
                    "recipients": len(recipients),
                },
            )

        notification.delivery_status = status
        if attempted == 0:
            self.commit()
            return {"status": "skipped", "reason": "no_recipients", "channels": status}

        primary = notification.channels[0] if notification.channels else None
        primary_ok = bool(primary and status.get(primary, {}).get("sent"))
        any_ok = any(outcome["sent"] for outcome in status.values())
        if not any_ok:
            self.commit()
            raise ExternalServiceFailure(
                f"All channels failed for notification {notification.id}", service="notification"
            )

        notification.sent = True
        notification.sent_at = now
        notification.delivery_status = {**status, "degraded": not primary_ok}
        self.commit()
        if not primary_ok:
            logger.warning(
                "notification.degraded",
                extra={"event": "notification.degraded", "notification_id": notification.id, "primary": primary},
            )
        return {"status": "sent", "degraded": not primary_ok, "channels": status}

    def find_unread(self, limit: int = 50, now: datetime | None = None) -> list[Notification]:
        now = now or utcnow()
        return (
            self.db.query(Notification)
            .filter(
                Notification.read.is_(False),
                (Notification.expires_at.is_(None)) | (Notification.expires_at > now),
            )
            .order_by(Notification.priority.desc(), Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    def mark_read(self, notification_id: int, now: datetime | None = None) -> Notification:
        notification = self.get(notification_id)
        notification.read = True
        notification.read_at = now or utcnow()
        self.commit()
        return notification

    def delete_expired_read(self, now: datetime | None = None) -> int:
        """Delete expired, read notifications.

        Escalations for leads still awaiting a first response are kept: the SLA
        scan reads them to avoid raising the same level twice.
        """
        now = now or utcnow()
        unresolved = select(Lead.id).where(Lead.status == LeadStatus.NEW.value)
        deleted = (
            self.db.query(Notification)
            .filter(
                Notification.expires_at < now,
                Notification.read.is_(True),
                or_(
                    Notification.notification_type != NotificationType.RESPONSE_NEEDED.value,
                    Notification.lead_id.not_in(unresolved),
                ),
            )
            .delete(synchronize_session=False)
        )
        self.commit()
        return deleted
