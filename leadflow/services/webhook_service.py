"""Inbound webhook log: write-ahead record, authentication, processing and replay."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import case, func

from leadflow.core.config import Config, get_config
from leadflow.core.exceptions import AuthenticationFailure, DuplicateEntry, ReferenceFailure, ValidationFailure
from leadflow.models.base import utcnow
from leadflow.models.enums import InteractionType, LeadStatus, ServiceType, WebhookSource
from leadflow.models.interaction import LeadInteraction
from leadflow.models.lead import Lead
from leadflow.models.webhook_event import WebhookEvent
from leadflow.orchestration.state_machine import LEAD_STATUS_MACHINE
from leadflow.services.base_service import BaseService
from leadflow.services.intake_service import IntakeService
from leadflow.services.lead_service import LeadService
from leadflow.services.sequence_service import SequenceService
from leadflow.utils.validators import coerce_float, coerce_int, normalize_email

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-timestamp"
SIGNED_SOURCES = frozenset({WebhookSource.EMAIL_PROVIDER.value, WebhookSource.CRM.value})
REPLAY_GRACE_SECONDS = 60

ENGAGEMENT_EVENTS = frozenset({"opened", "clicked", "bounced", "complained", "unsubscribed", "replied"})
CRM_EVENTS = frozenset({"lead_created", "lead_updated", "deal_closed"})

CRM_STATUS_MAP = {
    "not_contacted": LeadStatus.NEW.value,
    "contacted": LeadStatus.CONTACTED.value,
    "qualified": LeadStatus.QUALIFIED.value,
    "converted": LeadStatus.CONVERTED.value,
    "lost": LeadStatus.LOST.value,
}

FORM_FIELDS = (
    "company_name",
    "contact_name",
    "email",
    "phone",
    "website",
    "service_type",
    "pickup_location",
    "destination",
    "vehicle_preference",
    "budget_tier",
    "industry",
    "utm_source",
    "utm_medium",
    "utm_campaign",
)


def sign_payload(secret: str, timestamp: str, body: str) -> str:
    """Hex HMAC-SHA256 of ``timestamp + body``."""
    return hmac.new(secret.encode("utf-8"), f"{timestamp}{body}".encode("utf-8"), hashlib.sha256).hexdigest()


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationFailure(f"Invalid datetime: {value}", field="service_date") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def form_lead_data(payload: dict[str, Any], ip_address: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {name: payload.get(name) or None for name in FORM_FIELDS}
    data["service_date"] = _parse_datetime(payload.get("service_date"))
    data["passenger_count"] = coerce_int(payload.get("passenger_count"))
    data["estimated_value"] = coerce_float(payload.get("estimated_value"))
    data["company_size_estimate"] = coerce_int(payload.get("company_size_estimate"))
    data["distance_from_base"] = coerce_float(payload.get("distance_from_base"))
    data["source"] = "website"
    data["referrer_url"] = payload.get("page_url")
    data["custom_fields"] = {
        "form_id": payload.get("form_id"),
        "page_url": payload.get("page_url"),
        "ip_address": ip_address,
        **(payload.get("custom_fields") or {}),
    }
    return data


def crm_lead_data(record_id: str | None, data: dict[str, Any]) -> dict[str, Any]:
    name = " ".join(part for part in (data.get("first_name"), data.get("last_name")) if part).strip()
    lead_source = str(data.get("lead_source") or "").lower()
    return {
        "company_name": data.get("company") or None,
        "contact_name": name or data.get("email"),
        "email": data.get("email"),
        "phone": data.get("phone") or data.get("mobile"),
        "service_type": ServiceType.CORPORATE.value if lead_source == "corporate" else ServiceType.AIRPORT.value,
        "estimated_value": coerce_float(data.get("estimated_value")),
        "source": "crm",
        "crm_lead_id": record_id,
    }


class WebhookService(BaseService):
    def __init__(self, db=None, dispatcher=None, config: Config | None = None) -> None:
        super().__init__(db)
        self.dispatcher = dispatcher
        self.config = config or get_config()

    def get(self, event_id: int) -> WebhookEvent:
        event = self.db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
        if event is None:
            raise ReferenceFailure("webhook_event", event_id)
        return event

    def record(
        self,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        ip_address: str | None = None,
        now: datetime | None = None,
    ) -> WebhookEvent:
        """Persist the raw event before any processing is attempted."""
        event = WebhookEvent(
            source=WebhookSource(source).value,
            event_type=event_type,
            payload=payload,
            headers={key.lower(): value for key, value in (headers or {}).items()},
            ip_address=ip_address,
            processed=False,
            authenticated=source not in SIGNED_SOURCES,
            created_at=now or utcnow(),
        )
        self.save(event)
        logger.info(
            "webhook.received",
            extra={"event": "webhook.received", "webhook_id": event.id, "source": event.source, "event_type": event_type},
        )
        return event

    def _reject(self, event: WebhookEvent, code: str, message: str) -> AuthenticationFailure:
        event.rejected = True
        event.error_message = f"{code}: {message}"
        self.commit()
        logger.warning(
            "webhook.rejected",
            extra={"event": "webhook.rejected", "webhook_id": event.id, "source": event.source, "code": code},
        )
        return AuthenticationFailure(message, code=code)

    def authenticate(self, event: WebhookEvent, raw_body: bytes | str, now: datetime | None = None) -> None:
        """Verify the signature headers recorded with ``event``.

        Sources without a configured secret are accepted outside production.
        Only authenticated events are picked up by ``replay``.
        """
        if event.source not in SIGNED_SOURCES:
            self._mark_authenticated(event)
            return
        secret = self.config.webhook_secret(event.source)
        if not secret:
            if self.config.is_production:
                raise self._reject(event, "WEBHOOK_SECRET_MISSING", f"No secret configured for {event.source}")
            logger.warning(
                "webhook.unsigned_accepted",
                extra={"event": "webhook.unsigned_accepted", "webhook_id": event.id, "source": event.source},
            )
            self._mark_authenticated(event)
            return

        headers = event.headers or {}
        signature = headers.get(SIGNATURE_HEADER)
        timestamp = headers.get(TIMESTAMP_HEADER)
        if not signature or not timestamp:
            raise self._reject(event, "WEBHOOK_SIGNATURE_MISSING", "Webhook signature and timestamp required")

        now = now or utcnow()
        try:
            sent_at = datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)
        except (TypeError, ValueError, OverflowError, OSError):
            raise self._reject(event, "WEBHOOK_TIMESTAMP_INVALID", "Webhook timestamp is not a unix time") from None
        if abs((now - sent_at).total_seconds()) > self.config.WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS:
            raise self._reject(event, "WEBHOOK_TIMESTAMP_INVALID", "Webhook timestamp is too old or in the future")

        body = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        expected = sign_payload(secret, timestamp, body)
        provided = signature.removeprefix("sha256=")
        if not hmac.compare_digest(expected, provided):
            raise self._reject(event, "WEBHOOK_SIGNATURE_INVALID", "Webhook signature verification failed")
        self._mark_authenticated(event)

    def _mark_authenticated(self, event: WebhookEvent) -> None:
        if not event.authenticated:
            event.authenticated = True
            self.commit()

    def _mark_processed(
        self,
        event: WebhookEvent,
        now: datetime,
        lead_id: int | None = None,
        interaction_id: int | None = None,
    ) -> None:
        event.processed = True
        event.processed_at = now
        event.error_message = None
        event.lead_id = lead_id
        event.interaction_id = interaction_id
        self.commit()

    def process(self, event_id: int, now: datetime | None = None) -> dict[str, Any]:
        """Apply an event's semantics; failures are stored on the event, never raised."""
        now = now or utcnow()
        event = self.get(event_id)
        if event.rejected:
            return {"status": "rejected", "webhook_id": event.id}
        if event.processed:
            return {"status": "processed", "webhook_id": event.id, "lead_id": event.lead_id, "replayed": True}

        try:
            if event.source == WebhookSource.WEBSITE_FORM.value:
                outcome = self._process_form(event, now)
            elif event.source == WebhookSource.EMAIL_PROVIDER.value:
                outcome = self._process_engagement(event, now)
            else:
                outcome = self._process_crm(event, now)
        except Exception as exc:
            self.db.rollback()
            event = self.get(event_id)
            event.retry_count += 1
            event.error_message = str(exc)
            self.commit()
            logger.error(
                "webhook.processing_failed",
                exc_info=True,
                extra={
                    "event": "webhook.processing_failed",
                    "webhook_id": event.id,
                    "source": event.source,
                    "retry_count": event.retry_count,
                    "error": str(exc),
                },
            )
            return {"status": "failed", "webhook_id": event.id, "error": str(exc), "retry_count": event.retry_count}

        logger.info(
            "webhook.processed",
            extra={"event": "webhook.processed", "webhook_id": event.id, "source": event.source, "lead_id": event.lead_id},
        )
        return {"status": "processed", "webhook_id": event.id, **outcome}

    def _process_form(self, event: WebhookEvent, now: datetime) -> dict[str, Any]:
        intake = IntakeService(db=self.db, dispatcher=self.dispatcher, config=self.config)
        data = form_lead_data(event.payload, event.ip_address)
        try:
            result = intake.intake(data, now, reference=event.created_at)
        except DuplicateEntry as duplicate:
            self._mark_processed(event, now, lead_id=duplicate.existing_id)
            return {"lead_id": duplicate.existing_id, "lead_created": False, "duplicate": True}

        lead = result.lead
        self._mark_processed(event, now, lead_id=lead.id)
        return {
            "lead_id": lead.id,
            "lead_created": True,
            "duplicate": False,
            "lead_score": lead.score,
            "priority_level": lead.priority_level,
            "actions": result.actions,
        }

    def _find_interaction(self, payload: dict[str, Any]) -> LeadInteraction | None:
        message_id = payload.get("message_id")
        if not message_id:
            return None
        return self.db.query(LeadInteraction).filter(LeadInteraction.message_id == message_id).first()

    def _process_engagement(self, event: WebhookEvent, now: datetime) -> dict[str, Any]:
        payload = event.payload
        kind = payload.get("event_type") or event.event_type.removeprefix("email_")
        if kind not in ENGAGEMENT_EVENTS:
            raise ValidationFailure(f"Unsupported email event: {kind}", field="event_type")

        interaction = self._find_interaction(payload)
        lead: Lead | None = None
        if interaction is not None:
            lead = self.db.query(Lead).filter(Lead.id == interaction.lead_id).first()
        elif payload.get("email"):
            lead = (
                self.db.query(Lead)
                .filter(Lead.email == normalize_email(payload["email"]))
                .order_by(Lead.created_at.desc(), Lead.id.desc())
                .first()
            )
        if lead is None:
            self._mark_processed(event, now)
            return {"lead_id": None, "event_processed": kind, "message": "Interaction not found"}

        sequences = SequenceService(db=self.db)
        active = sequences.get_active_for_lead(lead.id)
        if kind == "opened":
            if interaction is not None and interaction.opened_at is None:
                interaction.opened_at = now
                if active is not None:
                    sequences.record_opened(active.id)
        elif kind == "clicked":
            if interaction is not None:
                interaction.clicked_at = interaction.clicked_at or now
                interaction.click_count += 1
        elif kind in {"bounced", "complained"}:
            if interaction is not None:
                interaction.response_content = f"Email {kind}: {payload.get('reason') or 'No reason provided'}"
            if kind == "bounced" and payload.get("bounce_type") == "hard" and not lead.is_closed:
                self.commit()
                LeadService(db=self.db).update_status(lead.id, LeadStatus.LOST.value, now)
        elif kind == "unsubscribed":
            lead.custom_fields = {**(lead.custom_fields or {}), "email_unsubscribed": True, "unsubscribed_at": now.isoformat()}
            if active is not None:
                self.commit()
                sequences.pause(active.id, "unsubscribed", now)
        elif kind == "replied":
            if interaction is not None:
                interaction.response_received = True
                interaction.response_content = payload.get("content")
            self.commit()
            reply = LeadService(db=self.db).record_interaction(
                lead.id,
                InteractionType.RESPONSE_RECEIVED.value,
                now,
                response_received=True,
                response_content=payload.get("content"),
                message_id=payload.get("message_id"),
            )
            if active is not None:
                sequences.record_response(active.id, now)
            interaction = interaction or reply
        self.commit()

        self._mark_processed(event, now, lead_id=lead.id, interaction_id=interaction.id if interaction else None)
        return {"lead_id": lead.id, "interaction_id": interaction.id if interaction else None, "event_processed": kind}

    def _process_crm(self, event: WebhookEvent, now: datetime) -> dict[str, Any]:
        payload = event.payload
        kind = payload.get("event_type") or event.event_type
        if kind not in CRM_EVENTS:
            raise ValidationFailure(f"Unsupported CRM event: {kind}", field="event_type")
        record_id = payload.get("record_id")
        data = payload.get("data") or {}

        leads = LeadService(db=self.db)
        lead: Lead | None = None
        if payload.get("external_id"):
            lead = leads.get_lead(int(payload["external_id"]))
        elif record_id:
            lead = leads.find_by_crm_id(str(record_id))

        created = False
        if kind == "lead_created" and lead is None and data.get("email"):
            intake = IntakeService(db=self.db, dispatcher=self.dispatcher, config=self.config, leads=leads)
            try:
                lead = intake.intake(crm_lead_data(record_id, data), now, reference=event.created_at).lead
                created = True
            except DuplicateEntry as duplicate:
                lead = leads.require_lead(duplicate.existing_id)
        elif kind == "lead_updated" and lead is not None:
            status = CRM_STATUS_MAP.get(str(data.get("lead_status") or "").strip().lower().replace(" ", "_"))
            if status and status != lead.status and not LEAD_STATUS_MACHINE.can_transition(lead.status, status):
                logger.warning(
                    "webhook.crm_status_ignored",
                    extra={
                        "event": "webhook.crm_status_ignored",
                        "webhook_id": event.id,
                        "lead_id": lead.id,
                        "from_status": lead.status,
                        "crm_status": status,
                    },
                )
                status = None
            changes: dict[str, Any] = {}
            if data.get("estimated_value") is not None:
                changes["estimated_value"] = coerce_float(data["estimated_value"])
            if changes:
                lead = leads.update_fields(lead.id, changes)
            if status and status != lead.status:
                lead = leads.update_status(lead.id, status, now)
        elif kind == "deal_closed" and lead is not None:
            lead.custom_fields = {
                **(lead.custom_fields or {}),
                "crm_deal_value": data.get("amount"),
                "crm_close_date": data.get("closing_date"),
            }
            self.commit()
            if lead.status != LeadStatus.CONVERTED.value:
                lead = leads.update_status(lead.id, LeadStatus.CONVERTED.value, now)

        self._mark_processed(event, now, lead_id=lead.id if lead else None)
        return {
            "lead_id": lead.id if lead else None,
            "lead_created": created,
            "event_processed": kind,
            "record_id": record_id,
        }

    def replay(self, max_retries: int | None = None, now: datetime | None = None) -> dict[str, Any]:
        """Re-process unprocessed events in arrival order.

        Events that never passed authentication are left alone, as are events
        younger than ``REPLAY_GRACE_SECONDS`` that may still be in flight.
        """
        now = now or utcnow()
        max_retries = max_retries or self.config.WEBHOOK_MAX_RETRIES
        pending = (
            self.db.query(WebhookEvent)
            .filter(
                WebhookEvent.processed.is_(False),
                WebhookEvent.rejected.is_(False),
                WebhookEvent.authenticated.is_(True),
                WebhookEvent.created_at <= now - timedelta(seconds=REPLAY_GRACE_SECONDS),
                WebhookEvent.retry_count < max_retries,
            )
            .order_by(WebhookEvent.created_at.asc(), WebhookEvent.id.asc())
            .all()
        )
        pending_ids = [event.id for event in pending]

        succeeded = 0
        failed = 0
        for event_id in pending_ids:
            outcome = self.process(event_id, now)
            if outcome["status"] == "processed":
                succeeded += 1
            else:
                failed += 1

        exhausted = (
            self.db.query(WebhookEvent)
            .filter(
                WebhookEvent.processed.is_(False),
                WebhookEvent.rejected.is_(False),
                WebhookEvent.abandoned.is_(False),
                WebhookEvent.retry_count >= max_retries,
            )
            .order_by(WebhookEvent.created_at.asc(), WebhookEvent.id.asc())
            .all()
        )
        abandoned_ids = [event.id for event in exhausted]
        for event in exhausted:
            event.abandoned = True
        self.commit()
        for event in exhausted:
            logger.error(
                "webhook.abandoned",
                extra={
                    "event": "webhook.abandoned",
                    "webhook_id": event.id,
                    "source": event.source,
                    "retry_count": event.retry_count,
                    "error": event.error_message,
                },
            )

        summary = {
            "attempted": len(pending_ids),
            "succeeded": succeeded,
            "failed": failed,
            "abandoned": abandoned_ids,
        }
        logger.info("webhook.replay_complete", extra={"event": "webhook.replay_complete", **summary})
        return summary

    def processing_stats(self, days: int = 7, now: datetime | None = None) -> list[dict[str, Any]]:
        now = now or utcnow()
        rows = (
            self.db.query(
                WebhookEvent.source,
                WebhookEvent.event_type,
                func.count(WebhookEvent.id),
                func.sum(case((WebhookEvent.processed.is_(True), 1), else_=0)),
                func.avg(WebhookEvent.retry_count),
            )
            .filter(WebhookEvent.created_at >= now - timedelta(days=days))
            .group_by(WebhookEvent.source, WebhookEvent.event_type)
            .order_by(WebhookEvent.source, WebhookEvent.event_type)
            .all()
        )
        stats = []
        for source, event_type, total, processed, avg_retries in rows:
            processed = int(processed or 0)
            stats.append(
                {
                    "source": source,
                    "event_type": event_type,
                    "total": total,
                    "processed": processed,
                    "success_rate": round(processed / total * 100, 2) if total else 0.0,
                    "avg_retries": round(float(avg_retries or 0), 2),
                }
            )
        return stats

    def cleanup(self, days: int = 30, now: datetime | None = None) -> int:
        now = now or utcnow()
        deleted = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.processed.is_(True), WebhookEvent.created_at < now - timedelta(days=days))
            .delete(synchronize_session=False)
        )
        self.commit()
        logger.info("webhook.cleanup", extra={"event": "webhook.cleanup", "deleted": deleted, "days": days})
        return deleted
