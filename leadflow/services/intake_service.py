"""Lead intake: validate, dedupe, create, and enqueue the follow-up work."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from leadflow.core.config import Config, get_config
from leadflow.core.exceptions import DuplicateEntry, LeadFlowError, ValidationFailure
from leadflow.models.base import utcnow
from leadflow.models.enums import JobDomain
from leadflow.models.lead import Lead
from leadflow.services.lead_service import REQUIRED_FIELDS, LeadService
from leadflow.utils.validators import is_valid_email, normalize_phone, sanitize_text

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("contact_name", "company_name", "pickup_location", "destination", "vehicle_preference", "industry")


@dataclass
class IntakeResult:
    lead: Lead
    actions: list[dict[str, Any]] = field(default_factory=list)

    @property
    def failed_actions(self) -> list[dict[str, Any]]:
        return [action for action in self.actions if action["status"] == "failed"]


class IntakeService:
    """Entry point shared by the form webhook, CRM webhook and direct API intake."""

    def __init__(self, db=None, dispatcher=None, config: Config | None = None, leads: LeadService | None = None) -> None:
        self.leads = leads or LeadService(db=db)
        self.db = self.leads.db
        self.dispatcher = dispatcher
        self.config = config or get_config()

    def validate(self, data: dict[str, Any]) -> dict[str, Any]:
        cleaned = dict(data)
        for name in TEXT_FIELDS:
            if isinstance(cleaned.get(name), str):
                cleaned[name] = sanitize_text(cleaned[name]) or None
        if "phone" in cleaned:
            cleaned["phone"] = normalize_phone(cleaned["phone"])
        missing = [name for name in REQUIRED_FIELDS if not cleaned.get(name)]
        if missing:
            raise ValidationFailure(f"Missing required fields: {', '.join(missing)}", field=missing[0])
        if not is_valid_email(cleaned["email"]):
            raise ValidationFailure(f"Invalid email address: {cleaned['email']}", field="email")
        return cleaned

    def check_duplicate(self, email: str, reference: datetime) -> None:
        existing = self.leads.find_recent_duplicate(email, reference, self.config.DEDUP_WINDOW_HOURS)
        if existing is not None:
            logger.info(
                "lead.duplicate",
                extra={"event": "lead.duplicate", "lead_id": existing.id, "window_hours": self.config.DEDUP_WINDOW_HOURS},
            )
            raise DuplicateEntry(f"Lead with email {existing.email} already exists", existing_id=existing.id)

    def intake(self, data: dict[str, Any], now: datetime | None = None, reference: datetime | None = None) -> IntakeResult:
        """Create a scored lead and queue its follow-up jobs.

        ``reference`` is the arrival time used for deduplication and defaults to
        ``now``. Raises ``DuplicateEntry`` when a matching lead already exists.
        """
        now = now or utcnow()
        cleaned = self.validate(data)
        self.check_duplicate(cleaned["email"], reference or now)
        lead = self.leads.create_lead(cleaned, now)
        return IntakeResult(lead=lead, actions=self.enqueue_follow_up(lead))

    def _enqueue(self, action: str, domain: str, job_type: str, lead: Lead, **options: Any) -> dict[str, Any]:
        if self.dispatcher is None:
            return {"action": action, "status": "skipped", "reason": "no_dispatcher"}
        try:
            job = self.dispatcher.enqueue(domain, job_type, {"lead_id": lead.id}, **options)
        except (LeadFlowError, SQLAlchemyError) as exc:
            logger.error(
                "intake.enqueue_failed",
                exc_info=True,
                extra={"event": "intake.enqueue_failed", "lead_id": lead.id, "job_type": job_type, "error": str(exc)},
            )
            return {"action": action, "status": "failed", "error": str(exc)}
        return {"action": action, "status": "queued", "job_id": job.id}

    def enqueue_follow_up(self, lead: Lead) -> list[dict[str, Any]]:
        actions = [
            self._enqueue(
                "instant_response",
                JobDomain.RESPONSE.value,
                "instant_response",
                lead,
                priority=1,
                max_attempts=5,
                dedupe_key=f"instant_response:{lead.id}",
            )
        ]
        if lead.is_high_value:
            actions.append(
                self._enqueue(
                    "high_value_alert",
                    JobDomain.NOTIFICATION.value,
                    "high_value_alert",
                    lead,
                    priority=2,
                    dedupe_key=f"high_value_alert:{lead.id}",
                )
            )
        actions.append(
            self._enqueue("crm_sync", JobDomain.SYNC.value, "crm_sync", lead, priority=8, base_delay=5)
        )
        logger.info(
            "lead.intake_complete",
            extra={
                "event": "lead.intake_complete",
                "lead_id": lead.id,
                "score": lead.score,
                "actions": [f"{action['action']}:{action['status']}" for action in actions],
            },
        )
        return actions
