"""Lead persistence, scoring and status transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from leadflow.core.exceptions import LeadProcessingFailure, ReferenceFailure, ValidationFailure
from leadflow.models.base import utcnow
from leadflow.models.enums import InteractionType, LeadStatus, ServiceType
from leadflow.models.interaction import LeadInteraction
from leadflow.models.lead import Lead
from leadflow.orchestration.state_machine import LEAD_REOPEN_MACHINE, LEAD_STATUS_MACHINE
from leadflow.scoring.engine import LoadedFactor, load_active_factors, score, scoring_fields
from leadflow.services.base_service import BaseService
from leadflow.utils.validators import normalize_email

logger = logging.getLogger(__name__)

LEAD_FIELDS = frozenset(
    {
        "company_name",
        "contact_name",
        "email",
        "phone",
        "website",
        "service_type",
        "service_date",
        "pickup_location",
        "destination",
        "passenger_count",
        "vehicle_preference",
        "estimated_value",
        "budget_tier",
        "company_size_estimate",
        "industry",
        "distance_from_base",
        "source",
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "referrer_url",
        "custom_fields",
        "crm_lead_id",
    }
)

REQUIRED_FIELDS = ("contact_name", "email", "service_type")

CLOSURE_REASONS = {
    LeadStatus.CONVERTED.value: "lead_converted",
    LeadStatus.LOST.value: "lead_lost",
}


class LeadService(BaseService):
    """Service for lead CRUD, scoring and status transitions."""

    def __init__(self, db=None, factors: list[LoadedFactor] | None = None) -> None:
        super().__init__(db)
        self._factors = factors

    @property
    def factors(self) -> list[LoadedFactor]:
        if self._factors is None:
            self._factors = load_active_factors(self.db)
        return self._factors

    def get_lead(self, lead_id: int) -> Lead | None:
        return self.db.query(Lead).filter(Lead.id == lead_id).first()

    def require_lead(self, lead_id: int) -> Lead:
        lead = self.get_lead(lead_id)
        if lead is None:
            raise ReferenceFailure("lead", lead_id)
        return lead

    def find_by_crm_id(self, crm_lead_id: str) -> Lead | None:
        return self.db.query(Lead).filter(Lead.crm_lead_id == crm_lead_id).first()

    def find_recent_duplicate(self, email: str, reference: datetime, window_hours: int) -> Lead | None:
        """Oldest lead with the same normalized email created after ``reference - window``."""
        since = reference - timedelta(hours=window_hours)
        return (
            self.db.query(Lead)
            .filter(Lead.email == normalize_email(email), Lead.created_at >= since)
            .order_by(Lead.created_at.asc(), Lead.id.asc())
            .first()
        )

    def apply_score(self, lead: Lead) -> Lead:
        result = score(lead, self.factors)
        lead.score = result.total
        lead.priority_level = result.priority_level
        lead.score_breakdown = result.breakdown
        return lead

    def create_lead(self, data: dict[str, Any], now: datetime | None = None) -> Lead:
        now = now or utcnow()
        unknown = set(data) - LEAD_FIELDS
        if unknown:
            raise ValidationFailure(f"Unknown lead fields: {sorted(unknown)}")
        payload = {key: value for key, value in data.items() if value is not None}
        for required in REQUIRED_FIELDS:
            if not payload.get(required):
                raise ValidationFailure(f"{required} is required", field=required)
        try:
            payload["service_type"] = ServiceType(payload["service_type"]).value
        except ValueError as exc:
            raise ValidationFailure(f"Unknown service type: {payload['service_type']}", field="service_type") from exc
        payload["email"] = normalize_email(payload["email"])
        lead = Lead(**payload, status=LeadStatus.NEW.value, created_at=now, updated_at=now)
        self.apply_score(lead)
        self.save(lead)
        logger.info(
            "lead.created",
            extra={
                "event": "lead.created",
                "lead_id": lead.id,
                "score": lead.score,
                "priority_level": lead.priority_level,
                "service_type": lead.service_type,
            },
        )
        return lead

    def update_fields(self, lead_id: int, changes: dict[str, Any]) -> Lead:
        """Apply attribute changes; the score is recomputed only for scoring-relevant ones."""
        unknown = set(changes) - LEAD_FIELDS
        if unknown:
            raise ValidationFailure(f"Unknown lead fields: {sorted(unknown)}")
        lead = self.require_lead(lead_id)
        if "email" in changes and changes["email"]:
            changes = {**changes, "email": normalize_email(changes["email"])}

        changed = {key for key, value in changes.items() if getattr(lead, key) != value}
        for key in changed:
            setattr(lead, key, changes[key])
        if changed & scoring_fields(self.factors):
            previous = lead.score
            self.apply_score(lead)
            logger.info(
                "lead.rescored",
                extra={"event": "lead.rescored", "lead_id": lead.id, "previous_score": previous, "score": lead.score},
            )
        self.commit()
        self.db.refresh(lead)
        return lead

    def update_status(self, lead_id: int, status: str, now: datetime | None = None) -> Lead:
        now = now or utcnow()
        lead = self.require_lead(lead_id)
        try:
            target = LeadStatus(status).value
        except ValueError as exc:
            raise ValidationFailure(f"Unknown lead status: {status}", field="status") from exc
        if lead.status == target:
            return lead
        if not LEAD_STATUS_MACHINE.can_transition(lead.status, target):
            raise LeadProcessingFailure(
                f"Lead status cannot move from {lead.status} to {target}", stage="status", lead_id=lead.id
            )

        previous = lead.status
        lead.status = target
        if target == LeadStatus.CONTACTED.value:
            lead.last_contact_at = now
        if target == LeadStatus.CONVERTED.value:
            lead.converted_at = now
        self.commit()

        if target in CLOSURE_REASONS:
            self._pause_sequences_for_closure(lead.id, CLOSURE_REASONS[target], now)
        logger.info(
            "lead.status_changed",
            extra={"event": "lead.status_changed", "lead_id": lead.id, "from_status": previous, "to_status": target},
        )
        self.db.refresh(lead)
        return lead

    def reopen(self, lead_id: int, now: datetime | None = None) -> Lead:
        now = now or utcnow()
        lead = self.require_lead(lead_id)
        target = LeadStatus.CONTACTED.value
        if not LEAD_REOPEN_MACHINE.can_transition(lead.status, target):
            raise LeadProcessingFailure(f"Only closed leads can be reopened, got {lead.status}", stage="status", lead_id=lead.id)
        previous = lead.status
        lead.status = target
        lead.converted_at = None
        lead.last_contact_at = now
        self.commit()
        logger.info(
            "lead.reopened",
            extra={"event": "lead.reopened", "lead_id": lead.id, "from_status": previous},
        )
        self.db.refresh(lead)
        return lead

    def record_interaction(
        self,
        lead_id: int,
        interaction_type: str,
        now: datetime | None = None,
        automated: bool = False,
        **fields: Any,
    ) -> LeadInteraction:
        """Store a touchpoint; outbound contact moves a new lead to contacted."""
        now = now or utcnow()
        lead = self.require_lead(lead_id)
        kind = InteractionType(interaction_type).value
        interaction = LeadInteraction(
            lead_id=lead.id,
            interaction_type=kind,
            automated=automated,
            created_at=now,
            **fields,
        )
        self.db.add(interaction)
        if kind in {
            InteractionType.EMAIL_SENT.value,
            InteractionType.CALL_MADE.value,
            InteractionType.SMS_SENT.value,
            InteractionType.MEETING_SCHEDULED.value,
        }:
            lead.last_contact_at = now
            if lead.status == LeadStatus.NEW.value:
                lead.status = LeadStatus.CONTACTED.value
        self.commit()
        self.db.refresh(interaction)
        return interaction

    def _pause_sequences_for_closure(self, lead_id: int, reason: str, now: datetime) -> None:
        from leadflow.services.sequence_service import SequenceService

        sequences = SequenceService(db=self.db)
        paused = sequences.pause_active_for_lead(lead_id, reason, now)
        if paused is not None:
            logger.info(
                "sequence.paused_for_closure",
                extra={"event": "sequence.paused_for_closure", "lead_id": lead_id, "sequence_id": paused.id, "reason": reason},
            )
