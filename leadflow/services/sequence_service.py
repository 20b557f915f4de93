"""Per-lead follow-up sequence state machine."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError

from leadflow.core.exceptions import LeadProcessingFailure, ReferenceFailure
from leadflow.models.base import utcnow
from leadflow.models.email_sequence import EmailSequence
from leadflow.models.enums import SequenceState, SequenceType, ServiceType
from leadflow.models.lead import Lead
from leadflow.orchestration.state_machine import SEQUENCE_STATE_MACHINE
from leadflow.services.base_service import BaseService

logger = logging.getLogger(__name__)

_HOUR = 60
_DAY = 24 * _HOUR

# Minutes after the previous send at which each step runs.
STEP_OFFSETS_MINUTES: dict[str, tuple[int, ...]] = {
    SequenceType.STANDARD.value: (0, 3 * _DAY, 7 * _DAY, 14 * _DAY),
    SequenceType.HIGH_VALUE.value: (0, 2 * _HOUR, 1 * _DAY, 3 * _DAY),
    SequenceType.CORPORATE.value: (0, 1 * _DAY, 7 * _DAY, 30 * _DAY),
    SequenceType.WEDDING.value: (0, 2 * _DAY, 7 * _DAY, 21 * _DAY),
}

STEP_TEMPLATES: dict[str, tuple[str, ...]] = {
    SequenceType.STANDARD.value: ("instant_response", "follow_up_3day", "follow_up_7day", "follow_up_14day"),
    SequenceType.HIGH_VALUE.value: ("instant_response", "follow_up_2hour", "follow_up_1day", "follow_up_3day"),
    SequenceType.CORPORATE.value: (
        "corporate_instant_response",
        "corporate_follow_up",
        "corporate_proposal",
        "corporate_final",
    ),
    SequenceType.WEDDING.value: (
        "wedding_instant_response",
        "wedding_follow_up",
        "wedding_package",
        "wedding_final",
    ),
}

HIGH_VALUE_SEQUENCE_SCORE = 70


def select_sequence_type(lead: Lead) -> SequenceType:
    if lead.score >= HIGH_VALUE_SEQUENCE_SCORE:
        return SequenceType.HIGH_VALUE
    if lead.service_type == ServiceType.CORPORATE.value:
        return SequenceType.CORPORATE
    if lead.service_type == ServiceType.WEDDING.value:
        return SequenceType.WEDDING
    return SequenceType.STANDARD


def step_offset(sequence_type: str, step: int) -> timedelta:
    offsets = STEP_OFFSETS_MINUTES[sequence_type]
    return timedelta(minutes=offsets[min(step, len(offsets)) - 1])


def template_for_step(sequence_type: str, step: int) -> str | None:
    templates = STEP_TEMPLATES[sequence_type]
    if 1 <= step <= len(templates):
        return templates[step - 1]
    return None


class SequenceService(BaseService):
    """Owns the active/paused/completed lifecycle of follow-up sequences."""

    def get(self, sequence_id: int) -> EmailSequence:
        sequence = self.db.query(EmailSequence).filter(EmailSequence.id == sequence_id).first()
        if sequence is None:
            raise ReferenceFailure("sequence", sequence_id)
        return sequence

    def get_active_for_lead(self, lead_id: int) -> EmailSequence | None:
        return (
            self.db.query(EmailSequence)
            .filter(EmailSequence.lead_id == lead_id, EmailSequence.state == SequenceState.ACTIVE.value)
            .first()
        )

    def _latest_paused_for_lead(self, lead_id: int) -> EmailSequence | None:
        return (
            self.db.query(EmailSequence)
            .filter(EmailSequence.lead_id == lead_id, EmailSequence.state == SequenceState.PAUSED.value)
            .order_by(EmailSequence.updated_at.desc(), EmailSequence.id.desc())
            .first()
        )

    def start_for_lead(
        self,
        lead_id: int,
        sequence_type: str | SequenceType | None = None,
        now: datetime | None = None,
        first_step_sent: bool = False,
    ) -> EmailSequence:
        """Return the lead's running sequence, resuming or creating one as needed.

        A freshly created sequence whose first step already went out is recorded
        as sent and advanced straight to step 2.
        """
        now = now or utcnow()
        lead = self.db.query(Lead).filter(Lead.id == lead_id).first()
        if lead is None:
            raise ReferenceFailure("lead", lead_id)

        existing = self.get_active_for_lead(lead_id)
        if existing is not None:
            return existing
        paused = self._latest_paused_for_lead(lead_id)
        if paused is not None:
            return self.resume(paused.id, now)

        resolved = SequenceType(sequence_type) if sequence_type else select_sequence_type(lead)
        sequence = EmailSequence(
            lead_id=lead_id,
            sequence_type=resolved.value,
            current_step=1,
            total_steps=len(STEP_OFFSETS_MINUTES[resolved.value]),
            state=SequenceState.ACTIVE.value,
            next_run_at=now + step_offset(resolved.value, 1),
            started_at=now,
        )
        self.db.add(sequence)
        try:
            self.commit()
        except IntegrityError:
            # Another worker started one first.
            winner = self.get_active_for_lead(lead_id)
            if winner is None:
                raise
            return winner
        self.db.refresh(sequence)
        logger.info(
            "sequence.started",
            extra={
                "event": "sequence.started",
                "lead_id": lead_id,
                "sequence_id": sequence.id,
                "sequence_type": sequence.sequence_type,
            },
        )
        if first_step_sent:
            self.record_sent(sequence.id)
            sequence = self.advance(sequence.id, now)
        return sequence

    def _transition(self, sequence: EmailSequence, target: str) -> None:
        if not SEQUENCE_STATE_MACHINE.can_transition(sequence.state, target):
            raise LeadProcessingFailure(
                f"Sequence {sequence.id} cannot move from {sequence.state} to {target}",
                stage="sequence",
                lead_id=sequence.lead_id,
            )

    def advance(self, sequence_id: int, now: datetime | None = None) -> EmailSequence:
        now = now or utcnow()
        sequence = self.get(sequence_id)
        if sequence.state != SequenceState.ACTIVE.value:
            raise LeadProcessingFailure(
                f"Sequence {sequence.id} is {sequence.state}, only active sequences advance",
                stage="sequence",
                lead_id=sequence.lead_id,
            )
        if sequence.current_step >= sequence.total_steps:
            return self.complete(sequence_id, now)

        sequence.current_step += 1
        sequence.next_run_at = now + step_offset(sequence.sequence_type, sequence.current_step)
        self.commit()
        logger.info(
            "sequence.advanced",
            extra={
                "event": "sequence.advanced",
                "sequence_id": sequence.id,
                "lead_id": sequence.lead_id,
                "current_step": sequence.current_step,
                "next_run_at": sequence.next_run_at.isoformat(),
            },
        )
        return sequence

    def complete(self, sequence_id: int, now: datetime | None = None) -> EmailSequence:
        now = now or utcnow()
        sequence = self.get(sequence_id)
        self._transition(sequence, SequenceState.COMPLETED.value)
        sequence.state = SequenceState.COMPLETED.value
        sequence.next_run_at = None
        sequence.completed_at = now
        self.commit()
        logger.info(
            "sequence.completed",
            extra={"event": "sequence.completed", "sequence_id": sequence.id, "lead_id": sequence.lead_id},
        )
        return sequence

    def pause(self, sequence_id: int, reason: str, now: datetime | None = None) -> EmailSequence:
        sequence = self.get(sequence_id)
        if sequence.state != SequenceState.ACTIVE.value:
            raise LeadProcessingFailure(
                f"Sequence {sequence.id} is {sequence.state}, only active sequences pause",
                stage="sequence",
                lead_id=sequence.lead_id,
            )
        sequence.state = SequenceState.PAUSED.value
        sequence.next_run_at = None
        sequence.paused_reason = reason
        self.commit()
        logger.info(
            "sequence.paused",
            extra={"event": "sequence.paused", "sequence_id": sequence.id, "lead_id": sequence.lead_id, "reason": reason},
        )
        return sequence

    def pause_active_for_lead(self, lead_id: int, reason: str, now: datetime | None = None) -> EmailSequence | None:
        sequence = self.get_active_for_lead(lead_id)
        if sequence is None:
            return None
        return self.pause(sequence.id, reason, now)

    def resume(self, sequence_id: int, now: datetime | None = None) -> EmailSequence:
        now = now or utcnow()
        sequence = self.get(sequence_id)
        if sequence.state != SequenceState.PAUSED.value:
            raise LeadProcessingFailure(
                f"Sequence {sequence.id} is {sequence.state}, only paused sequences resume",
                stage="sequence",
                lead_id=sequence.lead_id,
            )
        sequence.state = SequenceState.ACTIVE.value
        sequence.paused_reason = None
        sequence.next_run_at = now + step_offset(sequence.sequence_type, sequence.current_step)
        try:
            self.commit()
        except IntegrityError as exc:
            raise LeadProcessingFailure(
                f"Lead {sequence.lead_id} already has an active sequence", stage="sequence", lead_id=sequence.lead_id
            ) from exc
        logger.info(
            "sequence.resumed",
            extra={"event": "sequence.resumed", "sequence_id": sequence.id, "lead_id": sequence.lead_id},
        )
        return sequence

    def find_due(self, now: datetime | None = None, limit: int | None = None) -> list[EmailSequence]:
        now = now or utcnow()
        query = (
            self.db.query(EmailSequence)
            .filter(EmailSequence.state == SequenceState.ACTIVE.value, EmailSequence.next_run_at <= now)
            .order_by(EmailSequence.next_run_at.asc(), EmailSequence.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def record_sent(self, sequence_id: int) -> EmailSequence:
        sequence = self.get(sequence_id)
        sequence.emails_sent += 1
        self.commit()
        return sequence

    def record_opened(self, sequence_id: int) -> EmailSequence:
        sequence = self.get(sequence_id)
        sequence.emails_opened += 1
        self.commit()
        return sequence

    def record_response(self, sequence_id: int, now: datetime | None = None) -> EmailSequence:
        """Count a customer reply and stop further automated steps."""
        sequence = self.get(sequence_id)
        sequence.responses_received += 1
        self.commit()
        if sequence.state == SequenceState.ACTIVE.value:
            return self.pause(sequence_id, "customer_responded", now)
        return sequence

    def performance_report(self, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        cutoff = now - timedelta(days=days)
        sequences = self.db.query(EmailSequence).filter(EmailSequence.created_at >= cutoff).all()

        by_type: dict[str, list[EmailSequence]] = {}
        for sequence in sequences:
            by_type.setdefault(sequence.sequence_type, []).append(sequence)

        performance: dict[str, dict[str, Any]] = {}
        for sequence_type, rows in by_type.items():
            sent = sum(row.emails_sent for row in rows)
            opened = sum(row.emails_opened for row in rows)
            responses = sum(row.responses_received for row in rows)
            completed = sum(1 for row in rows if row.state == SequenceState.COMPLETED.value)
            performance[sequence_type] = {
                "count": len(rows),
                "completion_rate": round(completed / len(rows) * 100, 2),
                "total_emails_sent": sent,
                "open_rate": round(opened / sent * 100, 2) if sent else 0.0,
                "response_rate": round(responses / sent * 100, 2) if sent else 0.0,
            }

        total_completed = sum(1 for row in sequences if row.state == SequenceState.COMPLETED.value)
        return {
            "total_sequences": len(sequences),
            "active_sequences": sum(1 for row in sequences if row.state == SequenceState.ACTIVE.value),
            "paused_sequences": sum(1 for row in sequences if row.state == SequenceState.PAUSED.value),
            "completed_sequences": total_completed,
            "average_completion_rate": round(total_completed / len(sequences) * 100, 2) if sequences else 0.0,
            "sequence_performance": performance,
        }
