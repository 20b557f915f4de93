from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, lead_data
from leadflow.core.exceptions import LeadProcessingFailure, ReferenceFailure, ValidationFailure
from leadflow.models.enums import LeadStatus, SequenceState
from leadflow.scoring.engine import load_factor
from leadflow.services.lead_service import LeadService
from leadflow.services.sequence_service import SequenceService


def _service(session):
    factors = [
        load_factor("estimated_value_tier", "service", 30, "range", {"1000+": 30, "500-999": 20, "0-499": 5}),
        load_factor("service_type_priority", "service", 25, "exact_match", {"corporate": 25, "hourly": 10}),
    ]
    return LeadService(db=session, factors=factors)


def test_create_lead_scores_and_normalizes_email(session):
    service = _service(session)
    lead = service.create_lead(lead_data(email="  Dana@Example.COM ", estimated_value=1200), now=NOW)

    assert lead.email == "dana@example.com"
    assert lead.status == LeadStatus.NEW.value
    assert lead.score == 40
    assert lead.priority_level == 3
    assert [row["factor"] for row in lead.score_breakdown] == ["estimated_value_tier", "service_type_priority"]


def test_create_lead_rejects_unknown_service_type(session):
    with pytest.raises(ValidationFailure) as exc:
        _service(session).create_lead(lead_data(service_type="helicopter"), now=NOW)
    assert exc.value.field == "service_type"


def test_create_lead_requires_contact_name(session):
    with pytest.raises(ValidationFailure):
        _service(session).create_lead(lead_data(contact_name=""), now=NOW)


def test_update_fields_rescores_only_for_scoring_fields(session):
    service = _service(session)
    lead = service.create_lead(lead_data(estimated_value=200), now=NOW)
    assert lead.score == 15

    lead = service.update_fields(lead.id, {"industry": "finance"})
    assert lead.score == 15

    lead = service.update_fields(lead.id, {"estimated_value": 2500})
    assert lead.score == 40


def test_update_status_sets_timestamps_and_pauses_sequence(session):
    service = _service(session)
    lead = service.create_lead(lead_data(), now=NOW)
    sequence = SequenceService(db=session).start_for_lead(lead.id, now=NOW)

    updated = service.update_status(lead.id, LeadStatus.CONVERTED.value, now=NOW + timedelta(hours=1))

    assert updated.converted_at == NOW + timedelta(hours=1)
    paused = SequenceService(db=session).get(sequence.id)
    assert paused.state == SequenceState.PAUSED.value
    assert paused.paused_reason == "lead_converted"


def test_closed_lead_cannot_move_backwards(session):
    service = _service(session)
    lead = service.create_lead(lead_data(), now=NOW)
    service.update_status(lead.id, LeadStatus.LOST.value, now=NOW)

    with pytest.raises(LeadProcessingFailure):
        service.update_status(lead.id, LeadStatus.NEW.value, now=NOW)


def test_reopen_only_applies_to_closed_leads(session):
    service = _service(session)
    lead = service.create_lead(lead_data(), now=NOW)
    with pytest.raises(LeadProcessingFailure):
        service.reopen(lead.id, now=NOW)

    service.update_status(lead.id, LeadStatus.CONVERTED.value, now=NOW)
    reopened = service.reopen(lead.id, now=NOW)
    assert reopened.status == LeadStatus.CONTACTED.value
    assert reopened.converted_at is None


def test_outbound_interaction_marks_new_lead_contacted(session):
    service = _service(session)
    lead = service.create_lead(lead_data(), now=NOW)

    service.record_interaction(lead.id, "call_made", now=NOW + timedelta(minutes=3))

    lead = service.require_lead(lead.id)
    assert lead.status == LeadStatus.CONTACTED.value
    assert lead.last_contact_at == NOW + timedelta(minutes=3)


def test_require_lead_raises_for_missing_id(session):
    with pytest.raises(ReferenceFailure):
        _service(session).require_lead(404)


def test_find_recent_duplicate_respects_window(session):
    service = _service(session)
    lead = service.create_lead(lead_data(), now=NOW)

    assert service.find_recent_duplicate("DANA@example.com", NOW + timedelta(hours=2), 24).id == lead.id
    assert service.find_recent_duplicate("dana@example.com", NOW + timedelta(hours=25), 24) is None
