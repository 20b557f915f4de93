from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, lead_data
from leadflow.core.exceptions import LeadProcessingFailure
from leadflow.models.enums import SequenceState, SequenceType
from leadflow.services.lead_service import LeadService
from leadflow.services.sequence_service import SequenceService, template_for_step


def _lead(session, **overrides):
    return LeadService(db=session, factors=[]).create_lead(lead_data(**overrides), now=NOW)


def test_start_selects_sequence_by_service_type(session):
    sequences = SequenceService(db=session)
    corporate = sequences.start_for_lead(_lead(session, service_type="corporate").id, now=NOW)
    wedding = sequences.start_for_lead(_lead(session, email="w@example.com", service_type="wedding").id, now=NOW)
    standard = sequences.start_for_lead(_lead(session, email="s@example.com").id, now=NOW)

    assert corporate.sequence_type == SequenceType.CORPORATE.value
    assert wedding.sequence_type == SequenceType.WEDDING.value
    assert standard.sequence_type == SequenceType.STANDARD.value
    assert standard.total_steps == 4
    assert standard.next_run_at == NOW


def test_start_returns_existing_active_sequence(session):
    sequences = SequenceService(db=session)
    lead = _lead(session)
    first = sequences.start_for_lead(lead.id, now=NOW)
    second = sequences.start_for_lead(lead.id, SequenceType.HIGH_VALUE, now=NOW)
    assert second.id == first.id
    assert second.sequence_type == SequenceType.STANDARD.value


def test_first_step_sent_advances_to_step_two(session):
    sequence = SequenceService(db=session).start_for_lead(
        _lead(session).id, SequenceType.HIGH_VALUE, now=NOW, first_step_sent=True
    )
    assert sequence.current_step == 2
    assert sequence.emails_sent == 1
    assert sequence.next_run_at == NOW + timedelta(hours=2)
    assert template_for_step(sequence.sequence_type, sequence.current_step) == "follow_up_2hour"


def test_advancing_past_last_step_completes(session):
    sequences = SequenceService(db=session)
    sequence = sequences.start_for_lead(_lead(session).id, now=NOW)
    for _ in range(3):
        sequence = sequences.advance(sequence.id, now=NOW)
    assert sequence.current_step == 4

    sequence = sequences.advance(sequence.id, now=NOW)
    assert sequence.state == SequenceState.COMPLETED.value
    assert sequence.next_run_at is None
    assert sequence.completed_at == NOW


def test_pause_and_resume_keep_current_step(session):
    sequences = SequenceService(db=session)
    sequence = sequences.start_for_lead(_lead(session).id, now=NOW, first_step_sent=True)

    paused = sequences.pause(sequence.id, "manual")
    assert paused.state == SequenceState.PAUSED.value
    assert paused.next_run_at is None
    with pytest.raises(LeadProcessingFailure):
        sequences.advance(sequence.id, now=NOW)

    resumed = sequences.resume(sequence.id, now=NOW + timedelta(days=1))
    assert resumed.state == SequenceState.ACTIVE.value
    assert resumed.current_step == 2
    assert resumed.next_run_at == NOW + timedelta(days=4)


def test_start_resumes_latest_paused_sequence(session):
    sequences = SequenceService(db=session)
    lead = _lead(session)
    sequence = sequences.start_for_lead(lead.id, now=NOW)
    sequences.pause(sequence.id, "manual")

    again = sequences.start_for_lead(lead.id, now=NOW)
    assert again.id == sequence.id
    assert again.state == SequenceState.ACTIVE.value


def test_completed_sequence_cannot_resume(session):
    sequences = SequenceService(db=session)
    sequence = sequences.start_for_lead(_lead(session).id, now=NOW)
    sequences.complete(sequence.id, now=NOW)
    with pytest.raises(LeadProcessingFailure):
        sequences.resume(sequence.id, now=NOW)


def test_record_response_pauses_active_sequence(session):
    sequences = SequenceService(db=session)
    sequence = sequences.start_for_lead(_lead(session).id, now=NOW)

    updated = sequences.record_response(sequence.id, now=NOW)

    assert updated.responses_received == 1
    assert updated.state == SequenceState.PAUSED.value
    assert updated.paused_reason == "customer_responded"


def test_find_due_returns_only_active_and_due(session):
    sequences = SequenceService(db=session)
    due = sequences.start_for_lead(_lead(session).id, now=NOW)
    later = sequences.start_for_lead(_lead(session, email="later@example.com").id, now=NOW, first_step_sent=True)

    assert [row.id for row in sequences.find_due(NOW)] == [due.id]
    assert later.id not in [row.id for row in sequences.find_due(NOW + timedelta(days=2))]
    assert later.id in [row.id for row in sequences.find_due(NOW + timedelta(days=3))]
