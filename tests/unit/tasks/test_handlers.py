from __future__ import annotations

from datetime import datetime, timedelta

from conftest import NOW, lead_data
from leadflow.models.enums import InteractionType, JobState, LeadStatus, SequenceState, SequenceType
from leadflow.models.interaction import LeadInteraction
from leadflow.models.job import Job
from leadflow.models.notification import Notification
from leadflow.services.lead_service import LeadService
from leadflow.services.sequence_service import SequenceService


def _lead(session, **overrides):
    return LeadService(db=session, factors=[]).create_lead(lead_data(**overrides), now=NOW)


def _run(dispatcher, domain, job_type, payload):
    dispatcher.enqueue(domain, job_type, payload)
    return dispatcher.run_next(domain)


def test_instant_response_sends_and_starts_sequence_at_step_two(session, dispatcher):
    lead = _lead(session, service_type="corporate", company_name="Acme")

    job = _run(dispatcher, "response", "instant_response", {"lead_id": lead.id})

    assert job.state == JobState.COMPLETED.value
    assert job.result["template"] == "corporate_instant_response"
    sequence = SequenceService(db=session).get(job.result["sequence_id"])
    assert sequence.sequence_type == SequenceType.CORPORATE.value
    assert sequence.current_step == 2
    assert sequence.emails_sent == 1
    email = session.query(LeadInteraction).filter(LeadInteraction.lead_id == lead.id).one()
    assert email.automated is True
    assert email.message_id.startswith("sandbox-email-")
    session.refresh(lead)
    assert lead.status == LeadStatus.CONTACTED.value


def test_instant_response_is_sent_once(session, dispatcher):
    lead = _lead(session)
    _run(dispatcher, "response", "instant_response", {"lead_id": lead.id})

    again = _run(dispatcher, "response", "instant_response", {"lead_id": lead.id})

    assert again.result == {"status": "skipped", "reason": "already_responded"}
    assert session.query(LeadInteraction).count() == 1


def test_instant_response_without_transports_retries(session, dispatcher):
    dispatcher.transports = None
    lead = _lead(session)

    job = _run(dispatcher, "response", "instant_response", {"lead_id": lead.id})

    assert job.state == JobState.WAITING.value
    assert job.attempts_made == 1
    assert job.last_error["service"] == "email"


def _sequence_at_step_two(session, lead):
    return SequenceService(db=session).start_for_lead(lead.id, SequenceType.STANDARD, now=NOW, first_step_sent=True)


def test_sequence_step_sends_and_advances(session, dispatcher):
    lead = _lead(session)
    sequence = _sequence_at_step_two(session, lead)

    job = _run(dispatcher, "response", "sequence_step", {"sequence_id": sequence.id, "lead_id": lead.id, "step": 2})

    assert job.result["template"] == "follow_up_3day"
    refreshed = SequenceService(db=session).get(sequence.id)
    session.refresh(refreshed)
    assert refreshed.current_step == 3
    assert refreshed.emails_sent == 2


def test_sequence_step_pauses_after_customer_reply(session, dispatcher):
    lead = _lead(session)
    sequence = _sequence_at_step_two(session, lead)
    LeadService(db=session).record_interaction(
        lead.id, InteractionType.RESPONSE_RECEIVED.value, now=NOW - timedelta(hours=2)
    )

    job = _run(dispatcher, "response", "sequence_step", {"sequence_id": sequence.id, "lead_id": lead.id, "step": 2})

    assert job.result == {"status": "skipped", "reason": "customer_responded"}
    paused = SequenceService(db=session).get(sequence.id)
    session.refresh(paused)
    assert paused.state == SequenceState.PAUSED.value
    assert paused.paused_reason == "customer_responded"


def test_sequence_step_skips_paused_sequence(session, dispatcher):
    lead = _lead(session)
    sequence = _sequence_at_step_two(session, lead)
    LeadService(db=session).update_status(lead.id, LeadStatus.LOST.value, now=NOW)

    job = _run(dispatcher, "response", "sequence_step", {"sequence_id": sequence.id, "lead_id": lead.id, "step": 2})

    assert job.result["reason"] == "sequence_not_active"
    assert session.query(LeadInteraction).count() == 0


def test_sequence_step_waits_for_business_hours(session, dispatcher, clock):
    lead = _lead(session)
    sequence = _sequence_at_step_two(session, lead)
    # Friday 23:00 in New York.
    clock.current = datetime(2026, 10, 24, 3, 0)

    job = _run(dispatcher, "response", "sequence_step", {"sequence_id": sequence.id, "lead_id": lead.id, "step": 2})

    assert job.state == JobState.WAITING.value
    assert job.attempts_made == 0
    assert job.scheduled_at == datetime(2026, 10, 24, 12, 0)


def test_sequence_sweep_enqueues_due_steps(session, dispatcher, clock):
    lead = _lead(session)
    sequence = _sequence_at_step_two(session, lead)
    clock.advance(days=3)

    _run(dispatcher, "response", "sequence_sweep", {})
    _run(dispatcher, "response", "sequence_sweep", {})

    steps = session.query(Job).filter(Job.job_type == "sequence_step").all()
    assert len(steps) == 1
    assert steps[0].payload == {"sequence_id": sequence.id, "lead_id": lead.id, "step": 2}
    assert steps[0].priority == 3


def test_high_value_alert_delivers_once(session, dispatcher):
    lead = _lead(session, estimated_value=2500, company_name="Acme")

    first = _run(dispatcher, "notification", "high_value_alert", {"lead_id": lead.id})
    second = _run(dispatcher, "notification", "high_value_alert", {"lead_id": lead.id})

    assert first.result["status"] == "sent"
    assert first.result["degraded"] is False
    assert second.result["reason"] == "already_sent"
    notification = session.query(Notification).one()
    assert notification.channels == ["email", "chat", "sms"]


def test_response_time_alert_skips_contacted_lead(session, dispatcher):
    lead = _lead(session)
    LeadService(db=session).update_status(lead.id, LeadStatus.CONTACTED.value, now=NOW)

    job = _run(dispatcher, "notification", "response_time_alert", {"lead_id": lead.id, "notification_id": 1})

    assert job.result["reason"] == "lead_already_contacted"


def test_crm_sync_skips_without_credentials(session, dispatcher):
    lead = _lead(session)
    job = _run(dispatcher, "sync", "crm_sync", {"lead_id": lead.id})
    assert job.result == {"status": "skipped", "reason": "no_credentials"}


def test_daily_metrics_rolls_up_previous_day_once(session, dispatcher):
    LeadService(db=session, factors=[]).create_lead(lead_data(estimated_value=400), now=NOW - timedelta(days=1))

    first = _run(dispatcher, "analytics", "daily_metrics", {})
    second = _run(dispatcher, "analytics", "daily_metrics", {})

    assert first.result["leads_created"] == 1
    assert first.result["total_estimated_value"] == 400.0
    assert second.result["reason"] == "already_calculated"
