from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, lead_data
from leadflow.core.exceptions import AuthenticationFailure
from leadflow.models.enums import InteractionType, LeadStatus, SequenceState
from leadflow.models.interaction import LeadInteraction
from leadflow.models.lead import Lead
from leadflow.services.lead_service import LeadService
from leadflow.services.sequence_service import SequenceService
from leadflow.services.webhook_service import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    WebhookService,
    crm_lead_data,
    form_lead_data,
    sign_payload,
)

SECRET = "whsec-test"


def _unix(moment: datetime) -> str:
    return str(int(moment.replace(tzinfo=timezone.utc).timestamp()))


def _signed_headers(body: str, moment: datetime = NOW, secret: str = SECRET) -> dict[str, str]:
    timestamp = _unix(moment)
    return {
        "X-Webhook-Signature": f"sha256={sign_payload(secret, timestamp, body)}",
        "X-Timestamp": timestamp,
    }


@pytest.fixture
def signed_config(config):
    return replace(config, WEBHOOK_SECRET_CRM=SECRET, WEBHOOK_SECRET_EMAIL_PROVIDER=SECRET)


def _form(**overrides):
    payload = {"contact_name": "Dana Reyes", "email": "dana@example.com", "service_type": "airport", "form_id": "quote"}
    payload.update(overrides)
    return payload


def test_valid_signature_is_accepted(session, signed_config):
    service = WebhookService(db=session, config=signed_config)
    payload = {"event_type": "lead_created", "record_id": "crm-1", "data": {"email": "x@example.com", "first_name": "X"}}
    body = json.dumps(payload)
    event = service.record("crm", "lead_created", payload, _signed_headers(body), now=NOW)

    service.authenticate(event, body.encode("utf-8"), now=NOW + timedelta(seconds=30))

    assert event.rejected is False
    outcome = service.process(event.id, NOW)
    assert outcome["status"] == "processed"
    assert outcome["lead_created"] is True
    assert session.query(Lead).one().crm_lead_id == "crm-1"


def test_signature_mismatch_rejects_without_creating_lead(session, signed_config):
    service = WebhookService(db=session, config=signed_config)
    payload = {"event_type": "lead_created", "record_id": "crm-1", "data": {"email": "x@example.com"}}
    body = json.dumps(payload)
    event = service.record("crm", "lead_created", payload, _signed_headers(body, secret="wrong"), now=NOW)

    with pytest.raises(AuthenticationFailure) as exc:
        service.authenticate(event, body, now=NOW)

    assert exc.value.code == "WEBHOOK_SIGNATURE_INVALID"
    assert service.get(event.id).rejected is True
    assert service.process(event.id, NOW)["status"] == "rejected"
    assert service.replay(now=NOW + timedelta(minutes=1))["attempted"] == 0
    assert session.query(Lead).count() == 0


def test_stale_timestamp_is_rejected(session, signed_config):
    service = WebhookService(db=session, config=signed_config)
    payload = {"event_type": "opened", "message_id": "m-1"}
    body = json.dumps(payload)
    event = service.record("email_provider", "email_opened", payload, _signed_headers(body), now=NOW)

    with pytest.raises(AuthenticationFailure) as exc:
        service.authenticate(event, body, now=NOW + timedelta(minutes=10))
    assert exc.value.code == "WEBHOOK_TIMESTAMP_INVALID"


def test_missing_signature_headers_are_rejected(session, signed_config):
    service = WebhookService(db=session, config=signed_config)
    event = service.record("crm", "lead_updated", {"event_type": "lead_updated"}, {}, now=NOW)
    with pytest.raises(AuthenticationFailure) as exc:
        service.authenticate(event, "{}", now=NOW)
    assert exc.value.code == "WEBHOOK_SIGNATURE_MISSING"


def test_unsigned_source_accepted_outside_production_only(session, config):
    service = WebhookService(db=session, config=config)
    event = service.record("crm", "lead_updated", {"event_type": "lead_updated"}, {}, now=NOW)
    service.authenticate(event, "{}", now=NOW)
    assert event.rejected is False

    production = WebhookService(db=session, config=replace(config, ENV="production"))
    with pytest.raises(AuthenticationFailure) as exc:
        production.authenticate(event, "{}", now=NOW)
    assert exc.value.code == "WEBHOOK_SECRET_MISSING"


def test_form_event_processing_is_idempotent(session, config):
    service = WebhookService(db=session, config=config)
    event = service.record("website_form", "form_submission", _form(), {"User-Agent": "pytest"}, "10.0.0.1", now=NOW)

    first = service.process(event.id, NOW)
    second = service.process(event.id, NOW + timedelta(minutes=1))

    assert first["lead_created"] is True
    assert second["replayed"] is True
    assert second["lead_id"] == first["lead_id"]
    lead = session.query(Lead).one()
    assert lead.custom_fields["ip_address"] == "10.0.0.1"
    assert service.get(event.id).headers == {"user-agent": "pytest"}


def test_repeated_form_submission_links_existing_lead(session, config):
    service = WebhookService(db=session, config=config)
    first = service.process(service.record("website_form", "form_submission", _form(), now=NOW).id, NOW)
    later = NOW + timedelta(hours=1)
    second = service.process(service.record("website_form", "form_submission", _form(), now=later).id, later)

    assert second["duplicate"] is True
    assert second["lead_id"] == first["lead_id"]
    assert session.query(Lead).count() == 1


def test_replay_processes_in_arrival_order(session, config):
    service = WebhookService(db=session, config=config)
    late = service.record("website_form", "form_submission", _form(email="late@example.com"), now=NOW)
    early = service.record(
        "website_form", "form_submission", _form(email="early@example.com"), now=NOW - timedelta(minutes=5)
    )

    summary = service.replay(now=NOW + timedelta(minutes=1))

    assert summary == {"attempted": 2, "succeeded": 2, "failed": 0, "abandoned": []}
    assert service.get(early.id).lead_id < service.get(late.id).lead_id


def test_failing_event_is_abandoned_exactly_once(session, config):
    service = WebhookService(db=session, config=config)
    event = service.record("crm", "lead_merged", {"event_type": "lead_merged"}, now=NOW)
    service.authenticate(event, "{}", now=NOW)

    outcomes = [service.replay(now=NOW + timedelta(minutes=1)) for _ in range(4)]

    assert [summary["failed"] for summary in outcomes] == [1, 1, 1, 0]
    assert [summary["abandoned"] for summary in outcomes] == [[], [], [event.id], []]
    stored = service.get(event.id)
    assert stored.retry_count == 3
    assert stored.abandoned is True
    assert stored.processed is False
    assert "Unsupported CRM event" in stored.error_message


def _lead_with_email(session, now=NOW):
    leads = LeadService(db=session, factors=[])
    lead = leads.create_lead(lead_data(), now=now)
    sequence = SequenceService(db=session).start_for_lead(lead.id, now=now, first_step_sent=True)
    email = leads.record_interaction(
        lead.id, InteractionType.EMAIL_SENT.value, now=now, automated=True, message_id="msg-1", template_used="instant_response"
    )
    return lead, sequence, email


def test_open_event_updates_interaction_and_sequence(session, config):
    lead, sequence, email = _lead_with_email(session)
    service = WebhookService(db=session, config=config)
    event = service.record("email_provider", "email_opened", {"event_type": "opened", "message_id": "msg-1"}, now=NOW)

    outcome = service.process(event.id, NOW + timedelta(minutes=5))

    assert outcome["interaction_id"] == email.id
    assert email.opened_at == NOW + timedelta(minutes=5)
    assert sequence.emails_opened == 1


def test_reply_event_records_response_and_pauses_sequence(session, config):
    lead, sequence, _ = _lead_with_email(session)
    service = WebhookService(db=session, config=config)
    event = service.record(
        "email_provider", "email_replied", {"event_type": "replied", "message_id": "msg-1", "content": "Yes please"}, now=NOW
    )

    service.process(event.id, NOW)

    replies = session.query(LeadInteraction).filter(
        LeadInteraction.interaction_type == InteractionType.RESPONSE_RECEIVED.value
    ).all()
    assert len(replies) == 1
    assert replies[0].response_content == "Yes please"
    assert sequence.state == SequenceState.PAUSED.value
    assert sequence.paused_reason == "customer_responded"


def test_hard_bounce_marks_lead_lost(session, config):
    lead, sequence, _ = _lead_with_email(session)
    service = WebhookService(db=session, config=config)
    event = service.record(
        "email_provider", "email_bounced", {"event_type": "bounced", "message_id": "msg-1", "bounce_type": "hard"}, now=NOW
    )

    service.process(event.id, NOW)

    assert lead.status == LeadStatus.LOST.value
    assert sequence.state == SequenceState.PAUSED.value
    assert sequence.paused_reason == "lead_lost"


def test_unknown_message_id_is_processed_without_lead(session, config):
    service = WebhookService(db=session, config=config)
    event = service.record("email_provider", "email_clicked", {"event_type": "clicked", "message_id": "nope"}, now=NOW)
    outcome = service.process(event.id, NOW)
    assert outcome["status"] == "processed"
    assert outcome["lead_id"] is None


def test_crm_updates_status_and_closes_deal(session, config):
    lead = LeadService(db=session, factors=[]).create_lead(lead_data(crm_lead_id="crm-9"), now=NOW)
    service = WebhookService(db=session, config=config)
    update = service.record(
        "crm", "lead_updated", {"event_type": "lead_updated", "record_id": "crm-9", "data": {"lead_status": "Qualified"}}, now=NOW
    )
    service.process(update.id, NOW)
    assert lead.status == LeadStatus.QUALIFIED.value

    closed = service.record(
        "crm", "deal_closed", {"event_type": "deal_closed", "record_id": "crm-9", "data": {"amount": 1800}}, now=NOW
    )
    service.process(closed.id, NOW)
    assert lead.status == LeadStatus.CONVERTED.value
    assert lead.custom_fields["crm_deal_value"] == 1800


def test_form_and_crm_payload_mapping():
    data = form_lead_data(
        {"contact_name": "A", "email": "a@example.com", "service_type": "wedding", "passenger_count": "12", "service_date": "2026-11-01T18:00:00Z"},
        "127.0.0.1",
    )
    assert data["passenger_count"] == 12
    assert data["service_date"] == datetime(2026, 11, 1, 18, 0)
    assert data["source"] == "website"

    crm = crm_lead_data("r-1", {"first_name": "Ana", "last_name": "Ng", "lead_source": "Corporate", "mobile": "555"})
    assert crm["contact_name"] == "Ana Ng"
    assert crm["service_type"] == "corporate"
    assert crm["phone"] == "555"


def test_signature_helper_matches_header_names():
    assert SIGNATURE_HEADER == "x-webhook-signature"
    assert TIMESTAMP_HEADER == "x-timestamp"
    assert sign_payload("k", "1", "{}") == sign_payload("k", "1", "{}")
    assert sign_payload("k", "1", "{}") != sign_payload("k", "2", "{}")


def test_replay_skips_signed_events_that_were_never_authenticated(session, signed_config):
    service = WebhookService(db=session, config=signed_config)
    payload = {"event_type": "lead_created", "record_id": "crm-3", "data": {"email": "z@example.com"}}
    headers = {"X-Webhook-Signature": "deadbeef", "X-Timestamp": _unix(NOW)}
    event = service.record("crm", "lead_created", payload, headers, now=NOW)

    summary = service.replay(now=NOW + timedelta(hours=1))

    assert summary["attempted"] == 0
    assert service.get(event.id).processed is False
    assert session.query(Lead).count() == 0


def test_replay_waits_for_in_flight_events(session, config):
    service = WebhookService(db=session, config=config)
    event = service.record("website_form", "form_submission", _form(), now=NOW)

    assert service.replay(now=NOW + timedelta(seconds=10))["attempted"] == 0
    assert service.replay(now=NOW + timedelta(minutes=1))["succeeded"] == 1
    assert service.get(event.id).processed is True


def test_backward_crm_status_is_ignored_without_failing(session, config):
    leads = LeadService(db=session, factors=[])
    lead = leads.create_lead(lead_data(crm_lead_id="crm-7"), now=NOW)
    leads.update_status(lead.id, LeadStatus.QUALIFIED.value, now=NOW)
    service = WebhookService(db=session, config=config)
    event = service.record(
        "crm",
        "lead_updated",
        {"event_type": "lead_updated", "record_id": "crm-7", "data": {"lead_status": "Not Contacted", "estimated_value": 900}},
        now=NOW,
    )

    outcome = service.process(event.id, NOW)

    assert outcome["status"] == "processed"
    stored = LeadService(db=session).require_lead(lead.id)
    assert stored.status == LeadStatus.QUALIFIED.value
    assert stored.estimated_value == 900
    assert service.get(event.id).retry_count == 0
