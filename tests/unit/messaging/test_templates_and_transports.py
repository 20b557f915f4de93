from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from leadflow.core.exceptions import ConfigurationError, LeadProcessingFailure, ReferenceFailure
from leadflow.messaging.templates import (
    CATALOG,
    get_template,
    is_business_hours,
    next_business_time,
    render,
    seconds_until_business_hours,
)
from leadflow.messaging.transports import RenderedMessage, TransportSettings, build_transports
from leadflow.services.sequence_service import STEP_TEMPLATES

NEW_YORK = ZoneInfo("America/New_York")


def _lead(**fields):
    base = {
        "contact_name": "Dana Reyes",
        "company_name": "Acme",
        "service_type": "corporate",
        "service_date": datetime(2026, 11, 3, 9, 30),
        "estimated_value": 1250.0,
        "pickup_location": "JFK",
        "destination": "Midtown",
        "passenger_count": 4,
        "phone": None,
    }
    base.update(fields)
    return SimpleNamespace(**base)


def test_every_sequence_step_has_a_template():
    for templates in STEP_TEMPLATES.values():
        for name in templates:
            assert name in CATALOG


def test_render_substitutes_lead_fields():
    message = render("corporate_instant_response", _lead())
    assert message.subject == "Your corporate transportation request for Acme"
    assert "2026-11-03" in message.body
    assert "$1250.00" in message.body
    assert "{{" not in message.body


def test_render_uses_fallbacks_for_missing_fields():
    message = render("instant_response", _lead(contact_name=None, service_date=None))
    assert message.body.startswith("Hello Valued Customer,")
    assert "for TBD." in message.body


def test_unknown_template_raises_reference_failure():
    with pytest.raises(ReferenceFailure):
        get_template("does_not_exist")


def test_instant_templates_ignore_business_hours():
    assert get_template("instant_response").business_hours_only is False
    assert get_template("follow_up_3day").business_hours_only is True


def test_business_hours_in_scheduler_timezone():
    # 11:00 Wednesday in New York.
    assert is_business_hours(datetime(2026, 10, 21, 15, 0), NEW_YORK) is True
    # 05:00 Wednesday.
    assert is_business_hours(datetime(2026, 10, 21, 9, 0), NEW_YORK) is False
    # 19:00 Saturday is open, 21:00 Saturday is not.
    assert is_business_hours(datetime(2026, 10, 24, 23, 0), NEW_YORK) is True
    assert is_business_hours(datetime(2026, 10, 25, 1, 0), NEW_YORK) is False


def test_next_business_time_from_friday_night():
    friday_night = datetime(2026, 10, 24, 3, 0)
    assert next_business_time(friday_night, NEW_YORK) == datetime(2026, 10, 24, 12, 0)
    assert seconds_until_business_hours(friday_night, NEW_YORK) == 9 * 3600


def test_sandbox_transports_send_after_start():
    transports = build_transports(TransportSettings(sandbox_mode=True))
    with pytest.raises(LeadProcessingFailure):
        transports.email.send("a@example.com", RenderedMessage(body="hi"))

    transports.start()
    receipt = transports.get("sms").send("+15550001111", RenderedMessage(body="hi"), {"lead_id": 1})
    assert receipt.sandbox is True
    assert receipt.message_id.startswith("sandbox-sms-")

    transports.shutdown()
    assert all(not transport.ready for transport in transports.all())


def test_live_transports_validate_credentials_on_start():
    transports = build_transports(TransportSettings(sandbox_mode=False, smtp_host="smtp.example.com"))
    with pytest.raises(ConfigurationError):
        transports.start()
