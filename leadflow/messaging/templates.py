"""Static message template catalog, rendering and business-hours rules."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from leadflow.core.exceptions import ReferenceFailure
from leadflow.messaging.transports import RenderedMessage

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

# (open hour, close hour) in the scheduler timezone; close is exclusive.
WEEKDAY_HOURS = (6, 22)
WEEKEND_HOURS = (8, 20)


@dataclass(frozen=True)
class MessageTemplate:
    name: str
    subject: str
    body: str
    business_hours_only: bool = True


_SIGNATURE = "\n\nBest regards,\nThe Reservations Team"

CATALOG: dict[str, MessageTemplate] = {
    template.name: template
    for template in (
        MessageTemplate(
            "instant_response",
            "We received your {{service_type}} request",
            "Hello {{contact_name}},\n\nThank you for your {{service_type}} inquiry for {{service_date}}. "
            "A member of our team will contact you within the next few minutes to confirm details and pricing."
            + _SIGNATURE,
            business_hours_only=False,
        ),
        MessageTemplate(
            "follow_up_2hour",
            "Following up on your {{service_type}} request",
            "Hello {{contact_name}},\n\nWe wanted to make sure you received our reply about your trip from "
            "{{pickup_location}} to {{destination}}. Reply to this email and we will hold your vehicle." + _SIGNATURE,
        ),
        MessageTemplate(
            "follow_up_1day",
            "Your {{service_type}} quote is ready",
            "Hello {{contact_name}},\n\nYour estimate of ${{estimated_value}} for {{passenger_count}} passengers is "
            "ready. Let us know if anything has changed." + _SIGNATURE,
        ),
        MessageTemplate(
            "follow_up_3day",
            "Still planning your {{service_type}} trip?",
            "Hello {{contact_name}},\n\nWe are still holding availability for {{service_date}}. "
            "Reply with any questions and we will get back to you right away." + _SIGNATURE,
        ),
        MessageTemplate(
            "follow_up_7day",
            "A quick check-in about {{service_date}}",
            "Hello {{contact_name}},\n\nDates fill up quickly. If you would like to reserve, simply reply to this "
            "message." + _SIGNATURE,
        ),
        MessageTemplate(
            "follow_up_14day",
            "Last note about your transportation request",
            "Hello {{contact_name}},\n\nThis is our last scheduled follow-up. We are here whenever you are ready."
            + _SIGNATURE,
        ),
        MessageTemplate(
            "corporate_instant_response",
            "Your corporate transportation request for {{company_name}}",
            "Dear {{contact_name}},\n\nThank you for contacting us about corporate transportation for "
            "{{company_name}}. We will call you within five minutes to discuss {{service_date}} "
            "(estimated value ${{estimated_value}})." + _SIGNATURE,
            business_hours_only=False,
        ),
        MessageTemplate(
            "corporate_follow_up",
            "Corporate account options for {{company_name}}",
            "Dear {{contact_name}},\n\nWe offer monthly invoicing and dedicated chauffeurs for corporate accounts. "
            "Would a short call this week work for you?" + _SIGNATURE,
        ),
        MessageTemplate(
            "corporate_proposal",
            "Proposal for {{company_name}}",
            "Dear {{contact_name}},\n\nBased on your request we have prepared a proposal for {{company_name}}. "
            "Reply and we will send it over with availability." + _SIGNATURE,
        ),
        MessageTemplate(
            "corporate_final",
            "Closing the loop with {{company_name}}",
            "Dear {{contact_name}},\n\nWe have not heard back, so we will pause our outreach. "
            "Our team remains available for future travel." + _SIGNATURE,
        ),
        MessageTemplate(
            "wedding_instant_response",
            "Congratulations, {{contact_name}}! About your wedding transportation",
            "Hello {{contact_name}},\n\nCongratulations! We received your wedding transportation request for "
            "{{service_date}} and will contact you shortly with vehicle options for {{passenger_count}} guests."
            + _SIGNATURE,
            business_hours_only=False,
        ),
        MessageTemplate(
            "wedding_follow_up",
            "Wedding day vehicle options",
            "Hello {{contact_name}},\n\nWe would love to be part of your day on {{service_date}}. "
            "Reply to see our vehicle gallery and package pricing." + _SIGNATURE,
        ),
        MessageTemplate(
            "wedding_package",
            "Your wedding package",
            "Hello {{contact_name}},\n\nOur wedding packages include decorated vehicles and a red carpet. "
            "Your current estimate is ${{estimated_value}}." + _SIGNATURE,
        ),
        MessageTemplate(
            "wedding_final",
            "Still available for {{service_date}}",
            "Hello {{contact_name}},\n\nThis is our final follow-up. We still have availability for your date."
            + _SIGNATURE,
        ),
        MessageTemplate(
            "high_value_alert",
            "High-value lead: {{contact_name}} ({{company_name}})",
            "Estimated value ${{estimated_value}} for {{service_type}} on {{service_date}}. Respond within 5 minutes.",
            business_hours_only=False,
        ),
    )
}


def get_template(name: str) -> MessageTemplate:
    template = CATALOG.get(name)
    if template is None:
        raise ReferenceFailure("template", name)
    return template


def template_variables(lead: Any) -> dict[str, str]:
    service_date = getattr(lead, "service_date", None)
    estimated_value = getattr(lead, "estimated_value", None)
    return {
        "contact_name": getattr(lead, "contact_name", None) or "Valued Customer",
        "company_name": getattr(lead, "company_name", None) or "",
        "service_type": getattr(lead, "service_type", None) or "",
        "service_date": service_date.strftime("%Y-%m-%d") if service_date else "TBD",
        "estimated_value": f"{estimated_value:.2f}" if estimated_value else "0.00",
        "pickup_location": getattr(lead, "pickup_location", None) or "",
        "destination": getattr(lead, "destination", None) or "",
        "passenger_count": str(getattr(lead, "passenger_count", None) or 1),
        "phone": getattr(lead, "phone", None) or "",
    }


def _substitute(text: str, variables: dict[str, str]) -> str:
    return PLACEHOLDER.sub(lambda match: variables.get(match.group(1), match.group(0)), text)


def render(name: str, lead: Any) -> RenderedMessage:
    template = get_template(name)
    variables = template_variables(lead)
    return RenderedMessage(subject=_substitute(template.subject, variables), body=_substitute(template.body, variables))


def _to_local(now: datetime, tz: ZoneInfo) -> datetime:
    return now.replace(tzinfo=timezone.utc).astimezone(tz)


def _is_open(local: datetime) -> bool:
    opens, closes = WEEKEND_HOURS if local.weekday() >= 5 else WEEKDAY_HOURS
    return opens <= local.hour < closes


def is_business_hours(now: datetime, tz: ZoneInfo) -> bool:
    """``now`` is naive UTC."""
    return _is_open(_to_local(now, tz))


def next_business_time(now: datetime, tz: ZoneInfo) -> datetime:
    """Start of the next business hour after ``now``, as naive UTC."""
    local = _to_local(now, tz).replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    for _ in range(24 * 7):
        if _is_open(local):
            break
        local += timedelta(hours=1)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def seconds_until_business_hours(now: datetime, tz: ZoneInfo) -> int:
    return max(0, int((next_business_time(now, tz) - now).total_seconds()))
