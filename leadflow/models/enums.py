"""Canonical enum values for the lead and job schema."""

from __future__ import annotations

import enum


class LeadStatus(str, enum.Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"

    @property
    def is_closed(self) -> bool:
        return self in {LeadStatus.CONVERTED, LeadStatus.LOST}


class ServiceType(str, enum.Enum):
    CORPORATE = "corporate"
    AIRPORT = "airport"
    WEDDING = "wedding"
    HOURLY = "hourly"
    EVENTS = "events"


class SequenceState(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class SequenceType(str, enum.Enum):
    STANDARD = "standard_follow_up"
    HIGH_VALUE = "high_value_follow_up"
    CORPORATE = "corporate_nurture"
    WEDDING = "wedding_follow_up"


class JobDomain(str, enum.Enum):
    RESPONSE = "response"
    NOTIFICATION = "notification"
    SYNC = "sync"
    ANALYTICS = "analytics"


class JobState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class CalculationMethod(str, enum.Enum):
    EXACT_MATCH = "exact_match"
    RANGE = "range"
    FORMULA = "formula"
    BOOLEAN = "boolean"


class FactorCategory(str, enum.Enum):
    COMPANY = "company"
    SERVICE = "service"
    TIMING = "timing"
    GEOGRAPHIC = "geographic"
    BEHAVIORAL = "behavioral"


class InteractionType(str, enum.Enum):
    EMAIL_SENT = "email_sent"
    EMAIL_OPENED = "email_opened"
    EMAIL_CLICKED = "email_clicked"
    CALL_MADE = "call_made"
    MEETING_SCHEDULED = "meeting_scheduled"
    SMS_SENT = "sms_sent"
    RESPONSE_RECEIVED = "response_received"


class WebhookSource(str, enum.Enum):
    WEBSITE_FORM = "website_form"
    EMAIL_PROVIDER = "email_provider"
    CRM = "crm"


class NotificationType(str, enum.Enum):
    HIGH_VALUE_LEAD = "high_value_lead"
    RESPONSE_NEEDED = "response_needed"
    SYSTEM_ALERT = "system_alert"


class EscalationLevel(str, enum.Enum):
    URGENT = "urgent"
    CRITICAL = "critical"


class Channel(str, enum.Enum):
    EMAIL = "email"
    CHAT = "chat"
    SMS = "sms"
