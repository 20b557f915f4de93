"""SQLAlchemy model package for the lead and job schema."""

from leadflow.models.base import Base, utcnow
from leadflow.models.daily_metric import DailyMetric
from leadflow.models.email_sequence import EmailSequence
from leadflow.models.enums import (
    CalculationMethod,
    Channel,
    EscalationLevel,
    FactorCategory,
    InteractionType,
    JobDomain,
    JobState,
    LeadStatus,
    NotificationType,
    SequenceState,
    SequenceType,
    ServiceType,
    WebhookSource,
)
from leadflow.models.interaction import LeadInteraction
from leadflow.models.job import Job
from leadflow.models.lead import Lead
from leadflow.models.notification import Notification
from leadflow.models.scoring_factor import ScoringFactor
from leadflow.models.webhook_event import WebhookEvent

__all__ = [
    "Base",
    "CalculationMethod",
    "Channel",
    "DailyMetric",
    "EmailSequence",
    "EscalationLevel",
    "FactorCategory",
    "InteractionType",
    "Job",
    "JobDomain",
    "JobState",
    "Lead",
    "LeadInteraction",
    "LeadStatus",
    "Notification",
    "NotificationType",
    "ScoringFactor",
    "SequenceState",
    "SequenceType",
    "ServiceType",
    "WebhookEvent",
    "WebhookSource",
    "utcnow",
]
