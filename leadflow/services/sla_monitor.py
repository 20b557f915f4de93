"""Response-time SLA metrics and overdue-lead escalation."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, select

from leadflow.core.config import Config, get_config
from leadflow.core.logging import LogContext, build_log_event
from leadflow.models.base import utcnow
from leadflow.models.enums import EscalationLevel, InteractionType, JobDomain, LeadStatus, NotificationType
from leadflow.models.interaction import LeadInteraction
from leadflow.models.job import Job
from leadflow.models.lead import Lead
from leadflow.models.notification import Notification
from leadflow.services.base_service import BaseService
from leadflow.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

GRADE_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (95, "A+"),
    (90, "A"),
    (85, "B+"),
    (80, "B"),
    (70, "C"),
    (60, "D"),
)
LOW_RATE_THRESHOLD = 80
LOW_RATE_MIN_RESPONSES = 5

# Higher rank supersedes lower.
LEVEL_RANK = {EscalationLevel.URGENT.value: 1, EscalationLevel.CRITICAL.value: 2}


def _escalation_key(lead_id: int, level: str) -> str:
    return f"escalation:{lead_id}:{level}"


def grade_for(rate: float) -> str:
    for minimum, grade in GRADE_THRESHOLDS:
        if rate >= minimum:
            return grade
    return "F"


@dataclass
class SlaMetrics:
    window_hours: int
    total_leads: int
    responded_leads: int
    timely_responses: int
    avg_response_minutes: float | None
    within_sla_rate: float
    overdue_leads: int
    performance_grade: str
    alerts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SlaMonitor(BaseService):
    def __init__(self, db=None, dispatcher=None, config: Config | None = None) -> None:
        super().__init__(db)
        self.dispatcher = dispatcher
        self.config = config or get_config()

    def _first_responses(self, since: datetime, until: datetime) -> list[tuple[int, datetime, str, datetime | None]]:
        first_response = (
            select(
                LeadInteraction.lead_id.label("lead_id"),
                func.min(LeadInteraction.created_at).label("responded_at"),
            )
            .where(
                LeadInteraction.interaction_type == InteractionType.EMAIL_SENT.value,
                LeadInteraction.automated.is_(True),
            )
            .group_by(LeadInteraction.lead_id)
            .subquery()
        )
        rows = self.db.execute(
            select(Lead.id, Lead.created_at, Lead.status, first_response.c.responded_at)
            .outerjoin(first_response, first_response.c.lead_id == Lead.id)
            .where(and_(Lead.created_at >= since, Lead.created_at <= until))
        ).all()
        return [tuple(row) for row in rows]

    def compute_metrics(self, now: datetime | None = None, window_hours: int | None = None) -> SlaMetrics:
        now = now or utcnow()
        window_hours = window_hours or self.config.SLA_METRICS_WINDOW_HOURS
        threshold = timedelta(minutes=self.config.SLA_RESPONSE_MINUTES)
        rows = self._first_responses(now - timedelta(hours=window_hours), now)

        total = len(rows)
        response_minutes: list[float] = []
        timely = 0
        overdue = 0
        for _lead_id, created_at, status, responded_at in rows:
            if responded_at is not None:
                elapsed = responded_at - created_at
                response_minutes.append(elapsed.total_seconds() / 60)
                if elapsed <= threshold:
                    timely += 1
            elif status == LeadStatus.NEW.value and now - created_at > threshold:
                overdue += 1

        responded = len(response_minutes)
        avg_minutes = round(sum(response_minutes) / responded, 2) if responded else None
        rate = round(timely / total * 100, 2) if total else 0.0

        alerts: list[dict[str, Any]] = []
        if avg_minutes is not None and avg_minutes > self.config.SLA_RESPONSE_MINUTES:
            alerts.append(
                {
                    "type": "slow_average_response",
                    "severity": "high",
                    "message": f"Average response time {avg_minutes} min exceeds {self.config.SLA_RESPONSE_MINUTES} min",
                }
            )
        if overdue:
            alerts.append(
                {"type": "overdue_leads", "severity": "critical", "message": f"{overdue} leads are waiting past the SLA"}
            )
        if responded >= LOW_RATE_MIN_RESPONSES and rate < LOW_RATE_THRESHOLD:
            alerts.append(
                {"type": "low_sla_rate", "severity": "medium", "message": f"Only {rate}% of leads answered within SLA"}
            )

        return SlaMetrics(
            window_hours=window_hours,
            total_leads=total,
            responded_leads=responded,
            timely_responses=timely,
            avg_response_minutes=avg_minutes,
            within_sla_rate=rate,
            overdue_leads=overdue,
            performance_grade=grade_for(rate) if total else "N/A",
            alerts=alerts,
        )

    def _existing_levels(self, lead_ids: list[int]) -> dict[int, set[str]]:
        if not lead_ids:
            return {}
        rows = self.db.execute(
            select(Notification.lead_id, Notification.escalation_level).where(
                Notification.lead_id.in_(lead_ids),
                Notification.notification_type == NotificationType.RESPONSE_NEEDED.value,
            )
        ).all()
        levels: dict[int, set[str]] = {}
        for lead_id, level in rows:
            levels.setdefault(lead_id, set()).add(level)
        return levels

    def _enqueue_alert(self, lead: Lead, notification: Notification, now: datetime) -> int | None:
        if self.dispatcher is None:
            return None
        level = notification.escalation_level
        job = self.dispatcher.enqueue(
            JobDomain.NOTIFICATION.value,
            "response_time_alert",
            {
                "lead_id": lead.id,
                "notification_id": notification.id,
                "minutes": lead.minutes_since_created(now),
                "level": level,
            },
            priority=1 if level == EscalationLevel.CRITICAL.value else 2,
            dedupe_key=_escalation_key(lead.id, level),
        )
        return job.id

    def _undispatched(self, leads: dict[int, Lead], now: datetime) -> list[Notification]:
        """Unsent, unexpired escalations that never got a delivery job."""
        if not leads:
            return []
        pending = (
            self.db.query(Notification)
            .filter(
                Notification.lead_id.in_(list(leads)),
                Notification.notification_type == NotificationType.RESPONSE_NEEDED.value,
                Notification.sent.is_(False),
                (Notification.expires_at.is_(None)) | (Notification.expires_at > now),
            )
            .order_by(Notification.id.asc())
            .all()
        )
        keys = {_escalation_key(row.lead_id, row.escalation_level) for row in pending}
        if not keys:
            return []
        queued = set(self.db.scalars(select(Job.dedupe_key).where(Job.dedupe_key.in_(sorted(keys)))).all())
        return [row for row in pending if _escalation_key(row.lead_id, row.escalation_level) not in queued]

    def scan_overdue(self, now: datetime | None = None) -> list[dict[str, Any]]:
        """Raise one escalation per lead per threshold crossing.

        A lead already escalated at the same or a higher level is left alone, so
        repeated scans are no-ops until the lead crosses the next threshold. An
        escalation whose delivery job was never enqueued is enqueued again.
        """
        now = now or utcnow()
        response_cutoff = now - timedelta(minutes=self.config.SLA_RESPONSE_MINUTES)
        critical_cutoff = now - timedelta(minutes=self.config.SLA_CRITICAL_MINUTES)
        overdue = (
            self.db.query(Lead)
            .filter(Lead.status == LeadStatus.NEW.value, Lead.created_at < response_cutoff)
            .order_by(Lead.created_at.asc(), Lead.id.asc())
            .all()
        )
        by_id = {lead.id: lead for lead in overdue}
        existing = self._existing_levels(list(by_id))
        notifications = NotificationService(db=self.db, config=self.config)

        raised: list[dict[str, Any]] = []
        if self.dispatcher is not None:
            for notification in self._undispatched(by_id, now):
                lead = by_id[notification.lead_id]
                job_id = self._enqueue_alert(lead, notification, now)
                logger.warning(
                    "sla.escalation_redispatched",
                    extra=build_log_event(
                        "sla.escalation_redispatched",
                        LogContext(domain=JobDomain.NOTIFICATION.value, job_id=job_id, lead_id=lead.id),
                        level=notification.escalation_level,
                        notification_id=notification.id,
                    ),
                )
                raised.append(
                    {
                        "lead_id": lead.id,
                        "level": notification.escalation_level,
                        "notification_id": notification.id,
                        "job_id": job_id,
                        "redispatched": True,
                    }
                )

        for lead in overdue:
            level = EscalationLevel.CRITICAL.value if lead.created_at < critical_cutoff else EscalationLevel.URGENT.value
            highest = max((LEVEL_RANK.get(value, 0) for value in existing.get(lead.id, set())), default=0)
            if highest >= LEVEL_RANK[level]:
                continue

            minutes = lead.minutes_since_created(now)
            notification = notifications.create_response_needed_alert(lead, minutes, level, now)
            if notification is None:
                continue

            job_id = self._enqueue_alert(lead, notification, now)
            logger.warning(
                "sla.escalation_raised",
                extra=build_log_event(
                    "sla.escalation_raised",
                    LogContext(domain=JobDomain.NOTIFICATION.value, job_id=job_id, lead_id=lead.id),
                    level=level,
                    minutes_waiting=minutes,
                    notification_id=notification.id,
                ),
            )
            raised.append({"lead_id": lead.id, "level": level, "notification_id": notification.id, "job_id": job_id})
        return raised

    def status_snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        return {
            "generated_at": now.isoformat(),
            "queues": self.dispatcher.get_queue_stats() if self.dispatcher is not None else {},
            "sla": self.compute_metrics(now).to_dict(),
        }
