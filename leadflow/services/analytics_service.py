"""Daily metric rollups and scoring effectiveness reports."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import func

from leadflow.core.config import Config, get_config
from leadflow.models.base import utcnow
from leadflow.models.daily_metric import DailyMetric
from leadflow.models.enums import InteractionType, LeadStatus
from leadflow.models.interaction import LeadInteraction
from leadflow.models.lead import Lead
from leadflow.services.base_service import BaseService

logger = logging.getLogger(__name__)

SCORE_RANGES = ((80, 100, "80-100"), (60, 79, "60-79"), (40, 59, "40-59"), (20, 39, "20-39"), (0, 19, "0-19"))


class AnalyticsService(BaseService):
    def __init__(self, db=None, config: Config | None = None) -> None:
        super().__init__(db)
        self.config = config or get_config()

    def get_metric(self, metric_date: date) -> DailyMetric | None:
        return self.db.query(DailyMetric).filter(DailyMetric.metric_date == metric_date).first()

    def rollup_day(self, metric_date: date, recalculate: bool = False) -> tuple[DailyMetric, bool]:
        """Upsert the metric row for ``metric_date``; returns ``(metric, computed)``."""
        existing = self.get_metric(metric_date)
        if existing is not None and not recalculate:
            logger.info(
                "analytics.rollup_skipped",
                extra={"event": "analytics.rollup_skipped", "metric_date": metric_date.isoformat()},
            )
            return existing, False

        start = datetime.combine(metric_date, time.min)
        end = start + timedelta(days=1)
        leads = self.db.query(Lead).filter(Lead.created_at >= start, Lead.created_at < end).all()
        lead_ids = [lead.id for lead in leads]

        first_responses: dict[int, datetime] = {}
        if lead_ids:
            rows = (
                self.db.query(LeadInteraction.lead_id, func.min(LeadInteraction.created_at))
                .filter(
                    LeadInteraction.lead_id.in_(lead_ids),
                    LeadInteraction.interaction_type == InteractionType.EMAIL_SENT.value,
                    LeadInteraction.automated.is_(True),
                )
                .group_by(LeadInteraction.lead_id)
                .all()
            )
            first_responses = {lead_id: responded_at for lead_id, responded_at in rows}

        threshold = timedelta(minutes=self.config.SLA_RESPONSE_MINUTES)
        response_minutes: list[float] = []
        within_sla = 0
        for lead in leads:
            responded_at = first_responses.get(lead.id)
            if responded_at is None:
                continue
            elapsed = responded_at - lead.created_at
            response_minutes.append(elapsed.total_seconds() / 60)
            if elapsed <= threshold:
                within_sla += 1

        converted = sum(1 for lead in leads if lead.status == LeadStatus.CONVERTED.value)
        metric = existing or DailyMetric(metric_date=metric_date)
        metric.leads_created = len(leads)
        metric.leads_converted = converted
        metric.conversion_rate = round(converted / len(leads) * 100, 2) if leads else 0.0
        metric.responded_leads = len(response_minutes)
        metric.avg_response_minutes = round(sum(response_minutes) / len(response_minutes), 2) if response_minutes else None
        metric.responses_within_sla = within_sla
        metric.total_estimated_value = float(sum(lead.estimated_value or 0 for lead in leads))
        if existing is None:
            self.db.add(metric)
        self.commit()
        self.db.refresh(metric)
        logger.info(
            "analytics.rollup_complete",
            extra={
                "event": "analytics.rollup_complete",
                "metric_date": metric_date.isoformat(),
                "leads_created": metric.leads_created,
                "leads_converted": metric.leads_converted,
                "avg_response_minutes": metric.avg_response_minutes,
                "recalculated": existing is not None,
            },
        )
        return metric, True

    def scoring_effectiveness(self, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        """Conversion rate per score band; a useful score converts better at the top."""
        now = now or utcnow()
        leads = self.db.query(Lead).filter(Lead.created_at >= now - timedelta(days=days)).all()
        bands = []
        for low, high, label in SCORE_RANGES:
            members = [lead for lead in leads if low <= lead.score <= high]
            conversions = sum(1 for lead in members if lead.status == LeadStatus.CONVERTED.value)
            bands.append(
                {
                    "score_range": label,
                    "leads": len(members),
                    "conversions": conversions,
                    "conversion_rate": round(conversions / len(members) * 100, 2) if members else 0.0,
                }
            )
        top, bottom = bands[0], bands[-1]
        return {
            "days": days,
            "total_leads": len(leads),
            "score_ranges": bands,
            "effectiveness": round(top["conversion_rate"] - bottom["conversion_rate"], 2),
        }

    def to_dict(self, metric: DailyMetric) -> dict[str, Any]:
        return {
            "metric_date": metric.metric_date.isoformat(),
            "leads_created": metric.leads_created,
            "leads_converted": metric.leads_converted,
            "conversion_rate": metric.conversion_rate,
            "responded_leads": metric.responded_leads,
            "avg_response_minutes": metric.avg_response_minutes,
            "responses_within_sla": metric.responses_within_sla,
            "total_estimated_value": metric.total_estimated_value,
        }
