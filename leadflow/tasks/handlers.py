"""Job handlers, one per job type.

Each handler receives a ``HandlerContext`` and the claimed ``Job`` and returns a
``HandlerResult``. Retryable failures are raised; the dispatcher owns retries.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from leadflow.core.config import validate_timezone
from leadflow.core.exceptions import ExternalServiceFailure
from leadflow.core.logging import build_log_event
from leadflow.messaging.templates import get_template, is_business_hours, render, seconds_until_business_hours
from leadflow.messaging.transports import DeliveryReceipt, RenderedMessage
from leadflow.models.enums import Channel, InteractionType, JobDomain, LeadStatus
from leadflow.models.interaction import LeadInteraction
from leadflow.models.job import Job
from leadflow.models.lead import Lead
from leadflow.services.analytics_service import AnalyticsService
from leadflow.services.crm_sync_service import CrmSyncService
from leadflow.services.lead_service import CLOSURE_REASONS, LeadService
from leadflow.services.notification_service import NotificationService
from leadflow.services.sequence_service import SequenceService, select_sequence_type, template_for_step
from leadflow.services.sla_monitor import SlaMonitor
from leadflow.services.webhook_service import WebhookService
from leadflow.tasks.dispatcher import HandlerContext, HandlerResult, Rescheduled, Sent, Skipped

logger = logging.getLogger(__name__)

SEQUENCE_STEP_PRIORITY = 3
WEBHOOK_RETENTION_DAYS = 30


def _send_email(ctx: HandlerContext, lead: Lead, message: RenderedMessage) -> DeliveryReceipt:
    if ctx.transports is None:
        raise ExternalServiceFailure("No transports configured", service=Channel.EMAIL.value)
    return ctx.transports.get(Channel.EMAIL.value).send(lead.email, message, {"lead_id": lead.id})


def _record_email(leads: LeadService, lead: Lead, template: str, message: RenderedMessage, receipt: DeliveryReceipt, now: datetime) -> LeadInteraction:
    return leads.record_interaction(
        lead.id,
        InteractionType.EMAIL_SENT.value,
        now,
        automated=True,
        subject=message.subject,
        content=message.body,
        template_used=template,
        message_id=receipt.message_id,
    )


def _outside_business_hours(ctx: HandlerContext, template: str, now: datetime) -> Rescheduled | None:
    if not get_template(template).business_hours_only:
        return None
    tz = validate_timezone(ctx.config.SCHEDULER_TIMEZONE)
    if is_business_hours(now, tz):
        return None
    return Rescheduled(delay_seconds=seconds_until_business_hours(now, tz), reason="outside_business_hours")


def instant_response(ctx: HandlerContext, job: Job) -> HandlerResult:
    """First automated reply; the send counts as step 1 of the lead's sequence."""
    now = ctx.now()
    with ctx.session() as session:
        leads = LeadService(db=session)
        lead = leads.require_lead(job.payload["lead_id"])
        if lead.is_closed:
            return Skipped("lead_closed")
        already_sent = (
            session.query(LeadInteraction.id)
            .filter(
                LeadInteraction.lead_id == lead.id,
                LeadInteraction.interaction_type == InteractionType.EMAIL_SENT.value,
                LeadInteraction.automated.is_(True),
            )
            .first()
        )
        if already_sent is not None:
            return Skipped("already_responded")

        sequence_type = select_sequence_type(lead)
        template = template_for_step(sequence_type.value, 1)
        message = render(template, lead)
        receipt = _send_email(ctx, lead, message)
        interaction = _record_email(leads, lead, template, message, receipt, now)
        sequence = SequenceService(db=session).start_for_lead(lead.id, sequence_type, now, first_step_sent=True)
        logger.info(
            "response.instant_sent",
            extra=build_log_event(
                "response.instant_sent",
                ctx.log_context,
                template=template,
                minutes_since_created=lead.minutes_since_created(now),
            ),
        )
        return Sent(
            {
                "lead_id": lead.id,
                "template": template,
                "message_id": receipt.message_id,
                "interaction_id": interaction.id,
                "sequence_id": sequence.id,
            }
        )


def follow_up(ctx: HandlerContext, job: Job) -> HandlerResult:
    """One-off templated email outside any sequence."""
    now = ctx.now()
    template = job.payload["template"]
    with ctx.session() as session:
        leads = LeadService(db=session)
        lead = leads.require_lead(job.payload["lead_id"])
        if lead.is_closed:
            return Skipped("lead_closed")
        deferred = _outside_business_hours(ctx, template, now)
        if deferred is not None:
            return deferred
        message = render(template, lead)
        receipt = _send_email(ctx, lead, message)
        _record_email(leads, lead, template, message, receipt, now)
        return Sent({"lead_id": lead.id, "template": template, "message_id": receipt.message_id})


def sequence_sweep(ctx: HandlerContext, job: Job) -> HandlerResult:
    now = ctx.now()
    with ctx.session() as session:
        due = [(sequence.id, sequence.lead_id, sequence.current_step) for sequence in SequenceService(db=session).find_due(now)]
    for sequence_id, lead_id, step in due:
        ctx.dispatcher.enqueue(
            JobDomain.RESPONSE.value,
            "sequence_step",
            {"sequence_id": sequence_id, "lead_id": lead_id, "step": step},
            priority=SEQUENCE_STEP_PRIORITY,
            dedupe_key=f"sequence:{sequence_id}:step:{step}",
        )
    return Sent({"due": len(due)})


def sequence_step(ctx: HandlerContext, job: Job) -> HandlerResult:
    now = ctx.now()
    with ctx.session() as session:
        sequences = SequenceService(db=session)
        leads = LeadService(db=session)
        sequence = sequences.get(job.payload["sequence_id"])
        if not sequence.is_active:
            return Skipped("sequence_not_active", {"state": sequence.state})
        if sequence.current_step != job.payload.get("step", sequence.current_step):
            return Skipped("step_already_sent", {"current_step": sequence.current_step})

        lead = leads.require_lead(sequence.lead_id)
        if lead.is_closed:
            sequences.pause(sequence.id, CLOSURE_REASONS[lead.status], now)
            return Skipped("lead_closed")

        lookback = now - timedelta(hours=ctx.config.SEQUENCE_RESPONSE_LOOKBACK_HOURS)
        responded = (
            session.query(LeadInteraction.id)
            .filter(
                LeadInteraction.lead_id == lead.id,
                LeadInteraction.interaction_type == InteractionType.RESPONSE_RECEIVED.value,
                LeadInteraction.created_at >= lookback,
            )
            .first()
        )
        if responded is not None:
            sequences.pause(sequence.id, "customer_responded", now)
            return Skipped("customer_responded")

        template = template_for_step(sequence.sequence_type, sequence.current_step)
        if template is None:
            sequences.complete(sequence.id, now)
            return Skipped("sequence_finished")
        deferred = _outside_business_hours(ctx, template, now)
        if deferred is not None:
            return deferred

        step = sequence.current_step
        message = render(template, lead)
        receipt = _send_email(ctx, lead, message)
        _record_email(leads, lead, template, message, receipt, now)
        sequences.record_sent(sequence.id)
        sequence = sequences.advance(sequence.id, now)
        return Sent(
            {
                "sequence_id": sequence.id,
                "step": step,
                "template": template,
                "message_id": receipt.message_id,
                "state": sequence.state,
            }
        )


def _delivery_result(outcome: dict[str, Any], notification_id: int) -> HandlerResult:
    if outcome["status"] == "skipped":
        return Skipped(outcome["reason"], {"notification_id": notification_id})
    return Sent({"notification_id": notification_id, "degraded": outcome["degraded"]})


def high_value_alert(ctx: HandlerContext, job: Job) -> HandlerResult:
    now = ctx.now()
    with ctx.session() as session:
        lead = LeadService(db=session).require_lead(job.payload["lead_id"])
        notifications = NotificationService(db=session, transports=ctx.transports, config=ctx.config)
        notification = notifications.create_high_value_alert(lead, now)
        return _delivery_result(notifications.deliver(notification.id, now), notification.id)


def response_time_alert(ctx: HandlerContext, job: Job) -> HandlerResult:
    now = ctx.now()
    with ctx.session() as session:
        lead = LeadService(db=session).require_lead(job.payload["lead_id"])
        if lead.status != LeadStatus.NEW.value:
            return Skipped("lead_already_contacted", {"status": lead.status})
        notifications = NotificationService(db=session, transports=ctx.transports, config=ctx.config)
        notification_id = job.payload["notification_id"]
        return _delivery_result(notifications.deliver(notification_id, now), notification_id)


def deliver_notification(ctx: HandlerContext, job: Job) -> HandlerResult:
    now = ctx.now()
    with ctx.session() as session:
        notifications = NotificationService(db=session, transports=ctx.transports, config=ctx.config)
        notification_id = job.payload["notification_id"]
        return _delivery_result(notifications.deliver(notification_id, now), notification_id)


def sla_scan(ctx: HandlerContext, job: Job) -> HandlerResult:
    with ctx.session() as session:
        raised = SlaMonitor(db=session, dispatcher=ctx.dispatcher, config=ctx.config).scan_overdue(ctx.now())
    return Sent({"escalations": len(raised)})


def crm_sync(ctx: HandlerContext, job: Job) -> HandlerResult:
    with ctx.session() as session:
        outcome = CrmSyncService(db=session, config=ctx.config).sync_lead(job.payload["lead_id"])
    if outcome["status"] == "skipped":
        return Skipped(outcome["reason"])
    return Sent(outcome)


def webhook_replay(ctx: HandlerContext, job: Job) -> HandlerResult:
    with ctx.session() as session:
        summary = WebhookService(db=session, dispatcher=ctx.dispatcher, config=ctx.config).replay(
            job.payload.get("max_retries"), ctx.now()
        )
    return Sent(summary)


def daily_metrics(ctx: HandlerContext, job: Job) -> HandlerResult:
    target = job.payload.get("date")
    metric_date = date.fromisoformat(target) if target else (ctx.now() - timedelta(days=1)).date()
    with ctx.session() as session:
        analytics = AnalyticsService(db=session, config=ctx.config)
        metric, computed = analytics.rollup_day(metric_date, recalculate=bool(job.payload.get("recalculate")))
        if not computed:
            return Skipped("already_calculated", {"metric_date": metric_date.isoformat()})
        return Sent(analytics.to_dict(metric))


def response_time_metrics(ctx: HandlerContext, job: Job) -> HandlerResult:
    with ctx.session() as session:
        metrics = SlaMonitor(db=session, config=ctx.config).compute_metrics(ctx.now(), job.payload.get("window_hours"))
    for alert in metrics.alerts:
        logger.warning(
            "sla.alert",
            extra=build_log_event("sla.alert", ctx.log_context, alert_type=alert["type"], severity=alert["severity"], alert_message=alert["message"]),
        )
    return Sent(
        {
            "avg_response_minutes": metrics.avg_response_minutes,
            "within_sla_rate": metrics.within_sla_rate,
            "performance_grade": metrics.performance_grade,
            "alerts": len(metrics.alerts),
        }
    )


def maintenance_cleanup(ctx: HandlerContext, job: Job) -> HandlerResult:
    now = ctx.now()
    jobs_removed = ctx.dispatcher.cleanup(now)
    with ctx.session() as session:
        webhooks_removed = WebhookService(db=session, config=ctx.config).cleanup(
            job.payload.get("webhook_days", WEBHOOK_RETENTION_DAYS), now
        )
        notifications_removed = NotificationService(db=session, config=ctx.config).delete_expired_read(now)
    return Sent({"jobs": jobs_removed, "webhook_events": webhooks_removed, "notifications": notifications_removed})


HANDLERS = {
    "instant_response": instant_response,
    "follow_up": follow_up,
    "sequence_sweep": sequence_sweep,
    "sequence_step": sequence_step,
    "high_value_alert": high_value_alert,
    "response_time_alert": response_time_alert,
    "deliver_notification": deliver_notification,
    "sla_scan": sla_scan,
    "crm_sync": crm_sync,
    "webhook_replay": webhook_replay,
    "daily_metrics": daily_metrics,
    "response_time_metrics": response_time_metrics,
    "maintenance_cleanup": maintenance_cleanup,
}
