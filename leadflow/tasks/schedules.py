"""Recurring job declarations and their Celery beat translation.

Beat never runs work itself: each entry fires ``schedules.fire`` which only
enqueues the declared job into the dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from celery.schedules import ParseException, crontab

from leadflow.core.config import validate_timezone
from leadflow.core.exceptions import ConfigurationError, ReferenceFailure
from leadflow.models.enums import JobDomain

logger = logging.getLogger(__name__)

SWEEP_TASK = "jobs.sweep"
FIRE_TASK = "schedules.fire"


@dataclass(frozen=True)
class RecurringSchedule:
    name: str
    cron: str
    domain: str
    job_type: str
    timezone: str = "UTC"
    payload: dict[str, Any] = field(default_factory=dict)


SCHEDULES: tuple[RecurringSchedule, ...] = (
    RecurringSchedule("daily-metrics", "0 1 * * *", JobDomain.ANALYTICS.value, "daily_metrics", "America/New_York"),
    RecurringSchedule(
        "response-time-metrics",
        "*/15 6-22 * * 1-5",
        JobDomain.ANALYTICS.value,
        "response_time_metrics",
        "America/New_York",
    ),
    RecurringSchedule("sla-overdue-scan", "* * * * *", JobDomain.NOTIFICATION.value, "sla_scan"),
    RecurringSchedule("sequence-sweep", "*/5 * * * *", JobDomain.RESPONSE.value, "sequence_sweep"),
    RecurringSchedule("webhook-replay", "*/10 * * * *", JobDomain.SYNC.value, "webhook_replay"),
    RecurringSchedule(
        "maintenance-cleanup",
        "30 3 * * *",
        JobDomain.ANALYTICS.value,
        "maintenance_cleanup",
        "America/New_York",
    ),
)


def get_schedule(name: str, schedules: tuple[RecurringSchedule, ...] = SCHEDULES) -> RecurringSchedule:
    for schedule in schedules:
        if schedule.name == name:
            return schedule
    raise ReferenceFailure("schedule", name)


def parse_cron(expression: str, timezone: str = "UTC") -> crontab:
    """Build a timezone-aware ``crontab`` from a five-field expression."""
    fields = expression.split()
    if len(fields) != 5:
        raise ConfigurationError(f"Cron expression must have 5 fields: {expression!r}")
    tz = validate_timezone(timezone)
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        return crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
            nowfun=lambda: datetime.now(tz),
        )
    except (ValueError, ParseException) as exc:
        raise ConfigurationError(f"Invalid cron expression {expression!r}: {exc}") from exc


def build_beat_schedule(schedules: tuple[RecurringSchedule, ...] = SCHEDULES) -> dict[str, dict[str, Any]]:
    beat: dict[str, dict[str, Any]] = {}
    for schedule in schedules:
        if schedule.domain not in {domain.value for domain in JobDomain}:
            raise ConfigurationError(f"Schedule {schedule.name} targets unknown domain {schedule.domain}")
        beat[schedule.name] = {
            "task": FIRE_TASK,
            "schedule": parse_cron(schedule.cron, schedule.timezone),
            "args": (schedule.name,),
        }
    beat["job-sweeper"] = {"task": SWEEP_TASK, "schedule": parse_cron("* * * * *")}
    return beat


def fire(dispatcher, name: str, schedules: tuple[RecurringSchedule, ...] = SCHEDULES):
    """Enqueue one occurrence; a still-pending previous occurrence is reused."""
    schedule = get_schedule(name, schedules)
    job = dispatcher.enqueue(
        schedule.domain,
        schedule.job_type,
        dict(schedule.payload),
        dedupe_key=f"schedule:{schedule.name}",
    )
    logger.info(
        "schedule.fired",
        extra={"event": "schedule.fired", "schedule": schedule.name, "job_id": job.id, "domain": schedule.domain},
    )
    return job
