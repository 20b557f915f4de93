"""Celery application bootstrap."""

from __future__ import annotations

import os

from celery import Celery

from leadflow.core.config import get_config
from leadflow.models.enums import JobDomain
from leadflow.tasks.schedules import FIRE_TASK, SWEEP_TASK, build_beat_schedule

HOUSEKEEPING_QUEUE = "housekeeping"

config = get_config()

celery_app = Celery("leadflow", broker=config.CELERY_BROKER_URL, backend=config.CELERY_RESULT_BACKEND)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_ignore_result=True,
    task_default_queue=HOUSEKEEPING_QUEUE,
    # Domain lanes are chosen per call with apply_async(queue=domain).
    task_routes={
        SWEEP_TASK: {"queue": HOUSEKEEPING_QUEUE},
        FIRE_TASK: {"queue": HOUSEKEEPING_QUEUE},
    },
    task_create_missing_queues=True,
    worker_prefetch_multiplier=1,
    beat_schedule=build_beat_schedule(),
)

DOMAIN_QUEUES = tuple(domain.value for domain in JobDomain)

# Local/dev convenience: run tasks synchronously when requested.
if os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes", "on"}:
    celery_app.conf.task_always_eager = True
