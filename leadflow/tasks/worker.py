"""Celery worker entrypoint and task definitions.

Run one worker per domain lane, for example::

    celery -A leadflow.tasks.worker worker -Q response -c 10
    celery -A leadflow.tasks.worker worker -Q housekeeping -c 1
    celery -A leadflow.tasks.worker beat
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from celery.signals import worker_process_init, worker_process_shutdown

from leadflow.core.config import Config, get_config
from leadflow.core.startup import bootstrap
from leadflow.database.db import get_session_factory
from leadflow.messaging.transports import TransportSettings, Transports, build_transports
from leadflow.tasks.celery_app import DOMAIN_QUEUES, celery_app
from leadflow.tasks.dispatcher import JobDispatcher
from leadflow.tasks.hooks import after_task, before_task
from leadflow.tasks.registry import build_default_registry
from leadflow.tasks.schedules import FIRE_TASK, SWEEP_TASK, fire
from leadflow.utils.ids import new_trace_id

logger = logging.getLogger(__name__)

app = celery_app

DRAIN_LIMIT = 100


def celery_waker(domain: str, delay_seconds: int) -> None:
    process_domain.apply_async(args=(domain,), queue=domain, countdown=delay_seconds or None)


def build_dispatcher(
    transports: Transports | None = None,
    session_factory=None,
    config: Config | None = None,
    waker=celery_waker,
) -> JobDispatcher:
    return JobDispatcher(
        session_factory=session_factory or get_session_factory(),
        registry=build_default_registry(),
        transports=transports,
        config=config or get_config(),
        waker=waker,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> JobDispatcher:
    """Process-wide dispatcher with started transports."""
    config = get_config()
    transports = build_transports(TransportSettings.from_config(config))
    transports.start()
    return build_dispatcher(transports=transports, config=config)


@worker_process_init.connect
def _start_worker_process(**_: Any) -> None:
    bootstrap()
    get_dispatcher()


@worker_process_shutdown.connect
def _stop_worker_process(**_: Any) -> None:
    if get_dispatcher.cache_info().currsize:
        transports = get_dispatcher().transports
        if transports is not None:
            transports.shutdown()


@celery_app.task(name="jobs.process_domain")
def process_domain(domain: str) -> dict[str, Any]:
    """Drain eligible jobs of one domain lane."""
    context = {"domain": domain, "trace_id": new_trace_id()}
    logger.info("task.start", extra=before_task("jobs.process_domain", context))
    processed = get_dispatcher().drain(domain, limit=DRAIN_LIMIT)
    logger.info(
        "task.finish",
        extra=after_task("jobs.process_domain", context, status="succeeded", processed=len(processed)),
    )
    return {"domain": domain, "processed": len(processed)}


@celery_app.task(name=SWEEP_TASK)
def sweep() -> dict[str, Any]:
    """Recover stalled jobs and wake every lane with eligible work."""
    context = {"trace_id": new_trace_id()}
    logger.info("task.start", extra=before_task(SWEEP_TASK, context))
    dispatcher = get_dispatcher()
    recovered = dispatcher.recover_stalled()
    woken = [domain for domain in dispatcher.eligible_domains() if domain in DOMAIN_QUEUES]
    for domain in woken:
        celery_waker(domain, 0)
    logger.info("task.finish", extra=after_task(SWEEP_TASK, context, status="succeeded", recovered=len(recovered), woken=woken))
    return {"recovered": recovered, "woken": woken}


@celery_app.task(name=FIRE_TASK)
def fire_schedule(name: str) -> dict[str, Any]:
    job = fire(get_dispatcher(), name)
    return {"schedule": name, "job_id": job.id}
