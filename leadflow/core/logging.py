"""Structured log payloads for dispatcher jobs, Celery tasks and services.

Every payload carries the same keys so job logs can be joined on
``job_id``/``lead_id`` regardless of which layer emitted them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class LogContext:
    domain: str | None = None
    job_id: int | None = None
    job_type: str | None = None
    lead_id: int | None = None
    trace_id: str | None = None

    @classmethod
    def for_job(cls, job: Any) -> "LogContext":
        """Context for a persisted job; the lead comes from its payload."""
        return cls(
            domain=job.domain,
            job_id=job.id,
            job_type=job.job_type,
            lead_id=(job.payload or {}).get("lead_id"),
        )


def build_log_event(event: str, context: LogContext | None = None, **fields: Any) -> dict[str, Any]:
    context = context or LogContext()
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "domain": context.domain,
        "job_id": context.job_id,
        "job_type": context.job_type,
        "lead_id": context.lead_id,
        "trace_id": context.trace_id,
    }
    payload.update(fields)
    return payload
