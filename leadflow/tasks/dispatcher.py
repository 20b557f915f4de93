"""Priority job dispatcher backed by the persistent job table.

The ``jobs`` table is the source of truth for ordering, attempts and state.
Celery only carries wake-up signals: each domain has its own queue and worker
pool, and a woken worker drains eligible jobs through ``run_next``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from leadflow.core.config import Config, get_config
from leadflow.core.exceptions import ReferenceFailure, ValidationFailure, is_retryable
from leadflow.core.logging import LogContext, build_log_event
from leadflow.models.base import utcnow
from leadflow.models.enums import JobDomain, JobState
from leadflow.models.job import Job
from leadflow.tasks.registry import HandlerRegistry

logger = logging.getLogger(__name__)

CLAIM_BATCH = 10


@dataclass(frozen=True)
class DomainPolicy:
    concurrency: int
    priority: int
    max_attempts: int
    base_delay_seconds: int


DOMAIN_POLICIES: dict[str, DomainPolicy] = {
    JobDomain.RESPONSE.value: DomainPolicy(concurrency=10, priority=1, max_attempts=5, base_delay_seconds=2),
    JobDomain.NOTIFICATION.value: DomainPolicy(concurrency=10, priority=2, max_attempts=3, base_delay_seconds=2),
    JobDomain.SYNC.value: DomainPolicy(concurrency=3, priority=8, max_attempts=3, base_delay_seconds=5),
    JobDomain.ANALYTICS.value: DomainPolicy(concurrency=1, priority=9, max_attempts=3, base_delay_seconds=2),
}


@dataclass(frozen=True)
class Sent:
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rescheduled:
    delay_seconds: int
    reason: str | None = None


@dataclass(frozen=True)
class Skipped:
    reason: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    error: str
    retryable: bool = True


HandlerResult = Sent | Rescheduled | Skipped | Failed


@dataclass
class HandlerContext:
    """Collaborators handed to every job handler."""

    session_factory: sessionmaker
    dispatcher: "JobDispatcher"
    transports: Any
    config: Config
    clock: Callable[[], datetime]
    log_context: LogContext

    def session(self) -> Session:
        return self.session_factory()

    def now(self) -> datetime:
        return self.clock()


def _serialize_error(exc: BaseException) -> dict[str, Any]:
    to_payload = getattr(exc, "to_payload", None)
    if callable(to_payload):
        return to_payload()
    return {"type": exc.__class__.__name__, "message": str(exc)}


def _result_payload(result: HandlerResult) -> dict[str, Any]:
    if isinstance(result, Sent):
        return {"status": "sent", **result.detail}
    if isinstance(result, Skipped):
        return {"status": "skipped", "reason": result.reason, **result.detail}
    return {"status": type(result).__name__.lower()}


class JobDispatcher:
    """Enqueue, claim, run and account for jobs across the four domains."""

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: HandlerRegistry,
        transports: Any = None,
        config: Config | None = None,
        clock: Callable[[], datetime] = utcnow,
        waker: Callable[[str, int], None] | None = None,
        policies: dict[str, DomainPolicy] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.transports = transports
        self.config = config or get_config()
        self.clock = clock
        self.waker = waker
        self.policies = policies or DOMAIN_POLICIES
        self._listeners: list[Callable[[str, Job], None]] = []

    def add_listener(self, listener: Callable[[str, Job], None]) -> None:
        self._listeners.append(listener)

    def policy(self, domain: str) -> DomainPolicy:
        try:
            return self.policies[JobDomain(domain).value]
        except (ValueError, KeyError) as exc:
            raise ValidationFailure(f"Unknown job domain: {domain}", field="domain") from exc

    def _emit(self, event: str, job: Job, level: int = logging.INFO, **fields: Any) -> None:
        context = LogContext.for_job(job)
        logger.log(
            level,
            event,
            extra=build_log_event(event, context, priority=job.priority, attempts_made=job.attempts_made, **fields),
        )
        for listener in self._listeners:
            try:
                listener(event, job)
            except Exception:
                logger.exception("job.listener_failed", extra={"event": "job.listener_failed", "job_event": event})

    def _wake(self, domain: str, delay_seconds: int = 0) -> None:
        if self.waker is None:
            return
        try:
            self.waker(domain, max(0, int(delay_seconds)))
        except Exception:
            # The job row is durable; the sweeper wakes the lane later.
            logger.warning(
                "job.wake_failed",
                exc_info=True,
                extra={"event": "job.wake_failed", "domain": domain},
            )

    def enqueue(
        self,
        domain: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
        delay: int = 0,
        max_attempts: int | None = None,
        base_delay: int | None = None,
        dedupe_key: str | None = None,
    ) -> Job:
        policy = self.policy(domain)
        if delay < 0:
            raise ValidationFailure("delay must be >= 0", field="delay")
        if max_attempts is not None and max_attempts < 1:
            raise ValidationFailure("max_attempts must be >= 1", field="max_attempts")
        now = self.clock()

        with self.session_factory() as session:
            if dedupe_key:
                existing = session.scalars(
                    select(Job)
                    .where(
                        Job.dedupe_key == dedupe_key,
                        Job.state.in_([JobState.WAITING.value, JobState.ACTIVE.value]),
                    )
                    .order_by(Job.id.asc())
                    .limit(1)
                ).first()
                if existing is not None:
                    session.expunge(existing)
                    self._emit("job.deduplicated", existing, dedupe_key=dedupe_key)
                    return existing

            job = Job(
                domain=JobDomain(domain).value,
                job_type=job_type,
                payload=dict(payload or {}),
                priority=policy.priority if priority is None else priority,
                state=JobState.WAITING.value,
                attempts_made=0,
                max_attempts=max_attempts or policy.max_attempts,
                base_delay_seconds=policy.base_delay_seconds if base_delay is None else base_delay,
                scheduled_at=now + timedelta(seconds=delay),
                dedupe_key=dedupe_key,
                created_at=now,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            session.expunge(job)

        self._emit("job.enqueued", job, delay=delay)
        self._wake(job.domain, delay)
        return job

    def active_count(self, domain: str) -> int:
        with self.session_factory() as session:
            return session.scalar(
                select(func.count(Job.id)).where(Job.domain == domain, Job.state == JobState.ACTIVE.value)
            ) or 0

    def claim_next(self, domain: str, now: datetime | None = None) -> Job | None:
        """Atomically move the most urgent eligible job to ``active``."""
        policy = self.policy(domain)
        now = now or self.clock()
        with self.session_factory() as session:
            active = session.scalar(
                select(func.count(Job.id)).where(Job.domain == domain, Job.state == JobState.ACTIVE.value)
            ) or 0
            if active >= policy.concurrency:
                return None

            candidate_ids = session.scalars(
                select(Job.id)
                .where(Job.domain == domain, Job.state == JobState.WAITING.value, Job.scheduled_at <= now)
                .order_by(Job.priority.asc(), Job.scheduled_at.asc(), Job.id.asc())
                .limit(CLAIM_BATCH)
            ).all()
            for job_id in candidate_ids:
                claimed = session.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.state == JobState.WAITING.value)
                    .values(state=JobState.ACTIVE.value, started_at=now)
                )
                session.commit()
                if claimed.rowcount != 1:
                    continue
                job = session.get(Job, job_id)
                session.refresh(job)
                session.expunge(job)
                self._emit("job.active", job)
                return job
        return None

    def _finish(self, job: Job, **values: Any) -> bool:
        """Apply a post-run update only if this worker still owns the claim."""
        with self.session_factory() as session:
            updated = session.execute(
                update(Job)
                .where(Job.id == job.id, Job.state == JobState.ACTIVE.value, Job.started_at == job.started_at)
                .values(**values)
            )
            session.commit()
        if updated.rowcount != 1:
            logger.warning(
                "job.claim_lost",
                extra=build_log_event("job.claim_lost", LogContext.for_job(job)),
            )
            return False
        for key, value in values.items():
            setattr(job, key, value)
        return True

    def _complete(self, job: Job, result: HandlerResult, now: datetime) -> Job:
        payload = _result_payload(result)
        if self._finish(job, state=JobState.COMPLETED.value, result=payload, finished_at=now):
            self._emit("job.completed", job, outcome=payload.get("status"), reason=payload.get("reason"))
        return job

    def _reschedule(self, job: Job, result: Rescheduled, now: datetime) -> Job:
        delay = max(0, int(result.delay_seconds))
        scheduled_at = now + timedelta(seconds=delay)
        if self._finish(job, state=JobState.WAITING.value, scheduled_at=scheduled_at, started_at=None):
            self._emit("job.rescheduled", job, delay=delay, reason=result.reason)
            self._wake(job.domain, delay)
        return job

    def _fail(self, job: Job, error: dict[str, Any], now: datetime) -> Job:
        if self._finish(
            job,
            state=JobState.FAILED.value,
            attempts_made=job.attempts_made + 1,
            last_error=error,
            finished_at=now,
        ):
            self._emit("job.failed", job, level=logging.ERROR, error=error)
        return job

    def _retry_or_fail(self, job: Job, error: dict[str, Any], now: datetime) -> Job:
        attempts = job.attempts_made + 1
        if attempts >= job.max_attempts:
            return self._fail(job, error, now)

        delay = job.backoff_delay(attempts)
        if self._finish(
            job,
            state=JobState.WAITING.value,
            attempts_made=attempts,
            last_error=error,
            scheduled_at=now + timedelta(seconds=delay),
            started_at=None,
        ):
            self._emit("job.retry_scheduled", job, level=logging.WARNING, delay=delay, error=error)
            self._wake(job.domain, delay)
        return job

    def build_context(self, job: Job) -> HandlerContext:
        return HandlerContext(
            session_factory=self.session_factory,
            dispatcher=self,
            transports=self.transports,
            config=self.config,
            clock=self.clock,
            log_context=LogContext.for_job(job),
        )

    def run_next(self, domain: str, now: datetime | None = None) -> Job | None:
        """Claim one job, run its handler, and apply the outcome."""
        job = self.claim_next(domain, now)
        if job is None:
            return None

        try:
            handler = self.registry.get(job.job_type)
        except KeyError as exc:
            return self._fail(job, {"type": "UnknownJobType", "message": str(exc)}, now or self.clock())

        try:
            result = handler(self.build_context(job), job)
        except Exception as exc:
            finished = now or self.clock()
            error = _serialize_error(exc)
            if is_retryable(exc):
                logger.warning(
                    "job.handler_error",
                    exc_info=True,
                    extra=build_log_event("job.handler_error", LogContext.for_job(job), error=error),
                )
                return self._retry_or_fail(job, error, finished)
            return self._fail(job, error, finished)

        finished = now or self.clock()
        if isinstance(result, (Sent, Skipped)):
            return self._complete(job, result, finished)
        if isinstance(result, Rescheduled):
            return self._reschedule(job, result, finished)
        if isinstance(result, Failed):
            error = {"type": "HandlerFailed", "message": result.error}
            if result.retryable:
                return self._retry_or_fail(job, error, finished)
            return self._fail(job, error, finished)
        return self._fail(
            job,
            {"type": "InvalidHandlerResult", "message": f"{job.job_type} returned {type(result).__name__}"},
            finished,
        )

    def drain(self, domain: str, now: datetime | None = None, limit: int = 100) -> list[Job]:
        """Run jobs until none is eligible or ``limit`` is reached."""
        processed: list[Job] = []
        while len(processed) < limit:
            job = self.run_next(domain, now)
            if job is None:
                break
            processed.append(job)
        return processed

    def recover_stalled(self, now: datetime | None = None) -> list[int]:
        """Return active jobs whose worker went silent to ``waiting``."""
        now = now or self.clock()
        cutoff = now - timedelta(seconds=self.config.JOB_STALL_TIMEOUT_SECONDS)
        recovered: list[Job] = []
        with self.session_factory() as session:
            stalled = session.scalars(
                select(Job).where(Job.state == JobState.ACTIVE.value, Job.started_at < cutoff).order_by(Job.id.asc())
            ).all()
            for job in stalled:
                moved = session.execute(
                    update(Job)
                    .where(Job.id == job.id, Job.state == JobState.ACTIVE.value, Job.started_at == job.started_at)
                    .values(state=JobState.WAITING.value, started_at=None, scheduled_at=now)
                )
                session.commit()
                if moved.rowcount == 1:
                    session.refresh(job)
                    session.expunge(job)
                    recovered.append(job)

        for job in recovered:
            self._emit("job.stalled", job, level=logging.WARNING)
            self._wake(job.domain)
        return [job.id for job in recovered]

    def eligible_domains(self, now: datetime | None = None) -> list[str]:
        now = now or self.clock()
        with self.session_factory() as session:
            domains = session.scalars(
                select(Job.domain)
                .where(Job.state == JobState.WAITING.value, Job.scheduled_at <= now)
                .distinct()
            ).all()
        return sorted(domains)

    def get_job(self, job_id: int) -> Job:
        with self.session_factory() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise ReferenceFailure("job", job_id)
            session.expunge(job)
            return job

    def get_queue_stats(self) -> dict[str, dict[str, int]]:
        stats = {
            domain.value: {state.value: 0 for state in JobState} | {"total": 0}
            for domain in JobDomain
        }
        with self.session_factory() as session:
            rows = session.execute(
                select(Job.domain, Job.state, func.count(Job.id)).group_by(Job.domain, Job.state)
            ).all()
        for domain, state, count in rows:
            bucket = stats.setdefault(domain, {s.value: 0 for s in JobState} | {"total": 0})
            bucket[state] = count
            bucket["total"] += count
        return stats

    def cleanup(
        self,
        now: datetime | None = None,
        completed_ttl: timedelta = timedelta(hours=24),
        failed_ttl: timedelta = timedelta(days=7),
    ) -> dict[str, int]:
        now = now or self.clock()
        removed: dict[str, int] = {}
        with self.session_factory() as session:
            for state, ttl in ((JobState.COMPLETED, completed_ttl), (JobState.FAILED, failed_ttl)):
                deleted = session.execute(
                    Job.__table__.delete().where(Job.state == state.value, Job.finished_at < now - ttl)
                )
                removed[state.value] = deleted.rowcount or 0
            session.commit()
        logger.info("job.cleanup", extra={"event": "job.cleanup", **removed})
        return removed
