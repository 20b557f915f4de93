from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from leadflow.core.exceptions import ExternalServiceFailure, ValidationFailure
from leadflow.models.enums import JobState
from leadflow.tasks.dispatcher import DOMAIN_POLICIES, DomainPolicy, Failed, JobDispatcher, Rescheduled, Sent, Skipped
from leadflow.tasks.registry import HandlerRegistry


def _dispatcher(session_factory, config, clock, handlers, policies=None, waker=None):
    registry = HandlerRegistry()
    for job_type, handler in handlers.items():
        registry.register(job_type, handler)
    return JobDispatcher(
        session_factory=session_factory,
        registry=registry,
        config=config,
        clock=clock,
        waker=waker,
        policies=policies,
    )


def test_lower_priority_number_runs_first(session_factory, config, clock):
    seen = []
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: seen.append(job.priority) or Sent()})
    dispatcher.enqueue("response", "noop", priority=5)
    dispatcher.enqueue("response", "noop", priority=1)
    dispatcher.enqueue("response", "noop", priority=3)

    dispatcher.drain("response")

    assert seen == [1, 3, 5]


def test_equal_priority_is_fifo(session_factory, config, clock):
    seen = []
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: seen.append(job.payload["n"]) or Sent()})
    for n in range(3):
        dispatcher.enqueue("notification", "noop", {"n": n}, priority=2)

    dispatcher.drain("notification")

    assert seen == [0, 1, 2]


def test_delayed_job_is_not_eligible_early(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: Sent()})
    dispatcher.enqueue("sync", "noop", delay=30)

    assert dispatcher.run_next("sync") is None
    clock.advance(seconds=30)
    assert dispatcher.run_next("sync").state == JobState.COMPLETED.value


def test_retryable_failure_backs_off_then_fails_terminally(session_factory, config, clock):
    calls = []

    def flaky(ctx, job):
        calls.append(ctx.now())
        raise ExternalServiceFailure("smtp timeout", service="email")

    dispatcher = _dispatcher(session_factory, config, clock, {"flaky": flaky})
    job = dispatcher.enqueue("response", "flaky", max_attempts=3, base_delay=2)

    first = dispatcher.run_next("response")
    assert first.state == JobState.WAITING.value
    assert first.attempts_made == 1
    assert first.scheduled_at == NOW + timedelta(seconds=2)
    assert dispatcher.run_next("response") is None

    clock.advance(seconds=2)
    second = dispatcher.run_next("response")
    assert second.attempts_made == 2
    assert second.scheduled_at == NOW + timedelta(seconds=6)

    clock.advance(seconds=4)
    third = dispatcher.run_next("response")
    assert third.state == JobState.FAILED.value
    assert third.attempts_made == 3

    stored = dispatcher.get_job(job.id)
    assert stored.last_error["service"] == "email"
    assert dispatcher.get_queue_stats()["response"]["failed"] == 1
    assert len(calls) == 3


def test_non_retryable_error_fails_on_first_attempt(session_factory, config, clock):
    def invalid(ctx, job):
        raise ValidationFailure("bad payload", field="lead_id")

    dispatcher = _dispatcher(session_factory, config, clock, {"invalid": invalid})
    dispatcher.enqueue("response", "invalid")

    job = dispatcher.run_next("response")

    assert job.state == JobState.FAILED.value
    assert job.attempts_made == 1
    assert job.last_error == {"type": "ValidationFailure", "message": "bad payload", "field": "lead_id"}


def test_failed_result_honours_retryable_flag(session_factory, config, clock):
    dispatcher = _dispatcher(
        session_factory,
        config,
        clock,
        {
            "soft": lambda ctx, job: Failed("try later"),
            "hard": lambda ctx, job: Failed("give up", retryable=False),
        },
    )
    dispatcher.enqueue("sync", "soft")
    dispatcher.enqueue("sync", "hard")

    soft = dispatcher.run_next("sync")
    hard = dispatcher.run_next("sync")

    assert soft.state == JobState.WAITING.value
    assert hard.state == JobState.FAILED.value
    assert hard.last_error["message"] == "give up"


def test_rescheduled_result_keeps_attempt_count(session_factory, config, clock):
    dispatcher = _dispatcher(
        session_factory, config, clock, {"later": lambda ctx, job: Rescheduled(3600, "outside_business_hours")}
    )
    dispatcher.enqueue("response", "later")

    job = dispatcher.run_next("response")

    assert job.state == JobState.WAITING.value
    assert job.attempts_made == 0
    assert job.scheduled_at == NOW + timedelta(hours=1)
    assert job.started_at is None


def test_skipped_result_completes_with_reason(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {"skip": lambda ctx, job: Skipped("lead_closed")})
    dispatcher.enqueue("response", "skip")

    job = dispatcher.run_next("response")

    assert job.state == JobState.COMPLETED.value
    assert job.result == {"status": "skipped", "reason": "lead_closed"}


def test_concurrency_limit_blocks_claims(session_factory, config, clock):
    policies = dict(DOMAIN_POLICIES)
    policies["analytics"] = DomainPolicy(concurrency=1, priority=9, max_attempts=3, base_delay_seconds=2)
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: Sent()}, policies=policies)
    dispatcher.enqueue("analytics", "noop")
    dispatcher.enqueue("analytics", "noop")

    claimed = dispatcher.claim_next("analytics")

    assert claimed is not None
    assert dispatcher.claim_next("analytics") is None
    assert dispatcher.active_count("analytics") == 1


def test_dedupe_key_reuses_pending_job(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: Sent()})
    first = dispatcher.enqueue("analytics", "noop", dedupe_key="schedule:daily")
    second = dispatcher.enqueue("analytics", "noop", dedupe_key="schedule:daily")
    assert second.id == first.id

    dispatcher.drain("analytics")
    third = dispatcher.enqueue("analytics", "noop", dedupe_key="schedule:daily")
    assert third.id != first.id


def test_stalled_active_job_is_recovered(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: Sent()})
    job = dispatcher.enqueue("sync", "noop")
    dispatcher.claim_next("sync")

    assert dispatcher.recover_stalled(NOW + timedelta(seconds=60)) == []
    assert dispatcher.recover_stalled(NOW + timedelta(seconds=301)) == [job.id]
    assert dispatcher.get_job(job.id).state == JobState.WAITING.value


def test_unknown_job_type_fails(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {})
    dispatcher.enqueue("sync", "missing")

    job = dispatcher.run_next("sync")

    assert job.state == JobState.FAILED.value
    assert job.last_error["type"] == "UnknownJobType"


def test_unknown_domain_is_rejected(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {})
    with pytest.raises(ValidationFailure):
        dispatcher.enqueue("billing", "noop")


def test_waker_failure_keeps_job(session_factory, config, clock):
    def broken_waker(domain, delay):
        raise ConnectionError("broker down")

    dispatcher = _dispatcher(session_factory, config, clock, {}, waker=broken_waker)
    job = dispatcher.enqueue("notification", "noop")

    assert dispatcher.get_job(job.id).state == JobState.WAITING.value
    assert dispatcher.eligible_domains() == ["notification"]


def test_listeners_observe_lifecycle(session_factory, config, clock):
    events = []
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: Sent({"ok": True})})
    dispatcher.add_listener(lambda event, job: events.append(event))
    dispatcher.enqueue("response", "noop")

    dispatcher.drain("response")

    assert events == ["job.enqueued", "job.active", "job.completed"]


def test_cleanup_removes_old_finished_jobs(session_factory, config, clock):
    dispatcher = _dispatcher(session_factory, config, clock, {"noop": lambda ctx, job: Sent()})
    dispatcher.enqueue("analytics", "noop")
    dispatcher.drain("analytics")

    assert dispatcher.cleanup(NOW + timedelta(hours=1)) == {"completed": 0, "failed": 0}
    assert dispatcher.cleanup(NOW + timedelta(hours=25)) == {"completed": 1, "failed": 0}
