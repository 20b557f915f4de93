from __future__ import annotations

import pytest

from leadflow.core.exceptions import ConfigurationError, ReferenceFailure
from leadflow.models.enums import JobState
from leadflow.tasks.hooks import after_task, before_task
from leadflow.tasks.schedules import (
    FIRE_TASK,
    SCHEDULES,
    SWEEP_TASK,
    RecurringSchedule,
    build_beat_schedule,
    fire,
    get_schedule,
    parse_cron,
)


def test_beat_schedule_covers_every_recurring_job():
    beat = build_beat_schedule()

    assert set(beat) == {schedule.name for schedule in SCHEDULES} | {"job-sweeper"}
    assert beat["daily-metrics"]["task"] == FIRE_TASK
    assert beat["daily-metrics"]["args"] == ("daily-metrics",)
    assert beat["job-sweeper"]["task"] == SWEEP_TASK


@pytest.mark.parametrize("expression", ["61 * * * *", "* * *", "* * * * * *"])
def test_invalid_cron_is_rejected(expression):
    with pytest.raises(ConfigurationError):
        parse_cron(expression)


def test_invalid_schedule_timezone_is_rejected():
    with pytest.raises(ConfigurationError):
        parse_cron("0 1 * * *", "Atlantis/Nowhere")


def test_schedule_with_unknown_domain_is_rejected():
    bogus = (RecurringSchedule("bogus", "* * * * *", "billing", "noop"),)
    with pytest.raises(ConfigurationError):
        build_beat_schedule(bogus)


def test_unknown_schedule_name():
    with pytest.raises(ReferenceFailure):
        get_schedule("nope")


def test_fire_reuses_pending_occurrence(dispatcher):
    first = fire(dispatcher, "daily-metrics")
    second = fire(dispatcher, "daily-metrics")

    assert first.id == second.id
    assert first.domain == "analytics"
    assert first.job_type == "daily_metrics"
    assert first.dedupe_key == "schedule:daily-metrics"
    assert first.state == JobState.WAITING.value


def test_fire_enqueues_again_after_previous_occurrence_finished(dispatcher):
    first = fire(dispatcher, "sequence-sweep")
    dispatcher.run_next("response")

    assert fire(dispatcher, "sequence-sweep").id != first.id


def test_task_hooks_build_start_and_finish_events():
    context = {"domain": "response", "trace_id": "abc123"}

    start = before_task("jobs.process_domain", context)
    finish = after_task("jobs.process_domain", context, status="succeeded", processed=2)

    assert start["event"] == "task.start"
    assert start["job_type"] == "jobs.process_domain"
    assert finish["status"] == "succeeded"
    assert finish["processed"] == 2
    assert finish["trace_id"] == "abc123"
