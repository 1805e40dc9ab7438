import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from conftest import make_automation
from executor.graph_executor import RunOutcome
from models.enrollment import Enrollment, EnrollmentStatus
from scheduler.enrollment_runner import EnrollmentRunner
from run_once import load_definitions

WAIT_THEN_TAG = [
    {"id": "wait", "type": "wait", "config": {"duration": 1, "unit": "hours"}, "next_action_id": "tag"},
    {"id": "tag", "type": "add_tag", "config": {"tag_name": "done"}},
]


@pytest.mark.asyncio
async def test_tick_resumes_due_waits(engine, publish, collaborators, clock):
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"allow_reentry": True}))
    first = engine.manager.enroll(automation.id, "c1").enrollment
    second = engine.manager.enroll(automation.id, "c2").enrollment

    report = await engine.scheduler.tick()
    assert report.due == 2
    assert {o.status for o in report.outcomes} == {"waiting"}

    # Nothing is due until the wait expires
    report = await engine.scheduler.tick()
    assert report.due == 0

    clock.advance(hours=1)
    report = await engine.scheduler.tick()
    assert report.due == 2
    assert {o.status for o in report.outcomes} == {"completed"}
    assert collaborators["add_tag"].call_count == 2
    assert engine.enrollments.get(first.id).status == EnrollmentStatus.COMPLETED
    assert engine.enrollments.get(second.id).status == EnrollmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_scheduler_never_moves_resume_at(engine, publish, clock):
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"active_hours_start": "09:00", "active_hours_end": "11:30"}))
    enrollment = engine.manager.enroll(automation.id, "c1").enrollment
    await engine.scheduler.tick()
    waiting = engine.enrollments.get(enrollment.id)
    resume_at = waiting.resume_at
    assert resume_at == clock.now + timedelta(hours=1)

    # 12:00 is after the window closes: the enrollment is deferred, not run
    clock.advance(hours=2)
    report = await engine.scheduler.tick()
    deferred = engine.enrollments.get(enrollment.id)
    assert report.due == 0
    assert deferred.resume_at == resume_at
    assert deferred.not_before == datetime(2024, 1, 4, 9, 0, tzinfo=timezone.utc)
    assert deferred.status == EnrollmentStatus.WAITING

    clock.now = datetime(2024, 1, 4, 9, 0, tzinfo=timezone.utc)
    report = await engine.scheduler.tick()
    assert [o.status for o in report.outcomes] == ["completed"]


@pytest.mark.asyncio
async def test_date_based_trigger_fires_once_per_occurrence(engine, publish, audiences, collaborators, clock):
    automation = publish(make_automation(
        [{"id": "tag", "type": "add_tag", "config": {"tag_name": "monday"}}],
        trigger={"type": "date_based", "config": {"schedule": {"type": "recurring", "time": "09:00", "day_of_week": [4]}}},
        settings={"allow_reentry": True},
    ))
    audiences.audiences[automation.id] = [{"id": "c1", "email": "a@example.com"}, {"id": "c2"}]

    # Wednesday 10:00: next Thursday 09:00 not reached yet
    assert (await engine.scheduler.tick()).triggers_fired == 0

    clock.now = datetime(2024, 1, 4, 9, 0, 30, tzinfo=timezone.utc)
    report = await engine.scheduler.tick()
    assert report.triggers_fired == 1
    assert report.enrolled == 2
    assert collaborators["add_tag"].call_count == 2

    clock.advance(minutes=1)
    assert (await engine.scheduler.tick()).triggers_fired == 0
    assert collaborators["add_tag"].call_count == 2


@pytest.mark.asyncio
async def test_one_off_date_trigger(engine, publish, audiences, clock):
    automation = publish(make_automation(
        [{"id": "tag", "type": "add_tag", "config": {"tag_name": "launch"}}],
        trigger={"type": "date_based", "config": {"schedule": {"type": "once", "date": "2024-01-05T12:00:00+00:00"}}},
    ))
    audiences.audiences[automation.id] = [{"id": "c1"}]

    clock.now = datetime(2024, 1, 5, 12, 1, tzinfo=timezone.utc)
    assert (await engine.scheduler.tick()).enrolled == 1
    clock.advance(days=1)
    assert (await engine.scheduler.tick()).triggers_fired == 0


@pytest.mark.asyncio
async def test_runner_runs_each_enrollment_once_per_batch():
    executor = MagicMock()
    executor.run = AsyncMock(side_effect=lambda enrollment_id, owner=None: RunOutcome(enrollment_id=enrollment_id, status="completed"))
    runner = EnrollmentRunner(executor, workers=2)
    enrollment = Enrollment(id="e1", automation_id="a1", entity_id="c1")

    outcomes = await runner.run_batch([enrollment, enrollment, Enrollment(id="e2", automation_id="a1", entity_id="c2")])

    assert [o.enrollment_id for o in outcomes] == ["e1", "e2"]
    assert executor.run.await_count == 2


@pytest.mark.asyncio
async def test_runner_skips_enrollment_already_in_flight():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_run(enrollment_id, owner=None):
        started.set()
        await release.wait()
        return RunOutcome(enrollment_id=enrollment_id, status="completed")

    executor = MagicMock()
    executor.run = AsyncMock(side_effect=slow_run)
    runner = EnrollmentRunner(executor)

    first = asyncio.create_task(runner.run_one("e1"))
    await started.wait()
    second = await runner.run_one("e1")
    release.set()

    assert second.status == "skipped"
    assert (await first).status == "completed"
    assert executor.run.await_count == 1


@pytest.mark.asyncio
async def test_runner_contains_crashes():
    executor = MagicMock()
    executor.run = AsyncMock(side_effect=RuntimeError("boom"))
    runner = EnrollmentRunner(executor)

    outcome = await runner.run_one("e1")

    assert outcome.status == "error"
    assert runner.in_flight == 0


@pytest.mark.asyncio
async def test_scheduler_loop_start_stop(engine):
    engine.scheduler.interval = 0.01
    engine.scheduler.tick = AsyncMock(side_effect=lambda: engine.scheduler.stop())

    await asyncio.wait_for(engine.scheduler.start(), timeout=1)

    engine.scheduler.tick.assert_awaited_once()
    assert engine.scheduler.running is False


@pytest.mark.asyncio
async def test_one_shot_run_fires_occurrence_due_since_last_interval(engine, audiences, collaborators, clock):
    payload = make_automation(
        [{"id": "tag", "type": "add_tag", "config": {"tag_name": "newsletter"}}],
        trigger={"type": "date_based", "config": {"schedule": {"type": "once", "date": "2024-01-03T09:59:30+00:00"}}},
        id="newsletter",
    )
    audiences.audiences["newsletter"] = [{"id": "c1"}]

    assert load_definitions(engine, [payload], lookback_seconds=60) == 1
    report = await engine.scheduler.tick()

    assert report.triggers_fired == 1
    assert report.enrolled == 1
    assert collaborators["add_tag"].call_count == 1


@pytest.mark.asyncio
async def test_schedule_before_publication_does_not_fire_without_rewind(engine, publish, audiences, clock):
    automation = publish(make_automation(
        [{"id": "tag", "type": "add_tag", "config": {"tag_name": "newsletter"}}],
        trigger={"type": "date_based", "config": {"schedule": {"type": "once", "date": "2024-01-03T09:59:30+00:00"}}},
    ))
    audiences.audiences[automation.id] = [{"id": "c1"}]

    assert (await engine.scheduler.tick()).triggers_fired == 0
