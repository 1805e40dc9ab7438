import pytest
from datetime import timedelta

from conftest import make_automation
from executor.errors import EnrollmentNotFoundError
from models.enrollment import EnrollmentStatus, RejectionReason

WAIT_THEN_TAG = [
    {"id": "wait", "type": "wait", "config": {"duration": 1, "unit": "days"}, "next_action_id": "tag"},
    {"id": "tag", "type": "add_tag", "config": {"tag_name": "done"}},
]


def test_enroll_starts_at_entry_action(engine, publish, contact):
    automation = publish(make_automation(WAIT_THEN_TAG))
    result = engine.manager.enroll(automation.id, "c1", snapshot=contact)

    assert result.accepted
    assert result.enrollment.status == EnrollmentStatus.PENDING
    assert result.enrollment.current_action_id == "wait"
    assert engine.logs.counter(automation.id, "total_executions") == 1


def test_rejects_missing_and_inactive_automations(engine, contact):
    assert engine.manager.enroll("missing", "c1").rejected_reason == RejectionReason.AUTOMATION_NOT_FOUND

    draft = engine.service.create(make_automation(WAIT_THEN_TAG))
    result = engine.manager.enroll(draft.id, "c1")
    assert result.rejected_reason == RejectionReason.AUTOMATION_NOT_ACTIVE
    assert engine.logs.stats(draft.id).rejected_enrollments == {"automation_not_active": 1}


def test_live_enrollment_blocks_second_one(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG))
    assert engine.manager.enroll(automation.id, "c1").accepted

    second = engine.manager.enroll(automation.id, "c1")

    assert second.rejected_reason == RejectionReason.ALREADY_ENROLLED
    assert len(engine.manager.enrollment_state(automation.id, "c1")) == 1
    assert engine.logs.counter(automation.id, "total_executions") == 1


def test_finished_enrollment_suppresses_reentry_by_default(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG))
    first = engine.manager.enroll(automation.id, "c1").enrollment
    engine.manager.terminate(first.id, "done", EnrollmentStatus.COMPLETED)

    assert engine.manager.enroll(automation.id, "c1").rejected_reason == RejectionReason.REENTRY_SUPPRESSED


def test_reentry_delay(engine, publish, clock):
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"allow_reentry": True, "reentry_delay_hours": 24}))
    first = engine.manager.enroll(automation.id, "c1").enrollment
    engine.manager.terminate(first.id, "done", EnrollmentStatus.COMPLETED)

    clock.advance(hours=23)
    assert engine.manager.enroll(automation.id, "c1").rejected_reason == RejectionReason.REENTRY_SUPPRESSED

    clock.advance(hours=2)
    assert engine.manager.enroll(automation.id, "c1").accepted


def test_allow_reentry_without_delay_permits_overlap(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"allow_reentry": True}))
    assert engine.manager.enroll(automation.id, "c1").accepted
    assert engine.manager.enroll(automation.id, "c1").accepted
    assert engine.manager.active_count(automation.id) == 2


def test_max_executions(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"max_executions": 2}))
    assert engine.manager.enroll(automation.id, "c1").accepted
    assert engine.manager.enroll(automation.id, "c2").accepted

    third = engine.manager.enroll(automation.id, "c3")

    assert third.rejected_reason == RejectionReason.MAX_EXECUTIONS_REACHED
    assert engine.logs.stats(automation.id).rejected_enrollments["max_executions_reached"] == 1


def test_find_due_returns_pending_and_expired_waits(engine, publish, clock):
    automation = publish(make_automation(WAIT_THEN_TAG))
    pending = engine.manager.enroll(automation.id, "c1").enrollment

    waiting = engine.manager.enroll(automation.id, "c2").enrollment
    waiting.status = EnrollmentStatus.WAITING
    waiting.resume_at = clock.now + timedelta(hours=2)
    engine.enrollments.save(waiting)

    assert [e.id for e in engine.manager.find_due()] == [pending.id]

    clock.advance(hours=3)
    assert {e.id for e in engine.manager.find_due()} == {pending.id, waiting.id}


def test_find_due_skips_paused_automations(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG))
    engine.manager.enroll(automation.id, "c1")
    engine.service.pause(automation.id)

    assert engine.manager.find_due() == []


def test_find_due_defers_outside_active_window(engine, publish, clock):
    # Clock is Wednesday 10:00 UTC; window opens at 14:00
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"active_hours_start": "14:00", "active_hours_end": "18:00"}))
    enrollment = engine.manager.enroll(automation.id, "c1").enrollment

    assert engine.manager.find_due() == []
    deferred = engine.enrollments.get(enrollment.id)
    assert deferred.not_before == clock.now.replace(hour=14)
    assert deferred.resume_at is None

    clock.advance(hours=3)
    assert engine.manager.find_due() == []

    clock.advance(hours=1)
    assert [e.id for e in engine.manager.find_due()] == [enrollment.id]


def test_find_due_defers_disabled_days_in_automation_timezone(engine, publish, clock):
    # Wednesday 10:00 UTC is Wednesday 05:00 in New York; only weekends are enabled
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"timezone": "America/New_York", "enabled_days": [0, 6]}))
    enrollment = engine.manager.enroll(automation.id, "c1").enrollment

    assert engine.manager.find_due() == []
    deferred = engine.enrollments.get(enrollment.id)
    # Saturday 00:00 New York == Saturday 05:00 UTC
    assert deferred.not_before == clock.now.replace(day=6, hour=5)


def test_find_due_skips_leased(engine, publish, clock):
    automation = publish(make_automation(WAIT_THEN_TAG))
    enrollment = engine.manager.enroll(automation.id, "c1").enrollment
    engine.enrollments.acquire_lease(enrollment.id, "someone-else", 60, clock.now)

    assert engine.manager.find_due() == []


def test_terminate_is_idempotent_and_counts_once(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG))
    enrollment = engine.manager.enroll(automation.id, "c1").enrollment

    engine.manager.terminate(enrollment.id, "boom", EnrollmentStatus.FAILED, error="boom")
    engine.manager.terminate(enrollment.id, "again", EnrollmentStatus.CANCELLED)

    stored = engine.enrollments.get(enrollment.id)
    stats = engine.logs.stats(automation.id)
    assert stored.status == EnrollmentStatus.FAILED
    assert stored.termination_reason == "boom"
    assert stats.failed_executions == 1
    assert stats.cancelled_executions == 0
    assert stats.last_error == "boom"


def test_terminate_unknown_enrollment(engine):
    with pytest.raises(EnrollmentNotFoundError):
        engine.manager.terminate("nope", "x")


def test_cancel_automation(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG, settings={"allow_reentry": True}))
    for entity in ("c1", "c2", "c3"):
        engine.manager.enroll(automation.id, entity)

    assert engine.manager.cancel_automation(automation.id) == 3
    assert engine.manager.active_count(automation.id) == 0
    assert engine.logs.stats(automation.id).cancelled_executions == 3


def test_lease_renewal_requires_current_owner(engine, publish, clock):
    automation = publish(make_automation(WAIT_THEN_TAG))
    enrollment = engine.manager.enroll(automation.id, "c1").enrollment
    engine.enrollments.acquire_lease(enrollment.id, "worker-a", 60, clock.now)

    assert engine.enrollments.renew_lease(enrollment.id, "worker-b", 60, clock.now) is None
    renewed = engine.enrollments.renew_lease(enrollment.id, "worker-a", 120, clock.now)
    assert renewed.lease_expires_at == clock.now + timedelta(seconds=120)

    engine.manager.terminate(enrollment.id, "done", EnrollmentStatus.COMPLETED)
    assert engine.enrollments.renew_lease(enrollment.id, "worker-a", 60, clock.now) is None


def test_enroll_keeps_trigger_data(engine, publish):
    automation = publish(make_automation(WAIT_THEN_TAG))
    enrollment = engine.manager.enroll(automation.id, "c1", trigger_data={"plan": "pro"}).enrollment
    assert engine.enrollments.get(enrollment.id).trigger_data == {"plan": "pro"}
