import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from models.automation import Automation, AutomationStatus
from models.enrollment import (
    Enrollment,
    EnrollmentResult,
    EnrollmentStatus,
    RejectionReason,
    TriggeredBy,
)
from models.execution_log import LogStatus
from executor.errors import EnrollmentNotFoundError, StaleEnrollmentError
from stores.automation_store import AutomationStore
from stores.enrollment_store import EnrollmentStore
from stores.execution_log_store import ExecutionLogStore
from utils.time_utils import utcnow, is_within_window, next_allowed_instant

logger = logging.getLogger("automation_engine")

_TERMINAL_LOG_STATUS = {
    EnrollmentStatus.COMPLETED: LogStatus.COMPLETED,
    EnrollmentStatus.FAILED: LogStatus.FAILED,
    EnrollmentStatus.CANCELLED: LogStatus.CANCELLED,
}

_TERMINAL_COUNTER = {
    EnrollmentStatus.COMPLETED: "successful_executions",
    EnrollmentStatus.FAILED: "failed_executions",
    EnrollmentStatus.CANCELLED: "cancelled_executions",
}


class EnrollmentManager:
    """
    Owns the life of an enrollment outside of graph traversal: admission
    (re-entry and capacity rules), discovering what is due, and termination.
    """

    def __init__(
        self,
        automations: AutomationStore,
        enrollments: EnrollmentStore,
        logs: ExecutionLogStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.automations = automations
        self.enrollments = enrollments
        self.logs = logs
        self.clock = clock

    # ── Admission ─────────────────────────────────────────────────────────────

    def enroll(
        self,
        automation_id: str,
        entity_id: str,
        entity_type: str = "contact",
        triggered_by: Optional[TriggeredBy] = None,
        snapshot: Optional[Dict[str, Any]] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> EnrollmentResult:
        now = self.clock()
        automation = self.automations.get(automation_id)
        if automation is None:
            return self._reject(automation_id, entity_id, RejectionReason.AUTOMATION_NOT_FOUND)
        if automation.status != AutomationStatus.ACTIVE:
            return self._reject(automation_id, entity_id, RejectionReason.AUTOMATION_NOT_ACTIVE)

        # Check and insert under one lock: two triggers for the same entity
        # must not both pass the re-entry rules.
        with self.enrollments.transaction():
            reason = self._admission_check(automation, entity_id, now)
            if reason is not None:
                return self._reject(automation_id, entity_id, reason)

            enrollment = Enrollment(
                id=uuid4().hex,
                automation_id=automation_id,
                entity_id=entity_id,
                entity_type=entity_type,
                triggered_by=triggered_by or TriggeredBy(type=entity_type, id=entity_id),
                status=EnrollmentStatus.PENDING,
                current_action_id=automation.resolve_entry_action_id(),
                entity_snapshot=dict(snapshot or {}),
                trigger_data=dict(trigger_data or {}),
                enrolled_at=now,
                updated_at=now,
            )
            stored = self.enrollments.insert(enrollment)
            self.logs.increment(automation_id, "total_executions")
            self.logs.record_execution(automation_id, now)

        logger.info(f"Enrolled {entity_type} {entity_id} in automation {automation_id} (enrollment {stored.id})")
        return EnrollmentResult(enrollment=stored)

    def _admission_check(self, automation: Automation, entity_id: str, now: datetime) -> Optional[RejectionReason]:
        settings = automation.settings
        history = self.enrollments.list_for_entity(automation.id, entity_id)

        if any(e.is_live for e in history) and not settings.allow_reentry:
            return RejectionReason.ALREADY_ENROLLED

        if history:
            last_seen = max(e.finished_at or e.enrolled_at for e in history)
            if settings.reentry_delay_hours is not None:
                if now - last_seen < timedelta(hours=settings.reentry_delay_hours):
                    return RejectionReason.REENTRY_SUPPRESSED
            elif not settings.allow_reentry:
                return RejectionReason.REENTRY_SUPPRESSED

        if settings.max_executions is not None:
            if self.logs.counter(automation.id, "total_executions") >= settings.max_executions:
                return RejectionReason.MAX_EXECUTIONS_REACHED
        return None

    def _reject(self, automation_id: str, entity_id: str, reason: RejectionReason) -> EnrollmentResult:
        logger.info(f"Enrollment of {entity_id} in automation {automation_id} rejected: {reason.value}")
        self.logs.record_rejection(automation_id, reason.value)
        return EnrollmentResult(rejected_reason=reason)

    # ── Scheduling ────────────────────────────────────────────────────────────

    def find_due(self, now: Optional[datetime] = None) -> List[Enrollment]:
        """
        Live enrollments of active automations that may advance at `now`.
        One that is due outside its automation's active window is deferred:
        `not_before` moves to the next allowed instant and it is left out.
        """
        now = now or self.clock()
        automations: Dict[str, Optional[Automation]] = {}
        due: List[Enrollment] = []

        for enrollment in self.enrollments.list_live():
            if enrollment.automation_id not in automations:
                automations[enrollment.automation_id] = self.automations.get(enrollment.automation_id)
            automation = automations[enrollment.automation_id]
            if automation is None or automation.status != AutomationStatus.ACTIVE:
                continue

            ready_at = enrollment.due_at()
            if ready_at is not None and ready_at > now:
                continue
            if self.enrollments.is_leased(enrollment.id, now):
                continue

            if self.defer_outside_window(enrollment, automation, now) is not None:
                continue

            due.append(enrollment)

        due.sort(key=lambda e: (e.due_at() or e.enrolled_at, e.enrolled_at))
        return due

    def defer_outside_window(self, enrollment: Enrollment, automation: Automation, now: datetime) -> Optional[datetime]:
        """
        Returns None when `now` is inside the automation's active window.
        Otherwise moves `not_before` to the next allowed instant and returns it.
        """
        settings = automation.settings
        if is_within_window(now, settings.timezone, settings.enabled_days,
                            settings.active_hours_start, settings.active_hours_end):
            return None
        allowed = next_allowed_instant(now, settings.timezone, settings.enabled_days,
                                       settings.active_hours_start, settings.active_hours_end)
        if allowed <= now:
            return None
        enrollment.not_before = allowed
        try:
            self.enrollments.save(enrollment)
            logger.info(f"Enrollment {enrollment.id} outside active window; deferred to {allowed.isoformat()}")
        except StaleEnrollmentError:
            # Someone else advanced it meanwhile; the next tick will look again
            logger.debug(f"Enrollment {enrollment.id} changed while deferring; skipped")
        return allowed

    # ── Termination ───────────────────────────────────────────────────────────

    def terminate(
        self,
        enrollment_id: str,
        reason: str,
        status: EnrollmentStatus = EnrollmentStatus.CANCELLED,
        error: Optional[str] = None,
    ) -> Enrollment:
        """
        Moves a live enrollment to a terminal status, closes its run log and
        updates the automation's counters. Terminating an enrollment that is
        already terminal returns it unchanged.
        """
        if status not in _TERMINAL_LOG_STATUS:
            raise ValueError(f"{status.value} is not a terminal status")

        now = self.clock()
        with self.enrollments.transaction():
            enrollment = self.enrollments.get(enrollment_id)
            if enrollment is None:
                raise EnrollmentNotFoundError(enrollment_id)
            if not enrollment.is_live:
                return enrollment

            enrollment.status = status
            enrollment.termination_reason = reason
            enrollment.finished_at = now
            enrollment.lease_owner = None
            enrollment.lease_expires_at = None
            stored = self.enrollments.save(enrollment)

        if stored.run_log_id:
            self.logs.close_run(stored.run_log_id, _TERMINAL_LOG_STATUS[status], error=error, now=now)
        self.logs.increment(stored.automation_id, _TERMINAL_COUNTER[status])
        if status == EnrollmentStatus.FAILED:
            self.logs.record_error(stored.automation_id, error or reason)

        logger.info(f"Enrollment {enrollment_id} {status.value}: {reason}")
        return stored

    def cancel_automation(self, automation_id: str, reason: str = "automation archived") -> int:
        cancelled = 0
        for enrollment in self.enrollments.list_for_automation(automation_id, statuses=[EnrollmentStatus.PENDING, EnrollmentStatus.WAITING]):
            self.terminate(enrollment.id, reason, EnrollmentStatus.CANCELLED)
            cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} live enrollments of automation {automation_id}")
        return cancelled

    # ── Queries ───────────────────────────────────────────────────────────────

    def enrollment_state(self, automation_id: str, entity_id: str) -> List[Enrollment]:
        """Every enrollment of the entity in the automation, oldest first."""
        return self.enrollments.list_for_entity(automation_id, entity_id)

    def active_count(self, automation_id: str) -> int:
        return self.enrollments.count_live(automation_id)
