import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel

from collaborators.base_collaborator import BaseCollaborator
from collaborators.snapshot_provider import SnapshotProvider
from config import EngineConfig
from executor.action_graph import ActionGraph
from executor.action_registry import get_spec
from executor.condition_evaluator import ConditionEvaluator, condition_context
from executor.enrollment_manager import EnrollmentManager
from executor.errors import (
    ActionError,
    ConfigurationError,
    PermanentActionError,
    StaleEnrollmentError,
    TransientActionError,
)
from models.actions import (
    MUTATING_ACTIONS,
    AddTagAction,
    BaseAction,
    ConditionAction,
    GoToAction,
    RemoveTagAction,
    SplitAction,
    UpdateContactAction,
    WaitAction,
)
from models.automation import Automation, AutomationStatus, FailurePolicy
from models.enrollment import Enrollment, EnrollmentStatus
from models.execution_log import ActionOutcome, OutcomeStatus
from stores.automation_store import AutomationStore
from stores.enrollment_store import EnrollmentStore
from stores.execution_log_store import ExecutionLogStore
from utils.idempotency import choose_weighted
from utils.retry import RetryManager
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")


class RunOutcome(BaseModel):
    enrollment_id: str
    status: str  # completed | waiting | failed | cancelled | paused | skipped | not_due
    hops: int = 0
    error: Optional[str] = None


class _Step(NamedTuple):
    outcome: ActionOutcome
    next_action_id: Optional[str]
    resume_at: Optional[datetime] = None
    halt_error: Optional[str] = None


class GraphExecutor:
    """
    Advances one enrollment through its automation's action graph until it
    completes, fails, suspends on a wait, or its automation stops being
    active. Holds the enrollment's lease for the whole run.
    """

    def __init__(
        self,
        automations: AutomationStore,
        enrollments: EnrollmentStore,
        logs: ExecutionLogStore,
        manager: EnrollmentManager,
        collaborators: Dict[str, BaseCollaborator],
        snapshot_provider: Optional[SnapshotProvider] = None,
        config: Optional[EngineConfig] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.automations = automations
        self.enrollments = enrollments
        self.logs = logs
        self.manager = manager
        self.collaborators = collaborators
        self.snapshot_provider = snapshot_provider
        self.config = config or EngineConfig()
        self.evaluator = evaluator or ConditionEvaluator()
        self.clock = clock
        self._graphs: Dict[Tuple[str, int], ActionGraph] = {}

    async def run(self, enrollment_id: str, owner: Optional[str] = None) -> RunOutcome:
        owner = owner or f"executor-{uuid4().hex[:8]}"
        enrollment = self.enrollments.acquire_lease(enrollment_id, owner, self.config.lease_ttl_seconds, self.clock())
        if enrollment is None:
            logger.debug(f"Enrollment {enrollment_id} not claimable by {owner}; skipping")
            return RunOutcome(enrollment_id=enrollment_id, status="skipped")

        try:
            due_at = enrollment.due_at()
            if due_at is not None and due_at > self.clock():
                # A wait or window deferral is still pending; only the scheduler resumes it
                return RunOutcome(enrollment_id=enrollment_id, status="not_due")

            automation = self.automations.get(enrollment.automation_id)
            if automation is not None and automation.status == AutomationStatus.ACTIVE:
                deferred_to = self.manager.defer_outside_window(enrollment, automation, self.clock())
                if deferred_to is not None:
                    return RunOutcome(enrollment_id=enrollment_id, status="not_due")
            return await self._advance(enrollment, owner)
        except StaleEnrollmentError as e:
            current = self.enrollments.get(enrollment_id)
            status = current.status.value if current and not current.is_live else "skipped"
            logger.warning(f"Enrollment {enrollment_id} changed under run: {e}")
            return RunOutcome(enrollment_id=enrollment_id, status=status, error=str(e))
        finally:
            self.enrollments.release_lease(enrollment_id, owner)

    async def _advance(self, enrollment: Enrollment, owner: str) -> RunOutcome:
        enrollment = self._resume(enrollment)
        hops = 0

        while True:
            # Cancellation point: the automation may have been paused or archived
            automation = self.automations.get(enrollment.automation_id)
            if automation is None or automation.status == AutomationStatus.ARCHIVED:
                self.manager.terminate(enrollment.id, "automation archived", EnrollmentStatus.CANCELLED)
                return RunOutcome(enrollment_id=enrollment.id, status="cancelled", hops=hops)
            if automation.status != AutomationStatus.ACTIVE:
                logger.info(f"Automation {automation.id} is {automation.status.value}; enrollment {enrollment.id} stays at {enrollment.current_action_id}")
                return RunOutcome(enrollment_id=enrollment.id, status="paused", hops=hops)

            # Every hop extends the lease; losing it means another worker owns the enrollment
            current = self.enrollments.renew_lease(enrollment.id, owner, self.config.lease_ttl_seconds, self.clock())
            if current is None:
                current = self.enrollments.get(enrollment.id)
                if current is None or not current.is_live:
                    status = current.status.value if current else "cancelled"
                    return RunOutcome(enrollment_id=enrollment.id, status=status, hops=hops)
                logger.warning(f"Enrollment {enrollment.id} lease lost to {current.lease_owner}; stopping at {current.current_action_id}")
                return RunOutcome(enrollment_id=enrollment.id, status="skipped", hops=hops, error="lease lost")
            enrollment = current

            if enrollment.current_action_id is None:
                self.manager.terminate(enrollment.id, "completed", EnrollmentStatus.COMPLETED)
                return RunOutcome(enrollment_id=enrollment.id, status="completed", hops=hops)

            budget = automation.settings.hop_budget or self.config.hop_budget
            if hops >= budget:
                error = (f"hop budget of {budget} exhausted at action '{enrollment.current_action_id}'; "
                         f"the graph has a cycle without a wait")
                return self._fail(enrollment, error, hops)

            action = self._graph(automation).get(enrollment.current_action_id)
            if action is None:
                error = f"dangling reference: action '{enrollment.current_action_id}' does not exist"
                return self._fail(enrollment, error, hops)

            hops += 1
            try:
                step = await self._dispatch(automation, enrollment, action)
            except ConfigurationError as e:
                self.logs.append_outcome(enrollment.run_log_id, ActionOutcome(
                    action_id=action.id, action_type=action.type, status=OutcomeStatus.FAILED,
                    executed_at=self.clock(), error=str(e),
                ))
                return self._fail(enrollment, str(e), hops)

            self.logs.append_outcome(enrollment.run_log_id, step.outcome)

            if step.halt_error:
                enrollment = self.enrollments.save(enrollment)
                return self._fail(enrollment, f"action '{action.id}' failed: {step.halt_error}", hops)

            enrollment.current_action_id = step.next_action_id
            if step.resume_at is not None:
                enrollment.status = EnrollmentStatus.WAITING
                enrollment.resume_at = step.resume_at
                self.enrollments.save(enrollment)
                logger.info(f"Enrollment {enrollment.id} waiting until {step.resume_at.isoformat()}")
                return RunOutcome(enrollment_id=enrollment.id, status="waiting", hops=hops)

            enrollment = self.enrollments.save(enrollment)

    def _resume(self, enrollment: Enrollment) -> Enrollment:
        """Clears wait state and makes sure the run has an open log entry."""
        changed = False
        if enrollment.status == EnrollmentStatus.WAITING:
            enrollment.status = EnrollmentStatus.PENDING
            enrollment.resume_at = None
            changed = True
        if enrollment.not_before is not None:
            enrollment.not_before = None
            changed = True

        run = self.logs.get_run(enrollment.run_log_id) if enrollment.run_log_id else None
        if run is None or not run.is_open:
            run = self.logs.open_run(enrollment, self.clock())
            enrollment.run_log_id = run.id
            changed = True

        return self.enrollments.save(enrollment) if changed else enrollment

    def _fail(self, enrollment: Enrollment, error: str, hops: int) -> RunOutcome:
        logger.error(f"Enrollment {enrollment.id} failed: {error}")
        self.manager.terminate(enrollment.id, error, EnrollmentStatus.FAILED, error=error)
        return RunOutcome(enrollment_id=enrollment.id, status="failed", hops=hops, error=error)

    def _graph(self, automation: Automation) -> ActionGraph:
        key = (automation.id, automation.version)
        graph = self._graphs.get(key)
        if graph is None:
            graph = ActionGraph.from_automation(automation)
            self._graphs = {k: v for k, v in self._graphs.items() if k[0] != automation.id}
            self._graphs[key] = graph
        return graph

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def _dispatch(self, automation: Automation, enrollment: Enrollment, action: BaseAction) -> _Step:
        if isinstance(action, MUTATING_ACTIONS):
            return await self._run_mutating(automation, enrollment, action)
        if isinstance(action, WaitAction):
            resume_at = self.clock() + action.config.as_timedelta()
            outcome = self._outcome(action, OutcomeStatus.SUCCESS, detail={"resume_at": resume_at.isoformat()})
            return _Step(outcome, action.next_action_id, resume_at=resume_at)
        if isinstance(action, ConditionAction):
            return await self._run_condition(enrollment, action)
        if isinstance(action, SplitAction):
            weights = [b.weight for b in action.config.branches]
            branch = action.config.branches[choose_weighted(weights, enrollment.id, action.id)]
            next_id = branch.actions[0] if branch.actions else None
            return _Step(self._outcome(action, OutcomeStatus.SUCCESS, detail={"branch": branch.name}), next_id)
        if isinstance(action, GoToAction):
            target = action.config.target_action_id
            return _Step(self._outcome(action, OutcomeStatus.SUCCESS, detail={"target": target}), target)
        raise ConfigurationError(f"no handler for action kind '{action.type}'")

    async def _run_mutating(self, automation: Automation, enrollment: Enrollment, action: BaseAction) -> _Step:
        spec = get_spec(action.type)
        collaborator = self.collaborators.get(spec.collaborator)
        if collaborator is None:
            raise ConfigurationError(f"no collaborator registered for '{spec.collaborator}'")

        settings = automation.settings
        timeout = settings.action_timeout_seconds or self.config.action_timeout_seconds
        max_attempts = settings.max_action_attempts or self.config.max_action_attempts
        snapshot = self._snapshot_for(enrollment)
        attempts = 0

        def _count(attempt: int):
            nonlocal attempts
            attempts = attempt

        @RetryManager.with_retry(
            max_attempts=max_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            on_attempt=_count,
        )
        async def _invoke():
            try:
                result = await asyncio.wait_for(collaborator.execute(action.config, snapshot), timeout=timeout)
            except asyncio.TimeoutError:
                raise TransientActionError(f"timed out after {timeout}s")
            if not result.success:
                error_cls = PermanentActionError if result.permanent else TransientActionError
                raise error_cls(result.error or "collaborator reported failure", result.detail)
            return result

        try:
            result = await _invoke()
        except ActionError as e:
            return self._action_failed(automation, action, str(e), attempts, e.detail)
        except Exception as e:
            logger.exception(f"Unexpected error in {spec.collaborator} for enrollment {enrollment.id}")
            return self._action_failed(automation, action, f"{type(e).__name__}: {e}", attempts, None)

        self._apply_locally(enrollment, action)
        outcome = self._outcome(action, OutcomeStatus.SUCCESS, attempts=attempts, detail=result.detail)
        return _Step(outcome, action.next_action_id)

    def _action_failed(self, automation: Automation, action: BaseAction, error: str, attempts: int, detail) -> _Step:
        if automation.settings.failure_policy == FailurePolicy.SKIP:
            logger.warning(f"Action {action.id} failed after {attempts} attempt(s), skipping: {error}")
            self.logs.record_error(automation.id, error)
            outcome = self._outcome(action, OutcomeStatus.SKIPPED, attempts=attempts, detail=detail, error=error)
            return _Step(outcome, action.next_action_id)
        outcome = self._outcome(action, OutcomeStatus.FAILED, attempts=attempts, detail=detail, error=error)
        return _Step(outcome, action.id, halt_error=error)

    async def _run_condition(self, enrollment: Enrollment, action: ConditionAction) -> _Step:
        fresh = await self._fetch_snapshot(enrollment)
        if fresh is not None:
            enrollment.entity_snapshot = fresh
        context = condition_context(self._snapshot_for(enrollment), enrollment.trigger_data)
        result = self.evaluator.evaluate(action.config.conditions, context)
        branch = action.config.true_branch if result.value else action.config.false_branch
        next_id = branch[0] if branch else None
        detail = {"result": result.value, "branch": "true" if result.value else "false"}
        if result.notes:
            detail["notes"] = result.notes
        return _Step(self._outcome(action, OutcomeStatus.SUCCESS, detail=detail), next_id)

    async def _fetch_snapshot(self, enrollment: Enrollment) -> Optional[Dict[str, Any]]:
        if self.snapshot_provider is None:
            return None
        try:
            return await self.snapshot_provider.get_snapshot(enrollment.entity_type, enrollment.entity_id)
        except Exception as e:
            logger.warning(f"Snapshot refresh failed for {enrollment.entity_type} {enrollment.entity_id}, using stored copy: {e}")
            return None

    @staticmethod
    def _snapshot_for(enrollment: Enrollment) -> Dict[str, Any]:
        snapshot = dict(enrollment.entity_snapshot)
        snapshot.setdefault("id", enrollment.entity_id)
        return snapshot

    @staticmethod
    def _apply_locally(enrollment: Enrollment, action: BaseAction):
        """Mirrors a successful tag or field change into the stored snapshot."""
        snapshot = enrollment.entity_snapshot
        if isinstance(action, AddTagAction):
            tags = list(snapshot.get("tags") or [])
            if action.config.tag_name not in tags:
                tags.append(action.config.tag_name)
            snapshot["tags"] = tags
        elif isinstance(action, RemoveTagAction):
            snapshot["tags"] = [t for t in (snapshot.get("tags") or []) if t != action.config.tag_name]
        elif isinstance(action, UpdateContactAction):
            snapshot.update(action.config.fields)

    def _outcome(self, action: BaseAction, status: OutcomeStatus, attempts: int = 1, detail=None, error=None) -> ActionOutcome:
        return ActionOutcome(
            action_id=action.id,
            action_type=action.type,
            status=status,
            executed_at=self.clock(),
            attempts=max(attempts, 1),
            detail=detail,
            error=error,
        )
