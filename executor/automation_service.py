import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from models.automation import Automation, AutomationStatus, AutomationStats, TriggerType
from models.enrollment import Enrollment
from models.execution_log import ExecutionLogEntry
from executor.action_graph import ActionGraph, ValidationReport
from executor.enrollment_manager import EnrollmentManager
from executor.errors import AutomationNotFoundError, InvalidStateTransition
from stores.automation_store import AutomationStore
from stores.execution_log_store import ExecutionLogStore
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")

# status -> statuses it may move to
_TRANSITIONS = {
    AutomationStatus.DRAFT: {AutomationStatus.ACTIVE, AutomationStatus.ARCHIVED},
    AutomationStatus.ACTIVE: {AutomationStatus.PAUSED, AutomationStatus.ARCHIVED},
    AutomationStatus.PAUSED: {AutomationStatus.ACTIVE, AutomationStatus.ARCHIVED},
    AutomationStatus.ARCHIVED: set(),
}

_EDITABLE = {AutomationStatus.DRAFT, AutomationStatus.PAUSED}


class AutomationService:
    """Definition CRUD, lifecycle transitions and the read-only status surface."""

    def __init__(
        self,
        automations: AutomationStore,
        logs: ExecutionLogStore,
        manager: EnrollmentManager,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.automations = automations
        self.logs = logs
        self.manager = manager
        self.clock = clock

    def get(self, automation_id: str) -> Automation:
        automation = self.automations.get(automation_id)
        if automation is None:
            raise AutomationNotFoundError(automation_id)
        return automation

    def list(self, status: Optional[AutomationStatus] = None) -> List[Automation]:
        return self.automations.list(status)

    def create(self, payload: Dict[str, Any], created_by: Optional[str] = None) -> Automation:
        data = dict(payload)
        data.setdefault("id", uuid4().hex)
        data["status"] = AutomationStatus.DRAFT
        data["created_by"] = created_by or data.get("created_by")
        automation = Automation.model_validate(data)
        if self.automations.get(automation.id) is not None:
            raise InvalidStateTransition(f"Automation {automation.id} already exists")
        stored = self.automations.save(automation)
        logger.info(f"Created automation {stored.id} '{stored.name}'")
        return stored

    def update(self, automation_id: str, changes: Dict[str, Any]) -> Automation:
        """Replaces definition fields. Only draft and paused automations can be edited."""
        current = self.get(automation_id)
        if current.status not in _EDITABLE:
            raise InvalidStateTransition(f"Automation {automation_id} is {current.status.value}; pause it before editing")

        data = current.model_dump()
        for protected in ("id", "status", "version", "published_at", "created_at", "created_by"):
            changes.pop(protected, None)
        data.update(changes)
        updated = Automation.model_validate(data)

        if updated.status == AutomationStatus.PAUSED:
            # A paused automation resumes straight to active, so its graph must stay publishable
            ActionGraph.from_automation(updated).ensure_valid()
        return self.automations.save(updated)

    def validate(self, automation_id: str) -> ValidationReport:
        return ActionGraph.from_automation(self.get(automation_id)).validate()

    def publish(self, automation_id: str) -> Automation:
        automation = self.get(automation_id)
        ActionGraph.from_automation(automation).ensure_valid()
        automation = self._transition(automation, AutomationStatus.ACTIVE)
        automation.published_at = self.clock()
        stored = self.automations.save(automation)
        logger.info(f"Published automation {automation_id} (version {stored.version})")
        if stored.trigger.type == TriggerType.WEBHOOK and not stored.settings.webhook_secret:
            logger.warning(f"Webhook automation {automation_id} has no webhook_secret; unsigned calls will be accepted")
        return stored

    def pause(self, automation_id: str) -> Automation:
        automation = self._transition(self.get(automation_id), AutomationStatus.PAUSED)
        stored = self.automations.save(automation)
        logger.info(f"Paused automation {automation_id}; {self.manager.active_count(automation_id)} enrollments frozen")
        return stored

    def resume(self, automation_id: str) -> Automation:
        automation = self.get(automation_id)
        if automation.status != AutomationStatus.PAUSED:
            raise InvalidStateTransition(f"Automation {automation_id} is {automation.status.value}, not paused")
        ActionGraph.from_automation(automation).ensure_valid()
        stored = self.automations.save(self._transition(automation, AutomationStatus.ACTIVE))
        logger.info(f"Resumed automation {automation_id}")
        return stored

    def archive(self, automation_id: str) -> Automation:
        automation = self._transition(self.get(automation_id), AutomationStatus.ARCHIVED)
        stored = self.automations.save(automation)
        self.manager.cancel_automation(automation_id)
        logger.info(f"Archived automation {automation_id}")
        return stored

    def delete(self, automation_id: str) -> None:
        automation = self.get(automation_id)
        if automation.status != AutomationStatus.DRAFT:
            raise InvalidStateTransition("Only draft automations can be deleted; archive it instead")
        self.automations.delete(automation_id)

    @staticmethod
    def _transition(automation: Automation, target: AutomationStatus) -> Automation:
        if target not in _TRANSITIONS[automation.status]:
            raise InvalidStateTransition(f"Cannot move automation {automation.id} from {automation.status.value} to {target.value}")
        automation.status = target
        return automation

    # ── Status surface ────────────────────────────────────────────────────────

    def get_stats(self, automation_id: str) -> AutomationStats:
        self.get(automation_id)
        return self.logs.stats(automation_id, contacts_enrolled=self.manager.active_count(automation_id))

    def recent_logs(self, automation_id: str, limit: Optional[int] = None) -> List[ExecutionLogEntry]:
        self.get(automation_id)
        return self.logs.recent(automation_id, limit)

    def enrollment_state(self, automation_id: str, entity_id: str) -> List[Enrollment]:
        self.get(automation_id)
        return self.manager.enrollment_state(automation_id, entity_id)
