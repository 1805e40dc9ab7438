import logging
from typing import Iterable, List, NamedTuple

from models.automation import Automation, AutomationStatus, TriggerType
from models.events import TriggerEvent
from executor.condition_evaluator import ConditionEvaluator, condition_context

logger = logging.getLogger("automation_engine")

# Trigger config field -> event metadata key carrying the same target
TARGET_FIELDS = ("form_id", "landing_page_id", "campaign_id", "tag_name", "stage_id", "webhook_key")


class TriggerMatch(NamedTuple):
    automation: Automation
    filter_notes: List[str]


class TriggerMatcher:
    """
    Decides which automations an event activates. A pure function of
    (event, automation definitions): re-entry and capacity are the
    Enrollment Manager's business, not this one's.
    """

    def __init__(self, evaluator: ConditionEvaluator = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def match(self, event: TriggerEvent, automations: Iterable[Automation]) -> List[TriggerMatch]:
        matches = []
        for automation in automations:
            if automation.status != AutomationStatus.ACTIVE:
                continue
            if automation.trigger.type != event.type:
                continue
            if not self._targets_match(automation, event):
                continue

            context = condition_context(event.entity_snapshot, event.metadata)
            result = self.evaluator.evaluate(automation.trigger.filters, context)
            if not result.value:
                continue
            matches.append(TriggerMatch(automation=automation, filter_notes=result.notes))
        return matches

    def _targets_match(self, automation: Automation, event: TriggerEvent) -> bool:
        config = automation.trigger.config
        if automation.trigger.type == TriggerType.DATE_BASED:
            return event.metadata.get("automation_id") == automation.id

        for field in TARGET_FIELDS:
            expected = getattr(config, field)
            if expected is None:
                # Unset target matches any value
                continue
            if event.metadata.get(field) != expected:
                return False
        return True
