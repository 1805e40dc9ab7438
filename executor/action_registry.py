"""
Describes what each action kind means to the engine: whether it mutates
something through a collaborator, suspends the enrollment, or only moves
the cursor. Pure data; the Graph Executor owns the behaviour.
"""
from enum import Enum
from typing import Dict, Optional, NamedTuple

from models.actions import ActionType


class ActionCategory(str, Enum):
    MUTATING = "mutating"
    WAIT = "wait"
    BRANCH = "branch"
    JUMP = "jump"


class ActionSpec(NamedTuple):
    kind: ActionType
    category: ActionCategory
    collaborator: Optional[str]
    description: str

    @property
    def suspends(self) -> bool:
        return self.category == ActionCategory.WAIT

    @property
    def has_side_effect(self) -> bool:
        return self.category == ActionCategory.MUTATING


def _mutating(kind: ActionType, description: str) -> ActionSpec:
    # One collaborator per mutating kind, registered under the kind's value
    return ActionSpec(kind, ActionCategory.MUTATING, kind.value, description)


ACTION_REGISTRY: Dict[ActionType, ActionSpec] = {
    ActionType.SEND_EMAIL: _mutating(ActionType.SEND_EMAIL, "Send an email to the contact"),
    ActionType.SEND_WHATSAPP: _mutating(ActionType.SEND_WHATSAPP, "Send a WhatsApp template message"),
    ActionType.ADD_TAG: _mutating(ActionType.ADD_TAG, "Add a tag to the contact"),
    ActionType.REMOVE_TAG: _mutating(ActionType.REMOVE_TAG, "Remove a tag from the contact"),
    ActionType.UPDATE_CONTACT: _mutating(ActionType.UPDATE_CONTACT, "Update contact fields"),
    ActionType.CREATE_DEAL: _mutating(ActionType.CREATE_DEAL, "Create a deal for the contact"),
    ActionType.UPDATE_DEAL: _mutating(ActionType.UPDATE_DEAL, "Update deal fields"),
    ActionType.ADD_TO_LIST: _mutating(ActionType.ADD_TO_LIST, "Add the contact to a marketing list"),
    ActionType.REMOVE_FROM_LIST: _mutating(ActionType.REMOVE_FROM_LIST, "Remove the contact from a marketing list"),
    ActionType.SEND_NOTIFICATION: _mutating(ActionType.SEND_NOTIFICATION, "Notify internal users"),
    ActionType.WEBHOOK: _mutating(ActionType.WEBHOOK, "Call an external webhook"),
    ActionType.WAIT: ActionSpec(ActionType.WAIT, ActionCategory.WAIT, None, "Suspend for a period of time"),
    ActionType.CONDITION: ActionSpec(ActionType.CONDITION, ActionCategory.BRANCH, None, "If/else branch on contact attributes"),
    ActionType.SPLIT: ActionSpec(ActionType.SPLIT, ActionCategory.BRANCH, None, "Weighted A/B split"),
    ActionType.GO_TO: ActionSpec(ActionType.GO_TO, ActionCategory.JUMP, None, "Jump to another action"),
}

MUTATING_KINDS = [kind for kind, spec in ACTION_REGISTRY.items() if spec.has_side_effect]


def get_spec(kind) -> ActionSpec:
    try:
        return ACTION_REGISTRY[ActionType(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown action kind '{kind}'")
