import logging
from typing import Dict, List, Optional, Set, Tuple, NamedTuple

from models.actions import (
    BaseAction,
    ActionType,
    ConditionAction,
    SplitAction,
    GoToAction,
    WaitAction,
)
from models.automation import Automation
from executor.errors import GraphValidationError

logger = logging.getLogger("automation_engine")

BRANCHING_TYPES = {ActionType.CONDITION, ActionType.SPLIT, ActionType.GO_TO}


class ValidationReport(NamedTuple):
    errors: List[str]
    warnings: List[str]

    @property
    def ok(self) -> bool:
        return not self.errors


class ActionGraph:
    """
    Adjacency map over an automation's flat action list, keyed by action id.
    Built once per automation version; hop resolution is a dict lookup.
    """

    def __init__(self, actions: List[BaseAction], entry_action_id: Optional[str]):
        self.entry_action_id = entry_action_id
        self.nodes: Dict[str, BaseAction] = {}
        self.duplicates: List[str] = []
        for action in actions:
            if action.id in self.nodes:
                self.duplicates.append(action.id)
            self.nodes[action.id] = action

    @classmethod
    def from_automation(cls, automation: Automation) -> "ActionGraph":
        return cls(automation.actions, automation.resolve_entry_action_id())

    def get(self, action_id: Optional[str]) -> Optional[BaseAction]:
        if action_id is None:
            return None
        return self.nodes.get(action_id)

    @staticmethod
    def successors(action: BaseAction) -> List[Tuple[str, str]]:
        """(label, target_id) pairs for every pointer an action holds."""
        if isinstance(action, ConditionAction):
            edges = [("true_branch", i) for i in action.config.true_branch[:1]]
            edges += [("false_branch", i) for i in action.config.false_branch[:1]]
            return edges
        if isinstance(action, SplitAction):
            return [(f"split:{b.name}", b.actions[0]) for b in action.config.branches if b.actions]
        if isinstance(action, GoToAction):
            return [("go_to", action.config.target_action_id)]
        return [("next", action.next_action_id)] if action.next_action_id else []

    def validate(self) -> ValidationReport:
        """
        Publish-time checks: every pointer resolves, everything is reachable
        from the entry action, split weights are usable. Cycles with no wait
        on them are reported as warnings; the hop budget stops them at run time.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not self.nodes:
            errors.append("automation has no actions")
            return ValidationReport(errors, warnings)

        for dup in self.duplicates:
            errors.append(f"duplicate action id '{dup}'")

        if self.entry_action_id not in self.nodes:
            errors.append(f"entry action '{self.entry_action_id}' does not exist")

        for action in self.nodes.values():
            if action.type in BRANCHING_TYPES and action.next_action_id:
                errors.append(f"{action.type} action '{action.id}' cannot declare next_action_id")
            for label, target in self.successors(action):
                if target not in self.nodes:
                    errors.append(f"action '{action.id}' {label} points to missing action '{target}'")
            if isinstance(action, ConditionAction):
                for branch_name in ("true_branch", "false_branch"):
                    branch = getattr(action.config, branch_name)
                    for extra in branch[1:]:
                        if extra not in self.nodes:
                            errors.append(f"action '{action.id}' {branch_name} points to missing action '{extra}'")
                    if len(branch) > 1:
                        warnings.append(f"action '{action.id}' {branch_name} lists {len(branch)} ids; only '{branch[0]}' is entered, chain the rest with next_action_id")
            if isinstance(action, SplitAction):
                names = [b.name for b in action.config.branches]
                if len(set(names)) != len(names):
                    errors.append(f"split '{action.id}' has duplicate branch names")

        if self.entry_action_id in self.nodes:
            reachable = self._reachable_from(self.entry_action_id)
            for action_id in self.nodes:
                if action_id not in reachable:
                    errors.append(f"action '{action_id}' is unreachable from the entry action")
            for cycle_start in self._cycles_without_wait(reachable):
                warnings.append(f"cycle through '{cycle_start}' has no wait; it will hit the hop budget")

        return ValidationReport(errors, warnings)

    def ensure_valid(self) -> ValidationReport:
        report = self.validate()
        if not report.ok:
            raise GraphValidationError(report.errors)
        for warning in report.warnings:
            logger.warning(f"Graph warning: {warning}")
        return report

    def _reachable_from(self, start: str) -> Set[str]:
        seen: Set[str] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current in seen or current not in self.nodes:
                continue
            seen.add(current)
            for _, target in self.successors(self.nodes[current]):
                stack.append(target)
        return seen

    def _cycles_without_wait(self, reachable: Set[str]) -> List[str]:
        """Back edges found by DFS over the sub-graph that excludes wait actions."""
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {node_id: WHITE for node_id in reachable}
        found: List[str] = []

        def visit(node_id: str):
            colour[node_id] = GREY
            node = self.nodes[node_id]
            if not isinstance(node, WaitAction):
                for _, target in self.successors(node):
                    if target not in colour or isinstance(self.nodes.get(target), WaitAction):
                        continue
                    if colour[target] == GREY:
                        found.append(target)
                    elif colour[target] == WHITE:
                        visit(target)
            colour[node_id] = BLACK

        for node_id in sorted(reachable):
            if colour[node_id] == WHITE:
                visit(node_id)
        return found
