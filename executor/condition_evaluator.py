import logging
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from models.conditions import ConditionClause, ConditionGroup, ConditionOperator, LogicalOperator

logger = logging.getLogger("automation_engine")

_MISSING = object()

_ORDERING_OPERATORS = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_OR_EQUAL,
    ConditionOperator.LESS_OR_EQUAL,
}


class EvaluationResult(BaseModel):
    value: bool
    notes: List[str] = Field(default_factory=list)


class ConditionEvaluator:
    """
    Evaluates AND/OR trees of (field, operator, value) clauses against a flat,
    read-only snapshot of entity attributes.

    Never raises on bad data: a missing field is "absent" (equals/contains are
    false, not_equals is true) and a type mismatch evaluates false with a note
    attached to the result.
    """

    def evaluate(self, expression: Optional[Union[ConditionGroup, ConditionClause]], snapshot: Dict[str, Any]) -> EvaluationResult:
        notes: List[str] = []
        if expression is None:
            return EvaluationResult(value=True)
        value = self._eval(expression, snapshot or {}, notes)
        for note in notes:
            logger.debug(f"Condition note: {note}")
        return EvaluationResult(value=value, notes=notes)

    def _eval(self, node, snapshot: Dict[str, Any], notes: List[str]) -> bool:
        if isinstance(node, ConditionGroup):
            if not node.conditions:
                return True
            results = [self._eval(child, snapshot, notes) for child in node.conditions]
            if node.operator == LogicalOperator.OR:
                return any(results)
            return all(results)
        return self._eval_clause(node, snapshot, notes)

    def _eval_clause(self, clause: ConditionClause, snapshot: Dict[str, Any], notes: List[str]) -> bool:
        current = resolve_path(snapshot, clause.field)
        op = clause.operator
        target = clause.value

        if current is _MISSING:
            if op in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_CONTAINS,
                      ConditionOperator.IS_EMPTY, ConditionOperator.NOT_IN_LIST,
                      ConditionOperator.NOT_HAS_TAG):
                return True
            return False

        if op == ConditionOperator.EQUALS:
            return _normalize(current) == _normalize(target)
        if op == ConditionOperator.NOT_EQUALS:
            return _normalize(current) != _normalize(target)
        if op == ConditionOperator.CONTAINS:
            return _contains(current, target)
        if op == ConditionOperator.NOT_CONTAINS:
            return not _contains(current, target)
        if op == ConditionOperator.STARTS_WITH:
            return str(current or "").lower().startswith(str(target or "").lower())
        if op == ConditionOperator.ENDS_WITH:
            return str(current or "").lower().endswith(str(target or "").lower())
        if op == ConditionOperator.IS_EMPTY:
            return _is_empty(current)
        if op == ConditionOperator.IS_NOT_EMPTY:
            return not _is_empty(current)
        if op in (ConditionOperator.IN_LIST, ConditionOperator.NOT_IN_LIST):
            values = target if isinstance(target, (list, tuple, set)) else [v.strip() for v in str(target).split(",")]
            found = any(_normalize(current) == _normalize(item) for item in values)
            return found if op == ConditionOperator.IN_LIST else not found
        if op == ConditionOperator.HAS_TAG:
            return _has_tag(current, target)
        if op == ConditionOperator.NOT_HAS_TAG:
            return not _has_tag(current, target)

        if op in _ORDERING_OPERATORS:
            return self._compare(clause, current, target, notes)

        notes.append(f"unsupported operator '{op}' on field '{clause.field}'")
        return False

    def _compare(self, clause: ConditionClause, current: Any, target: Any, notes: List[str]) -> bool:
        left, right = _as_number(current), _as_number(target)
        if left is None or right is None:
            left, right = _as_datetime(current), _as_datetime(target)
        if left is None or right is None:
            notes.append(f"cannot compare field '{clause.field}' ({current!r}) with {target!r} using {clause.operator.value}")
            return False
        try:
            if clause.operator == ConditionOperator.GREATER_THAN:
                return left > right
            if clause.operator == ConditionOperator.LESS_THAN:
                return left < right
            if clause.operator == ConditionOperator.GREATER_OR_EQUAL:
                return left >= right
            return left <= right
        except TypeError:
            notes.append(f"type mismatch on field '{clause.field}': {type(current).__name__} vs {type(target).__name__}")
            return False


def condition_context(snapshot: Dict[str, Any], data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    What trigger filters and condition actions evaluate against: the entity's
    attributes at top level, the same attributes under `contact.` and the
    triggering event's metadata under `data.`. Attributes that already use
    those names win.
    """
    context = dict(snapshot or {})
    context.setdefault("contact", dict(snapshot or {}))
    context.setdefault("data", dict(data or {}))
    return context


def resolve_path(snapshot: Dict[str, Any], path: str) -> Any:
    """
    Resolves `path` as a flat key first ("address.city" stored literally),
    then as a walk through nested dicts. Returns _MISSING when absent.
    """
    if path in snapshot:
        return snapshot[path]
    current: Any = snapshot
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value in ([], {}, ())


def _has_tag(current: Any, target: Any) -> bool:
    # Equality scan: a set of tags with an unhashable target must not raise
    if not isinstance(current, (list, tuple, set)):
        return False
    return any(item == target for item in current)


def _contains(current: Any, target: Any) -> bool:
    if isinstance(current, (list, tuple, set)):
        return any(_normalize(item) == _normalize(target) for item in current)
    if current is None:
        return False
    return str(target if target is not None else "").lower() in str(current).lower()


def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        number = _parse_number(value)
        if number is not None:
            return number
        return value
    return value


def _parse_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        return _parse_number(value)
    return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None
