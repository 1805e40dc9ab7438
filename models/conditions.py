from pydantic import BaseModel, Field
from typing import Any, List, Union
from enum import Enum


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"
    HAS_TAG = "has_tag"
    NOT_HAS_TAG = "not_has_tag"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionClause(BaseModel):
    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any = None


class ConditionGroup(BaseModel):
    operator: LogicalOperator = LogicalOperator.AND
    conditions: List[Union[ConditionClause, "ConditionGroup"]] = Field(default_factory=list)


ConditionGroup.model_rebuild()
