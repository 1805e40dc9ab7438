import pytest
from executor.condition_evaluator import ConditionEvaluator, condition_context, resolve_path
from models.conditions import ConditionClause, ConditionGroup, ConditionOperator, LogicalOperator


def clause(field, operator, value=None):
    return ConditionClause(field=field, operator=operator, value=value)


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


@pytest.fixture
def snapshot():
    return {
        "email": "Ana@Example.com",
        "score": 42,
        "plan": "pro",
        "tags": ["lead", "webinar"],
        "address": {"city": "Lisbon"},
        "signed_up_at": "2024-01-02T09:00:00",
        "newsletter": "true",
    }


def test_equals_and_not_equals(evaluator, snapshot):
    assert evaluator.evaluate(clause("plan", "equals", "pro"), snapshot).value is True
    assert evaluator.evaluate(clause("plan", "not_equals", "pro"), snapshot).value is False
    # numbers compare across int/str
    assert evaluator.evaluate(clause("score", "equals", "42"), snapshot).value is True
    assert evaluator.evaluate(clause("newsletter", "equals", True), snapshot).value is True


def test_missing_field_semantics(evaluator, snapshot):
    assert evaluator.evaluate(clause("nope", "equals", "x"), snapshot).value is False
    assert evaluator.evaluate(clause("nope", "contains", "x"), snapshot).value is False
    assert evaluator.evaluate(clause("nope", "not_equals", "x"), snapshot).value is True
    assert evaluator.evaluate(clause("nope", "greater_than", 1), snapshot).value is False
    assert evaluator.evaluate(clause("nope", "is_empty"), snapshot).value is True


def test_contains_is_case_insensitive_and_list_aware(evaluator, snapshot):
    assert evaluator.evaluate(clause("email", "contains", "example.com"), snapshot).value is True
    assert evaluator.evaluate(clause("tags", "contains", "webinar"), snapshot).value is True
    assert evaluator.evaluate(clause("tags", "not_contains", "vip"), snapshot).value is True


def test_ordering_on_numbers_and_dates(evaluator, snapshot):
    assert evaluator.evaluate(clause("score", "greater_than", 40), snapshot).value is True
    assert evaluator.evaluate(clause("score", "less_than", "40"), snapshot).value is False
    assert evaluator.evaluate(clause("score", "greater_or_equal", 42), snapshot).value is True
    assert evaluator.evaluate(clause("signed_up_at", "less_than", "2024-02-01T00:00:00"), snapshot).value is True


def test_type_mismatch_is_false_with_note(evaluator, snapshot):
    result = evaluator.evaluate(clause("plan", "greater_than", 5), snapshot)
    assert result.value is False
    assert result.notes and "plan" in result.notes[0]


def test_evaluator_never_raises_on_odd_values(evaluator):
    odd = {"a": None, "b": {"nested": [1, 2]}, "c": object()}
    for operator in ConditionOperator:
        for field in ("a", "b", "c", "b.nested"):
            result = evaluator.evaluate(clause(field, operator, [1]), odd)
            assert isinstance(result.value, bool)


def test_dotted_paths(evaluator, snapshot):
    assert evaluator.evaluate(clause("address.city", "equals", "Lisbon"), snapshot).value is True
    assert evaluator.evaluate(clause("address.city", "equals", "Porto"), {"address.city": "Porto"}).value is True
    assert resolve_path({"a": {"b": 1}}, "a.b") == 1


def test_list_and_tag_operators(evaluator, snapshot):
    assert evaluator.evaluate(clause("plan", "in_list", ["free", "pro"]), snapshot).value is True
    assert evaluator.evaluate(clause("plan", "in_list", "free, pro"), snapshot).value is True
    assert evaluator.evaluate(clause("plan", "not_in_list", ["free"]), snapshot).value is True
    assert evaluator.evaluate(clause("tags", "has_tag", "lead"), snapshot).value is True
    assert evaluator.evaluate(clause("tags", "not_has_tag", "lead"), snapshot).value is False


def test_nested_groups(evaluator, snapshot):
    group = ConditionGroup(
        operator=LogicalOperator.AND,
        conditions=[
            clause("plan", "equals", "pro"),
            ConditionGroup(operator=LogicalOperator.OR, conditions=[
                clause("score", "greater_than", 100),
                clause("tags", "has_tag", "webinar"),
            ]),
        ],
    )
    assert evaluator.evaluate(group, snapshot).value is True
    group.conditions[0] = clause("plan", "equals", "free")
    assert evaluator.evaluate(group, snapshot).value is False


def test_empty_group_and_none_are_true(evaluator):
    assert evaluator.evaluate(ConditionGroup(), {}).value is True
    assert evaluator.evaluate(None, {}).value is True


def test_tag_operators_on_sets_with_unhashable_values(evaluator):
    tagged = {"tags": {"lead", "vip"}}
    assert evaluator.evaluate(clause("tags", "has_tag", ["vip"]), tagged).value is False
    assert evaluator.evaluate(clause("tags", "not_has_tag", {"name": "vip"}), tagged).value is True
    assert evaluator.evaluate(clause("tags", "has_tag", "vip"), tagged).value is True


def test_condition_context_exposes_contact_and_data_prefixes(evaluator):
    context = condition_context({"first_name": "Ana", "plan": "free"}, {"plan": "pro", "form_id": "F"})

    assert evaluator.evaluate(clause("contact.first_name", "equals", "Ana"), context).value is True
    assert evaluator.evaluate(clause("first_name", "equals", "Ana"), context).value is True
    assert evaluator.evaluate(clause("data.plan", "equals", "pro"), context).value is True
    assert evaluator.evaluate(clause("plan", "equals", "free"), context).value is True
    assert evaluator.evaluate(clause("data.missing", "is_empty"), context).value is True


def test_condition_context_keeps_attributes_named_like_prefixes():
    context = condition_context({"data": {"x": 1}}, {"x": 2})
    assert context["data"] == {"x": 1}
