import pytest
from executor.action_graph import ActionGraph
from executor.errors import GraphValidationError
from models.actions import parse_actions


def graph(actions, entry=None):
    parsed = parse_actions(actions)
    return ActionGraph(parsed, entry or (parsed[0].id if parsed else None))


def test_valid_linear_graph():
    report = graph([
        {"id": "a", "type": "send_email", "config": {"subject": "Hi", "body_html": "<p>Hi</p>"}, "next_action_id": "b"},
        {"id": "b", "type": "wait", "config": {"duration": 1, "unit": "days"}, "next_action_id": "c"},
        {"id": "c", "type": "add_tag", "config": {"tag_name": "welcomed"}},
    ]).validate()
    assert report.ok
    assert report.warnings == []


def test_dangling_pointers_are_errors():
    report = graph([
        {"id": "a", "type": "add_tag", "config": {"tag_name": "x"}, "next_action_id": "ghost"},
        {"id": "b", "type": "go_to", "config": {"target_action_id": "nowhere"}},
    ]).validate()
    assert not report.ok
    assert any("ghost" in e for e in report.errors)
    assert any("nowhere" in e for e in report.errors)


def test_unreachable_and_duplicate_ids():
    report = graph([
        {"id": "a", "type": "add_tag", "config": {"tag_name": "x"}},
        {"id": "a", "type": "add_tag", "config": {"tag_name": "y"}},
        {"id": "island", "type": "add_tag", "config": {"tag_name": "z"}},
    ]).validate()
    assert any("duplicate action id 'a'" in e for e in report.errors)
    assert any("island" in e and "unreachable" in e for e in report.errors)


def test_branching_kinds_cannot_declare_next():
    report = graph([
        {"id": "cond", "type": "condition", "next_action_id": "a",
         "config": {"conditions": {"conditions": []}, "true_branch": ["a"], "false_branch": []}},
        {"id": "a", "type": "add_tag", "config": {"tag_name": "x"}},
    ]).validate()
    assert any("cannot declare next_action_id" in e for e in report.errors)


def test_condition_and_split_branches_reach_targets():
    report = graph([
        {"id": "cond", "type": "condition",
         "config": {"conditions": {"conditions": []}, "true_branch": ["split"], "false_branch": ["b"]}},
        {"id": "split", "type": "split",
         "config": {"branches": [{"name": "A", "weight": 70, "actions": ["a"]},
                                 {"name": "B", "weight": 30, "actions": ["b"]}]}},
        {"id": "a", "type": "add_tag", "config": {"tag_name": "A"}},
        {"id": "b", "type": "add_tag", "config": {"tag_name": "B"}},
    ]).validate()
    assert report.ok, report.errors


def test_cycle_without_wait_is_a_warning():
    g = graph([
        {"id": "a", "type": "add_tag", "config": {"tag_name": "x"}, "next_action_id": "loop"},
        {"id": "loop", "type": "go_to", "config": {"target_action_id": "a"}},
    ])
    report = g.validate()
    assert report.ok
    assert any("no wait" in w for w in report.warnings)


def test_cycle_through_wait_is_fine():
    report = graph([
        {"id": "a", "type": "add_tag", "config": {"tag_name": "x"}, "next_action_id": "w"},
        {"id": "w", "type": "wait", "config": {"duration": 1, "unit": "days"}, "next_action_id": "loop"},
        {"id": "loop", "type": "go_to", "config": {"target_action_id": "a"}},
    ]).validate()
    assert report.ok
    assert report.warnings == []


def test_ensure_valid_raises_with_all_errors():
    g = graph([{"id": "a", "type": "add_tag", "config": {"tag_name": "x"}, "next_action_id": "ghost"}])
    with pytest.raises(GraphValidationError) as exc:
        g.ensure_valid()
    assert exc.value.errors


def test_empty_graph_is_invalid():
    assert not ActionGraph([], None).validate().ok


def test_successors():
    parsed = parse_actions([
        {"id": "s", "type": "split", "config": {"branches": [
            {"name": "A", "weight": 1, "actions": ["x", "y"]},
            {"name": "B", "weight": 1, "actions": []},
        ]}},
    ])
    assert ActionGraph.successors(parsed[0]) == [("split:A", "x")]
